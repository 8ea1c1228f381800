from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from itertools import count

from app.domain.enums import MessageSender
from app.domain.models import ChatMessage, ChatSession, ConversationSummary, SupportAgent


class InMemoryHelpChatStore:
    """Process-local store used for local development and tests."""

    def __init__(self) -> None:
        self._messages: dict[str, list[ChatMessage]] = {}
        self._sessions: dict[str, ChatSession] = {}
        self._agents: dict[str, SupportAgent] = {}
        self._settings: dict[str, str] = {}
        self._message_ids = count(1)
        self._agent_ids = count(1)

    def add_agent(
        self,
        name: str,
        avatar_url: str | None = None,
        role: str | None = None,
        is_active: bool = True,
        sort_order: int = 0,
        agent_id: str | None = None,
    ) -> SupportAgent:
        resolved_id = agent_id or str(next(self._agent_ids))
        while agent_id is None and resolved_id in self._agents:
            resolved_id = str(next(self._agent_ids))
        agent = SupportAgent(
            id=resolved_id,
            name=name,
            avatar_url=avatar_url,
            role=role,
            is_active=is_active,
            sort_order=sort_order,
        )
        self._agents[agent.id] = agent
        return agent

    async def append_message(
        self,
        guest_id: str,
        sender: MessageSender,
        text: str,
        created_at: datetime,
        agent_id: str | None = None,
        receiver_id: str | None = None,
        is_auto_message: bool = False,
    ) -> ChatMessage:
        session = self._ensure_session(guest_id, created_at)
        self._sessions[guest_id] = replace(session, last_activity_at=created_at)

        message = ChatMessage(
            id=str(next(self._message_ids)),
            guest_id=guest_id,
            sender=sender,
            text=text,
            created_at=created_at,
            agent_id=agent_id,
            receiver_id=receiver_id,
            is_auto_message=is_auto_message,
        )
        self._messages.setdefault(guest_id, []).append(message)
        return message

    async def list_messages(self, guest_id: str) -> list[ChatMessage]:
        # Stable sort keeps insertion order for equal timestamps.
        return sorted(self._messages.get(guest_id, []), key=lambda message: message.created_at)

    async def get_session(self, guest_id: str) -> ChatSession | None:
        return self._sessions.get(guest_id)

    async def set_guest_active(
        self, guest_id: str, is_active: bool, now: datetime
    ) -> ChatSession:
        session = replace(
            self._ensure_session(guest_id, now),
            is_active=is_active,
            last_activity_at=now,
        )
        self._sessions[guest_id] = session
        return session

    async def set_assigned_agent(
        self, guest_id: str, agent_id: str | None, now: datetime
    ) -> ChatSession:
        session = replace(
            self._ensure_session(guest_id, now),
            assigned_agent_id=agent_id,
            last_activity_at=now,
        )
        self._sessions[guest_id] = session
        if agent_id is not None and agent_id in self._agents:
            self._agents[agent_id] = replace(self._agents[agent_id], last_assigned_at=now)
        return session

    async def mark_read(self, guest_id: str, now: datetime) -> None:
        session = self._sessions.get(guest_id)
        if session is not None:
            self._sessions[guest_id] = replace(session, last_read_at=now)

    async def list_conversations(self) -> list[ConversationSummary]:
        summaries: list[ConversationSummary] = []
        for guest_id, session in self._sessions.items():
            messages = await self.list_messages(guest_id)
            last = messages[-1] if messages else None
            unread = [
                message
                for message in messages
                if message.sender == MessageSender.VISITOR
                and (session.last_read_at is None or message.created_at > session.last_read_at)
            ]
            summaries.append(
                ConversationSummary(
                    guest_id=guest_id,
                    last_message=last.text if last else None,
                    last_message_time=last.created_at if last else None,
                    message_count=len(messages),
                    unread_count=len(unread),
                    is_active=session.is_active,
                    assigned_agent_id=session.assigned_agent_id,
                )
            )

        with_messages = [item for item in summaries if item.last_message_time is not None]
        without_messages = [item for item in summaries if item.last_message_time is None]
        with_messages.sort(key=lambda item: item.last_message_time, reverse=True)
        return with_messages + without_messages

    async def list_agents(self, active_only: bool = False) -> list[SupportAgent]:
        agents = [
            agent for agent in self._agents.values() if agent.is_active or not active_only
        ]
        return sorted(agents, key=lambda agent: (agent.sort_order, agent.name))

    async def get_agent(self, agent_id: str) -> SupportAgent | None:
        return self._agents.get(agent_id)

    async def create_agent(
        self,
        name: str,
        avatar_url: str | None = None,
        role: str | None = None,
        is_active: bool = True,
        sort_order: int = 0,
    ) -> SupportAgent:
        return self.add_agent(
            name,
            avatar_url=avatar_url,
            role=role,
            is_active=is_active,
            sort_order=sort_order,
        )

    async def count_assigned(self, agent_id: str) -> int:
        return sum(
            1 for session in self._sessions.values() if session.assigned_agent_id == agent_id
        )

    async def get_settings(self) -> dict[str, str]:
        return dict(self._settings)

    async def save_settings(
        self,
        values: Mapping[str, str],
        updated_by: str | None = None,
        overwrite: bool = True,
    ) -> dict[str, str]:
        _ = updated_by
        for key, value in values.items():
            if overwrite or key not in self._settings:
                self._settings[key] = value
        return dict(self._settings)

    def _ensure_session(self, guest_id: str, now: datetime) -> ChatSession:
        session = self._sessions.get(guest_id)
        if session is None:
            session = ChatSession(
                guest_id=guest_id,
                assigned_agent_id=None,
                is_active=True,
                started_at=now,
                last_activity_at=now,
            )
            self._sessions[guest_id] = session
        return session
