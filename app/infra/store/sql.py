from collections.abc import Mapping
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.enums import MessageSender
from app.domain.models import ChatMessage, ChatSession, ConversationSummary, SupportAgent
from app.infra.db import models
from app.infra.db.repositories import (
    ChatSessionRepository,
    HelpChatMessageRepository,
    HelpChatSettingRepository,
    SupportAgentRepository,
)


def _parse_agent_id(agent_id: str | None) -> int | None:
    if agent_id is None:
        return None
    try:
        return int(agent_id)
    except ValueError:
        return None


def _to_message(row: models.HelpChatMessage) -> ChatMessage:
    return ChatMessage(
        id=str(row.id),
        guest_id=row.guest_id,
        sender=row.sender,
        text=row.message,
        created_at=row.created_at,
        agent_id=str(row.agent_id) if row.agent_id is not None else None,
        receiver_id=row.receiver_id,
        is_auto_message=row.is_auto_message,
    )


def _to_session(row: models.SupportChatSession) -> ChatSession:
    return ChatSession(
        guest_id=row.guest_id,
        assigned_agent_id=(
            str(row.assigned_agent_id) if row.assigned_agent_id is not None else None
        ),
        is_active=row.is_active,
        started_at=row.session_started_at,
        last_activity_at=row.last_activity_at,
        last_read_at=row.last_read_at,
    )


def _to_agent(row: models.SupportAgent) -> SupportAgent:
    return SupportAgent(
        id=str(row.id),
        name=row.name,
        avatar_url=row.avatar_url,
        role=row.role,
        is_active=row.is_active,
        sort_order=row.sort_order,
        last_assigned_at=row.last_assigned_at,
    )


class SqlHelpChatStore:
    """Postgres-backed store; one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

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
        async with self.session_factory() as session:
            sessions = ChatSessionRepository(session)
            messages = HelpChatMessageRepository(session)

            chat_session = await sessions.get_or_create(guest_id, created_at)
            chat_session.last_activity_at = created_at
            row = await messages.create(
                guest_id=guest_id,
                sender=sender,
                message=text,
                created_at=created_at,
                agent_id=_parse_agent_id(agent_id),
                receiver_id=receiver_id,
                is_auto_message=is_auto_message,
            )
            await session.commit()
            return _to_message(row)

    async def list_messages(self, guest_id: str) -> list[ChatMessage]:
        async with self.session_factory() as session:
            rows = await HelpChatMessageRepository(session).list_by_guest(guest_id)
            return [_to_message(row) for row in rows]

    async def get_session(self, guest_id: str) -> ChatSession | None:
        async with self.session_factory() as session:
            row = await ChatSessionRepository(session).get_by_guest_id(guest_id)
            return _to_session(row) if row is not None else None

    async def set_guest_active(
        self, guest_id: str, is_active: bool, now: datetime
    ) -> ChatSession:
        async with self.session_factory() as session:
            row = await ChatSessionRepository(session).get_or_create(guest_id, now)
            row.is_active = is_active
            row.last_activity_at = now
            await session.commit()
            return _to_session(row)

    async def set_assigned_agent(
        self, guest_id: str, agent_id: str | None, now: datetime
    ) -> ChatSession:
        async with self.session_factory() as session:
            row = await ChatSessionRepository(session).get_or_create(guest_id, now)
            parsed_agent_id = _parse_agent_id(agent_id)
            row.assigned_agent_id = parsed_agent_id
            row.last_activity_at = now
            if parsed_agent_id is not None:
                agent = await SupportAgentRepository(session).get_by_id(parsed_agent_id)
                if agent is not None:
                    agent.last_assigned_at = now
            await session.commit()
            return _to_session(row)

    async def mark_read(self, guest_id: str, now: datetime) -> None:
        async with self.session_factory() as session:
            row = await ChatSessionRepository(session).get_by_guest_id(guest_id)
            if row is None:
                return
            row.last_read_at = now
            await session.commit()

    async def list_conversations(self) -> list[ConversationSummary]:
        async with self.session_factory() as session:
            rows = await ChatSessionRepository(session).list_with_stats()
            return [
                ConversationSummary(
                    guest_id=row.session.guest_id,
                    last_message=row.last_message,
                    last_message_time=row.last_message_time,
                    message_count=row.message_count,
                    unread_count=row.unread_count,
                    is_active=row.session.is_active,
                    assigned_agent_id=(
                        str(row.session.assigned_agent_id)
                        if row.session.assigned_agent_id is not None
                        else None
                    ),
                )
                for row in rows
            ]

    async def list_agents(self, active_only: bool = False) -> list[SupportAgent]:
        async with self.session_factory() as session:
            rows = await SupportAgentRepository(session).list_all(active_only=active_only)
            return [_to_agent(row) for row in rows]

    async def get_agent(self, agent_id: str) -> SupportAgent | None:
        parsed_agent_id = _parse_agent_id(agent_id)
        if parsed_agent_id is None:
            return None
        async with self.session_factory() as session:
            row = await SupportAgentRepository(session).get_by_id(parsed_agent_id)
            return _to_agent(row) if row is not None else None

    async def create_agent(
        self,
        name: str,
        avatar_url: str | None = None,
        role: str | None = None,
        is_active: bool = True,
        sort_order: int = 0,
    ) -> SupportAgent:
        async with self.session_factory() as session:
            row = await SupportAgentRepository(session).create(
                name=name,
                avatar_url=avatar_url,
                role=role,
                is_active=is_active,
                sort_order=sort_order,
            )
            await session.commit()
            return _to_agent(row)

    async def count_assigned(self, agent_id: str) -> int:
        parsed_agent_id = _parse_agent_id(agent_id)
        if parsed_agent_id is None:
            return 0
        async with self.session_factory() as session:
            return await ChatSessionRepository(session).count_assigned_to_agent(
                parsed_agent_id
            )

    async def get_settings(self) -> dict[str, str]:
        async with self.session_factory() as session:
            rows = await HelpChatSettingRepository(session).list_all()
            return {row.setting_key: row.setting_value for row in rows}

    async def save_settings(
        self,
        values: Mapping[str, str],
        updated_by: str | None = None,
        overwrite: bool = True,
    ) -> dict[str, str]:
        async with self.session_factory() as session:
            settings = HelpChatSettingRepository(session)
            for key, value in values.items():
                await settings.upsert(key, value, updated_by=updated_by, overwrite=overwrite)
            await session.commit()
            rows = await settings.list_all()
            return {row.setting_key: row.setting_value for row in rows}
