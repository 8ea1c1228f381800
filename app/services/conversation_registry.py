import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

from app.domain.enums import MessageSender
from app.domain.models import ChatMessage, ChatSession, ConversationSummary, SupportAgent
from app.infra.realtime.events import HelpChatGuestOnlineEvent, HelpChatMessageEvent
from app.infra.realtime.hub import Connection, ConnectionHub
from app.infra.store.base import HelpChatStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ConversationDetail:
    guest_id: str
    session: ChatSession | None
    messages: list[ChatMessage]
    assigned_agent: SupportAgent | None


class ConversationWriter:
    """Mutations allowed while holding a conversation's lock."""

    def __init__(self, registry: "ConversationRegistry", guest_id: str) -> None:
        self._registry = registry
        self.guest_id = guest_id

    async def current_agent_id(self) -> str | None:
        session = await self._registry.store.get_session(self.guest_id)
        return session.assigned_agent_id if session is not None else None

    async def append(
        self,
        sender: MessageSender,
        text: str,
        agent: SupportAgent | None = None,
        receiver_id: str | None = None,
        is_auto_message: bool = False,
        origin: Connection | None = None,
    ) -> ChatMessage:
        registry = self._registry
        message = await registry.store.append_message(
            guest_id=self.guest_id,
            sender=sender,
            text=text,
            created_at=registry.clock(),
            agent_id=agent.id if agent is not None else None,
            receiver_id=receiver_id,
            is_auto_message=is_auto_message,
        )

        recipients = registry.hub.subscribers(self.guest_id)
        guest_connection = registry.hub.guest_connection(self.guest_id)
        if guest_connection is not None and guest_connection is not origin:
            recipients.append(guest_connection)

        await registry.hub.broadcast(
            recipients,
            HelpChatMessageEvent.from_message(message, agent),
        )
        return message

    async def set_assigned_agent(self, agent_id: str | None) -> ChatSession:
        return await self._registry.store.set_assigned_agent(
            self.guest_id, agent_id, self._registry.clock()
        )


class ConversationRegistry:
    """Single writer for conversation state and its live fan-out.

    Every mutation for a guest id runs under that guest's asyncio.Lock. The
    lock is FIFO and is the first thing each mutating call awaits, so
    broadcasts for one conversation leave in the order the calls were made.
    """

    def __init__(
        self,
        store: HelpChatStore,
        hub: ConnectionHub,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.hub = hub
        self.clock = clock or _utc_now
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def tracked_locks(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def exclusive(self, guest_id: str) -> AsyncIterator[ConversationWriter]:
        lock = self._locks.get(guest_id)
        if lock is None:
            lock = self._locks[guest_id] = asyncio.Lock()
        self._lock_users[guest_id] = self._lock_users.get(guest_id, 0) + 1
        try:
            async with lock:
                yield ConversationWriter(self, guest_id)
        finally:
            # Drop the lock with its last holder or waiter.
            users = self._lock_users[guest_id] - 1
            if users:
                self._lock_users[guest_id] = users
            else:
                del self._lock_users[guest_id]
                del self._locks[guest_id]

    async def append_message(
        self,
        guest_id: str,
        sender: MessageSender,
        text: str,
        receiver_id: str | None = None,
        origin: Connection | None = None,
    ) -> ChatMessage:
        async with self.exclusive(guest_id) as writer:
            agent: SupportAgent | None = None
            if sender == MessageSender.ADMIN:
                agent_id = await writer.current_agent_id()
                if agent_id is not None:
                    agent = await self.store.get_agent(agent_id)
            message = await writer.append(
                sender,
                text,
                agent=agent,
                receiver_id=receiver_id,
                origin=origin,
            )

        logger.debug("Appended message %s to conversation %s", message.id, guest_id)
        return message

    async def mark_guest_online(self, guest_id: str) -> None:
        async with self.exclusive(guest_id):
            now = self.clock()
            await self.store.set_guest_active(guest_id, True, now)
            await self.hub.broadcast(
                self.hub.admin_connections(),
                HelpChatGuestOnlineEvent(guest_id=guest_id, timestamp=now),
            )
        logger.info("Guest %s is online", guest_id)

    async def mark_guest_offline(self, guest_id: str) -> None:
        async with self.exclusive(guest_id):
            await self.store.set_guest_active(guest_id, False, self.clock())
        logger.info("Guest %s is offline", guest_id)

    def subscribe(self, connection: Connection, guest_id: str) -> None:
        self.hub.subscribe(connection, guest_id)

    def unsubscribe(self, connection: Connection, guest_id: str) -> None:
        self.hub.unsubscribe(connection, guest_id)

    async def list_conversations(self) -> list[ConversationSummary]:
        return await self.store.list_conversations()

    async def get_conversation(self, guest_id: str) -> ConversationDetail:
        session = await self.store.get_session(guest_id)
        messages = await self.store.list_messages(guest_id)
        agent: SupportAgent | None = None
        if session is not None and session.assigned_agent_id is not None:
            agent = await self.store.get_agent(session.assigned_agent_id)
        return ConversationDetail(
            guest_id=guest_id,
            session=session,
            messages=messages,
            assigned_agent=agent,
        )

    async def mark_read(self, guest_id: str) -> None:
        await self.store.mark_read(guest_id, self.clock())
