import logging
from collections.abc import Callable

from app.client.api import HelpChatApiClient
from app.client.connection import ConnectionManager
from app.client.reducer import (
    CONVERSATIONS_KEY,
    ChatViewState,
    ConnectionStatusChanged,
    ConversationSelected,
    ConversationsLoaded,
    JoinRequested,
    KeysRefreshed,
    QueryKey,
    SelectionCleared,
    TranscriptLoaded,
    conversation_key,
    reduce,
)
from app.domain.enums import AssignmentMode, ConnectionStatus, MessageSender
from app.domain.models import ActorIdentity
from app.infra.realtime.events import (
    AdminJoinConversationEvent,
    AdminLeaveConversationEvent,
    HelpChatSendMessageEvent,
    HelpChatTypingEvent,
    SupportAgentPayload,
)
from app.schemas.help_chat import SupportAgentResponse

logger = logging.getLogger(__name__)

StateListener = Callable[[ChatViewState], None]


class AdminHelpChatSession:
    """Admin console controller: socket for live events, HTTP for data."""

    def __init__(
        self,
        connection: ConnectionManager,
        api: HelpChatApiClient,
        assignment_mode: AssignmentMode | None = None,
    ) -> None:
        self.connection = connection
        self.api = api
        self.assignment_mode = assignment_mode
        self.state = ChatViewState(connection_status=connection.status)
        self._listeners: list[StateListener] = []

        connection.add_event_listener(self.apply)
        connection.add_status_listener(self._on_status)

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def apply(self, event: object) -> ChatViewState:
        state = reduce(self.state, event)
        if state is not self.state:
            self.state = state
            for listener in list(self._listeners):
                listener(state)
        return self.state

    def _on_status(self, status: ConnectionStatus) -> None:
        self.apply(ConnectionStatusChanged(status))

    async def start(self, identity: ActorIdentity) -> None:
        self.api.identity = identity
        await self.connection.set_identity(identity)
        await self.connection.connect()
        if self.assignment_mode is None:
            settings = await self.api.get_settings()
            self.assignment_mode = settings.assignment_mode
        self.apply(ConversationsLoaded(tuple(await self.api.list_conversations())))

    async def stop(self) -> None:
        await self.connection.close()

    async def select_conversation(self, guest_id: str) -> list[SupportAgentResponse]:
        """Open a conversation; in manual mode return the agents to choose from."""
        if self.assignment_mode == AssignmentMode.MANUAL:
            self.apply(ConversationSelected(guest_id, awaiting_manual_selection=True))
            return await self.api.list_support_agents()

        self.apply(ConversationSelected(guest_id))
        await self._join(guest_id, None)
        return []

    async def choose_agent(self, agent_id: str) -> None:
        guest_id = self.state.selected_guest_id
        if guest_id is None or not self.state.awaiting_manual_selection:
            return
        await self._join(guest_id, agent_id)

    async def cancel_selection(self) -> None:
        guest_id = self.state.selected_guest_id
        if guest_id is not None and self.state.assigned_agent is not None:
            await self.connection.send(AdminLeaveConversationEvent(guest_id=guest_id))
        self.apply(SelectionCleared())

    async def leave(self) -> None:
        guest_id = self.state.selected_guest_id
        if guest_id is None:
            return
        await self.connection.send(AdminLeaveConversationEvent(guest_id=guest_id))
        self.apply(SelectionCleared())

    async def send_message(self, text: str) -> bool:
        guest_id = self.state.selected_guest_id
        if guest_id is None or not text.strip():
            return False

        event = HelpChatSendMessageEvent(
            guest_id=guest_id, message=text, sender=MessageSender.ADMIN
        )
        if await self.connection.send(event):
            return True

        logger.info("Socket unavailable, sending message for %s over HTTP", guest_id)
        await self.api.send_message(guest_id, text, sender=MessageSender.ADMIN)
        await self.refresh({CONVERSATIONS_KEY, conversation_key(guest_id)})
        return True

    async def set_typing(self, is_typing: bool) -> bool:
        guest_id = self.state.selected_guest_id
        if guest_id is None:
            return False
        return await self.connection.send(
            HelpChatTypingEvent(
                guest_id=guest_id, is_typing=is_typing, sender=MessageSender.ADMIN
            )
        )

    async def refresh(self, keys: set[QueryKey] | None = None) -> frozenset[QueryKey]:
        """Refetch stale queries (or the given keys) and mark them fresh.

        Each key is marked fresh before its fetch starts, so a push that
        invalidates it again mid-fetch leaves it stale for the next refresh.
        """
        pending = frozenset(keys) if keys is not None else self.state.stale_keys
        for key in pending:
            self.apply(KeysRefreshed(frozenset({key})))
            if key == CONVERSATIONS_KEY:
                self.apply(ConversationsLoaded(tuple(await self.api.list_conversations())))
            elif key[:3] == conversation_key("")[:3]:
                guest_id = key[3]
                if guest_id != self.state.selected_guest_id:
                    continue
                detail = await self.api.get_conversation(guest_id)
                self.apply(
                    TranscriptLoaded(
                        guest_id,
                        tuple(detail.messages),
                        assigned_agent=(
                            SupportAgentPayload.model_validate(
                                detail.assigned_agent.model_dump()
                            )
                            if detail.assigned_agent is not None
                            else None
                        ),
                    )
                )
        return pending

    async def _join(self, guest_id: str, agent_id: str | None) -> None:
        self.apply(JoinRequested(guest_id))
        sent = await self.connection.send(
            AdminJoinConversationEvent(guest_id=guest_id, selected_agent_id=agent_id)
        )
        if not sent:
            logger.warning("Join for %s not sent; socket is not open", guest_id)
