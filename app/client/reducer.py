"""Admin console view state, folded from socket events and local actions.

The reducer never applies a pushed message to the transcript. A push only
marks query keys stale; the console refetches them over HTTP. The single
optimistic update is ``admin_join_success`` for the conversation being joined.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from app.domain.enums import ConnectionStatus, MessageSender
from app.infra.realtime.events import (
    AdminJoinSuccessEvent,
    AdminLeaveSuccessEvent,
    AuthSuccessEvent,
    ConversationAssignmentClearedEvent,
    ErrorEvent,
    HelpChatAuthSuccessEvent,
    HelpChatGuestOnlineEvent,
    HelpChatMessageEvent,
    HelpChatMessageSentEvent,
    HelpChatTypingEvent,
    PongEvent,
    SupportAgentPayload,
    UnknownEvent,
)
from app.schemas.help_chat import ConversationSummaryResponse, HelpChatMessageResponse

QueryKey = tuple[str, ...]

CONVERSATIONS_KEY: QueryKey = ("admin", "help-chat", "conversations")


def conversation_key(guest_id: str) -> QueryKey:
    return ("admin", "help-chat", "conversation", guest_id)


@dataclass(frozen=True, slots=True)
class ChatViewState:
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    authenticated: bool = False
    selected_guest_id: str | None = None
    joining_guest_id: str | None = None
    awaiting_manual_selection: bool = False
    assigned_agent: SupportAgentPayload | None = None
    conversations: tuple[ConversationSummaryResponse, ...] = ()
    transcript: tuple[HelpChatMessageResponse, ...] = ()
    typing_guest_ids: frozenset[str] = field(default_factory=frozenset)
    stale_keys: frozenset[QueryKey] = field(default_factory=frozenset)
    last_error: ErrorEvent | None = None


# Local actions


@dataclass(frozen=True, slots=True)
class ConnectionStatusChanged:
    status: ConnectionStatus


@dataclass(frozen=True, slots=True)
class ConversationSelected:
    guest_id: str
    awaiting_manual_selection: bool = False


@dataclass(frozen=True, slots=True)
class JoinRequested:
    guest_id: str


@dataclass(frozen=True, slots=True)
class SelectionCleared:
    pass


@dataclass(frozen=True, slots=True)
class ConversationsLoaded:
    conversations: tuple[ConversationSummaryResponse, ...]


@dataclass(frozen=True, slots=True)
class TranscriptLoaded:
    guest_id: str
    messages: tuple[HelpChatMessageResponse, ...]
    assigned_agent: SupportAgentPayload | None = None


@dataclass(frozen=True, slots=True)
class KeysRefreshed:
    keys: frozenset[QueryKey]


def _invalidate(state: ChatViewState, *keys: QueryKey) -> ChatViewState:
    return replace(state, stale_keys=state.stale_keys | frozenset(keys))


def _unchanged(state: ChatViewState, event: Any) -> ChatViewState:
    return state


def _on_status(state: ChatViewState, action: ConnectionStatusChanged) -> ChatViewState:
    if action.status == ConnectionStatus.CONNECTED:
        return replace(state, connection_status=action.status)
    return replace(
        state,
        connection_status=action.status,
        authenticated=False,
        joining_guest_id=None,
        typing_guest_ids=frozenset(),
    )


def _on_auth_success(state: ChatViewState, event: AuthSuccessEvent) -> ChatViewState:
    return replace(state, authenticated=True)


def _on_selected(state: ChatViewState, action: ConversationSelected) -> ChatViewState:
    return replace(
        state,
        selected_guest_id=action.guest_id,
        joining_guest_id=None,
        awaiting_manual_selection=action.awaiting_manual_selection,
        assigned_agent=None,
        transcript=(),
        stale_keys=state.stale_keys | {conversation_key(action.guest_id)},
    )


def _on_join_requested(state: ChatViewState, action: JoinRequested) -> ChatViewState:
    if action.guest_id != state.selected_guest_id:
        return state
    return replace(state, joining_guest_id=action.guest_id, awaiting_manual_selection=False)


def _on_selection_cleared(state: ChatViewState, action: SelectionCleared) -> ChatViewState:
    return replace(
        state,
        selected_guest_id=None,
        joining_guest_id=None,
        awaiting_manual_selection=False,
        assigned_agent=None,
        transcript=(),
    )


def _on_conversations_loaded(
    state: ChatViewState, action: ConversationsLoaded
) -> ChatViewState:
    return replace(state, conversations=tuple(action.conversations))


def _on_transcript_loaded(state: ChatViewState, action: TranscriptLoaded) -> ChatViewState:
    if action.guest_id != state.selected_guest_id:
        return state
    if state.joining_guest_id == action.guest_id:
        # The join result is authoritative until it arrives.
        return replace(state, transcript=tuple(action.messages))
    return replace(
        state,
        transcript=tuple(action.messages),
        assigned_agent=action.assigned_agent,
    )


def _on_keys_refreshed(state: ChatViewState, action: KeysRefreshed) -> ChatViewState:
    return replace(state, stale_keys=state.stale_keys - action.keys)


def _on_message(state: ChatViewState, event: HelpChatMessageEvent) -> ChatViewState:
    typing = state.typing_guest_ids
    if event.sender == MessageSender.VISITOR:
        typing = typing - {event.guest_id}
    state = replace(state, typing_guest_ids=typing)
    if event.guest_id == state.selected_guest_id:
        return _invalidate(state, CONVERSATIONS_KEY, conversation_key(event.guest_id))
    return _invalidate(state, CONVERSATIONS_KEY)


def _on_message_sent(state: ChatViewState, event: HelpChatMessageSentEvent) -> ChatViewState:
    if event.guest_id == state.selected_guest_id:
        return _invalidate(state, CONVERSATIONS_KEY, conversation_key(event.guest_id))
    return _invalidate(state, CONVERSATIONS_KEY)


def _on_join_success(state: ChatViewState, event: AdminJoinSuccessEvent) -> ChatViewState:
    if event.guest_id != state.joining_guest_id:
        return state
    return _invalidate(
        replace(state, assigned_agent=event.assigned_agent, joining_guest_id=None),
        CONVERSATIONS_KEY,
    )


def _on_assignment_cleared(
    state: ChatViewState, event: ConversationAssignmentClearedEvent
) -> ChatViewState:
    if event.guest_id == state.selected_guest_id:
        state = replace(state, assigned_agent=None)
    return _invalidate(state, CONVERSATIONS_KEY, conversation_key(event.guest_id))


def _on_guest_online(state: ChatViewState, event: HelpChatGuestOnlineEvent) -> ChatViewState:
    return _invalidate(state, CONVERSATIONS_KEY)


def _on_typing(state: ChatViewState, event: HelpChatTypingEvent) -> ChatViewState:
    if event.sender != MessageSender.VISITOR:
        return state
    if event.is_typing:
        return replace(state, typing_guest_ids=state.typing_guest_ids | {event.guest_id})
    return replace(state, typing_guest_ids=state.typing_guest_ids - {event.guest_id})


def _on_error(state: ChatViewState, event: ErrorEvent) -> ChatViewState:
    return replace(state, last_error=event)


Reducer = Callable[[ChatViewState, Any], ChatViewState]

HANDLERS: dict[type, Reducer] = {
    # server events
    AuthSuccessEvent: _on_auth_success,
    HelpChatAuthSuccessEvent: _unchanged,
    HelpChatMessageEvent: _on_message,
    HelpChatMessageSentEvent: _on_message_sent,
    HelpChatGuestOnlineEvent: _on_guest_online,
    HelpChatTypingEvent: _on_typing,
    AdminJoinSuccessEvent: _on_join_success,
    AdminLeaveSuccessEvent: _unchanged,
    ConversationAssignmentClearedEvent: _on_assignment_cleared,
    ErrorEvent: _on_error,
    PongEvent: _unchanged,
    UnknownEvent: _unchanged,
    # local actions
    ConnectionStatusChanged: _on_status,
    ConversationSelected: _on_selected,
    JoinRequested: _on_join_requested,
    SelectionCleared: _on_selection_cleared,
    ConversationsLoaded: _on_conversations_loaded,
    TranscriptLoaded: _on_transcript_loaded,
    KeysRefreshed: _on_keys_refreshed,
}


def reduce(state: ChatViewState, event: Any) -> ChatViewState:
    handler = HANDLERS.get(type(event))
    if handler is None:
        return state
    return handler(state, event)


def reduce_all(state: ChatViewState, events: Iterable[Any]) -> ChatViewState:
    for event in events:
        state = reduce(state, event)
    return state
