"""Wire codec for the help-chat socket.

Every frame is a JSON object ``{"type": <name>, ...payload}`` with camelCase
fields. Each direction is a closed union of pydantic models discriminated on
``type``; adding an event means adding a model here and a handler wherever the
union is consumed.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from app.domain.enums import ErrorCode, MessageSender
from app.domain.models import ChatMessage, SupportAgent


class ClientEventType(str, Enum):
    AUTH = "auth"
    HELP_CHAT_AUTH = "help_chat_auth"
    HELP_CHAT_SEND_MESSAGE = "help_chat_send_message"
    HELP_CHAT_TYPING = "help_chat_typing"
    ADMIN_JOIN_CONVERSATION = "admin_join_conversation"
    ADMIN_LEAVE_CONVERSATION = "admin_leave_conversation"
    PING = "ping"


class ServerEventType(str, Enum):
    AUTH_SUCCESS = "auth_success"
    HELP_CHAT_AUTH_SUCCESS = "help_chat_auth_success"
    HELP_CHAT_MESSAGE = "help_chat_message"
    HELP_CHAT_MESSAGE_SENT = "help_chat_message_sent"
    HELP_CHAT_GUEST_ONLINE = "help_chat_guest_online"
    HELP_CHAT_TYPING = "help_chat_typing"
    ADMIN_JOIN_SUCCESS = "admin_join_success"
    ADMIN_LEAVE_SUCCESS = "admin_leave_success"
    CONVERSATION_ASSIGNMENT_CLEARED = "conversation_assignment_cleared"
    ERROR = "error"
    PONG = "pong"


class CodecError(ValueError):
    pass


class MalformedEnvelopeError(CodecError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Malformed envelope: {detail}")
        self.detail = detail


class UnknownEventTypeError(CodecError):
    def __init__(self, event_type: str) -> None:
        super().__init__(f"Unknown event type '{event_type}'")
        self.event_type = event_type


class InvalidEventPayloadError(CodecError):
    def __init__(self, event_type: str, errors: list[dict[str, Any]]) -> None:
        super().__init__(f"Invalid payload for event type '{event_type}'")
        self.event_type = event_type
        self.errors = errors

    @property
    def fields(self) -> list[str]:
        """Dotted locations of the failing fields, without the union tag."""
        locations: list[str] = []
        for error in self.errors:
            loc = list(error.get("loc", ()))
            if loc and loc[0] == self.event_type:
                loc = loc[1:]
            locations.append(".".join(str(part) for part in loc))
        return locations


class ProtocolModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


def _coerce_identifier(value: Any) -> Any:
    # Agent ids are integers in some clients; the protocol carries strings.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class SupportAgentPayload(ProtocolModel):
    id: str
    name: str
    avatar_url: str | None = None
    role: str | None = None
    is_active: bool = True

    _coerce_id = field_validator("id", mode="before")(_coerce_identifier)

    @classmethod
    def from_agent(cls, agent: SupportAgent) -> "SupportAgentPayload":
        return cls(
            id=agent.id,
            name=agent.name,
            avatar_url=agent.avatar_url,
            role=agent.role,
            is_active=agent.is_active,
        )


# Client -> server


class AuthEvent(ProtocolModel):
    type: Literal["auth"] = "auth"
    user_id: str = Field(min_length=1)
    role: str = Field(min_length=1)

    _coerce_user_id = field_validator("user_id", mode="before")(_coerce_identifier)


class HelpChatAuthEvent(ProtocolModel):
    type: Literal["help_chat_auth"] = "help_chat_auth"
    guest_id: str = Field(min_length=1, max_length=50)


class HelpChatSendMessageEvent(ProtocolModel):
    type: Literal["help_chat_send_message"] = "help_chat_send_message"
    guest_id: str = Field(min_length=1, max_length=50)
    message: str
    sender: MessageSender


class HelpChatTypingEvent(ProtocolModel):
    type: Literal["help_chat_typing"] = "help_chat_typing"
    guest_id: str = Field(min_length=1, max_length=50)
    is_typing: bool
    sender: MessageSender


class AdminJoinConversationEvent(ProtocolModel):
    type: Literal["admin_join_conversation"] = "admin_join_conversation"
    guest_id: str = Field(min_length=1, max_length=50)
    selected_agent_id: str | None = None

    _coerce_agent_id = field_validator("selected_agent_id", mode="before")(
        _coerce_identifier
    )


class AdminLeaveConversationEvent(ProtocolModel):
    type: Literal["admin_leave_conversation"] = "admin_leave_conversation"
    guest_id: str = Field(min_length=1, max_length=50)


class PingEvent(ProtocolModel):
    type: Literal["ping"] = "ping"


ClientEvent = Annotated[
    Union[
        AuthEvent,
        HelpChatAuthEvent,
        HelpChatSendMessageEvent,
        HelpChatTypingEvent,
        AdminJoinConversationEvent,
        AdminLeaveConversationEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]


# Server -> client


class AuthSuccessEvent(ProtocolModel):
    type: Literal["auth_success"] = "auth_success"
    user_id: str
    role: str


class HelpChatAuthSuccessEvent(ProtocolModel):
    type: Literal["help_chat_auth_success"] = "help_chat_auth_success"
    guest_id: str


class HelpChatMessageEvent(ProtocolModel):
    type: Literal["help_chat_message"] = "help_chat_message"
    id: str
    guest_id: str
    message: str
    sender: MessageSender
    timestamp: datetime
    agent_id: str | None = None
    agent_name: str | None = None
    agent_avatar_url: str | None = None
    is_auto_message: bool = False

    _coerce_ids = field_validator("id", "agent_id", mode="before")(_coerce_identifier)

    @classmethod
    def from_message(
        cls, message: ChatMessage, agent: SupportAgent | None = None
    ) -> "HelpChatMessageEvent":
        return cls(
            id=message.id,
            guest_id=message.guest_id,
            message=message.text,
            sender=message.sender,
            timestamp=message.created_at,
            agent_id=message.agent_id,
            agent_name=agent.name if agent is not None else None,
            agent_avatar_url=agent.avatar_url if agent is not None else None,
            is_auto_message=message.is_auto_message,
        )


class HelpChatMessageSentEvent(ProtocolModel):
    type: Literal["help_chat_message_sent"] = "help_chat_message_sent"
    guest_id: str
    message_id: str
    timestamp: datetime


class HelpChatGuestOnlineEvent(ProtocolModel):
    type: Literal["help_chat_guest_online"] = "help_chat_guest_online"
    guest_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AdminJoinSuccessEvent(ProtocolModel):
    type: Literal["admin_join_success"] = "admin_join_success"
    guest_id: str
    assigned_agent: SupportAgentPayload | None = None


class AdminLeaveSuccessEvent(ProtocolModel):
    type: Literal["admin_leave_success"] = "admin_leave_success"
    guest_id: str


class ConversationAssignmentClearedEvent(ProtocolModel):
    type: Literal["conversation_assignment_cleared"] = "conversation_assignment_cleared"
    guest_id: str
    previous_agent: SupportAgentPayload | None = None


class ErrorEvent(ProtocolModel):
    type: Literal["error"] = "error"
    code: ErrorCode
    message: str = ""
    context: dict[str, Any] = Field(default_factory=dict)


class PongEvent(ProtocolModel):
    type: Literal["pong"] = "pong"


class UnknownEvent(ProtocolModel):
    """A well-formed frame whose type this build does not know."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


ServerEvent = Annotated[
    Union[
        AuthSuccessEvent,
        HelpChatAuthSuccessEvent,
        HelpChatMessageEvent,
        HelpChatMessageSentEvent,
        HelpChatGuestOnlineEvent,
        HelpChatTypingEvent,
        AdminJoinSuccessEvent,
        AdminLeaveSuccessEvent,
        ConversationAssignmentClearedEvent,
        ErrorEvent,
        PongEvent,
    ],
    Field(discriminator="type"),
]

_client_adapter: TypeAdapter[Any] = TypeAdapter(ClientEvent)
_server_adapter: TypeAdapter[Any] = TypeAdapter(ServerEvent)
_client_types = frozenset(member.value for member in ClientEventType)
_server_types = frozenset(member.value for member in ServerEventType)


def _load_envelope(raw: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedEnvelopeError("expected JSON text") from exc

    if not isinstance(data, dict):
        raise MalformedEnvelopeError("expected a JSON object")
    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEnvelopeError("missing 'type' discriminator")
    return data


def _validate(adapter: TypeAdapter[Any], data: dict[str, Any]) -> Any:
    try:
        return adapter.validate_python(data)
    except ValidationError as exc:
        raise InvalidEventPayloadError(
            data["type"],
            exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc


def decode_client_event(raw: str | bytes) -> Any:
    data = _load_envelope(raw)
    if data["type"] not in _client_types:
        raise UnknownEventTypeError(data["type"])
    return _validate(_client_adapter, data)


def decode_server_event(raw: str | bytes) -> Any:
    data = _load_envelope(raw)
    if data["type"] not in _server_types:
        payload = {key: value for key, value in data.items() if key != "type"}
        return UnknownEvent(type=data["type"], payload=payload)
    return _validate(_server_adapter, data)


def encode_event(event: ProtocolModel) -> str:
    return event.model_dump_json(by_alias=True)
