from dataclasses import dataclass
from datetime import datetime

from app.domain.enums import ADMIN_CLASS_ROLES, MessageSender


@dataclass(frozen=True, slots=True)
class ActorIdentity:
    user_id: str
    role: str

    @property
    def is_admin_class(self) -> bool:
        return self.role in ADMIN_CLASS_ROLES


@dataclass(frozen=True, slots=True)
class SupportAgent:
    id: str
    name: str
    avatar_url: str | None = None
    role: str | None = None
    is_active: bool = True
    sort_order: int = 0
    last_assigned_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ChatMessage:
    id: str
    guest_id: str
    sender: MessageSender
    text: str
    created_at: datetime
    agent_id: str | None = None
    receiver_id: str | None = None
    is_auto_message: bool = False


@dataclass(frozen=True, slots=True)
class ChatSession:
    guest_id: str
    assigned_agent_id: str | None
    is_active: bool
    started_at: datetime
    last_activity_at: datetime
    last_read_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    guest_id: str
    last_message: str | None
    last_message_time: datetime | None
    message_count: int
    unread_count: int
    is_active: bool
    assigned_agent_id: str | None
