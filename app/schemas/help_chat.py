from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.domain.enums import AssignmentMode, MessageSender


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class SendHelpChatMessageRequest(CamelModel):
    guest_id: str = Field(min_length=1, max_length=50)
    message: str = Field(min_length=1)
    sender: MessageSender = MessageSender.VISITOR


class HelpChatMessageResponse(CamelModel):
    id: str
    guest_id: str
    message: str = Field(validation_alias="text")
    sender: MessageSender
    timestamp: datetime = Field(validation_alias="created_at")
    agent_id: str | None = None
    receiver_id: str | None = None
    is_auto_message: bool = False


class SupportAgentResponse(CamelModel):
    id: str
    name: str
    avatar_url: str | None = None
    role: str | None = None
    is_active: bool
    sort_order: int


class ConversationSummaryResponse(CamelModel):
    guest_id: str
    last_message: str | None = None
    last_message_time: datetime | None = None
    message_count: int
    unread_count: int
    is_active: bool
    assigned_agent_id: str | None = None


class VisitorConversationResponse(CamelModel):
    guest_id: str
    messages: list[HelpChatMessageResponse]
    assigned_agent: SupportAgentResponse | None = None


class AdminConversationResponse(CamelModel):
    guest_id: str
    is_active: bool
    assigned_agent_id: str | None = None
    assigned_agent: SupportAgentResponse | None = None
    messages: list[HelpChatMessageResponse]


class HelpChatSettingsResponse(CamelModel):
    """Assignment settings.

    The queue and welcome fields are stored and served for the widget that
    renders them; the server never reads them.
    """

    assignment_mode: AssignmentMode
    auto_assign_round_robin: bool
    auto_assign_consider_load: bool
    max_active_chats_per_agent: int
    working_hours_only: bool
    allow_agent_selection: bool
    show_queue_position: bool
    estimated_wait_time: str
    auto_assign_welcome_message: str
    manual_queue_welcome_message: str


class UpdateHelpChatSettingsRequest(CamelModel):
    assignment_mode: AssignmentMode | None = None
    auto_assign_round_robin: bool | None = None
    auto_assign_consider_load: bool | None = None
    max_active_chats_per_agent: int | None = Field(default=None, ge=1, le=100)
    working_hours_only: bool | None = None
    allow_agent_selection: bool | None = None
    show_queue_position: bool | None = None
    estimated_wait_time: str | None = Field(default=None, max_length=50)
    auto_assign_welcome_message: str | None = Field(default=None, max_length=500)
    manual_queue_welcome_message: str | None = Field(default=None, max_length=500)
