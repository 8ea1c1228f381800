from fastapi import APIRouter, Depends, Path

from app.api.v1.deps import (
    get_registry,
    get_settings_service,
    raise_for_service_error,
    require_admin,
)
from app.domain.models import ActorIdentity
from app.schemas.help_chat import (
    AdminConversationResponse,
    ConversationSummaryResponse,
    HelpChatMessageResponse,
    HelpChatSettingsResponse,
    SupportAgentResponse,
    UpdateHelpChatSettingsRequest,
)
from app.services.assignment_policy import AssignmentSettings, HelpChatSettingsService
from app.services.conversation_registry import ConversationRegistry
from app.services.errors import InvalidSettingError

router = APIRouter()


def _to_settings_response(settings: AssignmentSettings) -> HelpChatSettingsResponse:
    return HelpChatSettingsResponse.model_validate(settings)


@router.get("/help-chat/conversations", response_model=list[ConversationSummaryResponse])
async def list_conversations(
    _: ActorIdentity = Depends(require_admin),
    registry: ConversationRegistry = Depends(get_registry),
) -> list[ConversationSummaryResponse]:
    summaries = await registry.list_conversations()
    return [ConversationSummaryResponse.model_validate(summary) for summary in summaries]


@router.get(
    "/help-chat/conversation/{guest_id}",
    response_model=AdminConversationResponse,
)
async def get_conversation(
    guest_id: str = Path(min_length=1, max_length=50),
    _: ActorIdentity = Depends(require_admin),
    registry: ConversationRegistry = Depends(get_registry),
) -> AdminConversationResponse:
    detail = await registry.get_conversation(guest_id)
    await registry.mark_read(guest_id)
    return AdminConversationResponse(
        guest_id=guest_id,
        is_active=detail.session.is_active if detail.session is not None else False,
        assigned_agent_id=(
            detail.session.assigned_agent_id if detail.session is not None else None
        ),
        assigned_agent=(
            SupportAgentResponse.model_validate(detail.assigned_agent)
            if detail.assigned_agent is not None
            else None
        ),
        messages=[
            HelpChatMessageResponse.model_validate(message) for message in detail.messages
        ],
    )


@router.get("/support-agents", response_model=list[SupportAgentResponse])
async def list_support_agents(
    _: ActorIdentity = Depends(require_admin),
    registry: ConversationRegistry = Depends(get_registry),
) -> list[SupportAgentResponse]:
    agents = await registry.store.list_agents()
    return [SupportAgentResponse.model_validate(agent) for agent in agents]


@router.get("/help-chat-settings", response_model=HelpChatSettingsResponse)
async def get_help_chat_settings(
    _: ActorIdentity = Depends(require_admin),
    service: HelpChatSettingsService = Depends(get_settings_service),
) -> HelpChatSettingsResponse:
    return _to_settings_response(await service.load())


@router.put("/help-chat-settings", response_model=HelpChatSettingsResponse)
async def update_help_chat_settings(
    payload: UpdateHelpChatSettingsRequest,
    actor: ActorIdentity = Depends(require_admin),
    service: HelpChatSettingsService = Depends(get_settings_service),
) -> HelpChatSettingsResponse:
    try:
        settings = await service.update(
            payload.model_dump(mode="json", exclude_none=True),
            updated_by=actor.user_id,
        )
    except InvalidSettingError as exc:
        raise_for_service_error(exc)
    return _to_settings_response(settings)
