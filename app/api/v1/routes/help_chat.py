from fastapi import APIRouter, Depends, Path

from app.api.v1.deps import (
    get_actor,
    get_help_chat_service,
    get_rate_limiter,
    get_registry,
    raise_for_service_error,
)
from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from app.domain.models import ActorIdentity
from app.schemas.help_chat import (
    HelpChatMessageResponse,
    SendHelpChatMessageRequest,
    SupportAgentResponse,
    VisitorConversationResponse,
)
from app.services.conversation_registry import ConversationRegistry
from app.services.errors import HelpChatServiceError, RateLimitExceededError
from app.services.help_chat_service import HelpChatService

router = APIRouter()


@router.post("/send", response_model=HelpChatMessageResponse)
async def send_message(
    payload: SendHelpChatMessageRequest,
    actor: ActorIdentity | None = Depends(get_actor),
    service: HelpChatService = Depends(get_help_chat_service),
    limiter: tuple[InMemoryRateLimiter, RateLimitRule] = Depends(get_rate_limiter),
) -> HelpChatMessageResponse:
    rate_limiter, rule = limiter
    key = f"user_{actor.user_id}" if actor is not None else f"guest_{payload.guest_id}"
    try:
        retry_after = await rate_limiter.check(key, rule)
        if retry_after:
            raise RateLimitExceededError(key, round(retry_after, 1))
        message = await service.send_message(
            payload.guest_id,
            payload.sender,
            payload.message,
            actor=actor,
        )
    except HelpChatServiceError as exc:
        raise_for_service_error(exc)
    return HelpChatMessageResponse.model_validate(message)


@router.get("/conversation/{guest_id}", response_model=VisitorConversationResponse)
async def get_visitor_conversation(
    guest_id: str = Path(min_length=1, max_length=50),
    registry: ConversationRegistry = Depends(get_registry),
) -> VisitorConversationResponse:
    detail = await registry.get_conversation(guest_id)
    return VisitorConversationResponse(
        guest_id=guest_id,
        messages=[
            HelpChatMessageResponse.model_validate(message) for message in detail.messages
        ],
        assigned_agent=(
            SupportAgentResponse.model_validate(detail.assigned_agent)
            if detail.assigned_agent is not None
            else None
        ),
    )
