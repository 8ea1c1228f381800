import math

from fastapi import Depends, Header, HTTPException, Request, status

from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from app.domain.models import ActorIdentity
from app.services.assignment_policy import HelpChatSettingsService
from app.services.conversation_registry import ConversationRegistry
from app.services.errors import (
    EmptyMessageError,
    ForbiddenActionError,
    GuestMismatchError,
    InvalidSettingError,
    MessageTooLongError,
    NotAuthenticatedError,
    RateLimitExceededError,
    UnknownAgentError,
)
from app.services.help_chat_service import HelpChatService


async def get_registry(request: Request) -> ConversationRegistry:
    return request.app.state.conversation_registry


async def get_help_chat_service(request: Request) -> HelpChatService:
    return request.app.state.help_chat_service


async def get_settings_service(request: Request) -> HelpChatSettingsService:
    return request.app.state.help_chat_settings


async def get_rate_limiter(request: Request) -> tuple[InMemoryRateLimiter, RateLimitRule]:
    return request.app.state.rate_limiter, request.app.state.rate_limit_rule


async def get_actor(
    x_user_id: str | None = Header(default=None, alias="X-User-Id", max_length=120),
    x_user_role: str | None = Header(default=None, alias="X-User-Role", max_length=40),
) -> ActorIdentity | None:
    if not x_user_id or not x_user_role:
        return None
    return ActorIdentity(user_id=x_user_id.strip(), role=x_user_role.strip().lower())


async def require_admin(
    actor: ActorIdentity | None = Depends(get_actor),
) -> ActorIdentity:
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id or X-User-Role header",
        )
    if not actor.is_admin_class:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{actor.role}' cannot access the help chat console",
        )
    return actor


def raise_for_service_error(exc: Exception) -> None:
    if isinstance(exc, NotAuthenticatedError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc
    if isinstance(exc, (ForbiddenActionError, GuestMismatchError)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)
        ) from exc
    if isinstance(exc, UnknownAgentError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    if isinstance(exc, (EmptyMessageError, MessageTooLongError, InvalidSettingError)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    if isinstance(exc, RateLimitExceededError):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(max(1, math.ceil(exc.retry_after)))},
        ) from exc
    raise exc
