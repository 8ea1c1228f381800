import logging
from collections.abc import Awaitable, Callable
from typing import Any

from app.core.rate_limit import InMemoryRateLimiter, RateLimitRule
from app.domain.enums import ErrorCode
from app.infra.realtime.events import (
    ClientEventType,
    ErrorEvent,
    InvalidEventPayloadError,
    MalformedEnvelopeError,
    PongEvent,
    UnknownEventTypeError,
    decode_client_event,
)
from app.infra.realtime.hub import Connection, ConnectionHub
from app.services.assignment_service import AssignmentCoordinator
from app.services.errors import HelpChatServiceError, RateLimitExceededError, error_context
from app.services.help_chat_service import HelpChatService
from app.services.session_auth import SessionAuthenticator

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[None]]

RATE_LIMIT_EXEMPT = frozenset(
    {ClientEventType.AUTH, ClientEventType.HELP_CHAT_AUTH, ClientEventType.PING}
)
KEEPALIVE_FRAME = "ping"


class HelpChatDispatcher:
    """Routes decoded client frames to the help chat services.

    Each connection's frames are handled one at a time by its receive loop.
    Business failures become an ``error`` event on that connection and never
    close it.
    """

    def __init__(
        self,
        hub: ConnectionHub,
        authenticator: SessionAuthenticator,
        messages: HelpChatService,
        coordinator: AssignmentCoordinator,
        limiter: InMemoryRateLimiter,
        rate_limit: RateLimitRule,
    ) -> None:
        self.hub = hub
        self.authenticator = authenticator
        self.messages = messages
        self.coordinator = coordinator
        self.limiter = limiter
        self.rate_limit = rate_limit
        self.handlers: dict[ClientEventType, Handler] = {
            ClientEventType.AUTH: self._on_auth,
            ClientEventType.HELP_CHAT_AUTH: self._on_help_chat_auth,
            ClientEventType.HELP_CHAT_SEND_MESSAGE: self._on_send_message,
            ClientEventType.HELP_CHAT_TYPING: self._on_typing,
            ClientEventType.ADMIN_JOIN_CONVERSATION: self._on_join,
            ClientEventType.ADMIN_LEAVE_CONVERSATION: self._on_leave,
            ClientEventType.PING: self._on_ping,
        }

    async def handle_raw(self, connection: Connection, raw: str) -> None:
        if raw.strip().lower() == KEEPALIVE_FRAME:
            await self.hub.send_to(connection, PongEvent())
            return

        try:
            event = decode_client_event(raw)
        except MalformedEnvelopeError as exc:
            logger.warning("Dropping frame from connection %s: %s", connection.id, exc)
            return
        except UnknownEventTypeError as exc:
            logger.warning(
                "Ignoring unknown event type '%s' from connection %s",
                exc.event_type,
                connection.id,
            )
            return
        except InvalidEventPayloadError as exc:
            await self.hub.send_to(
                connection,
                ErrorEvent(
                    code=ErrorCode.INVALID_PAYLOAD,
                    message=str(exc),
                    context={"eventType": exc.event_type, "fields": exc.fields},
                ),
            )
            return

        await self.dispatch(connection, event)

    async def dispatch(self, connection: Connection, event: Any) -> None:
        event_type = ClientEventType(event.type)
        try:
            if event_type not in RATE_LIMIT_EXEMPT:
                key = connection.rate_limit_key
                retry_after = await self.limiter.check(key, self.rate_limit)
                if retry_after:
                    raise RateLimitExceededError(key, round(retry_after, 1))
            await self.handlers[event_type](connection, event)
        except HelpChatServiceError as exc:
            logger.info(
                "Rejected %s from connection %s: %s", event_type.value, connection.id, exc
            )
            await self.hub.send_to(
                connection,
                ErrorEvent(code=exc.code, message=str(exc), context=error_context(exc)),
            )
        except Exception:
            logger.exception(
                "Unhandled error processing %s from connection %s",
                event_type.value,
                connection.id,
            )
            await self.hub.send_to(
                connection,
                ErrorEvent(
                    code=ErrorCode.INTERNAL_ERROR,
                    message="Unexpected server error",
                    context={"eventType": event_type.value},
                ),
            )

    async def handle_disconnect(self, connection: Connection) -> None:
        await self.authenticator.release(connection)
        await self.limiter.forget(f"conn_{connection.id}")

    async def _on_auth(self, connection: Connection, event: Any) -> None:
        await self.authenticator.authenticate(connection, event)

    async def _on_help_chat_auth(self, connection: Connection, event: Any) -> None:
        await self.authenticator.authenticate_guest(connection, event)

    async def _on_send_message(self, connection: Connection, event: Any) -> None:
        await self.messages.send_message(
            event.guest_id,
            event.sender,
            event.message,
            actor=connection.identity,
            origin=connection,
        )

    async def _on_typing(self, connection: Connection, event: Any) -> None:
        await self.messages.relay_typing(connection, event)

    async def _on_join(self, connection: Connection, event: Any) -> None:
        await self.coordinator.join(connection, event)

    async def _on_leave(self, connection: Connection, event: Any) -> None:
        await self.coordinator.leave(connection, event)

    async def _on_ping(self, connection: Connection, event: Any) -> None:
        await self.hub.send_to(connection, PongEvent())
