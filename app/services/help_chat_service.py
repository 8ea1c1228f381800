from app.domain.enums import MessageSender
from app.domain.models import ActorIdentity, ChatMessage
from app.infra.realtime.events import HelpChatMessageSentEvent, HelpChatTypingEvent
from app.infra.realtime.hub import Connection
from app.services.conversation_registry import ConversationRegistry
from app.services.errors import (
    EmptyMessageError,
    ForbiddenActionError,
    GuestMismatchError,
    MessageTooLongError,
    NotAuthenticatedError,
)


class HelpChatService:
    def __init__(self, registry: ConversationRegistry, max_message_length: int = 2000) -> None:
        self.registry = registry
        self.max_message_length = max_message_length

    @property
    def hub(self):
        return self.registry.hub

    def _clean_text(self, guest_id: str, text: str) -> str:
        cleaned = text.strip()
        if not cleaned:
            raise EmptyMessageError(guest_id)
        if len(cleaned) > self.max_message_length:
            raise MessageTooLongError(guest_id, len(cleaned), self.max_message_length)
        return cleaned

    @staticmethod
    def _check_sender(
        guest_id: str,
        sender: MessageSender,
        actor: ActorIdentity | None,
        origin: Connection | None,
    ) -> None:
        if sender == MessageSender.ADMIN:
            if actor is None:
                raise NotAuthenticatedError("help_chat_send_message")
            if not actor.is_admin_class:
                raise ForbiddenActionError("send admin messages", actor.role)
            return

        if sender == MessageSender.SYSTEM:
            raise ForbiddenActionError("send system messages", actor.role if actor else None)

        # Visitor sends over a socket must come from the socket bound to that guest.
        if origin is not None and origin.guest_id != guest_id:
            raise GuestMismatchError(guest_id, origin.guest_id)

    async def send_message(
        self,
        guest_id: str,
        sender: MessageSender,
        text: str,
        actor: ActorIdentity | None = None,
        origin: Connection | None = None,
    ) -> ChatMessage:
        self._check_sender(guest_id, sender, actor, origin)
        cleaned = self._clean_text(guest_id, text)

        message = await self.registry.append_message(
            guest_id,
            sender,
            cleaned,
            receiver_id=actor.user_id if sender == MessageSender.ADMIN else None,
            origin=origin,
        )
        if origin is not None:
            await self.hub.send_to(
                origin,
                HelpChatMessageSentEvent(
                    guest_id=guest_id,
                    message_id=message.id,
                    timestamp=message.created_at,
                ),
            )
        return message

    async def relay_typing(self, connection: Connection, event: HelpChatTypingEvent) -> int:
        if event.sender == MessageSender.VISITOR:
            if connection.guest_id != event.guest_id:
                raise GuestMismatchError(event.guest_id, connection.guest_id)
            return await self.hub.broadcast(self.hub.subscribers(event.guest_id), event)

        self._check_sender(event.guest_id, event.sender, connection.identity, connection)
        guest_connection = self.hub.guest_connection(event.guest_id)
        if guest_connection is None:
            return 0
        return await self.hub.broadcast([guest_connection], event)
