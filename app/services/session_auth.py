import logging

from app.domain.models import ActorIdentity
from app.infra.realtime.events import (
    AuthEvent,
    AuthSuccessEvent,
    HelpChatAuthEvent,
    HelpChatAuthSuccessEvent,
)
from app.infra.realtime.hub import Connection, ConnectionHub
from app.services.conversation_registry import ConversationRegistry

logger = logging.getLogger(__name__)


class SessionAuthenticator:
    """Binds socket connections to the identity their page session already holds.

    The role in an ``auth`` frame is trusted as sent. Issuing and verifying
    credentials belongs to the surrounding application's session layer.
    """

    def __init__(self, hub: ConnectionHub, registry: ConversationRegistry) -> None:
        self.hub = hub
        self.registry = registry

    async def authenticate(self, connection: Connection, event: AuthEvent) -> ActorIdentity:
        identity = ActorIdentity(user_id=event.user_id, role=event.role.strip().lower())
        previous = connection.identity
        self.hub.bind_identity(connection, identity)

        if previous is not None and previous != identity:
            logger.info(
                "Connection %s re-authenticated as user %s (%s)",
                connection.id,
                identity.user_id,
                identity.role,
            )
        else:
            logger.info(
                "Connection %s authenticated as user %s (%s)",
                connection.id,
                identity.user_id,
                identity.role,
            )

        await self.hub.send_to(
            connection,
            AuthSuccessEvent(user_id=identity.user_id, role=identity.role),
        )
        return identity

    async def authenticate_guest(self, connection: Connection, event: HelpChatAuthEvent) -> str:
        guest_id = event.guest_id
        self.hub.bind_guest(connection, guest_id)
        await self.hub.send_to(connection, HelpChatAuthSuccessEvent(guest_id=guest_id))
        await self.registry.mark_guest_online(guest_id)
        return guest_id

    async def release(self, connection: Connection) -> None:
        guest_id = self.hub.unregister(connection)
        if guest_id is not None:
            await self.registry.mark_guest_offline(guest_id)
