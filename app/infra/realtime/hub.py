import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol
from uuid import uuid4

from starlette.websockets import WebSocketDisconnect

from app.domain.models import ActorIdentity
from app.infra.realtime.events import ProtocolModel, encode_event

logger = logging.getLogger(__name__)


class FrameTransport(Protocol):
    async def send_text(self, data: str) -> None: ...


@dataclass(slots=True, eq=False)
class Connection:
    transport: FrameTransport
    id: str = field(default_factory=lambda: uuid4().hex)
    identity: ActorIdentity | None = None
    guest_id: str | None = None
    subscribed_guest_id: str | None = None
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    @property
    def is_admin(self) -> bool:
        return self.identity is not None and self.identity.is_admin_class

    @property
    def rate_limit_key(self) -> str:
        if self.guest_id is not None:
            return f"guest_{self.guest_id}"
        if self.identity is not None:
            return f"user_{self.identity.user_id}"
        return f"conn_{self.id}"


class ConnectionHub:
    """In-process registry of open sockets and their conversation bindings."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._guest_bindings: dict[str, str] = {}

    def register(self, transport: FrameTransport) -> Connection:
        connection = Connection(transport=transport)
        self._connections[connection.id] = connection
        logger.info("Connection %s opened", connection.id)
        return connection

    def unregister(self, connection: Connection) -> str | None:
        """Forget the connection; return its guest id if it was the bound guest socket."""
        self._connections.pop(connection.id, None)
        connection.subscribed_guest_id = None

        guest_id = connection.guest_id
        if guest_id is not None and self._guest_bindings.get(guest_id) == connection.id:
            del self._guest_bindings[guest_id]
            logger.info("Connection %s closed (guest %s)", connection.id, guest_id)
            return guest_id

        logger.info("Connection %s closed", connection.id)
        return None

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def __len__(self) -> int:
        return len(self._connections)

    def bind_identity(self, connection: Connection, identity: ActorIdentity) -> None:
        connection.identity = identity
        if not identity.is_admin_class:
            connection.subscribed_guest_id = None

    def bind_guest(self, connection: Connection, guest_id: str) -> None:
        previous = connection.guest_id
        if previous is not None and self._guest_bindings.get(previous) == connection.id:
            del self._guest_bindings[previous]

        superseded = self._guest_bindings.get(guest_id)
        if superseded is not None and superseded != connection.id:
            logger.info(
                "Guest %s moved from connection %s to %s",
                guest_id,
                superseded,
                connection.id,
            )
        connection.guest_id = guest_id
        self._guest_bindings[guest_id] = connection.id

    def guest_connection(self, guest_id: str) -> Connection | None:
        connection_id = self._guest_bindings.get(guest_id)
        if connection_id is None:
            return None
        return self._connections.get(connection_id)

    def subscribe(self, connection: Connection, guest_id: str) -> None:
        connection.subscribed_guest_id = guest_id

    def unsubscribe(self, connection: Connection, guest_id: str) -> None:
        if connection.subscribed_guest_id == guest_id:
            connection.subscribed_guest_id = None

    def admin_connections(self) -> list[Connection]:
        return [connection for connection in self._connections.values() if connection.is_admin]

    def subscribers(self, guest_id: str) -> list[Connection]:
        return [
            connection
            for connection in self._connections.values()
            if connection.is_admin and connection.subscribed_guest_id == guest_id
        ]

    async def send_to(self, connection: Connection, event: ProtocolModel) -> bool:
        return await self._deliver(connection, encode_event(event))

    async def broadcast(
        self,
        connections: Iterable[Connection],
        event: ProtocolModel,
    ) -> int:
        frame = encode_event(event)
        delivered = 0
        stale: list[Connection] = []
        for connection in dict.fromkeys(connections):
            if await self._deliver(connection, frame):
                delivered += 1
            else:
                stale.append(connection)

        for connection in stale:
            self._detach(connection)
        return delivered

    def _detach(self, connection: Connection) -> None:
        # The guest binding stays until unregister so the receive loop can still
        # mark the guest offline.
        self._connections.pop(connection.id, None)
        connection.subscribed_guest_id = None

    async def _deliver(self, connection: Connection, frame: str) -> bool:
        async with connection.send_lock:
            try:
                await connection.transport.send_text(frame)
            except (RuntimeError, ConnectionError, WebSocketDisconnect):
                logger.warning("Dropping unreachable connection %s", connection.id)
                return False
        return True
