"""Client side of the help-chat socket.

``ConnectionManager`` owns one socket at a time. It authenticates as soon as
the socket opens, turns every loss into a ``disconnected`` status, and keeps
reconnecting on a fixed delay until ``close()`` is called.
"""

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import suppress
from typing import Any, Protocol
from urllib.parse import urlsplit

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from app.domain.enums import ConnectionStatus
from app.domain.models import ActorIdentity
from app.infra.realtime.events import (
    AuthEvent,
    AuthSuccessEvent,
    CodecError,
    ProtocolModel,
    decode_server_event,
    encode_event,
)

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 3.0


class ClientSocket(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[ClientSocket]]
EventListener = Callable[[Any], None]
StatusListener = Callable[[ConnectionStatus], None]


async def websockets_connector(url: str) -> ClientSocket:
    return await connect(url)


def websocket_url_for_origin(origin: str, path: str = "/ws") -> str:
    parts = urlsplit(origin)
    scheme = "wss" if parts.scheme == "https" else "ws"
    return f"{scheme}://{parts.netloc}{path}"


class ConnectionManager:
    def __init__(
        self,
        url: str,
        connector: Connector | None = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        jitter: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        self.url = url
        self.connector = connector or websockets_connector
        self.reconnect_delay = reconnect_delay
        self.jitter = jitter
        self.rng = rng or random.Random()

        self.status = ConnectionStatus.DISCONNECTED
        self.authenticated = False
        self.connect_attempts = 0
        self.reconnects_scheduled = 0

        self._identity: ActorIdentity | None = None
        self._socket: ClientSocket | None = None
        self._session_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._wanted = False
        self._closed = False
        self._event_listeners: list[EventListener] = []
        self._status_listeners: list[StatusListener] = []

    @property
    def identity(self) -> ActorIdentity | None:
        return self._identity

    @property
    def is_open(self) -> bool:
        return self._socket is not None and self.status == ConnectionStatus.CONNECTED

    def add_event_listener(self, listener: EventListener) -> None:
        self._event_listeners.append(listener)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    async def set_identity(self, identity: ActorIdentity) -> None:
        changed = identity != self._identity
        self._identity = identity
        if self.is_open and changed:
            await self.send(AuthEvent(user_id=identity.user_id, role=identity.role))
        elif self._wanted:
            self._start_session()

    async def connect(self) -> None:
        self._wanted = True
        self._closed = False
        if self._identity is None:
            logger.debug("Deferring connect to %s until an identity is set", self.url)
            return
        self._start_session()

    async def close(self) -> None:
        self._closed = True
        self._wanted = False

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        socket = self._socket
        if socket is not None:
            with suppress(ConnectionClosed, OSError):
                await socket.close()

        task = self._session_task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._session_task = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def send(self, event: ProtocolModel) -> bool:
        socket = self._socket
        if socket is None or self.status != ConnectionStatus.CONNECTED:
            return False
        try:
            await socket.send(encode_event(event))
        except (ConnectionClosed, OSError):
            logger.warning("Send on %s failed; socket is closing", self.url)
            return False
        return True

    def _start_session(self) -> None:
        if self._closed or self._identity is None:
            return
        if self._session_task is not None and not self._session_task.done():
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._session_task = asyncio.create_task(self._run_session())

    async def _run_session(self) -> None:
        self.connect_attempts += 1
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            socket = await self.connector(self.url)
        except (OSError, WebSocketException) as exc:
            logger.warning("Connecting to %s failed: %s", self.url, exc)
            self._on_closed()
            return

        self._socket = socket
        self._set_status(ConnectionStatus.CONNECTED)
        try:
            identity = self._identity
            if identity is not None:
                await socket.send(
                    encode_event(AuthEvent(user_id=identity.user_id, role=identity.role))
                )
            async for raw in socket:
                self._dispatch(raw)
        except (ConnectionClosed, OSError) as exc:
            logger.info("Connection to %s lost: %s", self.url, exc)
        finally:
            self._socket = None
            with suppress(ConnectionClosed, OSError):
                await socket.close()
            self._on_closed()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            event = decode_server_event(raw)
        except CodecError as exc:
            logger.warning("Dropping frame from %s: %s", self.url, exc)
            return

        if isinstance(event, AuthSuccessEvent):
            self.authenticated = True
        for listener in list(self._event_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", type(event).__name__)

    def _on_closed(self) -> None:
        self.authenticated = False
        self._set_status(ConnectionStatus.DISCONNECTED)
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self.reconnects_scheduled += 1
        self._reconnect_task = asyncio.create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        delay = self.reconnect_delay
        if self.jitter:
            delay += self.rng.uniform(0, self.jitter)
        logger.info("Reconnecting to %s in %.1fs", self.url, delay)
        await asyncio.sleep(delay)
        self._reconnect_task = None
        self._session_task = None
        self._start_session()

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        for listener in list(self._status_listeners):
            listener(status)
