"""WebSocket transport for the help chat: event codec and connection hub."""

from app.infra.realtime.events import (
    ClientEventType,
    CodecError,
    InvalidEventPayloadError,
    MalformedEnvelopeError,
    ServerEventType,
    UnknownEventTypeError,
    decode_client_event,
    decode_server_event,
    encode_event,
)
from app.infra.realtime.hub import Connection, ConnectionHub, FrameTransport

__all__ = [
    "ClientEventType",
    "CodecError",
    "Connection",
    "ConnectionHub",
    "FrameTransport",
    "InvalidEventPayloadError",
    "MalformedEnvelopeError",
    "ServerEventType",
    "UnknownEventTypeError",
    "decode_client_event",
    "decode_server_event",
    "encode_event",
]
