from enum import Enum


class ActorRole(str, Enum):
    VISITOR = "visitor"
    ADMIN = "admin"
    MODERATOR = "moderator"
    CUSTOMER_SERVICE = "customer_service"


ADMIN_CLASS_ROLES = frozenset(
    {ActorRole.ADMIN.value, ActorRole.MODERATOR.value, ActorRole.CUSTOMER_SERVICE.value}
)


class MessageSender(str, Enum):
    VISITOR = "visitor"
    ADMIN = "admin"
    SYSTEM = "system"


class AssignmentMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class AssignmentState(str, Enum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"


class AssignmentAction(str, Enum):
    ASSIGN = "assign"
    CLEAR = "clear"


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ErrorCode(str, Enum):
    INVALID_PAYLOAD = "invalid_payload"
    NOT_AUTHENTICATED = "not_authenticated"
    FORBIDDEN = "forbidden"
    UNKNOWN_AGENT = "unknown_agent"
    MESSAGE_TOO_LONG = "message_too_long"
    EMPTY_MESSAGE = "empty_message"
    GUEST_MISMATCH = "guest_mismatch"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"
