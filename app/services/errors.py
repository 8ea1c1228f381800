from pydantic.alias_generators import to_camel

from app.domain.enums import ErrorCode


class NotAuthenticatedError(PermissionError):
    code = ErrorCode.NOT_AUTHENTICATED

    def __init__(self, event_type: str) -> None:
        super().__init__(f"'{event_type}' requires an authenticated connection")
        self.event_type = event_type


class ForbiddenActionError(PermissionError):
    code = ErrorCode.FORBIDDEN

    def __init__(self, action: str, role: str | None) -> None:
        super().__init__(f"Role '{role}' is not allowed to {action}")
        self.action = action
        self.role = role


class GuestMismatchError(PermissionError):
    code = ErrorCode.GUEST_MISMATCH

    def __init__(self, guest_id: str, bound_guest_id: str | None) -> None:
        super().__init__(
            f"Connection is bound to guest '{bound_guest_id}', not '{guest_id}'"
        )
        self.guest_id = guest_id
        self.bound_guest_id = bound_guest_id


class UnknownAgentError(LookupError):
    code = ErrorCode.UNKNOWN_AGENT

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Support agent '{agent_id}' not found or inactive")
        self.agent_id = agent_id


class EmptyMessageError(ValueError):
    code = ErrorCode.EMPTY_MESSAGE

    def __init__(self, guest_id: str) -> None:
        super().__init__(f"Message for guest '{guest_id}' is empty")
        self.guest_id = guest_id


class MessageTooLongError(ValueError):
    code = ErrorCode.MESSAGE_TOO_LONG

    def __init__(self, guest_id: str, length: int, limit: int) -> None:
        super().__init__(
            f"Message for guest '{guest_id}' has {length} characters, limit is {limit}"
        )
        self.guest_id = guest_id
        self.length = length
        self.limit = limit


class RateLimitExceededError(RuntimeError):
    code = ErrorCode.RATE_LIMITED

    def __init__(self, key: str, retry_after: float = 0.0) -> None:
        super().__init__(
            f"Too many messages from '{key}', retry in {retry_after:.0f}s"
        )
        self.key = key
        self.retry_after = retry_after


class InvalidSettingError(ValueError):
    code = ErrorCode.INVALID_PAYLOAD

    def __init__(self, key: str, value: object) -> None:
        super().__init__(f"Invalid value {value!r} for help chat setting '{key}'")
        self.key = key
        self.value = value


HelpChatServiceError = (
    NotAuthenticatedError,
    ForbiddenActionError,
    GuestMismatchError,
    UnknownAgentError,
    EmptyMessageError,
    MessageTooLongError,
    RateLimitExceededError,
    InvalidSettingError,
)


def error_context(exc: Exception) -> dict[str, object]:
    """Public attributes of a service error, for the socket error event."""
    return {
        to_camel(key): value
        for key, value in vars(exc).items()
        if not key.startswith("_") and isinstance(value, (str, int, float, bool, type(None)))
    }
