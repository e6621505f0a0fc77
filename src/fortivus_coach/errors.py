from enum import Enum


class CoachingError(Exception):
    """Base class for failures surfaced by the coaching session."""


class AuthRequiredError(CoachingError):
    """A write was attempted without a signed-in user."""

    def __init__(self, message: str = "Please sign in to use AI coaching") -> None:
        super().__init__(message)


class RemoteError(CoachingError):
    """The persistence layer rejected or failed a call."""


class GatewayErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    QUOTA_EXHAUSTED = "quota_exhausted"
    GENERIC = "generic"


_DEFAULT_GATEWAY_MESSAGES = {
    GatewayErrorKind.RATE_LIMITED: "Rate limit exceeded. Please try again in a moment.",
    GatewayErrorKind.QUOTA_EXHAUSTED: "AI usage limit reached. Please try again later.",
    GatewayErrorKind.GENERIC: "Failed to get response",
}


class GatewayError(CoachingError):
    """Non-success status from the AI gateway, raised before any delta is produced."""

    def __init__(self, kind: GatewayErrorKind, status_code: int, message: str | None = None) -> None:
        self.kind = kind
        self.status_code = status_code
        super().__init__(message or _DEFAULT_GATEWAY_MESSAGES[kind])

    @classmethod
    def from_status(cls, status_code: int, message: str | None = None) -> "GatewayError":
        if status_code == 429:
            kind = GatewayErrorKind.RATE_LIMITED
        elif status_code == 402:
            kind = GatewayErrorKind.QUOTA_EXHAUSTED
        else:
            kind = GatewayErrorKind.GENERIC
        return cls(kind, status_code, message)


class StreamError(CoachingError):
    """The response stream broke off after it had started."""
