"""
Domain exceptions for fee billing and mail-item grouping.

All three derive from ValueError so callers that already guard against bad
input values keep working. Routers map them to HTTP status codes.
"""


class MailCenterError(ValueError):
    """Base class for deterministic, non-retryable domain failures."""


class ValidationError(MailCenterError):
    """A caller-supplied argument violates a precondition."""


class InvalidStateError(MailCenterError):
    """A fee transition was attempted from the wrong source state."""


class MalformedInstantError(MailCenterError):
    """A timestamp could not be parsed into an absolute instant."""

    def __init__(self, value, message: str = None):
        self.value = value
        super().__init__(message or f"Could not parse timestamp: {value!r}")
