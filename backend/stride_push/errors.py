"""Error taxonomy for the notification pipeline.

Validation and authorization errors fail a submit call synchronously.
Target resolution errors are absorbed by the API (zero recipients).
Gateway errors never leave the queue processor: they are recorded on
the affected queue rows and counted as an attempt.
"""


class NotificationError(Exception):
    """Base class for pipeline errors."""


class ValidationError(NotificationError):
    """Malformed notification request. Nothing is written."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(", ".join(errors))


class AuthorizationError(NotificationError):
    """Caller is not allowed to address the requested target. Nothing is written."""


class TargetResolutionError(NotificationError):
    """Target id or campus domain does not exist."""

    def __init__(self, message: str, unresolved: list[str] | None = None) -> None:
        self.unresolved = unresolved or []
        super().__init__(message)


class GatewayError(NotificationError):
    """Push gateway call failed or returned an unusable response."""
