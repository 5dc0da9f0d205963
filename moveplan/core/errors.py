"""Domain-specific errors for the scheduling engine.

Every mutation either completes or raises one of these before touching the
published snapshot, so callers never observe partial writes.
"""


class MovePlanError(Exception):
    """Base exception for all engine errors."""

    pass


class InvalidTemplateError(MovePlanError):
    """Raised when template input is malformed (duration, start time, recurrence)."""

    pass


class InvalidActivityError(MovePlanError):
    """Raised when one-off activity input is malformed."""

    pass


class TemplateNotFoundError(MovePlanError):
    """Raised when an operation references an unknown template or a day it does not occur on."""

    def __init__(self, template_id: str, message: str | None = None):
        self.template_id = template_id
        super().__init__(message or f"Template not found: {template_id}")


class ActivityNotFoundError(MovePlanError):
    """Raised when a (kind, time) request cannot be mapped to exactly one backing record."""

    def __init__(self, message: str = "Could not locate activity"):
        super().__init__(message)


class InvalidTransitionError(MovePlanError):
    """Raised when an occurrence state change is not allowed (e.g. completed -> skipped)."""

    pass


class UpstreamUnavailableError(MovePlanError):
    """Raised when an external collaborator (calendar, health, sync sink) fails."""

    pass
