"""Error taxonomy for the retry engine."""

from typing import Any, Optional


class OneMoreTimeError(Exception):
    """Base class for errors raised by the library itself."""

    pass


class InvalidArgument(OneMoreTimeError, ValueError):
    """Invalid constructor or option value.

    Raised synchronously by the call that received the value and never retried.

    Attributes:
        field: Name of the offending option (None if it cannot be pinned down)
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidState(OneMoreTimeError, RuntimeError):
    """Task API misuse, e.g. starting an aborted or already started task."""

    pass


class Cancelled(OneMoreTimeError):
    """The cancellation token bound to a task fired.

    Attributes:
        reason: Reason reported by the token (any object, may be None)
    """

    def __init__(self, reason: Any = None):
        self.reason = reason
        message = "Task cancelled" if reason is None else f"Task cancelled: {reason}"
        super().__init__(message)
