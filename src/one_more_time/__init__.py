"""Retry with exponential backoff, cooperative cancellation and lifecycle events"""

from one_more_time.application.retry import Retry
from one_more_time.application.task import Task
from one_more_time.domain.config import RetryConfig
from one_more_time.domain.errors import Cancelled, InvalidArgument, InvalidState, OneMoreTimeError
from one_more_time.domain.models.events import AbortEvent, RetryEvent, TimeoutEvent
from one_more_time.infrastructure.cancellation import CancellationSource, CancellationToken
from one_more_time.infrastructure.config import ConfigManager, ConfigurationError

__all__ = [
    "Retry",
    "Task",
    "RetryConfig",
    "OneMoreTimeError",
    "InvalidArgument",
    "InvalidState",
    "Cancelled",
    "ConfigurationError",
    "ConfigManager",
    "CancellationSource",
    "CancellationToken",
    "RetryEvent",
    "TimeoutEvent",
    "AbortEvent",
]
