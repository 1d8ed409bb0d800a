"""Domain models"""

from one_more_time.domain.models.events import EVENT_NAMES, AbortEvent, RetryEvent, TimeoutEvent

__all__ = ["EVENT_NAMES", "AbortEvent", "RetryEvent", "TimeoutEvent"]
