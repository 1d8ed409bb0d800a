"""Lifecycle events emitted by the retry engine"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, List


@dataclass(frozen=True)
class RetryEvent:
    """A failed attempt was recorded and counted"""

    name: ClassVar[str] = "retry"

    task_id: str
    error: Any
    retries: int
    history: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class TimeoutEvent:
    """A backoff wait completed"""

    name: ClassVar[str] = "timeout"

    task_id: str
    retries: int
    current_timeout: float  # Next backoff delay in ms


@dataclass(frozen=True)
class AbortEvent:
    """The cancellation token bound to a task fired"""

    name: ClassVar[str] = "abort"

    task_id: str
    reason: Any


EVENT_NAMES = (RetryEvent.name, TimeoutEvent.name, AbortEvent.name)
