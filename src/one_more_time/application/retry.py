"""Retry engine: shared configuration, task minting and the run loop.

Example:
    engine = Retry(retries=5, min_timeout=100)
    engine.on("retry", lambda event: print(event.retries, event.error))
    result = await engine.run(fetch_report, should_retry=lambda e: isinstance(e, IOError))
"""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from pydantic import ValidationError

from one_more_time.application.task import Task
from one_more_time.domain.config import RetryConfig
from one_more_time.domain.errors import Cancelled, InvalidArgument, OneMoreTimeError
from one_more_time.domain.models.events import EVENT_NAMES
from one_more_time.infrastructure.cancellation import CancellationToken, is_cancellation_token
from one_more_time.infrastructure.config import ConfigManager
from one_more_time.infrastructure.config.config_manager import format_validation_error
from one_more_time.infrastructure.events import EventBus

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[Task], Union[T, Awaitable[T]]]


def _always_retry(error: Exception) -> bool:
    return True


class Retry:
    """Retry engine with exponential backoff

    Holds the retry budget and timing parameters, mints :class:`Task` objects
    and drives :meth:`run`. Lifecycle events (``retry``, ``timeout``,
    ``abort``) are delivered to observers registered with :meth:`on`.
    """

    def __init__(
        self,
        max_timeout: Optional[float] = None,
        min_timeout: Optional[float] = None,
        factor: Optional[float] = None,
        retries: Optional[int] = None,
    ):
        """Initialize engine

        Args:
            max_timeout: Backoff ceiling in ms (default 30000)
            min_timeout: Initial backoff in ms (default 500)
            factor: Backoff multiplier (default 2)
            retries: Retries allowed after the first attempt (default 3)

        Raises:
            InvalidArgument: If a value is invalid; ``field`` names it
        """
        options = {
            key: value
            for key, value in (
                ("max_timeout", max_timeout),
                ("min_timeout", min_timeout),
                ("factor", factor),
                ("retries", retries),
            )
            if value is not None
        }
        try:
            self._config = RetryConfig(**options)
        except ValidationError as e:
            loc = e.errors()[0]["loc"]
            raise InvalidArgument(
                "Invalid retry configuration:\n" + format_validation_error(e),
                field=str(loc[0]) if loc else None,
            ) from e

        self._events = EventBus(EVENT_NAMES)
        self._id_counter = 0

    @classmethod
    def from_config(
        cls,
        config_path: Optional[Path] = None,
        max_timeout: Optional[float] = None,
        min_timeout: Optional[float] = None,
        factor: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> "Retry":
        """Create an engine from .one-more-time.yml and ONE_MORE_TIME_* variables

        Args:
            config_path: Explicit config file (searched from current dir if None)
            max_timeout, min_timeout, factor, retries: Values taking precedence over
                the file and environment (None keeps the loaded value)

        Raises:
            ConfigurationError: If file or environment values are invalid
        """
        loaded = ConfigManager(config_path).get_retry_config().model_dump()
        overrides = {
            "max_timeout": max_timeout,
            "min_timeout": min_timeout,
            "factor": factor,
            "retries": retries,
        }
        loaded.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**loaded)

    @property
    def config(self) -> Dict[str, Any]:
        """Snapshot of the effective configuration (a new dict on every access)"""
        return self._config.model_dump()

    def on(self, event_name: str, callback: Callable[[Any], None]) -> None:
        """Observe ``retry``, ``timeout`` or ``abort`` events."""
        self._events.subscribe(event_name, callback)

    def off(self, event_name: str, callback: Callable[[Any], None]) -> bool:
        """Stop observing; returns False if the callback was not registered."""
        return self._events.unsubscribe(event_name, callback)

    def on_all(self, callback: Callable[[Any], None]) -> None:
        """Observe every event."""
        self._events.on_all(callback)

    def off_all(self, callback: Callable[[Any], None]) -> bool:
        """Stop observing every event; returns False if the callback was not registered."""
        return self._events.off_all(callback)

    def pick(
        self,
        id: Optional[str] = None,
        signal: Optional[CancellationToken] = None,
        retries: Optional[int] = None,
        current_timeout: Optional[float] = None,
    ) -> Task:
        """Create a task seeded with the engine configuration

        Args:
            id: Task identifier (default ``task-<N>``)
            signal: Cancellation token observed by the task
            retries: Attempts already consumed
            current_timeout: Initial backoff delay in ms

        Returns:
            New Task, owned by the caller

        Raises:
            InvalidArgument: If an option is invalid
        """
        if id is not None and not isinstance(id, str):
            raise InvalidArgument("id must be a string", field="id")

        if signal is not None and not is_cancellation_token(signal):
            raise InvalidArgument("invalid signal", field="signal")

        if retries is not None and (
            isinstance(retries, bool) or not isinstance(retries, int) or retries < 0
        ):
            raise InvalidArgument("retries must be a non-negative integer", field="retries")

        if current_timeout is not None and (
            isinstance(current_timeout, bool)
            or not isinstance(current_timeout, (int, float))
            or current_timeout <= 0
        ):
            raise InvalidArgument("current_timeout must be a positive number", field="current_timeout")

        if id is None:
            id = f"task-{self._id_counter}"
            self._id_counter += 1

        logger.debug(f"Picked task {id}")
        return Task(
            self._config,
            self._events.emit,
            id=id,
            signal=signal,
            retries=retries,
            current_timeout=current_timeout,
        )

    def run(
        self,
        operation: Operation,
        should_retry: Optional[Callable[[Exception], bool]] = None,
        **task_options: Any,
    ) -> Awaitable[T]:
        """Invoke ``operation(task)`` until it succeeds or retrying stops

        Argument errors are raised here, before anything is awaited.

        Args:
            operation: Callable receiving the task; may return a value or an awaitable
            should_retry: Synchronous predicate deciding whether an error is retryable
            **task_options: ``id``, ``signal``, ``retries``, ``current_timeout`` for :meth:`pick`

        Returns:
            Awaitable resolving to the operation's result

        Raises:
            InvalidArgument: If operation, should_retry or a task option is invalid
        """
        if not callable(operation):
            raise InvalidArgument("operation must be callable", field="operation")

        if should_retry is not None and not callable(should_retry):
            raise InvalidArgument("should_retry must be callable", field="should_retry")

        task = self.pick(**task_options)
        return self._execute(operation, task, should_retry or _always_retry)

    async def _execute(
        self,
        operation: Operation,
        task: Task,
        should_retry: Callable[[Exception], bool],
    ) -> T:
        try:
            return await self._drive(operation, task, should_retry)
        finally:
            task.release()

    async def _drive(
        self,
        operation: Operation,
        task: Task,
        should_retry: Callable[[Exception], bool],
    ) -> T:
        while True:
            try:
                result = operation(task)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except OneMoreTimeError:
                raise
            except Exception as e:
                last_error = e
                if not should_retry(e):
                    logger.debug(f"Task {task.id}: {e!r} is not retryable")
                    raise

                if not task.should_retry(e):
                    if task.aborted:
                        raise Cancelled(task.abort_reason) from e
                    logger.error(f"Task {task.id} failed after {task.retries} attempts: {e}")
                    raise

                logger.warning(
                    f"Task {task.id} failed (attempt {task.retries}/{self._config.retries}): {e}. "
                    f"Retrying in {task.current_timeout}ms..."
                )

            try:
                await task.timeout()
            except Cancelled as cancelled:
                raise cancelled from last_error
