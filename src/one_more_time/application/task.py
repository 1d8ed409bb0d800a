"""Task - state of a single retry sequence"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from one_more_time.domain.config import RetryConfig
from one_more_time.domain.errors import Cancelled, InvalidArgument, InvalidState
from one_more_time.domain.models.events import AbortEvent, RetryEvent, TimeoutEvent
from one_more_time.infrastructure.cancellation import (
    CancellationToken,
    Unsubscribe,
    is_cancellation_token,
)

logger = logging.getLogger(__name__)


class Task:
    """Attempt counter, error history and backoff timer for one retry sequence.

    Tasks are minted by :meth:`Retry.pick` (or internally by :meth:`Retry.run`)
    and can drive a manual loop::

        task = engine.pick()
        while True:
            try:
                return call_service()
            except ServiceError as e:
                if not task.should_retry(e):
                    raise
                await task.timeout()

    All state lives on a single event loop; nothing here is thread-safe.
    """

    def __init__(
        self,
        config: RetryConfig,
        emit: Callable[[Any], None],
        *,
        id: str,
        signal: Optional[CancellationToken] = None,
        retries: Optional[int] = None,
        current_timeout: Optional[float] = None,
    ):
        """Initialize task

        Args:
            config: Engine configuration (budget and timing)
            emit: Engine callback receiving lifecycle events
            id: Task identifier
            signal: Optional cancellation token to observe
            retries: Attempts already consumed (default 0)
            current_timeout: Initial backoff delay in ms (default config.min_timeout)
        """
        self.id = id
        self._config = config
        self._emit = emit
        self._timer: Optional[asyncio.TimerHandle] = None
        self._waiter: Optional[asyncio.Future] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._listening = False
        self._signal = signal
        self._aborted = signal.is_cancelled() if signal is not None else False
        self._history: List[Any] = []
        self._retries = retries if retries is not None else 0
        self._current_timeout = (
            current_timeout if current_timeout is not None else config.min_timeout
        )

        if signal is not None and not self._aborted:
            self._register_abort_listener()

    def __repr__(self) -> str:
        return (
            f"Task(id={self.id!r}, retries={self._retries}, "
            f"current_timeout={self._current_timeout}, aborted={self._aborted})"
        )

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def history(self) -> List[Any]:
        """Errors recorded so far, oldest first (a copy)"""
        return list(self._history)

    @property
    def root_error(self) -> Any:
        """First recorded error, or None"""
        return self._history[0] if self._history else None

    @property
    def current_timeout(self) -> float:
        """Delay in ms the next :meth:`timeout` call will wait"""
        return self._current_timeout

    @property
    def signal(self) -> Optional[CancellationToken]:
        return self._signal

    @property
    def abort_reason(self) -> Any:
        """Reason reported by the bound token, or None"""
        return self._signal.reason() if self._signal is not None else None

    def _register_abort_listener(self) -> None:
        signal = self._signal
        self._listening = True
        unsubscribe = signal.subscribe(lambda: self._on_abort(signal))
        self._unsubscribe = unsubscribe if callable(unsubscribe) else None

    def _on_abort(self, signal: CancellationToken) -> None:
        # One-shot per bind: late calls and calls from a previously bound token are ignored
        if not self._listening or signal is not self._signal:
            return
        self._listening = False
        self._unsubscribe = None
        self._aborted = True
        reason = self.abort_reason
        logger.info(f"Task {self.id} aborted: {reason}")

        self._clear_timer(Cancelled(reason))
        self._emit(AbortEvent(task_id=self.id, reason=reason))

    def _clear_timer(self, error: Optional[BaseException] = None) -> None:
        """Cancel the pending backoff timer, failing its waiter with ``error``"""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.cancel()

    def _detach(self) -> None:
        self._listening = False
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def release(self) -> None:
        """Stop observing the bound token, keeping retries and history

        Called by :meth:`Retry.run` when a run completes. The token stays
        readable through :attr:`signal`.
        """
        self._detach()

    def start(self, signal: Optional[CancellationToken] = None) -> bool:
        """Bind a cancellation token to a fresh task

        Args:
            signal: Cancellation token to observe (None unbinds)

        Returns:
            True

        Raises:
            InvalidState: If the task is aborted or already has attempts/a pending backoff
            InvalidArgument: If signal is not a cancellation token
        """
        if self._aborted:
            raise InvalidState('Task aborted. Did you forget to call "reset" first?')

        if self._waiter is not None or self._retries != 0:
            raise InvalidState('Task already started. Did you forget to call "reset" first?')

        if signal is not None and not is_cancellation_token(signal):
            raise InvalidArgument("invalid signal", field="signal")

        self._detach()
        self._signal = signal
        self._aborted = signal.is_cancelled() if signal is not None else False

        if signal is not None and not self._aborted:
            self._register_abort_listener()

        return True

    def reset(self) -> None:
        """Restore construction-time defaults, dropping timer and token binding

        A pending :meth:`timeout` call fails with :class:`Cancelled`.
        """
        self._clear_timer(Cancelled(None))
        self._detach()

        self._retries = 0
        self._current_timeout = self._config.min_timeout
        self._history = []
        self._signal = None
        self._aborted = False
        logger.debug(f"Task {self.id} reset")

    def should_retry(self, error: Any) -> bool:
        """Record a failed attempt and decide whether another one is allowed

        The error is always appended to history, even for an aborted task.
        ``None`` means "no error": the task is reset and False returned.

        Args:
            error: Error raised by the last attempt

        Returns:
            True while retries stay within the configured budget
        """
        self._history.append(error)

        if self._aborted:
            logger.debug(f"Task {self.id} is aborted, not retrying")
            return False

        self._retries += 1
        self._emit(
            RetryEvent(
                task_id=self.id,
                error=error,
                retries=self._retries,
                history=list(self._history),
            )
        )

        if error is None:
            self.reset()
            return False

        return self._retries <= self._config.retries

    async def timeout(self) -> None:
        """Wait for the current backoff delay, then grow it

        After the wait ``current_timeout`` becomes
        ``min(max_timeout, min_timeout * factor ** retries)`` and a ``timeout``
        event is emitted.

        Raises:
            Cancelled: If the task is, or becomes, aborted (the task is reset)
            InvalidState: If another backoff is already pending
        """
        if self._waiter is not None:
            raise InvalidState(f"Task {self.id} already has a pending backoff")

        if self._aborted:
            reason = self.abort_reason
            self.reset()
            raise Cancelled(reason)

        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiter = waiter
        self._timer = loop.call_later(self._current_timeout / 1000, self._on_timer, waiter)
        logger.debug(f"Task {self.id} backing off for {self._current_timeout}ms")

        try:
            await waiter
        except Cancelled:
            if self._aborted:
                self.reset()
            raise
        finally:
            if self._waiter is waiter:
                self._clear_timer()

    def _on_timer(self, waiter: asyncio.Future) -> None:
        self._timer = None
        self._waiter = None
        if waiter.done():
            return

        if self._aborted:
            waiter.set_exception(Cancelled(self.abort_reason))
            return

        self._current_timeout = self._config.backoff_for(self._retries)
        self._emit(
            TimeoutEvent(
                task_id=self.id,
                retries=self._retries,
                current_timeout=self._current_timeout,
            )
        )
        waiter.set_result(None)
