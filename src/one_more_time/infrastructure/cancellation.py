"""Cancellation tokens observed by retry tasks.

A task never owns the token it is bound to: it only reads its state and
subscribes a one-shot listener, which it detaches again on reset or abort.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


@runtime_checkable
class CancellationToken(Protocol):
    """Interface a task needs from a cancellation token.

    Any object providing these three methods can be bound to a task; it does
    not have to inherit from this class.
    """

    def subscribe(self, listener: Callable[[], None]) -> Unsubscribe:  # pragma: no cover - protocol
        """Call ``listener`` once when the token fires; returns an unsubscribe callable."""
        ...

    def is_cancelled(self) -> bool:  # pragma: no cover - protocol
        ...

    def reason(self) -> Any:  # pragma: no cover - protocol
        ...


def is_cancellation_token(candidate: Any) -> bool:
    """Check that an object exposes the full token interface with callables."""
    return all(
        callable(getattr(candidate, attr, None)) for attr in ("subscribe", "is_cancelled", "reason")
    )


class _Token:
    """Read side of a :class:`CancellationSource`."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Any = None
        self._listeners: List[Callable[[], None]] = []

    def subscribe(self, listener: Callable[[], None]) -> Unsubscribe:
        # Already fired: listeners are one-shot, so there is nothing left to notify
        if self._cancelled:
            return lambda: None
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def is_cancelled(self) -> bool:
        return self._cancelled

    def reason(self) -> Any:
        return self._reason

    def _fire(self, reason: Any) -> None:
        self._cancelled = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Cancellation listener failed")


class CancellationSource:
    """Owner side of a cancellation token.

    Example:
        source = CancellationSource()
        task = engine.pick(signal=source.token)
        ...
        source.cancel("shutting down")
    """

    def __init__(self) -> None:
        self._token = _Token()

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._token.is_cancelled()

    def cancel(self, reason: Optional[Any] = None) -> bool:
        """Fire the token; returns False if it was already cancelled.

        The reason defaults to "cancelled". Subscribed listeners run
        synchronously, each at most once.
        """
        if self._token.is_cancelled():
            return False
        if reason is None:
            reason = "cancelled"
        logger.debug(f"Cancelling token: {reason}")
        self._token._fire(reason)
        return True
