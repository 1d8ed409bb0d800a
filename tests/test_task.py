"""Tests for the Task state machine"""

from __future__ import annotations

import asyncio

import pytest

from one_more_time import CancellationSource, Retry, Task
from one_more_time.domain.errors import Cancelled, InvalidArgument, InvalidState
from one_more_time.domain.models.events import AbortEvent, RetryEvent, TimeoutEvent


@pytest.fixture
def engine() -> Retry:
    return Retry(min_timeout=1, max_timeout=8, factor=2, retries=3)


@pytest.fixture
def events(engine):
    received = []
    engine.on_all(received.append)
    return received


def _state(task: Task) -> tuple:
    return (
        task.retries,
        task.history,
        task.root_error,
        task.current_timeout,
        task.aborted,
        task.signal,
    )


class TestTaskDefaults:
    """Tests for freshly picked tasks"""

    def test_fresh_task(self, engine):
        """Test a picked task starts zeroed"""
        task = engine.pick()
        assert isinstance(task, Task)
        assert task.retries == 0
        assert task.history == []
        assert task.root_error is None
        assert task.aborted is False
        assert task.signal is None
        assert task.current_timeout == 1

    def test_overrides(self, engine):
        """Test retries and current_timeout overrides"""
        task = engine.pick(id="foo", retries=1, current_timeout=5)
        assert task.id == "foo"
        assert task.retries == 1
        assert task.current_timeout == 5

    def test_history_is_a_copy(self, engine):
        """Test mutating the history accessor does not touch the task"""
        task = engine.pick()
        task.should_retry(ValueError("boom"))
        history = task.history
        history.append("junk")
        assert len(task.history) == 1


class TestShouldRetry:
    """Tests for Task.should_retry"""

    def test_records_history_and_counts(self, engine):
        """Test history length matches retries while not aborted"""
        task = engine.pick()
        errors = [ValueError(str(i)) for i in range(3)]
        for expected, error in enumerate(errors, start=1):
            assert task.should_retry(error) is True
            assert task.retries == expected
            assert len(task.history) == task.retries
        assert task.history == errors
        assert task.root_error is errors[0]

    def test_budget_exhaustion(self, engine):
        """Test the fourth failure exceeds a budget of three"""
        task = engine.pick()
        assert [task.should_retry(RuntimeError("x")) for _ in range(4)] == [True, True, True, False]
        assert task.retries == 4

    def test_emits_retry_event(self, engine, events):
        """Test retry event carries error, count and history"""
        task = engine.pick(id="job")
        error = ValueError("boom")
        task.should_retry(error)

        assert events == [RetryEvent(task_id="job", error=error, retries=1, history=[error])]

    def test_none_error_stops_cleanly(self, engine, events):
        """Test None is a clean stop that resets the task"""
        task = engine.pick()
        task.should_retry(ValueError("first"))

        assert task.should_retry(None) is False
        assert task.retries == 0
        assert task.history == []
        assert events[-1].error is None
        assert events[-1].retries == 2

    def test_aborted_task_records_but_does_not_count(self, engine, events):
        """Test an aborted task keeps the error in history without counting it"""
        source = CancellationSource()
        task = engine.pick(signal=source.token)
        task.should_retry(ValueError("first"))
        source.cancel("stop")

        error = ValueError("second")
        assert task.should_retry(error) is False
        assert task.retries == 1
        assert task.history[-1] is error
        assert [e.name for e in events] == ["retry", "abort"]


class TestTimeout:
    """Tests for Task.timeout"""

    async def test_backoff_growth(self, engine, events):
        """Test current_timeout follows min(max, min * factor ** retries)"""
        task = engine.pick()
        expected = []
        for n in range(1, 6):
            task.should_retry(RuntimeError(str(n)))
            await task.timeout()
            assert task.current_timeout == min(8, 1 * 2**n)
            assert 1 <= task.current_timeout <= 8
            expected.append(task.current_timeout)

        timeouts = [e for e in events if isinstance(e, TimeoutEvent)]
        assert [e.current_timeout for e in timeouts] == expected
        assert [e.retries for e in timeouts] == [1, 2, 3, 4, 5]

    async def test_timeout_event_follows_retry_event(self, engine, events):
        """Test each timeout event comes right after its retry event"""
        task = engine.pick()
        for _ in range(2):
            task.should_retry(RuntimeError("x"))
            await task.timeout()
        assert [e.name for e in events] == ["retry", "timeout", "retry", "timeout"]

    async def test_waits_current_timeout(self):
        """Test the wait lasts at least current_timeout ms"""
        engine = Retry(min_timeout=50, max_timeout=100)
        task = engine.pick()
        loop = asyncio.get_running_loop()
        started = loop.time()
        await task.timeout()
        assert loop.time() - started >= 0.04

    async def test_abort_during_backoff_raises_cancelled(self, events):
        """Test aborting a pending backoff rejects it and resets the task"""
        engine = Retry(min_timeout=10_000, max_timeout=20_000)
        engine.on_all(events.append)
        source = CancellationSource()
        task = engine.pick(signal=source.token)
        task.should_retry(RuntimeError("x"))

        pending = asyncio.ensure_future(task.timeout())
        await asyncio.sleep(0)
        source.cancel("shutdown")
        with pytest.raises(Cancelled) as exc_info:
            await asyncio.wait_for(pending, timeout=1)

        assert exc_info.value.reason == "shutdown"
        assert task.aborted is False
        assert task.retries == 0
        assert task.signal is None
        aborts = [e for e in events if isinstance(e, AbortEvent)]
        assert aborts == [AbortEvent(task_id=task.id, reason="shutdown")]
        assert not any(isinstance(e, TimeoutEvent) for e in events)

    async def test_timeout_on_aborted_task(self, engine):
        """Test timeout on an already aborted task fails immediately"""
        source = CancellationSource()
        source.cancel("gone")
        task = engine.pick(signal=source.token)
        assert task.aborted is True

        with pytest.raises(Cancelled, match="gone"):
            await task.timeout()
        assert task.aborted is False

    async def test_concurrent_timeout_rejected(self):
        """Test a second timeout while one is pending is misuse"""
        engine = Retry(min_timeout=10_000, max_timeout=20_000)
        task = engine.pick()
        pending = asyncio.ensure_future(task.timeout())
        await asyncio.sleep(0)

        with pytest.raises(InvalidState):
            await task.timeout()

        task.reset()
        with pytest.raises(Cancelled):
            await pending

    async def test_reset_cancels_pending_backoff(self):
        """Test reset fails a waiting timeout instead of leaving it hanging"""
        engine = Retry(min_timeout=10_000, max_timeout=20_000)
        task = engine.pick()
        pending = asyncio.ensure_future(task.timeout())
        await asyncio.sleep(0)

        task.reset()
        with pytest.raises(Cancelled) as exc_info:
            await asyncio.wait_for(pending, timeout=1)
        assert exc_info.value.reason is None


class TestStartAndReset:
    """Tests for Task.start and Task.reset"""

    def test_start_returns_true(self, engine):
        """Test start on a fresh task"""
        task = engine.pick()
        source = CancellationSource()
        assert task.start(source.token) is True
        assert task.signal is source.token
        assert task.aborted is False

    def test_start_with_cancelled_token(self, engine):
        """Test start reads the token state at bind time"""
        source = CancellationSource()
        source.cancel()
        task = engine.pick()
        task.start(source.token)
        assert task.aborted is True

    def test_start_after_attempt_fails(self, engine):
        """Test start requires a reset once attempts are recorded"""
        task = engine.pick()
        task.should_retry(RuntimeError("x"))
        with pytest.raises(InvalidState, match="already started"):
            task.start()

    def test_start_on_aborted_task_fails(self, engine):
        """Test start requires a reset after an abort"""
        source = CancellationSource()
        task = engine.pick(signal=source.token)
        source.cancel()
        with pytest.raises(InvalidState, match="aborted"):
            task.start()

        task.reset()
        assert task.start() is True

    def test_start_invalid_signal(self, engine):
        """Test start rejects objects that are not cancellation tokens"""
        task = engine.pick()
        with pytest.raises(InvalidArgument, match="signal"):
            task.start(object())

    def test_rebinding_detaches_previous_token(self, engine, events):
        """Test the old token no longer aborts the task after start rebinds"""
        old, new = CancellationSource(), CancellationSource()
        task = engine.pick(signal=old.token)
        task.start(new.token)

        old.cancel()
        assert task.aborted is False
        new.cancel("new")
        assert task.aborted is True
        assert [e.reason for e in events] == ["new"]

    def test_reset_matches_fresh_task(self, engine):
        """Test reset restores the freshly picked state"""
        fresh = engine.pick(id="same")
        task = engine.pick(id="same", signal=CancellationSource().token)
        task.should_retry(RuntimeError("a"))
        task.should_retry(RuntimeError("b"))

        task.reset()
        assert _state(task) == _state(fresh)

    def test_reset_detaches_listener(self, engine, events):
        """Test a token firing after reset is ignored"""
        source = CancellationSource()
        task = engine.pick(signal=source.token)
        task.reset()

        source.cancel()
        assert task.aborted is False
        assert events == []

    def test_abort_fires_once(self, engine, events):
        """Test the abort listener fires at most once per bind"""
        source = CancellationSource()
        engine.pick(signal=source.token)
        source.cancel("first")
        source.cancel("second")
        assert events == [AbortEvent(task_id="task-0", reason="first")]

    def test_abort_without_unsubscribe_handle(self, engine, events):
        """Test a token whose subscribe returns nothing still aborts the task once"""

        class Token:
            def __init__(self):
                self.listeners = []
                self.cancelled = False

            def subscribe(self, listener):
                self.listeners.append(listener)

            def is_cancelled(self):
                return self.cancelled

            def reason(self):
                return "stop" if self.cancelled else None

            def fire(self):
                self.cancelled = True
                for listener in self.listeners:
                    listener()

        token = Token()
        task = engine.pick(signal=token)
        token.fire()
        token.fire()

        assert task.aborted is True
        assert events == [AbortEvent(task_id=task.id, reason="stop")]

    def test_release_keeps_state(self, engine, events):
        """Test release stops observing the token without resetting the task"""
        source = CancellationSource()
        task = engine.pick(signal=source.token)
        task.should_retry(RuntimeError("x"))
        task.release()

        source.cancel()
        assert task.aborted is False
        assert task.retries == 1
        assert task.signal is source.token
        assert [e.name for e in events] == ["retry"]
