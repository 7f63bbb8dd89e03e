"""
Tests for circuit breaker functionality.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
2. execute() semantics (rejection, error passthrough, trial calls)
3. reset() and the CircuitBreakerRegistry
4. State change notifications
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from agencyops.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    set_notification_callback,
)
from agencyops.core.exceptions import CircuitOpenError


class Boom(Exception):
    pass


class CountingCall:
    """Async callable that counts invocations and fails on demand."""

    def __init__(self, fail: bool = False, result: str = "ok"):
        self.calls = 0
        self.fail = fail
        self.result = result

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise Boom(f"failure #{self.calls}")
        return self.result


async def trip(cb: CircuitBreaker, times: int) -> None:
    failing = CountingCall(fail=True)
    for _ in range(times):
        with pytest.raises(Boom):
            await cb.execute(failing)


def expire_open_window(cb: CircuitBreaker) -> None:
    cb._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=cb.reset_timeout + 1)


class TestCircuitBreakerInitialization:
    """Tests for CircuitBreaker initialization."""

    def test_default_initialization(self):
        """Test that CircuitBreaker initializes with correct defaults."""
        cb = CircuitBreaker(name="test")

        assert cb.name == "test"
        assert cb.failure_threshold == 5
        assert cb.reset_timeout == 30.0
        assert cb.half_open_max_calls == 1
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.last_failure_time is None

    def test_rejects_non_positive_threshold(self):
        """A threshold below one would open the circuit before any call."""
        with pytest.raises(ValueError):
            CircuitBreaker(name="test", failure_threshold=0)

    def test_rejects_negative_reset_timeout(self):
        with pytest.raises(ValueError):
            CircuitBreaker(name="test", reset_timeout=-1)


class TestStateTransitions:
    """Tests for circuit breaker state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_rejects_without_calling(self):
        """threshold=3: three failures open the circuit; the 4th call never runs."""
        cb = CircuitBreaker(name="test", failure_threshold=3, reset_timeout=5.0)
        failing = CountingCall(fail=True)

        for _ in range(3):
            with pytest.raises(Boom):
                await cb.execute(failing)

        assert cb.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError, match="unavailable"):
            await cb.execute(failing)
        assert failing.calls == 3

    @pytest.mark.asyncio
    async def test_recovers_after_reset_timeout(self):
        """threshold=3, timeout=10ms: after 15ms a successful call closes the circuit."""
        cb = CircuitBreaker(name="test", failure_threshold=3, reset_timeout=0.01)
        await trip(cb, 3)
        assert cb.state == CircuitState.OPEN

        await asyncio.sleep(0.015)
        result = await cb.execute(CountingCall())

        assert result == "ok"
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    @pytest.mark.asyncio
    async def test_stays_closed_below_threshold(self):
        cb = CircuitBreaker(name="test", failure_threshold=3)
        await trip(cb, 2)

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 2

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self):
        """Only consecutive failures count towards the threshold."""
        cb = CircuitBreaker(name="test", failure_threshold=3)
        await trip(cb, 2)
        await cb.execute(CountingCall())
        await trip(cb, 2)

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 2

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self):
        """HALF_OPEN -> OPEN when the trial call fails."""
        cb = CircuitBreaker(name="test", failure_threshold=2, reset_timeout=60.0)
        await trip(cb, 2)
        expire_open_window(cb)

        trial = CountingCall(fail=True)
        with pytest.raises(Boom):
            await cb.execute(trial)

        assert trial.calls == 1
        assert cb.state == CircuitState.OPEN
        assert cb.last_failure_time is not None

    @pytest.mark.asyncio
    async def test_no_call_before_timeout_elapses(self):
        """While OPEN inside the window the wrapped function is never invoked."""
        cb = CircuitBreaker(name="test", failure_threshold=1, reset_timeout=60.0)
        await trip(cb, 1)

        call = CountingCall()
        for _ in range(5):
            with pytest.raises(CircuitOpenError):
                await cb.execute(call)

        assert call.calls == 0
        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_error_reports_retry_after(self):
        cb = CircuitBreaker(name="graph", failure_threshold=1, reset_timeout=60.0)
        await trip(cb, 1)

        with pytest.raises(CircuitOpenError) as exc_info:
            await cb.execute(CountingCall())

        assert exc_info.value.name == "graph"
        assert 0 < exc_info.value.retry_after <= 60.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcomes", [
        [False, False, False],
        [False, True, False, False, False],
        [True, True, False, True, False, False],
        [False, False, True, False, False, False, True],
    ])
    async def test_open_iff_last_threshold_calls_failed(self, outcomes):
        """State tracks the trailing run of failures (True = success)."""
        threshold = 3
        cb = CircuitBreaker(name="test", failure_threshold=threshold, reset_timeout=60.0)
        trailing_failures = 0

        for succeed in outcomes:
            if cb.state == CircuitState.OPEN:
                expire_open_window(cb)
            try:
                await cb.execute(CountingCall(fail=not succeed))
            except Boom:
                pass
            trailing_failures = 0 if succeed else trailing_failures + 1

        assert (cb.state == CircuitState.OPEN) == (trailing_failures >= threshold)


class TestErrorPassthrough:
    """The breaker re-raises the wrapped function's own error."""

    @pytest.mark.asyncio
    async def test_original_exception_propagates(self):
        cb = CircuitBreaker(name="test")
        error = Boom("original")

        async def fail():
            raise error

        with pytest.raises(Boom) as exc_info:
            await cb.execute(fail)
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_returns_wrapped_result(self):
        cb = CircuitBreaker(name="test")
        assert await cb.execute(CountingCall(result="payload")) == "payload"


class TestHalfOpenTrial:
    """Tests for the single trial call while HALF_OPEN."""

    @pytest.mark.asyncio
    async def test_concurrent_trial_is_rejected(self):
        """Only one call goes through while the trial is in flight."""
        cb = CircuitBreaker(name="test", failure_threshold=1, reset_timeout=60.0)
        await trip(cb, 1)
        expire_open_window(cb)

        release = asyncio.Event()
        trial_calls = 0

        async def slow_trial():
            nonlocal trial_calls
            trial_calls += 1
            await release.wait()
            return "recovered"

        trial = asyncio.create_task(cb.execute(slow_trial))
        await asyncio.sleep(0)
        assert cb.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await cb.execute(slow_trial)

        release.set()
        assert await trial == "recovered"
        assert trial_calls == 1
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_the_slot(self):
        cb = CircuitBreaker(name="test", failure_threshold=1, reset_timeout=60.0)
        await trip(cb, 1)
        expire_open_window(cb)

        async def hang():
            await asyncio.sleep(3600)

        trial = asyncio.create_task(cb.execute(hang))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert cb.state == CircuitState.HALF_OPEN
        assert await cb.execute(CountingCall()) == "ok"
        assert cb.state == CircuitState.CLOSED


class TestReset:
    """Tests for reset()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [0, 2, 5])
    async def test_reset_always_closes(self, failures):
        cb = CircuitBreaker(name="test", failure_threshold=3, reset_timeout=60.0)
        for _ in range(failures):
            try:
                await cb.execute(CountingCall(fail=True))
            except (Boom, CircuitOpenError):
                pass

        cb.reset()

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.last_failure_time is None

    @pytest.mark.asyncio
    async def test_reset_from_half_open(self):
        cb = CircuitBreaker(name="test", failure_threshold=1, reset_timeout=60.0)
        await trip(cb, 1)
        expire_open_window(cb)

        async def hang():
            await asyncio.sleep(3600)

        trial = asyncio.create_task(cb.execute(hang))
        await asyncio.sleep(0)
        assert cb.state == CircuitState.HALF_OPEN

        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_get_returns_same_instance(self):
        """One breaker per name, shared by every caller."""
        first = CircuitBreakerRegistry.get("dialpad", failure_threshold=2)
        second = CircuitBreakerRegistry.get("dialpad")

        assert first is second
        assert second.failure_threshold == 2

    def test_get_all_states(self):
        CircuitBreakerRegistry.get("dialpad")
        CircuitBreakerRegistry.get("microsoft_graph")

        assert CircuitBreakerRegistry.get_all_states() == {
            "dialpad": "closed",
            "microsoft_graph": "closed",
        }

    @pytest.mark.asyncio
    async def test_reset_by_name(self):
        cb = CircuitBreakerRegistry.get("dialpad", failure_threshold=1)
        await trip(cb, 1)

        assert CircuitBreakerRegistry.reset("dialpad") is True
        assert cb.state == CircuitState.CLOSED

    def test_reset_unknown_name(self):
        assert CircuitBreakerRegistry.reset("nope") is False


class TestNotifications:
    """Tests for the state change callback."""

    @pytest.mark.asyncio
    async def test_callback_receives_transitions(self):
        callback = MagicMock()
        set_notification_callback(callback)
        cb = CircuitBreaker(name="svc", failure_threshold=1, reset_timeout=60.0)

        await trip(cb, 1)
        expire_open_window(cb)
        await cb.execute(CountingCall())

        assert [c.args for c in callback.call_args_list] == [
            ("svc", "closed", "open"),
            ("svc", "open", "half_open"),
            ("svc", "half_open", "closed"),
        ]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_the_call(self):
        set_notification_callback(MagicMock(side_effect=RuntimeError("notifier down")))
        cb = CircuitBreaker(name="svc", failure_threshold=1)

        await trip(cb, 1)

        assert cb.state == CircuitState.OPEN
