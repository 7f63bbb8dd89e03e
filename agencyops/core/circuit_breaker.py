from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from agencyops.core.exceptions import CircuitOpenError
from agencyops.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Type alias for notification callback - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]  # (name, old_state, new_state)

# Global notification callback - set by application on startup
_notification_callback: Optional[StateChangeCallback] = None


def set_notification_callback(callback: Optional[StateChangeCallback]) -> None:
    """Set the global notification callback for circuit breaker state changes."""
    global _notification_callback
    _notification_callback = callback


def _notify_state_change(name: str, old_state: str, new_state: str) -> None:
    """Notify about state change if callback is registered."""
    if _notification_callback:
        try:
            _notification_callback(name, old_state, new_state)
        except Exception as e:
            logger.error("Circuit breaker notification failed", circuit=name, error=str(e))


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    """
    Guards calls to one remote dependency.

    CLOSED counts consecutive failures and opens at failure_threshold.
    OPEN rejects calls with CircuitOpenError until reset_timeout seconds have
    passed since the last failure; the next call then moves to HALF_OPEN and
    goes through as a trial call. A successful trial closes the circuit, a failed
    one reopens it.

    State is only read and written while holding _lock, and the lock is never
    held across an await, so one breaker can be shared by concurrent tasks
    and threads.
    """

    name: str
    failure_threshold: int = 5
    reset_timeout: float = 30.0  # seconds
    half_open_max_calls: int = 1

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: datetime | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be a positive integer")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must not be negative")

    @property
    def state(self) -> CircuitState:
        """Return current state. Transitions only happen inside execute()."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> Optional[datetime]:
        return self._last_failure_time

    def _transition(self, new_state: CircuitState) -> None:
        """Must be called while holding self._lock."""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        if new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit {self.name}: {old_state.name} -> {new_state.name}",
            circuit=self.name,
            failure_count=self._failure_count,
        )
        _notify_state_change(self.name, old_state.value, new_state.value)

    def _seconds_since_failure(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        return (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()

    def _before_call(self) -> None:
        """Admit or reject a call. Raises CircuitOpenError when rejected."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = self._seconds_since_failure()
                if self._last_failure_time is not None and elapsed > self.reset_timeout:
                    self._transition(CircuitState.HALF_OPEN)
                else:
                    logger.info(
                        f"Circuit {self.name} is OPEN, rejecting call",
                        circuit=self.name,
                        retry_after=round(self.reset_timeout - elapsed, 3),
                    )
                    raise CircuitOpenError(self.name, retry_after=self.reset_timeout - elapsed)

            if self._state == CircuitState.HALF_OPEN:
                # One trial call at a time while probing
                if self._half_open_calls >= self.half_open_max_calls:
                    raise CircuitOpenError(self.name)
                self._half_open_calls += 1

    def _on_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = None
            self._transition(CircuitState.CLOSED)

    def _on_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)
            logger.info(
                f"Circuit {self.name} failure count: {self._failure_count}/{self.failure_threshold}",
                circuit=self.name,
            )

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self._failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run fn through the breaker.

        Errors raised by fn are recorded and re-raised unchanged. The only
        error the breaker raises on its own is CircuitOpenError.
        """
        self._before_call()
        try:
            result = await fn()
        except Exception:
            self._on_failure()
            raise
        except BaseException:
            # Cancelled trial: release the trial slot without judging the dependency
            with self._lock:
                if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                    self._half_open_calls -= 1
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Force CLOSED with zero failures. Operator escape hatch."""
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_calls = 0
            self._transition(CircuitState.CLOSED)


class CircuitBreakerRegistry:
    """One breaker per logical remote dependency, shared process-wide."""

    _breakers: Dict[str, CircuitBreaker] = {}
    _lock = Lock()

    @classmethod
    def get(cls, name: str, **kwargs) -> CircuitBreaker:
        with cls._lock:
            if name not in cls._breakers:
                cls._breakers[name] = CircuitBreaker(name=name, **kwargs)
            return cls._breakers[name]

    @classmethod
    def get_all_states(cls) -> Dict[str, str]:
        return {name: cb.state.value for name, cb in cls._breakers.items()}

    @classmethod
    def reset(cls, name: str) -> bool:
        """Reset a named breaker. Returns False if no such breaker exists."""
        breaker = cls._breakers.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._breakers = {}
