"""
Circuit Breaker — stop calling a provider that keeps failing.

States:
  CLOSED    — normal operation, failures are counted
  OPEN      — calls are refused until reset_timeout elapses
  HALF_OPEN — one trial call; success closes, failure re-opens

Failures older than monitoring_period are forgotten, so a slow trickle
of errors never opens the circuit.

Usage:
    breakers = CircuitBreakerRegistry(CircuitBreakerConfig())
    breaker = breakers.get_or_create("openai")
    if not breaker.allow():
        raise CircuitOpenError("openai", breaker.next_attempt_at)
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from tandem.core.config import CircuitBreakerConfig
from tandem.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class BreakerStats:
    state: BreakerState
    failures: int
    successes: int
    last_failure_at: float | None = None
    next_attempt_at: float | None = None


class CircuitBreaker:
    """Failure counter with a timed open state."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        monitoring_period: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.monitoring_period = monitoring_period
        self._clock = clock

        self._state = BreakerState.CLOSED
        self._failures: deque[float] = deque()
        self._successes = 0
        self._last_failure_at: float | None = None
        self._next_attempt_at: float | None = None
        self._trial_started_at: float | None = None

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def next_attempt_at(self) -> float | None:
        return self._next_attempt_at

    def allow(self) -> bool:
        """
        Whether a call may go out now. Moves OPEN → HALF_OPEN when due.

        Half-open lets a single trial through. A trial that never reports
        back (cancelled mid-call) is given up after reset_timeout.
        """
        now = self._clock()
        if self._state is BreakerState.OPEN:
            if self._next_attempt_at is None or now < self._next_attempt_at:
                return False
            self._state = BreakerState.HALF_OPEN
            logger.info("Circuit %s half-open, allowing a trial call", self.name)
            self._trial_started_at = now
            return True
        if self._state is BreakerState.HALF_OPEN:
            trial = self._trial_started_at
            if trial is not None and now - trial < self.reset_timeout:
                return False
            self._trial_started_at = now
            return True
        return True

    def record_success(self) -> None:
        self._successes += 1
        if self._state is BreakerState.HALF_OPEN:
            self._state = BreakerState.CLOSED
            self._failures.clear()
            self._next_attempt_at = None
            self._trial_started_at = None
            logger.info("Circuit %s closed after successful trial", self.name)

    def record_failure(self, counts: bool = True) -> None:
        """
        Note a failed call.

        Failures with counts=False (client errors, auth) never open a closed
        circuit, but they still fail a half-open trial.
        """
        if not counts and self._state is not BreakerState.HALF_OPEN:
            return
        now = self._clock()
        self._last_failure_at = now
        self._failures.append(now)
        self._prune(now)

        if self._state is BreakerState.HALF_OPEN:
            self._open(now)
            logger.warning("Circuit %s re-opened after failed trial", self.name)
        elif (
            self._state is BreakerState.CLOSED
            and len(self._failures) >= self.failure_threshold
        ):
            self._open(now)
            logger.warning(
                "Circuit %s opened after %d failures", self.name, len(self._failures)
            )

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run `fn` under breaker protection."""
        if not self.allow():
            raise CircuitOpenError(self.name, self._next_attempt_at)
        try:
            result = await fn()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def stats(self) -> BreakerStats:
        self._prune(self._clock())
        return BreakerStats(
            state=self._state,
            failures=len(self._failures),
            successes=self._successes,
            last_failure_at=self._last_failure_at,
            next_attempt_at=self._next_attempt_at,
        )

    def reset(self) -> None:
        self._state = BreakerState.CLOSED
        self._failures.clear()
        self._successes = 0
        self._last_failure_at = None
        self._next_attempt_at = None
        self._trial_started_at = None

    def _open(self, now: float) -> None:
        self._state = BreakerState.OPEN
        self._next_attempt_at = now + self.reset_timeout
        self._trial_started_at = None

    def _prune(self, now: float) -> None:
        horizon = now - self.monitoring_period
        while self._failures and self._failures[0] < horizon:
            self._failures.popleft()


class CircuitBreakerRegistry:
    """One breaker per key (provider id), created on first use."""

    def __init__(
        self,
        settings: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_or_create(self, key: str) -> CircuitBreaker:
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                name=key,
                failure_threshold=self._settings.failure_threshold,
                reset_timeout=self._settings.reset_timeout,
                monitoring_period=self._settings.monitoring_period,
                clock=self._clock,
            )
            self._breakers[key] = breaker
        return breaker

    def get(self, key: str) -> CircuitBreaker | None:
        return self._breakers.get(key)

    def all(self) -> dict[str, CircuitBreaker]:
        return dict(self._breakers)

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def remove(self, key: str) -> bool:
        return self._breakers.pop(key, None) is not None
