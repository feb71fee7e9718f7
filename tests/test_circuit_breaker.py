"""Tests for CircuitBreaker and CircuitBreakerRegistry, driven by a fake clock."""

import pytest

from tandem.core.circuit_breaker import BreakerState, CircuitBreaker, CircuitBreakerRegistry
from tandem.core.config import CircuitBreakerConfig
from tandem.core.errors import CircuitOpenError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "openai", failure_threshold=3, reset_timeout=30.0, monitoring_period=60.0, clock=clock
    )


def test_opens_at_threshold(breaker):
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state is BreakerState.CLOSED
    assert breaker.allow() is True

    breaker.record_failure()
    assert breaker.state is BreakerState.OPEN
    assert breaker.allow() is False
    assert breaker.next_attempt_at == 1030.0


def test_old_failures_are_forgotten(breaker, clock):
    breaker.record_failure()
    breaker.record_failure()
    clock.advance(61)
    breaker.record_failure()

    assert breaker.state is BreakerState.CLOSED
    assert breaker.stats().failures == 1


def test_half_open_after_reset_timeout(breaker, clock):
    for _ in range(3):
        breaker.record_failure()

    clock.advance(29)
    assert breaker.allow() is False
    clock.advance(1)
    assert breaker.allow() is True
    assert breaker.state is BreakerState.HALF_OPEN


def test_successful_trial_closes(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)
    breaker.allow()

    breaker.record_success()

    assert breaker.state is BreakerState.CLOSED
    assert breaker.stats().failures == 0
    assert breaker.next_attempt_at is None


def test_failed_trial_reopens(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)
    breaker.allow()

    breaker.record_failure()

    assert breaker.state is BreakerState.OPEN
    assert breaker.next_attempt_at == clock.now + 30.0


def test_half_open_lets_a_single_trial_through(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)

    assert breaker.allow() is True
    assert breaker.allow() is False
    assert breaker.allow() is False
    assert breaker.state is BreakerState.HALF_OPEN


def test_unreported_trial_is_given_up_after_reset_timeout(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)
    assert breaker.allow() is True

    clock.advance(29)
    assert breaker.allow() is False
    clock.advance(1)
    assert breaker.allow() is True
    assert breaker.allow() is False


def test_uncounted_failure_leaves_closed_circuit_alone(breaker):
    for _ in range(5):
        breaker.record_failure(counts=False)

    assert breaker.state is BreakerState.CLOSED
    assert breaker.stats().failures == 0


def test_uncounted_failure_still_fails_the_trial(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)
    breaker.allow()

    breaker.record_failure(counts=False)

    assert breaker.state is BreakerState.OPEN
    assert breaker.allow() is False


def test_success_while_closed_keeps_failures(breaker):
    breaker.record_failure()
    breaker.record_success()
    stats = breaker.stats()
    assert stats.failures == 1
    assert stats.successes == 1


@pytest.mark.asyncio
async def test_call_wraps_outcome(breaker):
    async def ok():
        return "fine"

    async def bad():
        raise RuntimeError("nope")

    assert await breaker.call(ok) == "fine"
    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breaker.call(bad)

    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.call(ok)
    assert exc_info.value.retry_at == breaker.next_attempt_at


def test_reset(breaker):
    for _ in range(3):
        breaker.record_failure()
    breaker.reset()
    assert breaker.state is BreakerState.CLOSED
    assert breaker.stats().failures == 0


# ─── Registry ─────────────────────────────────────────────────


def test_registry_creates_one_breaker_per_key(clock):
    registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2), clock=clock)

    first = registry.get_or_create("openai")
    assert registry.get_or_create("openai") is first
    assert registry.get("anthropic") is None
    assert first.failure_threshold == 2


def test_registry_keys_are_independent(clock):
    registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)

    registry.get_or_create("openai").record_failure()

    assert registry.get_or_create("openai").state is BreakerState.OPEN
    assert registry.get_or_create("anthropic").state is BreakerState.CLOSED


def test_registry_reset_and_remove(clock):
    registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)
    registry.get_or_create("openai").record_failure()

    registry.reset_all()
    assert registry.get("openai").state is BreakerState.CLOSED

    assert registry.remove("openai") is True
    assert registry.remove("openai") is False
    assert registry.all() == {}
