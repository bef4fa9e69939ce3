"""Tests for circuit breaker state machine.

Validates state transitions:
  CLOSED -> OPEN (after threshold failures)
  OPEN -> HALF_OPEN (after cooldown)
  HALF_OPEN -> CLOSED (on success)
  HALF_OPEN -> OPEN (on failure)
"""

import pytest

from docsynth.container import build_container
from docsynth.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpen,
    CircuitState,
    get_breaker,
)


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCircuitBreakerStates:
    def test_starts_closed(self):
        cb = CircuitBreaker("test-endpoint")
        assert cb.state == CircuitState.CLOSED

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker("test", failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

    def test_opens_at_threshold(self):
        cb = CircuitBreaker("test", failure_threshold=3)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.is_open is True

    def test_open_blocks_requests(self):
        cb = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=60)
        cb.record_failure()
        with pytest.raises(CircuitBreakerOpen) as exc_info:
            cb.check()
        assert exc_info.value.endpoint == "test"
        assert exc_info.value.retry_after > 0

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker("test", failure_threshold=2)
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED


class TestCooldown:
    def test_half_open_after_cooldown(self):
        clock = Clock()
        cb = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=30, clock=clock)
        cb.record_failure()
        clock.now += 30
        cb.check()
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self):
        clock = Clock()
        cb = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=30, clock=clock)
        cb.record_failure()
        clock.now += 31
        cb.check()
        cb.record_success()
        assert cb.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        clock = Clock()
        cb = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=30, clock=clock)
        cb.record_failure()
        clock.now += 31
        cb.check()
        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpen):
            cb.check()


class TestRegistry:
    def test_one_breaker_per_endpoint(self):
        assert get_breaker("model-a") is get_breaker("model-a")
        assert get_breaker("model-a") is not get_breaker("model-b")

    def test_first_configuration_wins(self):
        cb = get_breaker("model-c", failure_threshold=1, cooldown_seconds=5)
        assert get_breaker("model-c", failure_threshold=10) is cb
        cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_container_breaker_follows_settings(self, settings, engine, source_control):
        tuned = settings.model_copy(update={"llm_model": "m/x", "llm_failure_threshold": 1,
                                            "llm_cooldown_seconds": 600})
        container = build_container(tuned, engine=engine, source_control=source_control, context_providers=[])
        assert container.llm.breaker is get_breaker("m/x")
        container.llm.breaker.record_failure()
        assert container.llm.breaker.is_open
