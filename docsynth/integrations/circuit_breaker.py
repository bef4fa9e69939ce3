"""Circuit breaker guarding the LLM provider.

Tracks consecutive failures per endpoint and short-circuits calls during an
outage so pipeline stages drop straight to their deterministic fallback
instead of waiting out one timeout per job.

States:
  CLOSED    -- normal operation, calls pass through
  OPEN      -- endpoint is down, calls are refused
  HALF_OPEN -- cooldown expired, one probe call allowed
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3    # consecutive failures before opening
DEFAULT_COOLDOWN_SECONDS = 60    # seconds to wait before half-open probe


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when the circuit is open and calls are blocked."""

    def __init__(self, endpoint: str, retry_after: float):
        self.endpoint = endpoint
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker OPEN for '{endpoint}'. "
            f"Retry after {retry_after:.0f}s."
        )


class CircuitBreaker:
    """Per-endpoint circuit breaker.

    Worker tasks on every LLM queue share one breaker per model, so state
    changes happen under a lock.
    """

    def __init__(
        self,
        endpoint: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.endpoint = endpoint
        self._failure_threshold = failure_threshold
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def is_open(self) -> bool:
        """True while calls would be refused (cooldown not yet expired)."""
        with self._lock:
            return (
                self._state == CircuitState.OPEN
                and self._clock() - self._last_failure_time < self._cooldown_seconds
            )

    def check(self) -> None:
        """Check if a call is allowed. Raises CircuitBreakerOpen if not."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return
            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - self._last_failure_time
                if elapsed >= self._cooldown_seconds:
                    self._state = CircuitState.HALF_OPEN
                    logger.info("Circuit %s: OPEN -> HALF_OPEN (cooldown expired)", self.endpoint)
                    return
                raise CircuitBreakerOpen(self.endpoint, self._cooldown_seconds - elapsed)
            # HALF_OPEN: the probe call goes through
            return

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Circuit %s: HALF_OPEN -> CLOSED", self.endpoint)
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit %s: HALF_OPEN -> OPEN (probe failed)", self.endpoint)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self._failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit %s: CLOSED -> OPEN (%d consecutive failures)",
                    self.endpoint, self._failure_count,
                )


# ---------------------------------------------------------------------------
# Registry: one breaker per model endpoint
# ---------------------------------------------------------------------------

_breakers: Dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_breaker(
    endpoint: str,
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
) -> CircuitBreaker:
    """Get or create the breaker for a model endpoint."""
    with _registry_lock:
        if endpoint not in _breakers:
            _breakers[endpoint] = CircuitBreaker(
                endpoint=endpoint,
                failure_threshold=failure_threshold,
                cooldown_seconds=cooldown_seconds,
            )
        return _breakers[endpoint]


def reset_all() -> None:
    """Forget every breaker (for testing)."""
    with _registry_lock:
        _breakers.clear()
