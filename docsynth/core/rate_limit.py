"""Admission rate limiting: token bucket and sliding window.

Both limiters are advisory backpressure. ``AdmissionGate`` wraps a limiter and
fails open when the limiter itself breaks, so a limiter outage never stalls
the pipeline.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Token bucket: pure function over a caller-owned dict
# ---------------------------------------------------------------------------

# Evict idle entries so rotating client keys don't grow the dict forever.
_EVICT_EVERY = 100
_EVICT_AGE = 120.0


def check_rate_limit(
    bucket: dict[str, tuple[float, float]],
    key: str,
    max_per_minute: int,
    now: Optional[float] = None,
) -> tuple[bool, float]:
    """Check whether a request from *key* is allowed under the token bucket.

    Args:
        bucket: Mutable dict holding per-key ``(tokens, last_refill)``. Modified in place.
        key: Client identifier (see ``client_key``).
        max_per_minute: Sustained rate cap, also the burst size.
        now: Current timestamp (injectable for testing). Defaults to ``time.monotonic()``.

    Returns:
        ``(allowed, retry_after)``. *retry_after* is 0.0 when allowed, otherwise
        the number of seconds until the next token becomes available.
    """
    if max_per_minute <= 0:
        return True, 0.0

    if now is None:
        now = time.monotonic()

    if len(bucket) >= _EVICT_EVERY:
        cutoff = now - _EVICT_AGE
        for stale in [k for k, (_, ts) in bucket.items() if ts < cutoff]:
            del bucket[stale]

    refill_rate = max_per_minute / 60.0  # tokens per second

    if key in bucket:
        tokens, last_refill = bucket[key]
        tokens = min(max_per_minute, tokens + (now - last_refill) * refill_rate)
    else:
        tokens = float(max_per_minute)

    if tokens >= 1.0:
        bucket[key] = (tokens - 1.0, now)
        return True, 0.0

    bucket[key] = (tokens, now)
    return False, (1.0 - tokens) / refill_rate


# ---------------------------------------------------------------------------
# Sliding window
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class SlidingWindowLimiter:
    """Counts hits per key over the trailing ``window_seconds``.

    Thread-safe; one instance is shared by every caller of a stage.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("max_requests must be >= 1 and window_seconds > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> RateLimitDecision:
        """Record one request for *key* if the window has room."""
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            cutoff = now - self.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = hits[0] + self.window_seconds - now
                return RateLimitDecision(False, 0, max(retry_after, 0.0))

            hits.append(now)
            return RateLimitDecision(True, self.max_requests - len(hits))

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


class AdmissionGate:
    """Fail-open wrapper deciding whether work may enter a stage."""

    def __init__(self, name: str, limiter: SlidingWindowLimiter) -> None:
        self.name = name
        self.limiter = limiter

    def admit(self, key: str) -> RateLimitDecision:
        try:
            decision = self.limiter.hit(key)
        except Exception:
            logger.exception("Rate limiter %s failed; allowing %s", self.name, key)
            return RateLimitDecision(True, -1)

        if not decision.allowed:
            logger.info(
                "Admission denied",
                extra={"gate": self.name, "key": key, "retry_after": round(decision.retry_after, 1)},
            )
        return decision


def client_key(
    user_id: Optional[str] = None,
    org_id: Optional[str] = None,
    ip: Optional[str] = None,
) -> str:
    """Most specific identity available: user, then organization, then IP."""
    if user_id:
        return f"user:{user_id}"
    if org_id:
        return f"org:{org_id}"
    return f"ip:{ip or 'unknown'}"
