"""Tests for the token bucket, the sliding window and the admission gate."""

from unittest.mock import MagicMock

import pytest

from docsynth.core.rate_limit import (
    AdmissionGate,
    SlidingWindowLimiter,
    check_rate_limit,
    client_key,
)


class TestTokenBucket:
    def test_allows_up_to_burst(self):
        bucket = {}
        results = [check_rate_limit(bucket, "ip:1", 3, now=100.0)[0] for _ in range(4)]
        assert results == [True, True, True, False]

    def test_retry_after_when_empty(self):
        bucket = {}
        for _ in range(60):
            check_rate_limit(bucket, "k", 60, now=0.0)
        allowed, retry_after = check_rate_limit(bucket, "k", 60, now=0.0)
        assert allowed is False
        assert retry_after == pytest.approx(1.0)

    def test_refills_over_time(self):
        bucket = {}
        check_rate_limit(bucket, "k", 1, now=0.0)
        assert check_rate_limit(bucket, "k", 1, now=30.0)[0] is False
        assert check_rate_limit(bucket, "k", 1, now=61.0)[0] is True

    def test_keys_are_independent(self):
        bucket = {}
        check_rate_limit(bucket, "a", 1, now=0.0)
        assert check_rate_limit(bucket, "b", 1, now=0.0)[0] is True

    def test_non_positive_limit_disables(self):
        assert check_rate_limit({}, "k", 0) == (True, 0.0)

    def test_stale_keys_evicted(self):
        bucket = {f"k{i}": (1.0, 0.0) for i in range(100)}
        check_rate_limit(bucket, "fresh", 10, now=1000.0)
        assert list(bucket) == ["fresh"]


class TestSlidingWindow:
    def test_window_counts_and_expires(self):
        now = [0.0]
        limiter = SlidingWindowLimiter(2, 10, clock=lambda: now[0])
        assert limiter.hit("u").allowed is True
        assert limiter.hit("u").remaining == 0
        denied = limiter.hit("u")
        assert denied.allowed is False
        assert denied.retry_after == pytest.approx(10.0)

        now[0] = 10.0
        assert limiter.hit("u").allowed is True

    def test_reset_single_key(self):
        limiter = SlidingWindowLimiter(1, 60)
        limiter.hit("a")
        limiter.hit("b")
        limiter.reset("a")
        assert limiter.hit("a").allowed is True
        assert limiter.hit("b").allowed is False

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            SlidingWindowLimiter(0, 60)


class TestAdmissionGate:
    def test_fails_open_when_limiter_breaks(self):
        limiter = MagicMock()
        limiter.hit.side_effect = RuntimeError("store unavailable")
        decision = AdmissionGate("test", limiter).admit("k")
        assert decision.allowed is True

    def test_denies_over_limit(self):
        gate = AdmissionGate("test", SlidingWindowLimiter(1, 60))
        assert gate.admit("k").allowed is True
        assert gate.admit("k").allowed is False


class TestClientKey:
    @pytest.mark.parametrize("kwargs,expected", [
        ({"user_id": "u1", "org_id": "o1", "ip": "1.2.3.4"}, "user:u1"),
        ({"org_id": "o1", "ip": "1.2.3.4"}, "org:o1"),
        ({"ip": "1.2.3.4"}, "ip:1.2.3.4"),
        ({}, "ip:unknown"),
    ])
    def test_most_specific_identity(self, kwargs, expected):
        assert client_key(**kwargs) == expected
