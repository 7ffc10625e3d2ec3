"""Tests for the sliding-window request limiter."""

from __future__ import annotations

import pytest

from job_tracker.enrichment.rate_limiter import SlidingWindowRateLimiter


class TestSlidingWindowRateLimiter:
    def test_first_request_goes_immediately(self) -> None:
        assert SlidingWindowRateLimiter(5, min_interval=12).delay(0.0) == 0.0

    def test_min_interval_between_starts(self) -> None:
        limiter = SlidingWindowRateLimiter(5, min_interval=12)
        limiter.record(100.0)
        assert limiter.delay(105.0) == pytest.approx(7.0)
        assert limiter.delay(112.0) == 0.0

    def test_window_cap(self) -> None:
        limiter = SlidingWindowRateLimiter(3, min_interval=0)
        for start in (0.0, 1.0, 2.0):
            limiter.record(start)

        assert limiter.delay(10.0) == pytest.approx(50.0)
        assert limiter.delay(60.0) == 0.0

    def test_never_more_than_n_in_any_window(self) -> None:
        limiter = SlidingWindowRateLimiter(5, min_interval=1)
        now = 0.0
        starts = []
        while now < 300:
            wait = limiter.delay(now)
            if wait == 0:
                limiter.record(now)
                starts.append(now)
            now += max(wait, 0.5)

        for start in starts:
            assert sum(1 for other in starts if start <= other < start + 60) <= 5
        assert limiter.starts_within(now) <= 5

    def test_rejects_non_positive_rate(self) -> None:
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0)
