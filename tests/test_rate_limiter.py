"""Tests for the token-bucket rate limiter."""

import pytest

from capgate.exceptions import RateLimited
from capgate.services.rate_limiter import RateLimiter, enforce_rate_limit


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(10, 50, clock=clock)


class TestAllow:
    """Tests for RateLimiter.allow."""

    def test_first_request_allowed(self, rate_limiter):
        assert rate_limiter.allow("client") is True

    def test_burst_then_denied(self, rate_limiter):
        """A fresh key can spend exactly `burst` tokens at once."""
        for i in range(50):
            assert rate_limiter.allow("client"), f"Request {i} should be allowed"

        assert rate_limiter.allow("client") is False

    def test_one_token_after_one_over_rps(self, rate_limiter, clock):
        """After draining, waiting 1/rps seconds buys exactly one more call."""
        for _ in range(50):
            rate_limiter.allow("client")
        assert rate_limiter.allow("client") is False

        clock.advance(1 / 10)
        assert rate_limiter.allow("client") is True
        assert rate_limiter.allow("client") is False

    def test_denied_call_does_not_consume(self, rate_limiter, clock):
        for _ in range(50):
            rate_limiter.allow("client")
        for _ in range(5):
            assert rate_limiter.allow("client") is False

        clock.advance(0.1)
        assert rate_limiter.allow("client") is True

    def test_refill_capped_at_burst(self, rate_limiter, clock):
        rate_limiter.allow("client")
        clock.advance(3600)

        assert rate_limiter.get_tokens("client") == 50

        for _ in range(50):
            assert rate_limiter.allow("client")
        assert rate_limiter.allow("client") is False

    def test_keys_are_independent(self, rate_limiter):
        for _ in range(50):
            rate_limiter.allow("a")

        assert rate_limiter.allow("a") is False
        assert rate_limiter.allow("b") is True

    def test_custom_limit_and_window(self, clock):
        limiter = RateLimiter(10, 2, clock=clock)
        limiter.allow("client")
        limiter.allow("client")
        assert limiter.allow("client") is False

        # 1 token per 10 seconds for this call
        clock.advance(5)
        assert limiter.allow("client", limit=1, window=10) is False
        clock.advance(5)
        assert limiter.allow("client", limit=1, window=10) is True

    def test_clock_going_backwards_does_not_drain(self, rate_limiter, clock):
        rate_limiter.allow("client")
        clock.advance(-10)

        assert rate_limiter.get_tokens("client") == 49

    @pytest.mark.parametrize(("rps", "burst"), [(0, 50), (10, 0), (-1, 5), (0, 0)])
    def test_non_positive_limits_disable(self, rps, burst, clock):
        limiter = RateLimiter(rps, burst, clock=clock)

        assert limiter.enabled is False
        for _ in range(500):
            assert limiter.allow("client") is True


class TestBucketLifecycle:
    """Tests for reset, cleanup and inspection helpers."""

    def test_get_tokens_fresh_key_is_full(self, rate_limiter):
        assert rate_limiter.get_tokens("never-seen") == 50

    def test_get_tokens_reflects_consumption(self, rate_limiter):
        for _ in range(5):
            rate_limiter.allow("client")

        assert rate_limiter.get_tokens("client") == pytest.approx(45)

    def test_reset_restores_full_bucket(self, rate_limiter):
        for _ in range(50):
            rate_limiter.allow("client")

        rate_limiter.reset("client")

        assert rate_limiter.allow("client") is True

    def test_cleanup_evicts_only_stale_buckets(self, rate_limiter, clock):
        rate_limiter.allow("old")
        clock.advance(100)
        rate_limiter.allow("recent")

        evicted = rate_limiter.cleanup(max_age=50)

        assert evicted == 1
        assert rate_limiter.bucket_count() == 1

    def test_evicted_key_starts_full(self, rate_limiter, clock):
        """Eviction forgives a previously limited client."""
        for _ in range(51):
            rate_limiter.allow("client")
        clock.advance(7200)
        rate_limiter.cleanup(max_age=3600)

        assert rate_limiter.get_tokens("client") == 50

    def test_set_and_get_limits(self, rate_limiter):
        rate_limiter.set_limits(20, 100)

        assert rate_limiter.get_limits() == {"rps": 20, "burst": 100}

    def test_injected_store_is_used(self, clock):
        store = {}
        limiter = RateLimiter(1, 1, buckets=store, clock=clock)

        limiter.allow("client")

        assert "client" in store
        assert store["client"].tokens == 0

    def test_instances_do_not_share_state(self, clock):
        first = RateLimiter(1, 1, clock=clock)
        second = RateLimiter(1, 1, clock=clock)

        first.allow("client")

        assert first.allow("client") is False
        assert second.allow("client") is True


class TestEnforceRateLimit:
    def test_raises_when_denied(self, clock):
        limiter = RateLimiter(1, 1, clock=clock)
        enforce_rate_limit(limiter, "1.2.3.4")

        with pytest.raises(RateLimited, match="1.2.3.4"):
            enforce_rate_limit(limiter, "1.2.3.4")

    def test_no_identifier_skips_check(self, clock):
        limiter = RateLimiter(1, 1, clock=clock)
        for _ in range(10):
            enforce_rate_limit(limiter, None)

    def test_no_limiter_skips_check(self):
        enforce_rate_limit(None, "1.2.3.4")
