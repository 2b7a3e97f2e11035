import pytest

from conduit.server.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestRateLimiter:
    """Test rate limiting functionality"""

    def test_rate_limiter_allows_within_limit(self, clock):
        """Test that requests within limit are allowed"""
        limiter = RateLimiter(rate=10, capacity=20, clock=clock)

        for i in range(20):
            decision = limiter.allow("203.0.113.7")
            assert decision.allowed is True
            assert decision.remaining == 19 - i

    def test_rate_limiter_blocks_over_limit(self, clock):
        """Test that requests over limit are blocked with a retry hint"""
        limiter = RateLimiter(rate=10, capacity=20, clock=clock)
        for _i in range(20):
            limiter.allow("203.0.113.7")

        decision = limiter.allow("203.0.113.7")
        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.retry_after >= 1

    def test_rate_limiter_refills_over_time(self, clock):
        """Test that tokens refill over time"""
        limiter = RateLimiter(rate=100, capacity=10, clock=clock)
        for _i in range(10):
            limiter.allow("203.0.113.7")
        assert limiter.allow("203.0.113.7").allowed is False

        clock.advance(0.1)

        assert limiter.allow("203.0.113.7").allowed is True

    def test_rate_limiter_never_exceeds_capacity(self, clock):
        """Test that an idle bucket does not accumulate more than capacity"""
        limiter = RateLimiter(rate=10, capacity=5, clock=clock)
        limiter.allow("id1")

        clock.advance(60)

        assert limiter.allow("id1").remaining == 4

    def test_rate_limiter_different_identifiers(self, clock):
        """Test that different identifiers have separate buckets"""
        limiter = RateLimiter(rate=1, capacity=5, clock=clock)
        for _i in range(5):
            limiter.allow("id1")

        assert limiter.allow("id1").allowed is False
        assert limiter.allow("id2").allowed is True

    def test_rate_limiter_reset(self, clock):
        """Test rate limiter reset functionality"""
        limiter = RateLimiter(rate=1, capacity=5, clock=clock)
        for _i in range(5):
            limiter.allow("test_id")

        limiter.reset("test_id")

        assert limiter.allow("test_id").allowed is True

    def test_rate_limiter_cleanup(self, clock):
        """Test that idle buckets are cleaned up"""
        limiter = RateLimiter(rate=10, capacity=20, cleanup_interval=1, clock=clock)
        limiter.allow("id1")
        limiter.allow("id2")
        assert len(limiter.buckets) == 2

        limiter._cleanup(clock() + 7200)

        assert len(limiter.buckets) == 0

    def test_rate_limiter_rejects_invalid_configuration(self):
        """Test that rate and capacity must be positive"""
        with pytest.raises(ValueError):
            RateLimiter(rate=0, capacity=10)
