"""Tests for RateLimitRegistry."""

from sluice.core.config import RateLimitSettings, ServiceRateLimit
from sluice.core.rate_limit import NoOpLimiter, RateLimitRegistry, RequestLimiter


class TestRateLimitRegistry:
    def test_disabled_returns_noop(self) -> None:
        with RateLimitRegistry(RateLimitSettings(enabled=False)) as registry:
            limiter = registry.get_limiter("github")

            assert isinstance(limiter, NoOpLimiter)
            limiter.acquire()
            limiter.defer(10)

    def test_same_limiter_per_service(self) -> None:
        with RateLimitRegistry(RateLimitSettings()) as registry:
            first = registry.get_limiter("github")

            assert isinstance(first, RequestLimiter)
            assert registry.get_limiter("github") is first
            assert registry.get_limiter("gitlab") is not first

    def test_service_config_applies(self) -> None:
        settings = RateLimitSettings(services={"github": ServiceRateLimit(requests_per_hour=4500)})
        with RateLimitRegistry(settings) as registry:
            limiter = registry.get_limiter("github")

            assert limiter.name == "github"
            limiter.acquire()

    def test_close_forgets_limiters(self) -> None:
        registry = RateLimitRegistry(RateLimitSettings())
        first = registry.get_limiter("github")
        registry.close()

        assert registry.get_limiter("github") is not first
        registry.close()
