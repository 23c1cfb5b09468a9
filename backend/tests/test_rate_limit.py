"""Tests for the fixed-window rate limiter."""

import asyncio

import pytest

from schoolgate.core.policy import RateLimitRule
from schoolgate.middleware.rate_limit import RateLimiter, get_rate_limiter
from schoolgate.middleware.rate_limit_cleanup import rate_limit_cleanup_loop

RULE = RateLimitRule("login_ip", max_requests=3, window_minutes=15, message="slow down")
OTHER = RateLimitRule("failed_login_ip", max_requests=1, window_minutes=60, message="stop")


class TestHit:
    @pytest.mark.asyncio
    async def test_allows_up_to_max_then_rejects(self, rate_limiter):
        results = [await rate_limiter.hit(RULE, "1.2.3.4") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[-1].count == 4
        assert results[-1].retry_after == 15 * 60

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self, rate_limiter, clock):
        for _ in range(4):
            await rate_limiter.hit(RULE, "1.2.3.4")
        clock.advance(minutes=15)

        result = await rate_limiter.hit(RULE, "1.2.3.4")
        assert result.allowed
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_fixed_window_does_not_slide(self, rate_limiter, clock):
        await rate_limiter.hit(RULE, "1.2.3.4")
        clock.advance(minutes=14)
        await rate_limiter.hit(RULE, "1.2.3.4")
        await rate_limiter.hit(RULE, "1.2.3.4")
        blocked = await rate_limiter.hit(RULE, "1.2.3.4")
        assert not blocked.allowed
        assert blocked.retry_after == 60

        # Window opened at the first hit, so one more minute clears all four
        clock.advance(minutes=1)
        assert (await rate_limiter.hit(RULE, "1.2.3.4")).allowed

    @pytest.mark.asyncio
    async def test_keys_and_rules_are_independent(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.hit(RULE, "1.2.3.4")

        assert (await rate_limiter.hit(RULE, "5.6.7.8")).allowed
        assert (await rate_limiter.hit(OTHER, "1.2.3.4")).allowed


class TestCheckAndRecord:
    @pytest.mark.asyncio
    async def test_check_does_not_count(self, rate_limiter):
        for _ in range(5):
            assert (await rate_limiter.check(OTHER, "a@example.com")).allowed

    @pytest.mark.asyncio
    async def test_check_blocks_once_recorded_events_reach_max(self, rate_limiter):
        assert await rate_limiter.record(OTHER, "a@example.com") == 1

        result = await rate_limiter.check(OTHER, "a@example.com")
        assert not result.allowed
        assert result.count == 1


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_cleanup_removes_only_expired_windows(self, rate_limiter, clock):
        await rate_limiter.hit(RULE, "old")
        clock.advance(minutes=20)
        await rate_limiter.hit(RULE, "fresh")

        assert await rate_limiter.cleanup_expired_windows() == 1
        assert list(await rate_limiter.get_stats()) == ["login_ip:fresh"]

    @pytest.mark.asyncio
    async def test_reset_one_key(self, rate_limiter):
        await rate_limiter.hit(RULE, "1.2.3.4")
        await rate_limiter.record(OTHER, "1.2.3.4")
        await rate_limiter.hit(RULE, "5.6.7.8")

        await rate_limiter.reset("1.2.3.4")

        assert list(await rate_limiter.get_stats()) == ["login_ip:5.6.7.8"]

    @pytest.mark.asyncio
    async def test_cleanup_loop_exits_on_cancel(self, rate_limiter):
        task = asyncio.create_task(rate_limit_cleanup_loop(rate_limiter, interval_seconds=3600))
        await asyncio.sleep(0)
        task.cancel()
        await task  # loop swallows the cancellation and returns
        assert task.done()

    def test_singleton_pattern(self):
        assert get_rate_limiter() is RateLimiter.get_instance()
