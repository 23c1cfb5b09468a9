"""Fixed-window rate limiting for the login endpoint.

Three independent limiters, configured through RateLimitPolicy:

- ``login_ip``: every login request per source IP, whatever the outcome.
- ``failed_login_ip``: failed logins per source IP.
- ``failed_login_identity``: failed logins per submitted email (IP when
  the email is missing).

Counters are process-local. A multi-worker deployment needs a shared
counter backend for these limits to hold.
"""

import asyncio
import logging
import math
import threading
from dataclasses import dataclass
from typing import Optional

from fastapi import status

from schoolgate.core.clock import Clock, utc_now
from schoolgate.core.policy import RateLimitRule
from schoolgate.middleware.pipeline import ALLOW, Decision, Reject, SecurityContext

logger = logging.getLogger(__name__)


@dataclass
class FixedWindow:
    """Hit count for one key; the window opens at its first hit."""

    started_at: float
    window_seconds: int
    count: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.started_at + self.window_seconds

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.started_at + self.window_seconds - now))


@dataclass(frozen=True)
class LimitResult:
    allowed: bool
    count: int
    retry_after: int = 0


class RateLimiter:
    """In-memory fixed-window counters keyed by limiter name and client key."""

    _instance: Optional["RateLimiter"] = None
    _instance_lock: threading.Lock = threading.Lock()

    def __init__(self, clock: Clock = utc_now) -> None:
        self._windows: dict[str, FixedWindow] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    @classmethod
    def get_instance(cls) -> "RateLimiter":
        """Get the singleton instance (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def _now(self) -> float:
        return self._clock().timestamp()

    def _window(self, rule: RateLimitRule, key: str, now: float) -> FixedWindow:
        bucket_key = f"{rule.name}:{key}"
        window = self._windows.get(bucket_key)
        if window is None or window.expired(now):
            window = FixedWindow(started_at=now, window_seconds=rule.window_seconds)
            self._windows[bucket_key] = window
        return window

    async def hit(self, rule: RateLimitRule, key: str) -> LimitResult:
        """Count a request, then check it against the limit."""
        async with self._lock:
            now = self._now()
            window = self._window(rule, key, now)
            window.count += 1
            if window.count > rule.max_requests:
                return LimitResult(False, window.count, window.retry_after(now))
            return LimitResult(True, window.count)

    async def check(self, rule: RateLimitRule, key: str) -> LimitResult:
        """Check without counting: blocked once the window holds ``max_requests`` hits."""
        async with self._lock:
            now = self._now()
            window = self._window(rule, key, now)
            if window.count >= rule.max_requests:
                return LimitResult(False, window.count, window.retry_after(now))
            return LimitResult(True, window.count)

    async def record(self, rule: RateLimitRule, key: str) -> int:
        """Count an event (a failed login) without checking."""
        async with self._lock:
            window = self._window(rule, key, self._now())
            window.count += 1
            return window.count

    async def get_stats(self) -> dict[str, dict]:
        async with self._lock:
            now = self._now()
            return {
                key: {"count": window.count, "resets_in": window.retry_after(now)}
                for key, window in self._windows.items()
                if not window.expired(now)
            }

    async def reset(self, key: str | None = None) -> None:
        """Drop counters for one client key, or all of them."""
        async with self._lock:
            if key is None:
                self._windows.clear()
                return
            for bucket_key in [k for k in self._windows if k.split(":", 1)[1] == key]:
                del self._windows[bucket_key]

    async def cleanup_expired_windows(self) -> int:
        """Remove windows that have closed. Returns the number removed."""
        async with self._lock:
            now = self._now()
            expired = [key for key, window in self._windows.items() if window.expired(now)]
            for key in expired:
                del self._windows[key]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired rate limit windows")
        return len(expired)


def _rate_limited(rule: RateLimitRule, result: LimitResult) -> Reject:
    return Reject(
        status.HTTP_429_TOO_MANY_REQUESTS,
        {"message": rule.message, "retryAfter": result.retry_after},
        headers={"Retry-After": str(result.retry_after)},
    )


async def _reject_and_audit(
    ctx: SecurityContext, rule: RateLimitRule, result: LimitResult
) -> Reject:
    logger.warning(
        f"Rate limit {rule.name} exceeded by {ctx.client_ip} "
        f"({result.count}/{rule.max_requests} in {rule.window_minutes} min)"
    )
    await ctx.audit.log_rate_limit_violation(
        rule.name,
        ctx.client_ip,
        ctx.login_identifier,
        {**ctx.request_metadata(), "count": result.count, "max_requests": rule.max_requests},
    )
    return _rate_limited(rule, result)


def identity_key(ctx: SecurityContext) -> str:
    return ctx.login_identifier or ctx.client_ip


async def check_login_rate_limit(ctx: SecurityContext) -> Decision:
    """Every login request counts, successful or not."""
    rule = ctx.policy.rate_limits.login_ip
    result = await ctx.services.rate_limiter.hit(rule, ctx.client_ip)
    if not result.allowed:
        return await _reject_and_audit(ctx, rule, result)
    return ALLOW


async def check_failed_login_ip_limit(ctx: SecurityContext) -> Decision:
    rule = ctx.policy.rate_limits.failed_login_ip
    result = await ctx.services.rate_limiter.check(rule, ctx.client_ip)
    if not result.allowed:
        return await _reject_and_audit(ctx, rule, result)
    return ALLOW


async def check_failed_login_identity_limit(ctx: SecurityContext) -> Decision:
    rule = ctx.policy.rate_limits.failed_login_identity
    result = await ctx.services.rate_limiter.check(rule, identity_key(ctx))
    if not result.allowed:
        return await _reject_and_audit(ctx, rule, result)
    return ALLOW


async def record_failed_login(ctx: SecurityContext) -> None:
    """Count a failed login against both failed-login windows."""
    limits = ctx.policy.rate_limits
    limiter: RateLimiter = ctx.services.rate_limiter
    await limiter.record(limits.failed_login_ip, ctx.client_ip)
    await limiter.record(limits.failed_login_identity, identity_key(ctx))


def get_rate_limiter() -> RateLimiter:
    """Get the rate limiter singleton for stats/management."""
    return RateLimiter.get_instance()
