"""Background cleanup of closed rate-limit windows."""

import asyncio
import logging

from schoolgate.middleware.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 3600


async def rate_limit_cleanup_loop(
    rate_limiter: RateLimiter, interval_seconds: int = CLEANUP_INTERVAL_SECONDS
) -> None:
    """Drop expired windows so abandoned client keys do not accumulate."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            removed = await rate_limiter.cleanup_expired_windows()
            if removed > 0:
                logger.debug(f"Rate limiter cleanup: removed {removed} windows")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Rate limiter cleanup error: {e}")
