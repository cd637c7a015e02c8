"""Background cleanup of idle rate limit buckets."""

import asyncio
import logging

from tutorial_cms.middleware.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


async def rate_limit_cleanup_loop(rate_limiter: RateLimiter, interval_seconds: int = 3600) -> None:
    """Periodic cleanup of inactive rate limit buckets to prevent memory growth."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            removed = await rate_limiter.cleanup_inactive_buckets(inactive_seconds=interval_seconds)
            if removed > 0:
                logger.debug(f"Rate limiter cleanup: removed {removed} inactive buckets")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Rate limiter cleanup error: {e}")
