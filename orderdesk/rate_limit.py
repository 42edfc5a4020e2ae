"""Redis sliding-window rate limiter built on sorted sets."""

from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import uuid4

from orderdesk.common import SystemClock
from orderdesk.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


class RedisRateLimiter:
    """Counts hits per key inside a trailing window; one sorted-set member per hit."""

    def __init__(self, client: Any, clock: Optional[SystemClock] = None, disabled: bool = False) -> None:
        self.client = client
        self.clock = clock or SystemClock()
        self.disabled = disabled

    def consume(self, key: str, limit: int, window_seconds: int) -> int:
        """Record one hit and return the count in the window; raises once the count passes ``limit``."""
        if limit <= 0 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        if self.disabled:
            return 0

        now_ms = int(self.clock.now_utc().timestamp() * 1000)
        window_ms = window_seconds * 1000
        pipe = self.client.pipeline(transaction=True)
        pipe.zadd(key, {f"{now_ms}-{uuid4().hex}": now_ms})
        pipe.zremrangebyscore(key, 0, now_ms - window_ms)
        pipe.zcard(key)
        pipe.pexpire(key, window_ms)
        _, _, count, _ = pipe.execute()

        count = int(count)
        if count > limit:
            logger.warning("Rate limit exceeded: key=%s count=%s limit=%s", key, count, limit)
            raise RateLimitExceededError(key, limit, window_seconds)
        return count
