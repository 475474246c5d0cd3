"""
Sliding-window rate limiter backed by Redis sorted sets.

One sorted set per limiter key, `ratelimit:{service}:{key}`. Members are
request timestamps (score = timestamp). Entries older than the longest
window are trimmed; each window is then counted with ZCOUNT so per-minute
and per-hour ceilings are enforced independently across worker replicas.
"""

import time
import uuid
import logging
from typing import Callable, Sequence, Tuple

from .fallback_limiter import Window

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:"


class RedisRateLimiter:
    def __init__(self, redis_client, clock: Callable[[], float] = time.time):
        self._redis = redis_client
        self._clock = clock

    def check_rate_limit(self, key: str, windows: Sequence[Window]) -> Tuple[bool, int, int, str]:
        """
        Check and record a request. Same contract as
        InMemoryRateLimiter.check_rate_limit().
        """
        if not windows:
            return True, 0, 0, ""

        now = self._clock()
        ordered = sorted(windows, key=lambda w: w[1])
        longest = ordered[-1][1]
        redis_key = f"{KEY_PREFIX}{key}"

        pipe = self._redis.pipeline(transaction=True)

        # 1. Remove entries older than the longest window
        pipe.zremrangebyscore(redis_key, 0, now - longest)

        # 2. Count entries inside each window
        for _, window_seconds, _ in ordered:
            pipe.zcount(redis_key, f"({now - window_seconds}", "+inf")

        results = pipe.execute()
        counts = results[1:]

        remaining = None
        for (max_requests, window_seconds, label), count in zip(ordered, counts):
            if count >= max_requests:
                oldest = self._redis.zrangebyscore(
                    redis_key, f"({now - window_seconds}", "+inf",
                    start=0, num=1, withscores=True,
                )
                if oldest:
                    retry_after = max(1, window_seconds - int(now - oldest[0][1]))
                else:
                    retry_after = window_seconds
                logger.warning(f"Rate limit exceeded for {key}: {count}/{max_requests} per {label}")
                return False, 0, retry_after, label
            left = max_requests - count - 1
            remaining = left if remaining is None else min(remaining, left)

        # 3. Record this request
        pipe2 = self._redis.pipeline(transaction=True)
        pipe2.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe2.expire(redis_key, longest + 60)  # TTL slightly beyond the window
        pipe2.execute()

        logger.debug(f"Rate limit OK for {key} ({remaining} remaining)")
        return True, remaining or 0, 0, ""
