from collections import defaultdict
from functools import lru_cache
from time import time
from typing import Dict, List

import redis

from jobpilot.core.config import get_settings
from jobpilot.core.logging import get_logger

logger = get_logger(__name__)


class QuotaLimiter:
    """Counts paid third-party calls per key inside a fixed window.

    Counters live in Redis when it is reachable so that quota survives
    restarts; otherwise an in-memory sliding window is used.
    """

    def __init__(self, redis_url: str | None = None, *, use_redis: bool = True) -> None:
        self._memory_store: Dict[str, List[float]] = defaultdict(list)
        self._redis = None
        if use_redis and redis_url:
            try:
                client = redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=1)
                client.ping()
                self._redis = client
            except redis.RedisError as exc:
                logger.info("Quota limiter using in-memory counters", extra={"extra": {"reason": str(exc)}})

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        if limit <= 0:
            return True

        if self._redis:
            current = self._redis.incr(key)
            if current == 1:
                self._redis.expire(key, window_seconds)
            return current <= limit

        now = time()
        bucket = [ts for ts in self._memory_store[key] if now - ts <= window_seconds]
        if len(bucket) >= limit:
            self._memory_store[key] = bucket
            return False
        bucket.append(now)
        self._memory_store[key] = bucket
        return True


@lru_cache(maxsize=1)
def get_quota_limiter() -> QuotaLimiter:
    return QuotaLimiter(get_settings().redis_url)
