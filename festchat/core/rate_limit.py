"""
Fixed-window rate limiting on Redis.

Redis keys:
- rate:{scope}:{subject}:{window} - request counter for the current window

Admins are exempt; callers pass the decision in as is_admin.
When Redis is unavailable the limiter fails open.
"""
import logging
import time
from typing import Callable, Optional

import redis

from festchat.core.exceptions import RateLimited

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, client_getter: Callable[[], redis.Redis], window: int):
        self._client_getter = client_getter
        self.window = window

    def hit(self, scope: str, subject: str, limit: int, is_admin: bool = False) -> Optional[int]:
        """
        Count one request for subject in scope.

        Returns the count so far, or None when the check was skipped.
        Raises RateLimited once the count passes limit.
        """
        if is_admin:
            return None
        now = int(time.time())
        window_start = now - now % self.window
        key = f"rate:{scope}:{subject}:{window_start}"
        try:
            client = self._client_getter()
            pipe = client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window)
            count = pipe.execute()[0]
        except (redis.RedisError, RuntimeError) as e:
            logger.warning("Rate limit check skipped for %s (%s): %s", scope, subject, e)
            return None

        if count > limit:
            retry_after = window_start + self.window - now
            logger.warning("Rate limit exceeded for %s (%s): %d > %d", scope, subject, count, limit)
            raise RateLimited(
                "Too many requests, please try again later",
                extra={"retryAfter": retry_after},
            )
        return count
