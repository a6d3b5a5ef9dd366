"""
Rate limiter for storefront login to prevent brute-force attacks.
"""
import logging

import redis
from starlette.requests import Request

from app.core.config import settings
from app.utils.metrics import login_rate_limited_total

logger = logging.getLogger("auth")


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


class LoginRateLimiter:
    """Fixed-window counter per client IP, shared across workers through Redis."""

    KEY_PREFIX = "login_attempts:"

    def __init__(self, client: redis.Redis, max_attempts: int, window_seconds: int) -> None:
        self.client = client
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    @classmethod
    def from_settings(cls) -> "LoginRateLimiter":
        return cls(
            redis.Redis.from_url(settings.redis_url, decode_responses=True),
            settings.login_rate_limit_attempts,
            settings.login_rate_limit_window_seconds,
        )

    def check(self, client_ip: str) -> bool:
        """
        Check if login attempt is allowed. Returns True if allowed, False if rate limited.
        Increments counter on each call.
        """
        try:
            key = f"{self.KEY_PREFIX}{client_ip}"
            current = self.client.incr(key)
            if current == 1:
                self.client.expire(key, self.window_seconds)
            if current > self.max_attempts:
                login_rate_limited_total.inc()
                logger.warning("login_rate_limited", extra={"ip": client_ip, "attempts": current})
                return False
            return True
        except redis.RedisError as e:
            logger.warning("login_rate_limit_redis_error", extra={"error": str(e)})
            return True  # Fail open - allow login if Redis is down

    def reset(self, client_ip: str) -> None:
        """Reset counter on successful login."""
        try:
            self.client.delete(f"{self.KEY_PREFIX}{client_ip}")
        except redis.RedisError as e:
            logger.warning("login_rate_limit_redis_error", extra={"error": str(e)})
