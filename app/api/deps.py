"""Dependency wiring: one process-wide instance per collaborator, overridable in tests."""
from __future__ import annotations

from functools import lru_cache

from app.captcha.config import get_store_backend
from app.captcha.store import ChallengeStore, MemoryChallengeStore, RedisChallengeStore
from app.captcha.verifier import CaptchaVerifier
from app.checkout.provider import CheckoutProvider, StripeCheckoutProvider
from app.core.config import settings
from app.services.auth.login_rate_limit import LoginRateLimiter
from app.services.notifier import LoggingNotifier, Notifier


@lru_cache(maxsize=1)
def get_challenge_store() -> ChallengeStore:
    if get_store_backend() == "memory":
        return MemoryChallengeStore()
    return RedisChallengeStore.from_url(settings.redis_url)


@lru_cache(maxsize=1)
def get_captcha_verifier() -> CaptchaVerifier:
    return CaptchaVerifier(get_challenge_store())


@lru_cache(maxsize=1)
def get_checkout_provider() -> CheckoutProvider:
    return StripeCheckoutProvider.from_settings()


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return LoggingNotifier()


@lru_cache(maxsize=1)
def get_login_rate_limiter() -> LoginRateLimiter:
    return LoginRateLimiter.from_settings()
