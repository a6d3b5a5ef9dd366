"""
Captcha config: typed wrappers over app.core.config for challenge sizing and lifetimes.
"""
from __future__ import annotations

from app.core.config import settings


def get_challenge_ttl_seconds() -> int:
    return settings.captcha_challenge_ttl_seconds


def get_grid_size() -> int:
    return settings.captcha_grid_size


def get_match_bounds() -> tuple[int, int]:
    """(min, max) matching tiles per grid, clamped so at least one distractor remains."""
    size = get_grid_size()
    low = max(1, min(settings.captcha_min_matches, size - 1))
    high = max(low, min(settings.captcha_max_matches, size - 1))
    return low, high


def get_clearance_ttl_seconds() -> int:
    return settings.captcha_clearance_ttl_seconds


def get_store_backend() -> str:
    return settings.captcha_store_backend
