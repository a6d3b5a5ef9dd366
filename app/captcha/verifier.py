"""
CaptchaVerifier: issues image challenges and grades answers.

Every verify() consumes its challenge, pass or fail: one guess per issued challenge.
A pass grants a single-use clearance that register/login/checkout redeem.
Store outages fail closed.
"""
from __future__ import annotations

import logging
import random
import secrets
from datetime import datetime, timedelta
from typing import Iterable

from app.captcha.catalog import TARGET_CATEGORIES, distractors_for
from app.captcha.config import (
    get_challenge_ttl_seconds,
    get_clearance_ttl_seconds,
    get_grid_size,
    get_match_bounds,
)
from app.captcha.models import Challenge, ChallengePublic, VerifyResult
from app.captcha.store import ChallengeStore, Clock, utcnow
from app.core.errors import FailureKind, UpstreamUnavailableError
from app.utils.metrics import (
    captcha_challenges_issued_total,
    captcha_clearances_total,
    captcha_verifications_total,
)

logger = logging.getLogger(__name__)

_system_random = random.SystemRandom()


def build_challenge(
    now: datetime,
    *,
    rng: random.Random = _system_random,
    grid_size: int | None = None,
    match_bounds: tuple[int, int] | None = None,
    ttl_seconds: int | None = None,
) -> Challenge:
    """
    Pick a target uniformly, place between min and max matching tiles, fill the rest
    with tags from other categories (repeats allowed) and shuffle.
    """
    size = grid_size if grid_size is not None else get_grid_size()
    low, high = match_bounds if match_bounds is not None else get_match_bounds()
    ttl = ttl_seconds if ttl_seconds is not None else get_challenge_ttl_seconds()

    target = rng.choice(TARGET_CATEGORIES)
    matches = rng.randint(low, high)
    others = distractors_for(target)
    tiles = [target] * matches + [rng.choice(others) for _ in range(size - matches)]
    rng.shuffle(tiles)

    return Challenge(
        id=secrets.token_urlsafe(16),
        target_category=target,
        options=tuple(tiles),
        expected_indices=frozenset(i for i, tag in enumerate(tiles) if tag == target),
        expires_at=now + timedelta(seconds=ttl),
    )


def validate_selection(selected: Iterable[object], grid_size: int) -> frozenset[int] | None:
    """Normalized selection, or None when malformed (empty, non-int, out of the grid)."""
    indices: set[int] = set()
    for value in selected:
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        if value < 0 or value >= grid_size:
            return None
        indices.add(value)
    if not indices:
        return None
    return frozenset(indices)


class CaptchaVerifier:
    def __init__(
        self,
        store: ChallengeStore,
        *,
        rng: random.Random = _system_random,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self._rng = rng
        self._clock = clock

    def issue_challenge(self) -> ChallengePublic:
        """Create and persist a fresh challenge. Raises UpstreamUnavailableError if the store is down."""
        challenge = build_challenge(self._clock(), rng=self._rng)
        self.store.create(challenge)
        captcha_challenges_issued_total.inc()
        logger.info("captcha_issued", extra={"challenge_id": challenge.id})
        return challenge.public()

    def verify(self, challenge_id: str, submitted_indices: Iterable[object]) -> VerifyResult:
        selection = validate_selection(submitted_indices, get_grid_size())
        # Malformed input never reaches the store, so it does not burn the challenge.
        if not challenge_id or selection is None:
            return self._finish(challenge_id, VerifyResult.fail(FailureKind.INVALID_INPUT))

        try:
            challenge = self.store.consume(challenge_id)
        except UpstreamUnavailableError as e:
            logger.warning("captcha_store_unavailable", extra={"challenge_id": challenge_id, "error": str(e)})
            return self._finish(challenge_id, VerifyResult.fail(FailureKind.UPSTREAM_UNAVAILABLE))

        if challenge is None:
            return self._finish(challenge_id, VerifyResult.fail(FailureKind.NOT_FOUND))
        if challenge.is_expired(self._clock()):
            return self._finish(challenge_id, VerifyResult.fail(FailureKind.EXPIRED))
        if selection != challenge.expected_indices:
            return self._finish(challenge_id, VerifyResult.fail(FailureKind.REJECTED))

        try:
            self.store.grant_clearance(challenge_id, get_clearance_ttl_seconds())
        except UpstreamUnavailableError as e:
            logger.warning("captcha_clearance_unavailable", extra={"challenge_id": challenge_id, "error": str(e)})
            return self._finish(challenge_id, VerifyResult.fail(FailureKind.UPSTREAM_UNAVAILABLE))
        return self._finish(challenge_id, VerifyResult.ok())

    def redeem_clearance(self, challenge_id: str | None) -> bool:
        """Spend the clearance earned by a solved challenge. False on reuse, absence or outage."""
        if not challenge_id:
            captcha_clearances_total.labels(result="rejected").inc()
            return False
        try:
            accepted = self.store.consume_clearance(challenge_id)
        except UpstreamUnavailableError as e:
            logger.warning("captcha_clearance_unavailable", extra={"challenge_id": challenge_id, "error": str(e)})
            accepted = False
        captcha_clearances_total.labels(result="accepted" if accepted else "rejected").inc()
        return accepted

    def _finish(self, challenge_id: str, result: VerifyResult) -> VerifyResult:
        outcome = "success" if result.success else result.failure.value
        captcha_verifications_total.labels(result=outcome).inc()
        logger.info("captcha_verified", extra={"challenge_id": challenge_id, "outcome": outcome})
        return result
