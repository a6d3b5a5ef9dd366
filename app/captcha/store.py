"""
Short-lived storage for captcha challenges and the clearances a solved challenge grants.

Unknown, consumed and expired ids all read as None: callers cannot tell a replay from
a forgery. consume() and consume_clearance() are atomic get-and-invalidate operations.
"""
from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

import redis
from pydantic import ValidationError

from app.captcha.models import Challenge
from app.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChallengeStore(ABC):
    @abstractmethod
    def create(self, challenge: Challenge) -> str:
        raise NotImplementedError

    @abstractmethod
    def get(self, challenge_id: str) -> Challenge | None:
        """Live challenge or None. Does not consume."""
        raise NotImplementedError

    @abstractmethod
    def consume(self, challenge_id: str) -> Challenge | None:
        """Return the challenge and invalidate it in one indivisible step."""
        raise NotImplementedError

    @abstractmethod
    def invalidate(self, challenge_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def grant_clearance(self, challenge_id: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def consume_clearance(self, challenge_id: str) -> bool:
        """True exactly once per granted clearance."""
        raise NotImplementedError


class RedisChallengeStore(ChallengeStore):
    """Redis-backed store. Expiry is enforced by key TTLs, so purge_expired is a no-op."""

    CHALLENGE_PREFIX = "captcha:challenge:"
    CLEARANCE_PREFIX = "captcha:clearance:"

    def __init__(self, client: redis.Redis, clock: Clock = utcnow) -> None:
        self.client = client
        self._clock = clock

    @classmethod
    def from_url(cls, url: str) -> "RedisChallengeStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _ttl_seconds(self, challenge: Challenge) -> int:
        remaining = (challenge.expires_at - self._clock()).total_seconds()
        return max(1, math.ceil(remaining))

    def _decode(self, raw: str | None) -> Challenge | None:
        if not raw:
            return None
        try:
            return Challenge.model_validate_json(raw)
        except ValidationError:
            logger.warning("captcha_challenge_corrupt")
            return None

    def create(self, challenge: Challenge) -> str:
        try:
            self.client.set(
                f"{self.CHALLENGE_PREFIX}{challenge.id}",
                challenge.model_dump_json(),
                ex=self._ttl_seconds(challenge),
            )
        except redis.RedisError as e:
            raise UpstreamUnavailableError("challenge store unavailable", {"error": str(e)}) from e
        return challenge.id

    def get(self, challenge_id: str) -> Challenge | None:
        try:
            raw = self.client.get(f"{self.CHALLENGE_PREFIX}{challenge_id}")
        except redis.RedisError as e:
            raise UpstreamUnavailableError("challenge store unavailable", {"error": str(e)}) from e
        return self._decode(raw)

    def consume(self, challenge_id: str) -> Challenge | None:
        try:
            raw = self.client.getdel(f"{self.CHALLENGE_PREFIX}{challenge_id}")
        except redis.RedisError as e:
            raise UpstreamUnavailableError("challenge store unavailable", {"error": str(e)}) from e
        return self._decode(raw)

    def invalidate(self, challenge_id: str) -> None:
        try:
            self.client.delete(f"{self.CHALLENGE_PREFIX}{challenge_id}")
        except redis.RedisError as e:
            raise UpstreamUnavailableError("challenge store unavailable", {"error": str(e)}) from e

    def purge_expired(self) -> int:
        return 0

    def grant_clearance(self, challenge_id: str, ttl_seconds: int) -> None:
        try:
            self.client.set(f"{self.CLEARANCE_PREFIX}{challenge_id}", "1", ex=ttl_seconds)
        except redis.RedisError as e:
            raise UpstreamUnavailableError("challenge store unavailable", {"error": str(e)}) from e

    def consume_clearance(self, challenge_id: str) -> bool:
        try:
            return self.client.getdel(f"{self.CLEARANCE_PREFIX}{challenge_id}") is not None
        except redis.RedisError as e:
            raise UpstreamUnavailableError("challenge store unavailable", {"error": str(e)}) from e


class MemoryChallengeStore(ChallengeStore):
    """
    Mutex-guarded in-process store for single-worker deployments and tests.
    Consumed challenges stay as tombstones until they expire; every access purges
    expired entries first.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._challenges: dict[str, Challenge] = {}
        self._clearances: dict[str, datetime] = {}

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [cid for cid, c in self._challenges.items() if c.is_expired(now)]
        for cid in expired:
            del self._challenges[cid]
        stale = [cid for cid, until in self._clearances.items() if now >= until]
        for cid in stale:
            del self._clearances[cid]
        return len(expired)

    def create(self, challenge: Challenge) -> str:
        with self._lock:
            self._purge_locked()
            self._challenges[challenge.id] = challenge
        return challenge.id

    def get(self, challenge_id: str) -> Challenge | None:
        with self._lock:
            self._purge_locked()
            challenge = self._challenges.get(challenge_id)
            if challenge is None or challenge.consumed:
                return None
            return challenge

    def consume(self, challenge_id: str) -> Challenge | None:
        with self._lock:
            self._purge_locked()
            challenge = self._challenges.get(challenge_id)
            if challenge is None or challenge.consumed:
                return None
            self._challenges[challenge_id] = challenge.model_copy(update={"consumed": True})
            return challenge

    def invalidate(self, challenge_id: str) -> None:
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is not None:
                self._challenges[challenge_id] = challenge.model_copy(update={"consumed": True})

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def grant_clearance(self, challenge_id: str, ttl_seconds: int) -> None:
        with self._lock:
            self._clearances[challenge_id] = self._clock() + timedelta(seconds=ttl_seconds)

    def consume_clearance(self, challenge_id: str) -> bool:
        with self._lock:
            self._purge_locked()
            return self._clearances.pop(challenge_id, None) is not None
