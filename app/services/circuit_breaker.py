"""
Circuit breaker implementation using pybreaker library.
State lives in process memory by default, or in Redis so every worker sees the same
breaker for the checkout provider.
"""
import logging
from datetime import datetime

import pybreaker
import redis

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state


logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Shared breaker state. Keys expire on their own so a dead worker cannot pin the breaker open."""

    def __init__(self, name: str, client: redis.Redis, ttl_seconds: int) -> None:
        super().__init__(name)
        self.client = client
        self.ttl_seconds = ttl_seconds
        self._state_key = f"cb:{name}:state"
        self._counter_key = f"cb:{name}:counter"
        self._success_key = f"cb:{name}:success"
        self._opened_key = f"cb:{name}:opened_at"

    def _get_int(self, key: str) -> int:
        raw = self.client.get(key)
        return int(raw) if raw else 0

    def _incr(self, key: str) -> None:
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, self.ttl_seconds)
        pipe.execute()

    @property
    def state(self) -> str:
        return self.client.get(self._state_key) or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self.client.set(self._state_key, value, ex=self.ttl_seconds * 2)

    @property
    def counter(self) -> int:
        return self._get_int(self._counter_key)

    @counter.setter
    def counter(self, value: int) -> None:
        self.client.set(self._counter_key, str(value), ex=self.ttl_seconds)

    @property
    def success_counter(self) -> int:
        return self._get_int(self._success_key)

    @success_counter.setter
    def success_counter(self, value: int) -> None:
        self.client.set(self._success_key, str(value), ex=self.ttl_seconds)

    @property
    def opened_at(self):
        raw = self.client.get(self._opened_key)
        return datetime.fromisoformat(raw) if raw else None

    @opened_at.setter
    def opened_at(self, value) -> None:
        self.client.set(self._opened_key, value.isoformat(), ex=self.ttl_seconds * 2)

    def increment_counter(self) -> None:
        self._incr(self._counter_key)

    def reset_counter(self) -> None:
        self.client.delete(self._counter_key)

    def increment_success_counter(self) -> None:
        self._incr(self._success_key)

    def reset_success_counter(self) -> None:
        self.client.delete(self._success_key)


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener for circuit breaker events (logging/metrics)."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        new_name = getattr(new_state, "name", str(new_state))
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", str(old_state)),
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={
                "breaker_name": self.name,
                "error": type(exc).__name__,
            },
        )


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def _storage_for(name: str) -> pybreaker.CircuitBreakerStorage:
    if settings.cb_state_backend == "redis":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisCircuitBreakerStorage(name, client, settings.cb_open_seconds)
    return pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)


def get_circuit_breaker(name: str, exclude: list | None = None) -> pybreaker.CircuitBreaker:
    """Get or create a circuit breaker by name. Excluded exceptions do not count as failures."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            exclude=exclude or [],
            state_storage=_storage_for(name),
            listeners=[CircuitBreakerListener(name)],
            name=name,
        )
    return _breakers[name]
