"""Tests for the challenge store backends and the Challenge answer-set rules."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis
from pydantic import ValidationError

from app.captcha.models import Challenge
from app.captcha.store import MemoryChallengeStore, RedisChallengeStore
from app.core.errors import UpstreamUnavailableError


def _challenge(now, challenge_id="c1", minutes=5):
    return Challenge(
        id=challenge_id,
        target_category="lock",
        options=("lock", "key", "cloud", "lock"),
        expected_indices=frozenset({0, 3}),
        expires_at=now + timedelta(minutes=minutes),
    )


class TestChallengeModel:
    def test_expected_must_match_target_tiles(self, clock):
        with pytest.raises(ValidationError):
            Challenge(
                id="x",
                target_category="lock",
                options=("lock", "key", "lock"),
                expected_indices=frozenset({0}),
                expires_at=clock(),
            )

    def test_needs_a_distractor(self, clock):
        with pytest.raises(ValidationError):
            Challenge(
                id="x",
                target_category="lock",
                options=("lock", "lock"),
                expected_indices=frozenset({0, 1}),
                expires_at=clock(),
            )

    def test_needs_a_match(self, clock):
        with pytest.raises(ValidationError):
            Challenge(
                id="x",
                target_category="star",
                options=("lock", "key"),
                expected_indices=frozenset(),
                expires_at=clock(),
            )


class TestMemoryChallengeStore:
    def test_create_and_get(self, clock):
        store = MemoryChallengeStore(clock=clock)
        assert store.create(_challenge(clock())) == "c1"
        assert store.get("c1").target_category == "lock"

    def test_consume_is_single_use(self, clock):
        store = MemoryChallengeStore(clock=clock)
        store.create(_challenge(clock()))
        assert store.consume("c1") is not None
        assert store.consume("c1") is None
        assert store.get("c1") is None

    def test_consumed_and_unknown_look_the_same(self, clock):
        store = MemoryChallengeStore(clock=clock)
        store.create(_challenge(clock()))
        store.invalidate("c1")
        assert store.get("c1") is None
        assert store.get("never-issued") is None

    def test_purge_expired(self, clock):
        store = MemoryChallengeStore(clock=clock)
        store.create(_challenge(clock(), "short", minutes=1))
        store.create(_challenge(clock(), "long", minutes=10))
        clock.advance(minutes=2)
        assert store.purge_expired() == 1
        assert store.get("short") is None
        assert store.get("long") is not None

    def test_expired_never_returned(self, clock):
        store = MemoryChallengeStore(clock=clock)
        store.create(_challenge(clock()))
        clock.advance(minutes=5)
        assert store.consume("c1") is None

    def test_clearance_single_use(self, clock):
        store = MemoryChallengeStore(clock=clock)
        store.grant_clearance("c1", 60)
        assert store.consume_clearance("c1") is True
        assert store.consume_clearance("c1") is False


class TestRedisChallengeStore:
    def test_create_sets_ttl_from_expiry(self, clock):
        client = MagicMock()
        store = RedisChallengeStore(client, clock=clock)
        store.create(_challenge(clock()))

        key, raw = client.set.call_args.args
        assert key == "captcha:challenge:c1"
        assert client.set.call_args.kwargs["ex"] == 300
        assert Challenge.model_validate_json(raw).expected_indices == frozenset({0, 3})

    def test_consume_uses_getdel(self, clock):
        client = MagicMock()
        client.getdel.return_value = _challenge(clock()).model_dump_json()
        store = RedisChallengeStore(client, clock=clock)

        challenge = store.consume("c1")
        client.getdel.assert_called_once_with("captcha:challenge:c1")
        assert challenge.id == "c1"

    def test_consume_missing(self, clock):
        client = MagicMock()
        client.getdel.return_value = None
        assert RedisChallengeStore(client, clock=clock).consume("c1") is None

    def test_corrupt_payload_reads_as_missing(self, clock):
        client = MagicMock()
        client.get.return_value = '{"id": "c1"}'
        assert RedisChallengeStore(client, clock=clock).get("c1") is None

    @pytest.mark.parametrize("method,args", [
        ("consume", ("c1",)),
        ("get", ("c1",)),
        ("invalidate", ("c1",)),
        ("grant_clearance", ("c1", 60)),
        ("consume_clearance", ("c1",)),
    ])
    def test_redis_errors_become_upstream_unavailable(self, clock, method, args):
        client = MagicMock()
        for name in ("get", "set", "getdel", "delete"):
            getattr(client, name).side_effect = redis.ConnectionError("refused")
        store = RedisChallengeStore(client, clock=clock)
        with pytest.raises(UpstreamUnavailableError):
            getattr(store, method)(*args)

    def test_clearance_roundtrip(self, clock):
        client = MagicMock()
        store = RedisChallengeStore(client, clock=clock)
        store.grant_clearance("c1", 600)
        client.set.assert_called_once_with("captcha:clearance:c1", "1", ex=600)

        client.getdel.return_value = "1"
        assert store.consume_clearance("c1") is True
        client.getdel.return_value = None
        assert store.consume_clearance("c1") is False
