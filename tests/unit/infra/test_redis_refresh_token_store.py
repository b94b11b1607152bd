# tests/unit/infra/test_redis_refresh_token_store.py
"""
Unit tests for RedisRefreshTokenStore using fakeredis.

These tests exercise the main flows:
- create + get (round trip of every field)
- rotate (success and error cases)
- revoke / revoke_family / revoke_all_for_user
- get_all_active_by_user / list_family
- translation of Redis failures

They use fakeredis.FakeRedis so they run entirely in-memory.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import fakeredis
import pytest
import redis

from authority.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore
from authority.services._shared.errors import StoreUnavailableError
from authority.services._shared.ports import RefreshToken, RotationResult

NOW = datetime(2026, 3, 1, 9, 30, 15, 123456, tzinfo=UTC)


def _record(token: str, *, user_id: str = "1", family: str = "fam-1", **overrides) -> RefreshToken:
    """Helper to build a refresh token record created at ``NOW``."""
    fields = {
        "token": token,
        "user_id": user_id,
        "family": family,
        "created_at": NOW,
        "expires_at": NOW + timedelta(days=7),
        "created_by_ip": "10.0.0.1",
    }
    fields.update(overrides)
    return RefreshToken(**fields)


@pytest.fixture
def fake_redis():
    """Provide a fresh FakeRedis instance for each test."""
    r = fakeredis.FakeRedis()
    r.flushall()
    return r


@pytest.fixture
def store(fake_redis):
    """Provide a RedisRefreshTokenStore backed by FakeRedis."""
    return RedisRefreshTokenStore(r=fake_redis)


def test_create_and_get(store, fake_redis):
    store.create(_record("rt-1"))

    got = store.get("rt-1")

    assert got == _record("rt-1")
    assert fake_redis.sismember("rt:u:1", "rt-1")
    assert fake_redis.sismember("rt:f:fam-1", "rt-1")
    # No TTL: records must outlive their expiry for reuse detection
    assert fake_redis.ttl("rt:rt-1") == -1


def test_get_missing_returns_none(store):
    assert store.get("nope") is None


def test_create_duplicate_raises(store):
    store.create(_record("rt-1"))
    with pytest.raises(ValueError):
        store.create(_record("rt-1"))


def test_update_keeps_existing_revocation(store):
    store.create(_record("rt-1"))
    revoked = store.get("rt-1").revoked(ip="9.9.9.9", at=NOW)
    store.update(revoked)

    # Writing the stale, non-revoked copy back must not resurrect it
    store.update(_record("rt-1"))

    got = store.get("rt-1")
    assert got.revoked_by_ip == "9.9.9.9"
    assert got.revoked_at == NOW


def test_update_after_rotation_keeps_replacement_link(store):
    store.create(_record("rt-1"))
    stale = store.get("rt-1")
    store.rotate(old_token="rt-1", successor=_record("rt-2"), revoked_by_ip="10.0.0.2", now=NOW)

    store.update(stale.revoked(ip="3.3.3.3", at=NOW + timedelta(minutes=1)))

    got = store.get("rt-1")
    assert got.replaced_by_token == "rt-2"
    assert got.revoked_by_ip == "10.0.0.2"
    assert got.revoked_at == NOW


def test_revoke_single_token(store):
    store.create(_record("rt-1"))
    store.create(_record("rt-2"))
    store.rotate(old_token="rt-2", successor=_record("rt-3"), revoked_by_ip="10.0.0.2", now=NOW)

    assert store.revoke("rt-1", ip="9.9.9.9", now=NOW) is True
    assert store.revoke("rt-1", ip="8.8.8.8", now=NOW) is False
    assert store.get("rt-1").revoked_by_ip == "9.9.9.9"

    # Already rotated: the link and the original revocation survive
    assert store.revoke("rt-2", ip="9.9.9.9", now=NOW) is False
    assert store.get("rt-2").replaced_by_token == "rt-3"
    assert store.get("rt-2").revoked_by_ip == "10.0.0.2"

    assert store.revoke("missing", ip="9.9.9.9", now=NOW) is False


def test_update_missing_raises(store):
    with pytest.raises(KeyError):
        store.update(_record("ghost"))


def test_rotate_success(store):
    store.create(_record("rt-1"))
    later = NOW + timedelta(minutes=1)
    successor = _record("rt-2", created_at=later, created_by_ip="10.0.0.2")

    result = store.rotate(old_token="rt-1", successor=successor, revoked_by_ip="10.0.0.2", now=later)

    assert result is RotationResult.OK
    old = store.get("rt-1")
    assert old.revoked_by_ip == "10.0.0.2"
    assert old.revoked_at == later
    assert old.replaced_by_token == "rt-2"
    assert store.get("rt-2") == successor
    assert [r.token for r in store.list_family("fam-1")] == ["rt-1", "rt-2"]


def test_rotate_twice_reports_revoked(store):
    store.create(_record("rt-1"))
    store.rotate(old_token="rt-1", successor=_record("rt-2"), revoked_by_ip="a", now=NOW)

    result = store.rotate(old_token="rt-1", successor=_record("rt-3"), revoked_by_ip="b", now=NOW)

    assert result is RotationResult.REVOKED
    assert store.get("rt-3") is None
    assert store.get("rt-1").replaced_by_token == "rt-2"


def test_rotate_missing_and_expired(store):
    assert (
        store.rotate(old_token="nope", successor=_record("rt-2"), revoked_by_ip="a", now=NOW)
        is RotationResult.NOT_FOUND
    )

    store.create(_record("rt-1", expires_at=NOW - timedelta(seconds=1)))
    result = store.rotate(old_token="rt-1", successor=_record("rt-2"), revoked_by_ip="a", now=NOW)
    assert result is RotationResult.EXPIRED
    assert store.get("rt-2") is None
    assert not store.get("rt-1").is_revoked


def test_rotate_retries_after_watch_error(store, monkeypatch):
    store.create(_record("rt-1"))
    original = redis.client.Pipeline.execute
    calls = {"n": 0}

    def flaky(self, *args, **kwargs):
        if self.explicit_transaction and calls["n"] == 0:
            calls["n"] += 1
            self.reset()
            raise redis.WatchError("simulated concurrent write")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(redis.client.Pipeline, "execute", flaky)

    result = store.rotate(old_token="rt-1", successor=_record("rt-2"), revoked_by_ip="a", now=NOW)

    assert result is RotationResult.OK
    assert calls["n"] == 1


def test_revoke_family_counts_only_live_records(store):
    store.create(_record("rt-1"))
    store.rotate(old_token="rt-1", successor=_record("rt-2"), revoked_by_ip="a", now=NOW)
    store.create(_record("rt-x", family="fam-2"))

    assert store.revoke_family("fam-1", ip="6.6.6.6", now=NOW) == 1
    assert store.get("rt-2").revoked_by_ip == "6.6.6.6"
    # Earlier revocation metadata is preserved
    assert store.get("rt-1").revoked_by_ip == "a"
    assert not store.get("rt-x").is_revoked
    assert store.revoke_family("fam-1", ip="6.6.6.6", now=NOW) == 0
    assert store.revoke_family("unknown", ip="6.6.6.6", now=NOW) == 0


def test_revoke_all_for_user_and_active_listing(store):
    store.create(_record("rt-1", family="f1"))
    store.create(_record("rt-2", family="f2"))
    store.create(_record("rt-3", family="f3", expires_at=NOW - timedelta(days=1)))
    store.create(_record("rt-9", user_id="2", family="f9"))

    active = store.get_all_active_by_user("1", NOW)
    assert [r.token for r in active] == ["rt-1", "rt-2"]

    assert store.revoke_all_for_user("1", ip="admin", now=NOW) == 3
    assert store.get_all_active_by_user("1", NOW) == []
    assert [r.token for r in store.get_all_active_by_user("2", NOW)] == ["rt-9"]


def test_redis_errors_become_store_unavailable():
    broken = redis.Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.01)
    store = RedisRefreshTokenStore(r=broken)

    with pytest.raises(StoreUnavailableError):
        store.get("rt-1")
    with pytest.raises(StoreUnavailableError):
        store.rotate(old_token="rt-1", successor=_record("rt-2"), revoked_by_ip="a", now=NOW)
    with pytest.raises(StoreUnavailableError):
        store.revoke_all_for_user("1", ip="a", now=NOW)
