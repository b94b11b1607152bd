# tests/unit/services/test_rotation_engine.py
"""
Unit tests for RotationEngine over the in-memory store and stub issuer.

Covers:
- start (new family)
- refresh (rotation, expiry, unknown token, disabled owner)
- reuse detection and cascading family revocation
- concurrent refresh of one token
- logout / revoke_all / audit_chain
- signing failures and logout racing a rotation
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from authority.services._shared.errors import SigningUnavailableError, StoreUnavailableError
from authority.services._shared.ports import (
    InMemoryRefreshTokenStore,
    Principal,
    StubAccessTokenIssuer,
)
from authority.services.auth.dto import AuthTokenConfig
from authority.services.auth.results import (
    InfrastructureError,
    InvalidToken,
    Ok,
    SecurityViolation,
    TokenExpired,
)
from authority.services.auth.rotation import UNKNOWN_IP, RotationEngine


class _Clock:
    """Settable UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class _UnavailableStore(InMemoryRefreshTokenStore):
    def get(self, token):
        raise StoreUnavailableError()

    def create(self, record):
        raise StoreUnavailableError()


class _FlakyIssuer(StubAccessTokenIssuer):
    """Stub issuer whose signing can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def issue(self, principal, *, expires_delta=None):
        if self.broken:
            raise SigningUnavailableError()
        return super().issue(principal, expires_delta=expires_delta)


class _InterleavingStore(InMemoryRefreshTokenStore):
    """Runs ``before_get_returns`` once, after a record is read but before it is returned."""

    def __init__(self) -> None:
        super().__init__()
        self.before_get_returns = None

    def get(self, token):
        record = super().get(token)
        hook, self.before_get_returns = self.before_get_returns, None
        if hook is not None:
            hook()
        return record


@pytest.fixture()
def clock() -> _Clock:
    return _Clock()


@pytest.fixture()
def principals() -> dict[str, Principal]:
    return {"1": Principal(user_id="1", role="User"), "2": Principal(user_id="2", role="Admin")}


@pytest.fixture()
def store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture()
def engine(store, principals, clock) -> RotationEngine:
    return RotationEngine(
        store=store,
        issuer=StubAccessTokenIssuer(),
        principals=principals.get,
        cfg=AuthTokenConfig(access_expires=timedelta(minutes=15), refresh_expires=timedelta(days=7)),
        clock=clock,
    )


def _login(engine: RotationEngine, user_id: str = "1", ip: str = "10.0.0.1"):
    result = engine.start(Principal(user_id=user_id, role="User"), ip)
    assert isinstance(result, Ok)
    return result.value


def _active_in_family(store: InMemoryRefreshTokenStore, family: str, now: datetime) -> list:
    return [r for r in store.list_family(family) if r.is_active(now)]


# ------------------------------- start ------------------------------------ #
def test_start_opens_new_family_with_one_active_token(engine, store, clock):
    pair = _login(engine)

    record = store.get(pair.refresh_token)
    assert record is not None
    assert record.user_id == "1"
    assert record.created_by_ip == "10.0.0.1"
    assert record.expires_at == clock.now + timedelta(days=7)
    assert pair.expires_at == record.expires_at
    assert pair.access_token.startswith("access.1.")
    assert len(_active_in_family(store, record.family, clock.now)) == 1


def test_each_login_gets_its_own_family(engine, store):
    a = store.get(_login(engine).refresh_token)
    b = store.get(_login(engine).refresh_token)
    assert a.family != b.family
    assert a.token != b.token


def test_start_reports_store_outage(principals, clock):
    engine = RotationEngine(
        store=_UnavailableStore(),
        issuer=StubAccessTokenIssuer(),
        principals=principals.get,
        clock=clock,
    )
    result = engine.start(principals["1"], "10.0.0.1")
    assert isinstance(result, InfrastructureError)
    assert result.retryable is True


# ------------------------------ refresh ----------------------------------- #
def test_refresh_rotates_and_links_successor(engine, store, clock):
    pair = _login(engine)
    clock.advance(minutes=5)

    result = engine.refresh(pair.refresh_token, "10.0.0.2")

    assert isinstance(result, Ok)
    new = result.value
    assert new.refresh_token != pair.refresh_token

    old = store.get(pair.refresh_token)
    successor = store.get(new.refresh_token)
    assert old.is_revoked
    assert old.revoked_by_ip == "10.0.0.2"
    assert old.revoked_at == clock.now
    assert old.replaced_by_token == new.refresh_token
    assert successor.family == old.family
    assert successor.replaced_by_token is None
    assert successor.created_by_ip == "10.0.0.2"

    active = _active_in_family(store, old.family, clock.now)
    assert [r.token for r in active] == [new.refresh_token]


def test_refresh_uses_current_role_of_owner(engine, principals):
    pair = _login(engine)
    principals["1"] = Principal(user_id="1", role="Admin")

    result = engine.refresh(pair.refresh_token, "10.0.0.1")

    assert isinstance(result, Ok)
    claims = engine.issuer.validate(result.value.access_token)
    assert claims.role == "Admin"


def test_refresh_unknown_token_is_invalid(engine):
    assert isinstance(engine.refresh("does-not-exist", "10.0.0.1"), InvalidToken)
    assert isinstance(engine.refresh("", "10.0.0.1"), InvalidToken)


def test_refresh_expired_token(engine, store, clock):
    pair = _login(engine)
    clock.advance(days=7, seconds=1)

    result = engine.refresh(pair.refresh_token, "10.0.0.1")

    assert isinstance(result, TokenExpired)
    # Expiry alone does not revoke anything
    assert not store.get(pair.refresh_token).is_revoked


def test_refresh_for_removed_owner_is_invalid(engine, store, principals):
    pair = _login(engine)
    del principals["1"]

    assert isinstance(engine.refresh(pair.refresh_token, "10.0.0.1"), InvalidToken)
    assert not store.get(pair.refresh_token).is_revoked


def test_missing_ip_is_recorded_as_unknown(engine, store):
    pair = _login(engine, ip=None)
    assert store.get(pair.refresh_token).created_by_ip == UNKNOWN_IP

    result = engine.refresh(pair.refresh_token, "   ")
    assert isinstance(result, Ok)
    assert store.get(pair.refresh_token).revoked_by_ip == UNKNOWN_IP


# --------------------------- reuse detection ------------------------------ #
def test_replay_of_rotated_token_revokes_whole_family(engine, store, clock):
    first = _login(engine)
    second = engine.refresh(first.refresh_token, "10.0.0.1").value

    result = engine.refresh(first.refresh_token, "66.6.6.6")

    assert isinstance(result, SecurityViolation)
    family = store.get(first.refresh_token).family
    assert result.family == family
    assert result.revoked == 1
    assert _active_in_family(store, family, clock.now) == []

    # The legitimately rotated token is dead too
    again = engine.refresh(second.refresh_token, "10.0.0.1")
    assert isinstance(again, SecurityViolation)
    assert store.get(second.refresh_token).revoked_by_ip == "66.6.6.6"


def test_replay_does_not_touch_other_families(engine, store, clock):
    stolen = _login(engine)
    other = _login(engine)
    engine.refresh(stolen.refresh_token, "10.0.0.1")

    engine.refresh(stolen.refresh_token, "66.6.6.6")

    assert store.get(other.refresh_token).is_active(clock.now)


def test_replay_is_logged_on_security_channel(engine, caplog):
    first = _login(engine)
    engine.refresh(first.refresh_token, "10.0.0.1")

    with caplog.at_level("WARNING", logger="authority.security"):
        engine.refresh(first.refresh_token, "66.6.6.6")

    records = [r for r in caplog.records if r.name == "authority.security"]
    assert records
    assert records[-1].event == "refresh_token_reuse"
    assert records[-1].client_ip == "66.6.6.6"
    # Raw token values never reach the logs
    assert first.refresh_token not in caplog.text


def test_concurrent_refresh_of_same_token(engine, store, clock):
    pair = _login(engine)
    barrier = threading.Barrier(2)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        r = engine.refresh(pair.refresh_token, "10.0.0.1")
        with lock:
            results.append(r)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(isinstance(r, Ok) for r in results) == 1
    assert sum(isinstance(r, SecurityViolation) for r in results) == 1
    family = store.get(pair.refresh_token).family
    assert _active_in_family(store, family, clock.now) == []


def test_refresh_reports_store_outage(principals, clock):
    engine = RotationEngine(
        store=_UnavailableStore(),
        issuer=StubAccessTokenIssuer(),
        principals=principals.get,
        clock=clock,
    )
    result = engine.refresh("whatever", "10.0.0.1")
    assert isinstance(result, InfrastructureError)


def test_principal_lookup_outage_is_infrastructure_error(store, clock):
    def broken(_user_id):
        raise StoreUnavailableError("User store unavailable")

    engine = RotationEngine(
        store=store, issuer=StubAccessTokenIssuer(), principals=broken, clock=clock
    )
    pair = engine.start(Principal(user_id="1", role="User"), "10.0.0.1").value

    assert isinstance(engine.refresh(pair.refresh_token, "10.0.0.1"), InfrastructureError)
    assert store.get(pair.refresh_token).is_active(clock.now)


# ------------------------------ logout ------------------------------------ #
def test_logout_revokes_every_family_of_the_user(engine, store, clock):
    a = _login(engine)
    b = _login(engine)
    mine_rotated = engine.refresh(b.refresh_token, "10.0.0.1").value
    other_user = _login(engine, user_id="2")

    result = engine.logout("1", a.refresh_token, "10.0.0.9")

    assert isinstance(result, Ok)
    assert result.value == 2
    assert store.get_all_active_by_user("1", clock.now) == []
    assert store.get(a.refresh_token).revoked_by_ip == "10.0.0.9"
    assert store.get(mine_rotated.refresh_token).is_revoked
    assert store.get(other_user.refresh_token).is_active(clock.now)


def test_logout_with_foreign_token_still_signs_user_out(engine, store, clock):
    mine = _login(engine, user_id="1")
    theirs = _login(engine, user_id="2")

    result = engine.logout("1", theirs.refresh_token, "10.0.0.9")

    assert isinstance(result, Ok)
    assert store.get(theirs.refresh_token).is_active(clock.now)
    assert store.get(mine.refresh_token).is_revoked


def test_logout_without_token(engine, store, clock):
    _login(engine)
    result = engine.logout("1", None, None)
    assert result == Ok(1)
    assert store.get_all_active_by_user("1", clock.now) == []


def test_revoke_all_and_family(engine, store, clock):
    a = _login(engine)
    _login(engine)

    family = store.get(a.refresh_token).family
    assert engine.revoke_family(family, "admin").value == 1
    assert engine.revoke_all("1", "admin").value == 1
    assert engine.revoke_all("1", "admin").value == 0


# ------------------------------- audit ------------------------------------ #
def test_audit_chain_follows_replacements(engine):
    first = _login(engine)
    second = engine.refresh(first.refresh_token, "10.0.0.1").value
    third = engine.refresh(second.refresh_token, "10.0.0.1").value

    chain = engine.audit_chain(first.refresh_token).value

    assert [r.token for r in chain] == [
        first.refresh_token,
        second.refresh_token,
        third.refresh_token,
    ]
    assert chain[-1].replaced_by_token is None


def test_audit_chain_unknown_token_is_empty(engine):
    assert engine.audit_chain("nope") == Ok([])


# ------------------------------ signing ----------------------------------- #
@pytest.fixture()
def flaky_engine(store, principals, clock) -> RotationEngine:
    return RotationEngine(
        store=store, issuer=_FlakyIssuer(), principals=principals.get, clock=clock
    )


def test_start_signing_failure_persists_nothing(flaky_engine, store, principals, clock):
    flaky_engine.issuer.broken = True

    result = flaky_engine.start(principals["1"], "10.0.0.1")

    assert isinstance(result, InfrastructureError)
    assert result.retryable is True
    assert store.get_all_active_by_user("1", clock.now) == []


def test_refresh_signing_failure_leaves_token_usable(flaky_engine, store, clock):
    pair = _login(flaky_engine)
    flaky_engine.issuer.broken = True

    failed = flaky_engine.refresh(pair.refresh_token, "10.0.0.1")

    assert isinstance(failed, InfrastructureError)
    record = store.get(pair.refresh_token)
    assert record.is_active(clock.now)
    assert record.replaced_by_token is None
    assert len(_active_in_family(store, record.family, clock.now)) == 1

    # Retrying once signing is back is a normal rotation, not reuse
    flaky_engine.issuer.broken = False
    retry = flaky_engine.refresh(pair.refresh_token, "10.0.0.1")
    assert isinstance(retry, Ok)
    assert store.get(pair.refresh_token).replaced_by_token == retry.value.refresh_token


# -------------------------- logout vs rotation ---------------------------- #
def test_logout_racing_a_rotation_keeps_the_replacement_link(principals, clock):
    store = _InterleavingStore()
    engine = RotationEngine(
        store=store, issuer=StubAccessTokenIssuer(), principals=principals.get, clock=clock
    )
    pair = _login(engine)
    rotated = []
    store.before_get_returns = lambda: rotated.append(
        engine.refresh(pair.refresh_token, "10.0.0.2").value
    )

    result = engine.logout("1", pair.refresh_token, "3.3.3.3")

    successor = rotated[0].refresh_token
    old = store.get(pair.refresh_token)
    assert old.replaced_by_token == successor
    assert old.revoked_by_ip == "10.0.0.2"
    # Only the successor was still active when logout revoked
    assert result == Ok(1)
    assert store.get(successor).revoked_by_ip == "3.3.3.3"
    assert store.get_all_active_by_user("1", clock.now) == []


def test_store_revoke_is_conditional(engine, store, clock):
    pair = _login(engine)
    successor = engine.refresh(pair.refresh_token, "10.0.0.2").value

    assert store.revoke(pair.refresh_token, ip="9.9.9.9", now=clock.now) is False
    assert store.get(pair.refresh_token).replaced_by_token == successor.refresh_token
    assert store.revoke(successor.refresh_token, ip="9.9.9.9", now=clock.now) is True
    assert store.revoke("missing", ip="9.9.9.9", now=clock.now) is False
