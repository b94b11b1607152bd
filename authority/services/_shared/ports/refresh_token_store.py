from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, auto
from typing import Protocol


class RotationResult(Enum):
    """Outcome of an atomic refresh rotation attempt."""

    OK = auto()
    NOT_FOUND = auto()
    EXPIRED = auto()
    REVOKED = auto()


@dataclass(frozen=True, slots=True)
class RefreshToken:
    """
    Persisted refresh token record.

    :ivar token: Opaque token value, primary lookup key.
    :ivar user_id: Owner user id.
    :ivar family: Identifier shared by every token descended from one login.
    :ivar created_at: Issuance instant (UTC).
    :ivar expires_at: Absolute expiration (UTC).
    :ivar created_by_ip: Client address that obtained the token.
    :ivar revoked_by_ip: Client address that revoked it; ``None`` while usable.
    :ivar revoked_at: Revocation instant (audit only).
    :ivar replaced_by_token: Successor issued by rotation (audit only).
    """

    token: str
    user_id: str
    family: str
    created_at: datetime
    expires_at: datetime
    created_by_ip: str
    revoked_by_ip: str | None = None
    revoked_at: datetime | None = None
    replaced_by_token: str | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_by_ip is not None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.is_expired(now) and not self.is_revoked

    def revoked(self, *, ip: str, at: datetime) -> RefreshToken:
        """Return a copy marked revoked. An existing revocation is kept as-is."""
        if self.is_revoked:
            return self
        return replace(self, revoked_by_ip=ip, revoked_at=at)


class RefreshTokenStore(Protocol):
    """
    Durable store for refresh token records.

    Plain reads/writes (``get``/``create``/``update``) plus the conditional
    operations the rotation engine relies on. ``rotate`` MUST be a single
    compare-and-swap: the old token is consumed only if it is still active at
    write time, otherwise the store reports why and writes nothing.

    Implementations raise
    :class:`~authority.services._shared.errors.StoreUnavailableError` when the
    backend cannot be reached.
    """

    def get(self, token: str) -> RefreshToken | None:
        """Fetch a record by token value."""

    def create(self, record: RefreshToken) -> None:
        """Insert a brand-new record (indexed by user and family)."""

    def update(self, record: RefreshToken) -> None:
        """Overwrite an existing record. An existing revocation is never changed."""

    def get_all_active_by_user(self, user_id: str, now: datetime) -> list[RefreshToken]:
        """List the user's active records."""

    def list_family(self, family: str) -> list[RefreshToken]:
        """List every record of a family regardless of state."""

    def rotate(
        self,
        *,
        old_token: str,
        successor: RefreshToken,
        revoked_by_ip: str,
        now: datetime,
    ) -> RotationResult:
        """
        Atomically revoke ``old_token``, link it to ``successor`` and insert ``successor``.

        :returns: ``RotationResult.OK`` on success, otherwise the specific failure.
        """

    def revoke(self, token: str, *, ip: str, now: datetime) -> bool:
        """
        Revoke a single record unless it is already revoked.

        An existing revocation (including a rotation link) is left untouched.

        :returns: ``True`` if this call revoked the record.
        """

    def revoke_family(self, family: str, *, ip: str, now: datetime) -> int:
        """
        Revoke every non-revoked record of ``family``.

        :returns: Number of records affected.
        """

    def revoke_all_for_user(self, user_id: str, *, ip: str, now: datetime) -> int:
        """
        Revoke every non-revoked record owned by ``user_id``.

        :returns: Number of records affected.
        """


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    In-memory refresh token store with atomic rotation behavior.

    .. note::
       A single lock serializes writers, which gives ``rotate`` its
       compare-and-swap semantics within one process.
    """

    def __init__(self) -> None:
        self._by_token: dict[str, RefreshToken] = {}
        self._by_user: dict[str, set[str]] = {}
        self._by_family: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    # ------------------------- helpers -------------------------

    def _index(self, record: RefreshToken) -> None:
        self._by_token[record.token] = record
        self._by_user.setdefault(record.user_id, set()).add(record.token)
        self._by_family.setdefault(record.family, set()).add(record.token)

    def _revoke_many(self, tokens: Iterable[str], *, ip: str, now: datetime) -> int:
        count = 0
        for t in sorted(tokens):
            rec = self._by_token.get(t)
            if rec is None or rec.is_revoked:
                continue
            self._by_token[t] = rec.revoked(ip=ip, at=now)
            count += 1
        return count

    # -------------------------- API ----------------------------

    def get(self, token: str) -> RefreshToken | None:
        with self._lock:
            return self._by_token.get(token)

    def create(self, record: RefreshToken) -> None:
        with self._lock:
            if record.token in self._by_token:
                raise ValueError("Refresh token already exists.")
            self._index(record)

    def update(self, record: RefreshToken) -> None:
        with self._lock:
            current = self._by_token.get(record.token)
            if current is None:
                raise KeyError(record.token)
            if current.is_revoked:
                record = replace(
                    record,
                    revoked_by_ip=current.revoked_by_ip,
                    revoked_at=current.revoked_at,
                    replaced_by_token=current.replaced_by_token,
                )
            self._by_token[record.token] = record

    def get_all_active_by_user(self, user_id: str, now: datetime) -> list[RefreshToken]:
        with self._lock:
            records = (self._by_token[t] for t in sorted(self._by_user.get(user_id, set())))
            return [r for r in records if r.is_active(now)]

    def list_family(self, family: str) -> list[RefreshToken]:
        with self._lock:
            records = [self._by_token[t] for t in self._by_family.get(family, set())]
        return sorted(records, key=lambda r: r.created_at)

    def rotate(
        self,
        *,
        old_token: str,
        successor: RefreshToken,
        revoked_by_ip: str,
        now: datetime,
    ) -> RotationResult:
        with self._lock:
            old = self._by_token.get(old_token)
            if old is None:
                return RotationResult.NOT_FOUND
            if old.is_revoked:
                return RotationResult.REVOKED
            if old.is_expired(now):
                return RotationResult.EXPIRED

            self._by_token[old_token] = replace(
                old,
                revoked_by_ip=revoked_by_ip,
                revoked_at=now,
                replaced_by_token=successor.token,
            )
            self._index(successor)
            return RotationResult.OK

    def revoke(self, token: str, *, ip: str, now: datetime) -> bool:
        with self._lock:
            return self._revoke_many((token,), ip=ip, now=now) == 1

    def revoke_family(self, family: str, *, ip: str, now: datetime) -> int:
        with self._lock:
            return self._revoke_many(self._by_family.get(family, set()), ip=ip, now=now)

    def revoke_all_for_user(self, user_id: str, *, ip: str, now: datetime) -> int:
        with self._lock:
            return self._revoke_many(self._by_user.get(user_id, set()), ip=ip, now=now)
