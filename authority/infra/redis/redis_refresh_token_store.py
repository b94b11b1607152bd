# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import redis  # type: ignore[import-untyped]

from authority.services._shared.errors import StoreUnavailableError
from authority.services._shared.ports import RefreshToken, RefreshTokenStore, RotationResult

_REVOCATION_FIELDS = ("revoked_by_ip", "revoked_at", "replaced_by_token")


@contextmanager
def _unavailable(action: str) -> Iterator[None]:
    try:
        yield
    except redis.RedisError as exc:
        raise StoreUnavailableError(f"Redis unavailable while {action}") from exc


def _s(value: Any) -> str | None:
    if value is None:
        return None
    return value.decode() if isinstance(value, bytes | bytearray) else str(value)


@dataclass(slots=True)
class RedisRefreshTokenStore(RefreshTokenStore):
    """
    Redis-backed refresh token store with atomic rotation.

    Layout
    ------
    - ``rt:{token}``: hash with the record fields (timestamps as ISO-8601).
    - ``rt:u:{user_id}``: set of token values owned by the user.
    - ``rt:f:{family}``: set of token values in the family.

    Records carry no TTL: rotated and revoked tokens must stay readable so a
    replay is recognised as reuse and not as an unknown token.

    :param r: A Redis client (already connected).
    """

    r: redis.Redis

    # -------------------- helpers --------------------

    @staticmethod
    def _k(token: str) -> str:
        return f"rt:{token}"

    @staticmethod
    def _ku(user_id: str) -> str:
        return f"rt:u:{user_id}"

    @staticmethod
    def _kf(family: str) -> str:
        return f"rt:f:{family}"

    @staticmethod
    def _to_hash(record: RefreshToken) -> dict[str, str]:
        mapping = {
            "user_id": record.user_id,
            "family": record.family,
            "created_at": record.created_at.isoformat(),
            "expires_at": record.expires_at.isoformat(),
            "created_by_ip": record.created_by_ip,
        }
        if record.revoked_by_ip is not None:
            mapping["revoked_by_ip"] = record.revoked_by_ip
        if record.revoked_at is not None:
            mapping["revoked_at"] = record.revoked_at.isoformat()
        if record.replaced_by_token is not None:
            mapping["replaced_by_token"] = record.replaced_by_token
        return mapping

    @staticmethod
    def _from_hash(token: str, h: Mapping[Any, Any]) -> RefreshToken:
        fields = {_s(k): _s(v) for k, v in h.items()}
        revoked_at = fields.get("revoked_at")
        return RefreshToken(
            token=token,
            user_id=fields["user_id"] or "",
            family=fields["family"] or "",
            created_at=datetime.fromisoformat(fields["created_at"] or ""),
            expires_at=datetime.fromisoformat(fields["expires_at"] or ""),
            created_by_ip=fields.get("created_by_ip") or "",
            revoked_by_ip=fields.get("revoked_by_ip"),
            revoked_at=datetime.fromisoformat(revoked_at) if revoked_at else None,
            replaced_by_token=fields.get("replaced_by_token"),
        )

    def _members(self, key: str, client: Any = None) -> list[str]:
        members = (client or self.r).smembers(key)
        return sorted(m for m in (_s(x) for x in members) if m)

    def _load_many(self, tokens: list[str]) -> list[RefreshToken]:
        if not tokens:
            return []
        pipe = self.r.pipeline(transaction=False)
        for t in tokens:
            pipe.hgetall(self._k(t))
        hashes = pipe.execute()
        return [self._from_hash(t, h) for t, h in zip(tokens, hashes, strict=True) if h]

    def _revoke_index(self, index_key: str, *, ip: str, now: datetime) -> int:
        """Revoke every non-revoked record listed under ``index_key`` in one transaction."""
        revocation = {"revoked_by_ip": ip, "revoked_at": now.isoformat()}
        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(index_key)
                    tokens = self._members(index_key, p)
                    if not tokens:
                        p.unwatch()
                        return 0
                    p.watch(*(self._k(t) for t in tokens))
                    pending = [t for t in tokens if p.hget(self._k(t), "revoked_by_ip") is None]
                    if not pending:
                        p.unwatch()
                        return 0

                    p.multi()
                    for t in pending:
                        p.hset(self._k(t), mapping=revocation)
                    p.execute()
                return len(pending)
            except redis.WatchError:
                # Index or a member changed underneath us; retry
                continue

    # -------------------- API ------------------------

    def get(self, token: str) -> RefreshToken | None:
        with _unavailable("reading a refresh token"):
            h = self.r.hgetall(self._k(token))
        if not h:
            return None
        return self._from_hash(token, h)

    def create(self, record: RefreshToken) -> None:
        """
        Insert the record and index it by user and family.

        :raises ValueError: If the token value already exists.
        """
        key = self._k(record.token)
        with _unavailable("creating a refresh token"):
            while True:
                try:
                    with self.r.pipeline() as p:
                        p.watch(key)
                        if p.exists(key):
                            p.unwatch()
                            raise ValueError("Refresh token already exists.")
                        p.multi()
                        p.hset(key, mapping=self._to_hash(record))
                        p.sadd(self._ku(record.user_id), record.token)
                        p.sadd(self._kf(record.family), record.token)
                        p.execute()
                    return
                except redis.WatchError:
                    continue

    def update(self, record: RefreshToken) -> None:
        """
        Overwrite the stored fields of an existing record.

        Once a record is revoked its revocation fields and rotation link are
        kept as stored.

        :raises KeyError: If the record does not exist.
        """
        key = self._k(record.token)
        mapping = self._to_hash(record)
        with _unavailable("updating a refresh token"):
            while True:
                try:
                    with self.r.pipeline() as p:
                        p.watch(key)
                        if not p.exists(key):
                            p.unwatch()
                            raise KeyError(record.token)
                        if p.hget(key, "revoked_by_ip") is not None:
                            for field in _REVOCATION_FIELDS:
                                mapping.pop(field, None)
                        p.multi()
                        p.hset(key, mapping=mapping)
                        p.execute()
                    return
                except redis.WatchError:
                    continue

    def revoke(self, token: str, *, ip: str, now: datetime) -> bool:
        """Revoke one record; a no-op when it is missing or already revoked."""
        key = self._k(token)
        with _unavailable("revoking a refresh token"):
            while True:
                try:
                    with self.r.pipeline() as p:
                        p.watch(key)
                        if not p.exists(key) or p.hget(key, "revoked_by_ip") is not None:
                            p.unwatch()
                            return False
                        p.multi()
                        p.hset(key, mapping={"revoked_by_ip": ip, "revoked_at": now.isoformat()})
                        p.execute()
                    return True
                except redis.WatchError:
                    continue

    def get_all_active_by_user(self, user_id: str, now: datetime) -> list[RefreshToken]:
        with _unavailable("listing user tokens"):
            records = self._load_many(self._members(self._ku(user_id)))
        return [r for r in records if r.is_active(now)]

    def list_family(self, family: str) -> list[RefreshToken]:
        with _unavailable("listing a token family"):
            records = self._load_many(self._members(self._kf(family)))
        return sorted(records, key=lambda r: r.created_at)

    def rotate(
        self,
        *,
        old_token: str,
        successor: RefreshToken,
        revoked_by_ip: str,
        now: datetime,
    ) -> RotationResult:
        """
        Atomically consume ``old_token`` and create ``successor``.

        Uses Redis WATCH/MULTI/EXEC (optimistic locking):
        - Check existence and state of ``old_token``.
        - Reject if revoked or expired.
        - Mark old as revoked (linking the successor) and insert the successor
          in one atomic step.
        - Update the user and family indexes.
        """
        k_old = self._k(old_token)
        k_new = self._k(successor.token)

        with _unavailable("rotating a refresh token"):
            # Retry loop for optimistic locking in case of concurrent modifications
            while True:
                try:
                    with self.r.pipeline() as p:
                        p.watch(k_old, k_new)

                        h = p.hgetall(k_old)
                        if not h:
                            p.unwatch()
                            return RotationResult.NOT_FOUND
                        old = self._from_hash(old_token, h)

                        if old.is_revoked:
                            p.unwatch()
                            return RotationResult.REVOKED
                        if old.is_expired(now):
                            p.unwatch()
                            return RotationResult.EXPIRED

                        p.multi()
                        p.hset(
                            k_old,
                            mapping={
                                "revoked_by_ip": revoked_by_ip,
                                "revoked_at": now.isoformat(),
                                "replaced_by_token": successor.token,
                            },
                        )
                        p.hset(k_new, mapping=self._to_hash(successor))
                        p.sadd(self._ku(successor.user_id), successor.token)
                        p.sadd(self._kf(successor.family), successor.token)
                        p.execute()
                    return RotationResult.OK
                except redis.WatchError:
                    # Concurrent modification detected; re-read and decide again
                    continue

    def revoke_family(self, family: str, *, ip: str, now: datetime) -> int:
        with _unavailable("revoking a token family"):
            return self._revoke_index(self._kf(family), ip=ip, now=now)

    def revoke_all_for_user(self, user_id: str, *, ip: str, now: datetime) -> int:
        with _unavailable("revoking user tokens"):
            return self._revoke_index(self._ku(user_id), ip=ip, now=now)
