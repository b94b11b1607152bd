# comments in English; reST docstrings
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import redis  # type: ignore[import-untyped]

from authority.services._shared.errors import StoreUnavailableError
from authority.services._shared.ports import (
    DeviceInfo,
    SessionRecord,
    SessionRegistrar,
    describe_user_agent,
)


@dataclass(slots=True)
class RedisSessionRegistrar(SessionRegistrar):
    """
    Redis-backed session tracker.

    - ``sess:{session_id}``: hash with ip, user agent and device label.
    - ``sess:u:{user_id}``: set of the user's session ids.

    Entries expire together with the refresh token lifetime.

    :param r: A Redis client (already connected).
    :param ttl: Lifetime of a session entry.
    """

    r: redis.Redis
    ttl: timedelta = timedelta(days=7)

    @staticmethod
    def _k(session_id: str) -> str:
        return f"sess:{session_id}"

    @staticmethod
    def _ku(user_id: str) -> str:
        return f"sess:u:{user_id}"

    def register(self, user_id: str, ip: str, user_agent: str | None) -> str:
        session_id = uuid4().hex
        device = describe_user_agent(user_agent)
        ttl = max(1, int(self.ttl.total_seconds()))
        key = self._k(session_id)
        try:
            pipe = self.r.pipeline(transaction=True)
            pipe.hset(
                key,
                mapping={
                    "user_id": user_id,
                    "ip": ip,
                    "user_agent": user_agent or "",
                    "device_type": device.device_type,
                    "browser": device.browser,
                    "os": device.operating_system,
                    "created_at": datetime.now(UTC).isoformat(),
                },
            )
            pipe.expire(key, ttl)
            pipe.sadd(self._ku(user_id), session_id)
            pipe.expire(self._ku(user_id), ttl)
            pipe.execute()
        except redis.RedisError as exc:
            raise StoreUnavailableError("Redis unavailable while registering a session") from exc
        return session_id

    def for_user(self, user_id: str) -> list[SessionRecord]:
        """List live sessions of ``user_id``, pruning ids whose hash expired."""
        key_u = self._ku(user_id)
        out: list[SessionRecord] = []
        stale: list[str] = []
        for member in sorted(self.r.smembers(key_u)):
            sid = member.decode() if isinstance(member, bytes | bytearray) else str(member)
            h = {
                (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
                for k, v in self.r.hgetall(self._k(sid)).items()
            }
            if not h:
                stale.append(sid)
                continue
            out.append(
                SessionRecord(
                    session_id=sid,
                    user_id=h.get("user_id", user_id),
                    ip=h.get("ip", ""),
                    user_agent=h.get("user_agent") or None,
                    device=DeviceInfo(
                        h.get("device_type", "Unknown"),
                        h.get("browser", "Unknown"),
                        h.get("os", "Unknown"),
                    ),
                    created_at=datetime.fromisoformat(h["created_at"]),
                )
            )
        if stale:
            # Remove all stale entries from the user's index in one call
            self.r.srem(key_u, *stale)
        return out
