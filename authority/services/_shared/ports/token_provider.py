from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from authority.services._shared.errors import (
    AccessTokenExpiredError,
    InvalidAccessTokenError,
)


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated identity an access token is minted for.

    :ivar user_id: Subject identifier.
    :ivar role: Role claim (e.g. ``User`` / ``Admin``).
    """

    user_id: str
    role: str


@dataclass(frozen=True, slots=True)
class AccessClaims:
    """Claims extracted from a verified access token."""

    subject: str
    role: str
    issued_at: datetime
    expires_at: datetime
    jti: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AccessClaims:
        try:
            return cls(
                subject=str(payload["sub"]),
                role=str(payload.get("role", "")),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=UTC),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
                jti=payload.get("jti"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidAccessTokenError("Malformed access token claims.") from exc


class AccessTokenIssuer(Protocol):
    """
    Port for minting and verifying access tokens.

    ``validate`` rejects expired tokens; ``parse_expired`` accepts them but
    still enforces signature, structure, issuer and audience. Both raise
    :class:`InvalidAccessTokenError` (``AccessTokenExpiredError`` for pure
    expiry in ``validate``). ``issue`` raises
    :class:`~authority.services._shared.errors.SigningUnavailableError` when the
    token cannot be signed.
    """

    def issue(self, principal: Principal, *, expires_delta: timedelta | None = None) -> str: ...

    def validate(self, token: str) -> AccessClaims: ...

    def parse_expired(self, token: str) -> AccessClaims: ...


class StubAccessTokenIssuer(AccessTokenIssuer):
    """Deterministic issuer used in unit tests (no signing, registry-backed)."""

    def __init__(self, *, ttl: timedelta = timedelta(minutes=15)) -> None:
        self.ttl = ttl
        self._seq = 0
        self._issued: dict[str, dict[str, Any]] = {}

    def issue(self, principal: Principal, *, expires_delta: timedelta | None = None) -> str:
        self._seq += 1
        now = datetime.now(UTC)
        token = f"access.{principal.user_id}.{self._seq}"
        self._issued[token] = {
            "sub": principal.user_id,
            "role": principal.role,
            "jti": f"jti-{self._seq}",
            "iat": int(now.timestamp()),
            "exp": int((now + (expires_delta or self.ttl)).timestamp()),
        }
        return token

    def parse_expired(self, token: str) -> AccessClaims:
        payload = self._issued.get(token)
        if payload is None:
            raise InvalidAccessTokenError("Unknown access token.")
        return AccessClaims.from_payload(payload)

    def validate(self, token: str) -> AccessClaims:
        claims = self.parse_expired(token)
        if claims.expires_at <= datetime.now(UTC):
            raise AccessTokenExpiredError("Access token expired.")
        return claims
