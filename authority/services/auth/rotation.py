# authority/services/auth/rotation.py
"""
Refresh token lifecycle.

Per token: ``Active -> Rotated | Revoked`` (both terminal). Presenting a token
that is already revoked means somebody kept a copy of it after it was used or
withdrawn, so the whole family is revoked and the caller gets
:class:`~authority.services.auth.results.SecurityViolation`. Two concurrent
refreshes of one token end the same way: the store's conditional rotation
lets exactly one win and the loser observes the token as revoked.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import uuid4

from authority.core.logger import security_logger, token_digest
from authority.services._shared.errors import SigningUnavailableError, StoreUnavailableError
from authority.services._shared.ports import (
    AccessTokenIssuer,
    Principal,
    RefreshToken,
    RefreshTokenStore,
    RotationResult,
)
from authority.services.auth.dto import AuthTokenConfig, TokenPairOut
from authority.services.auth.results import (
    InfrastructureError,
    InvalidToken,
    Ok,
    SecurityViolation,
    TokenExpired,
)

log = logging.getLogger(__name__)
security_log = security_logger()

#: Recorded as ``revoked_by_ip``/``created_by_ip`` when the caller has no address.
UNKNOWN_IP = "unknown"

#: Upper bound when walking ``replaced_by_token`` links.
MAX_CHAIN_LENGTH = 10_000

PrincipalLoader = Callable[[str], Principal | None]


def client_ip_or_unknown(ip: str | None) -> str:
    """Strip ``ip``; a blank or missing address becomes :data:`UNKNOWN_IP`."""
    ip = (ip or "").strip()
    return ip or UNKNOWN_IP


def new_token_value() -> str:
    """Generate an opaque refresh token value (64 bytes of entropy)."""
    return secrets.token_urlsafe(64)


class RotationEngine:
    """
    Issue, rotate and revoke refresh tokens.

    The engine keeps no state between calls; all coordination happens in the
    :class:`RefreshTokenStore`.

    :param store: Refresh token persistence with atomic rotation.
    :param issuer: Access token issuer.
    :param principals: Resolves a user id to its current :class:`Principal`,
        or ``None`` when the user is gone or disabled.
    :param cfg: Token lifetimes.
    :param clock: Source of "now" (UTC).
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        issuer: AccessTokenIssuer,
        principals: PrincipalLoader,
        cfg: AuthTokenConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.principals = principals
        self.cfg = cfg or AuthTokenConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    def start(
        self, principal: Principal, client_ip: str | None
    ) -> Ok[TokenPairOut] | InfrastructureError:
        """
        Open a new token family for an already authenticated principal.

        :param principal: Identity verified by the credential check.
        :param client_ip: Caller address.
        :returns: Fresh access/refresh pair, or ``InfrastructureError``.
        """
        now = self._clock()
        record = self._new_record(
            user_id=principal.user_id,
            family=str(uuid4()),
            ip=client_ip_or_unknown(client_ip),
            now=now,
        )
        try:
            # Sign first: nothing is persisted unless the pair can be delivered
            access = self.issuer.issue(principal, expires_delta=self.cfg.access_expires)
            self.store.create(record)
        except SigningUnavailableError:
            log.error("Access token signing failed while opening a session", exc_info=True)
            return InfrastructureError()
        except StoreUnavailableError:
            log.error("Refresh store unavailable while opening a session", exc_info=True)
            return InfrastructureError()

        log.info("Opened token family for user %s", principal.user_id)
        return Ok(TokenPairOut(access, record.token, record.expires_at))

    # ------------------------------------------------------------------ #
    # Refresh with atomic rotation
    # ------------------------------------------------------------------ #

    def refresh(
        self, presented: str, client_ip: str | None
    ) -> Ok[TokenPairOut] | InvalidToken | TokenExpired | SecurityViolation | InfrastructureError:
        """
        Exchange an active refresh token for a new pair.

        Security
        --------
        - Unknown token → ``InvalidToken`` (reason only in logs).
        - Expired token → ``TokenExpired``.
        - Revoked token → family revoked, ``SecurityViolation``.
        - Active token → consumed by a single conditional write in the store.
        """
        ip = client_ip_or_unknown(client_ip)
        try:
            return self._refresh(presented, ip)
        except SigningUnavailableError:
            log.error("Access token signing failed during rotation", exc_info=True)
            return InfrastructureError()
        except StoreUnavailableError:
            log.error("Refresh store unavailable during rotation", exc_info=True)
            return InfrastructureError()

    def _refresh(
        self, presented: str, ip: str
    ) -> Ok[TokenPairOut] | InvalidToken | TokenExpired | SecurityViolation:
        digest = token_digest(presented)
        record = self.store.get(presented) if presented else None
        if record is None:
            log.warning("Refresh rejected: token %s not found", digest)
            return InvalidToken()

        now = self._clock()
        if record.is_expired(now):
            log.info("Refresh rejected: token %s expired at %s", digest, record.expires_at)
            return TokenExpired()

        if record.is_revoked:
            return self._compromised(record, ip=ip, now=now, reason="revoked token presented")

        principal = self.principals(record.user_id)
        if principal is None:
            log.warning("Refresh rejected: owner %s of token %s unavailable", record.user_id, digest)
            return InvalidToken()

        # Signed before the rotation commits; a signing failure leaves the token active
        access = self.issuer.issue(principal, expires_delta=self.cfg.access_expires)
        successor = self._new_record(user_id=record.user_id, family=record.family, ip=ip, now=now)
        outcome = self.store.rotate(
            old_token=presented,
            successor=successor,
            revoked_by_ip=ip,
            now=now,
        )

        if outcome is RotationResult.REVOKED:
            # Lost a race against another rotation of the same token
            return self._compromised(record, ip=ip, now=now, reason="concurrent reuse")
        if outcome is RotationResult.EXPIRED:
            return TokenExpired()
        if outcome is RotationResult.NOT_FOUND:
            log.warning("Refresh rejected: token %s vanished during rotation", digest)
            return InvalidToken()

        log.info("Rotated refresh token for user %s from %s", record.user_id, ip)
        return Ok(TokenPairOut(access, successor.token, successor.expires_at))

    def _compromised(
        self, record: RefreshToken, *, ip: str, now: datetime, reason: str
    ) -> SecurityViolation:
        revoked = self.store.revoke_family(record.family, ip=ip, now=now)
        security_log.warning(
            "Refresh token reuse detected (%s); family revoked",
            reason,
            extra={
                "event": "refresh_token_reuse",
                "user_id": record.user_id,
                "family": record.family,
                "client_ip": ip,
                "token": token_digest(record.token),
                "revoked": revoked,
            },
        )
        return SecurityViolation(family=record.family, revoked=revoked)

    # ------------------------------------------------------------------ #
    # Revocation
    # ------------------------------------------------------------------ #

    def logout(
        self, user_id: str, presented: str | None, client_ip: str | None
    ) -> Ok[int] | InfrastructureError:
        """
        Revoke the presented token (when owned by ``user_id``) and every other
        token of the user across all families.

        :returns: ``Ok`` with the number of tokens revoked.
        """
        ip = client_ip_or_unknown(client_ip)
        now = self._clock()
        revoked = 0
        try:
            record = self.store.get(presented) if presented else None
            if record is None:
                log.info("Logout for user %s without a known refresh token", user_id)
            elif record.user_id != user_id:
                security_log.warning(
                    "Logout presented a refresh token owned by another user",
                    extra={
                        "event": "logout_foreign_token",
                        "user_id": user_id,
                        "client_ip": ip,
                        "token": token_digest(presented),
                    },
                )
            elif self.store.revoke(record.token, ip=ip, now=now):
                revoked += 1

            revoked += self.store.revoke_all_for_user(user_id, ip=ip, now=now)
        except StoreUnavailableError:
            log.error("Refresh store unavailable during logout", exc_info=True)
            return InfrastructureError()

        security_log.info(
            "User signed out of every session",
            extra={"event": "logout_all", "user_id": user_id, "client_ip": ip, "revoked": revoked},
        )
        return Ok(revoked)

    def revoke_family(self, family: str, client_ip: str | None) -> Ok[int] | InfrastructureError:
        """Revoke every non-revoked token of ``family``."""
        ip = client_ip_or_unknown(client_ip)
        try:
            revoked = self.store.revoke_family(family, ip=ip, now=self._clock())
        except StoreUnavailableError:
            log.error("Refresh store unavailable while revoking a family", exc_info=True)
            return InfrastructureError()
        security_log.info(
            "Token family revoked",
            extra={"event": "family_revoked", "family": family, "client_ip": ip, "revoked": revoked},
        )
        return Ok(revoked)

    def revoke_all(self, user_id: str, client_ip: str | None) -> Ok[int] | InfrastructureError:
        """Sign ``user_id`` out everywhere."""
        ip = client_ip_or_unknown(client_ip)
        try:
            revoked = self.store.revoke_all_for_user(user_id, ip=ip, now=self._clock())
        except StoreUnavailableError:
            log.error("Refresh store unavailable while revoking user tokens", exc_info=True)
            return InfrastructureError()
        security_log.info(
            "All refresh tokens revoked",
            extra={"event": "user_revoked", "user_id": user_id, "client_ip": ip, "revoked": revoked},
        )
        return Ok(revoked)

    # ------------------------------------------------------------------ #
    # Audit
    # ------------------------------------------------------------------ #

    def audit_chain(self, token: str) -> Ok[list[RefreshToken]] | InfrastructureError:
        """
        Follow ``replaced_by_token`` links starting at ``token``.

        Pure audit metadata; nothing here affects validation.
        """
        chain: list[RefreshToken] = []
        seen: set[str] = set()
        current: str | None = token
        try:
            while current and current not in seen and len(chain) < MAX_CHAIN_LENGTH:
                seen.add(current)
                record = self.store.get(current)
                if record is None:
                    break
                chain.append(record)
                current = record.replaced_by_token
        except StoreUnavailableError:
            log.error("Refresh store unavailable while walking a token chain", exc_info=True)
            return InfrastructureError()
        return Ok(chain)

    # ------------------------------------------------------------------ #
    # Utilities
    # ------------------------------------------------------------------ #

    def _new_record(self, *, user_id: str, family: str, ip: str, now: datetime) -> RefreshToken:
        return RefreshToken(
            token=new_token_value(),
            user_id=user_id,
            family=family,
            created_at=now,
            expires_at=now + self.cfg.refresh_expires,
            created_by_ip=ip,
        )
