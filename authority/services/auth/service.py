# authority/services/auth/service.py
from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from authority.services._shared.base import BaseService
from authority.services._shared.errors import (
    AccessTokenExpiredError,
    InvalidAccessTokenError,
    NotFoundError,
    StoreUnavailableError,
)
from authority.services._shared.ports import (
    AccessClaims,
    AccessTokenIssuer,
    Principal,
    RefreshToken,
    RefreshTokenStore,
    SessionRegistrar,
)
from authority.services.auth.dto import (
    AuthTokenConfig,
    ChangePasswordIn,
    LoginIn,
    LoginOut,
    LogoutIn,
    RefreshIn,
    TokenPairOut,
    UserSummary,
)
from authority.services.auth.results import (
    InfrastructureError,
    InvalidCredentials,
    InvalidToken,
    Ok,
    SecurityViolation,
    TokenExpired,
)
from authority.services.auth.rotation import RotationEngine, client_ip_or_unknown
from authority.services.credentials.hashing import Credential
from authority.services.credentials.service import CredentialVerifier

log = logging.getLogger(__name__)


class AuthService(BaseService):
    """
    Authentication lifecycle service (login / refresh / logout / validation).

    Credentials are verified against the ``users`` table through a Unit of
    Work; refresh tokens are handled by a :class:`RotationEngine` over a
    pluggable :class:`RefreshTokenStore`; access tokens come from an
    :class:`AccessTokenIssuer`. Every public method returns a tagged result
    (see :mod:`authority.services.auth.results`) instead of raising.
    """

    def __init__(
        self,
        *,
        token_issuer: AccessTokenIssuer,
        refresh_store: RefreshTokenStore,
        verifier: CredentialVerifier | None = None,
        session_registrar: SessionRegistrar | None = None,
        token_cfg: AuthTokenConfig | None = None,
    ) -> None:
        """
        Initialize the service with its dependencies.

        :param token_issuer: Adapter for signing/verifying access tokens.
        :param refresh_store: Refresh token persistence (atomic rotation).
        :param verifier: Password verification and format migration.
        :param session_registrar: Best-effort session tracking (optional).
        :param token_cfg: Access/Refresh expiry configuration.
        """
        super().__init__()
        self.tokens = token_issuer
        self.refresh_store = refresh_store
        self.verifier = verifier or CredentialVerifier()
        self.sessions = session_registrar
        self.cfg = token_cfg or AuthTokenConfig()
        self.engine = RotationEngine(
            store=refresh_store,
            issuer=token_issuer,
            principals=self._load_principal,
            cfg=self.cfg,
        )

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    def login(self, dto: LoginIn) -> Ok[LoginOut] | InvalidCredentials | InfrastructureError:
        """
        Authenticate credentials and issue a fresh token pair.

        A legacy credential is rewritten in the current format before this
        returns; if that write fails the login still succeeds.

        :param dto: Login input.
        :returns: ``Ok(LoginOut)``, ``InvalidCredentials`` or ``InfrastructureError``.
        """
        try:
            with self.rw_uow() as uow:
                user = uow.users.get_by_email(dto.email)
                if user is None or not user.is_active:
                    self.verifier.burn(dto.password)
                    log.warning("Login rejected: unknown or inactive identity")
                    return InvalidCredentials()

                check = self.verifier.verify_and_upgrade(user.credential, dto.password)
                if not check.valid:
                    log.warning("Login rejected: invalid password for user %s", user.id)
                    return InvalidCredentials()

                principal = Principal(user_id=str(user.id), role=user.role)
                summary = UserSummary(
                    id=user.id, email=user.email, username=user.username, role=user.role
                )
        except SQLAlchemyError:
            log.error("User store unavailable during login", exc_info=True)
            return InfrastructureError()

        if check.upgraded is not None:
            self._persist_upgrade(summary.id, check.upgraded)

        started = self.engine.start(principal, dto.client_ip)
        if not isinstance(started, Ok):
            return started

        session_id = self._register_session(principal.user_id, dto.client_ip, dto.user_agent)
        log.info("User %s logged in", summary.id)
        return Ok(LoginOut(tokens=started.value, user=summary, session_id=session_id))

    # ------------------------------------------------------------------ #
    # Refresh / logout / revocation
    # ------------------------------------------------------------------ #

    def refresh(
        self, dto: RefreshIn
    ) -> Ok[TokenPairOut] | InvalidToken | TokenExpired | SecurityViolation | InfrastructureError:
        """Rotate a refresh token and emit a new token pair."""
        return self.engine.refresh(dto.refresh_token, dto.client_ip)

    def logout(self, dto: LogoutIn) -> Ok[int] | InfrastructureError:
        """Revoke the presented refresh token and every other token of the user."""
        return self.engine.logout(dto.user_id, dto.refresh_token, dto.client_ip)

    def revoke_all(self, user_id: str, client_ip: str | None = None) -> Ok[int] | InfrastructureError:
        """Administrative "sign out everywhere"."""
        return self.engine.revoke_all(user_id, client_ip)

    def audit_chain(self, token: str) -> Ok[list[RefreshToken]] | InfrastructureError:
        return self.engine.audit_chain(token)

    # ------------------------------------------------------------------ #
    # Access tokens
    # ------------------------------------------------------------------ #

    def validate_access_token(self, token: str) -> Ok[AccessClaims] | InvalidToken | TokenExpired:
        """
        Verify signature and expiry of an access token (never touches a store).
        """
        try:
            return Ok(self.tokens.validate(token))
        except AccessTokenExpiredError:
            return TokenExpired()
        except InvalidAccessTokenError:
            return InvalidToken()

    def parse_expired_access_token(self, token: str) -> Ok[AccessClaims] | InvalidToken:
        """
        Extract claims from a correctly signed access token even if it expired.

        Used to identify the holder during refresh flows.
        """
        try:
            return Ok(self.tokens.parse_expired(token))
        except InvalidAccessTokenError:
            return InvalidToken()

    # ------------------------------------------------------------------ #
    # Password change
    # ------------------------------------------------------------------ #

    def change_password(
        self, dto: ChangePasswordIn
    ) -> Ok[int] | InvalidCredentials | InfrastructureError:
        """
        Replace the user's password and revoke every refresh token they hold.

        :returns: ``Ok`` with the number of revoked refresh tokens.
        """
        user_id = self._coerce_user_id(dto.user_id)
        if user_id is None:
            return InvalidCredentials()
        try:
            new_credential = self.verifier.hasher.hash(dto.new_password)
        except ValueError:
            return InvalidCredentials("New password must be a non-empty string")

        try:
            with self.rw_uow() as uow:
                user = uow.users.get(user_id)
                if user is None or not self.verifier.verify(user.credential, dto.current_password):
                    log.warning("Password change rejected for user %s", dto.user_id)
                    return InvalidCredentials("Current password is incorrect")
                uow.users.update_credential(user_id, new_credential)
        except SQLAlchemyError:
            log.error("User store unavailable during password change", exc_info=True)
            return InfrastructureError()

        log.info("Password changed for user %s", dto.user_id)
        return self.engine.revoke_all(dto.user_id, dto.client_ip)

    # ------------------------------------------------------------------ #
    # Utilities
    # ------------------------------------------------------------------ #

    def _persist_upgrade(self, user_id: int, credential: Credential) -> bool:
        try:
            with self.rw_uow() as uow:
                uow.users.update_credential(user_id, credential)
        except (SQLAlchemyError, NotFoundError):
            log.warning(
                "Credential upgrade failed for user %s; continuing login", user_id, exc_info=True
            )
            return False
        log.info("Credential for user %s migrated to %s", user_id, credential.algorithm)
        return True

    def _register_session(
        self, user_id: str, client_ip: str | None, user_agent: str | None
    ) -> str | None:
        if self.sessions is None:
            return None
        try:
            return self.sessions.register(user_id, client_ip_or_unknown(client_ip), user_agent)
        except Exception:
            # Session tracking must never block a login
            log.warning("Session registration failed for user %s", user_id, exc_info=True)
            return None

    def _load_principal(self, user_id: str) -> Principal | None:
        """Resolve the refresh token owner's current role; ``None`` if gone or disabled."""
        uid = self._coerce_user_id(user_id)
        if uid is None:
            return None
        try:
            with self.rw_uow() as uow:
                user = uow.users.get(uid)
                if user is None or not user.is_active:
                    return None
                return Principal(user_id=str(user.id), role=user.role)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("User store unavailable") from exc

    @staticmethod
    def _coerce_user_id(subject: int | str) -> int | None:
        """Return ``subject`` as an integer user id, or ``None`` when it is not one."""
        if isinstance(subject, int):
            return subject
        if isinstance(subject, str) and subject.isdigit():
            return int(subject)
        return None
