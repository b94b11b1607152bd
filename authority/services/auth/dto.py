# authority/services/auth/dto.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

# ---------------------------- Input DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class LoginIn:
    """
    Input DTO for login.

    :param email: User email (normalized by the repository).
    :type email: str
    :param password: Raw password (to be verified, never logged).
    :type password: str
    :param client_ip: Caller address recorded on the first refresh token.
    :type client_ip: str | None
    :param user_agent: Caller User-Agent for session tracking.
    :type user_agent: str | None
    """

    email: str
    password: str
    client_ip: str | None = None
    user_agent: str | None = None

    def __repr__(self) -> str:  # pragma: no cover - keep the password out of logs
        return f"LoginIn(email={self.email!r}, client_ip={self.client_ip!r})"


@dataclass(frozen=True, slots=True)
class RefreshIn:
    """
    Input DTO for token refresh.

    :param refresh_token: Opaque refresh token value.
    :type refresh_token: str
    :param client_ip: Caller address.
    :type client_ip: str | None
    """

    refresh_token: str
    client_ip: str | None = None


@dataclass(frozen=True, slots=True)
class LogoutIn:
    """
    Input DTO for logout.

    :param user_id: Authenticated user (from the access token subject).
    :type user_id: str
    :param refresh_token: Refresh token presented with the request.
    :type refresh_token: str | None
    :param client_ip: Caller address.
    :type client_ip: str | None
    """

    user_id: str
    refresh_token: str | None = None
    client_ip: str | None = None


@dataclass(frozen=True, slots=True)
class ChangePasswordIn:
    user_id: str
    current_password: str
    new_password: str
    client_ip: str | None = None

    def __repr__(self) -> str:  # pragma: no cover
        return f"ChangePasswordIn(user_id={self.user_id!r})"


# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPairOut:
    """
    Output DTO with access and refresh tokens.

    :param access_token: Encoded access JWT.
    :type access_token: str
    :param refresh_token: Opaque refresh token.
    :type refresh_token: str
    :param expires_at: Refresh token expiry.
    :type expires_at: datetime
    """

    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class UserSummary:
    id: int
    email: str
    username: str
    role: str


@dataclass(frozen=True, slots=True)
class LoginOut:
    tokens: TokenPairOut
    user: UserSummary
    session_id: str | None = None


# ------------------------------ Config DTO -------------------------------- #


@dataclass(frozen=True, slots=True)
class AuthTokenConfig:
    """
    Token emission configuration.

    :param access_expires: Access token lifetime.
    :type access_expires: timedelta
    :param refresh_expires: Refresh token lifetime.
    :type refresh_expires: timedelta
    """

    access_expires: timedelta = timedelta(minutes=15)
    refresh_expires: timedelta = timedelta(days=7)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> AuthTokenConfig:
        """Build from a Flask-style config mapping."""
        return cls(
            access_expires=timedelta(minutes=int(config.get("ACCESS_TOKEN_TTL_MINUTES", 15))),
            refresh_expires=timedelta(days=int(config.get("REFRESH_TOKEN_TTL_DAYS", 7))),
        )
