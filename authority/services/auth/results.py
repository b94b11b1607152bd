"""
Tagged outcomes returned by the authentication services.

Every public operation returns exactly one of these values instead of raising,
so callers have to handle each case explicitly::

    result = service.refresh(RefreshIn(refresh_token=rt, client_ip=ip))
    if isinstance(result, Ok):
        ...
    elif isinstance(result, SecurityViolation):
        ...  # force full re-authentication, alert the user

``code`` is a stable machine identifier; ``retryable`` tells the caller
whether repeating the same request may succeed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome carrying the operation's payload."""

    value: T

    ok: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class InvalidCredentials:
    """Unknown identity, disabled account or wrong password (one shared response)."""

    message: str = "Invalid email or password"

    ok: ClassVar[bool] = False
    code: ClassVar[str] = "invalid_credentials"
    retryable: ClassVar[bool] = False


@dataclass(frozen=True, slots=True)
class InvalidToken:
    """Unknown, malformed or otherwise unusable token."""

    message: str = "Invalid token"

    ok: ClassVar[bool] = False
    code: ClassVar[str] = "invalid_token"
    retryable: ClassVar[bool] = False


@dataclass(frozen=True, slots=True)
class TokenExpired:
    """Token past its expiry."""

    message: str = "Token has expired"

    ok: ClassVar[bool] = False
    code: ClassVar[str] = "token_expired"
    retryable: ClassVar[bool] = False


@dataclass(frozen=True, slots=True)
class SecurityViolation:
    """
    Refresh token reuse detected.

    By the time this is returned the whole family has been revoked.

    :ivar family: Family identifier that was revoked.
    :ivar revoked: Number of tokens revoked by the cascade.
    """

    family: str
    revoked: int = 0
    message: str = "Refresh token has been revoked due to a security violation"

    ok: ClassVar[bool] = False
    code: ClassVar[str] = "security_violation"
    retryable: ClassVar[bool] = False


@dataclass(frozen=True, slots=True)
class InfrastructureError:
    """A backing store or the signer was unavailable; safe to retry."""

    message: str = "Authentication service temporarily unavailable"

    ok: ClassVar[bool] = False
    code: ClassVar[str] = "infrastructure_error"
    retryable: ClassVar[bool] = True


AuthError = InvalidCredentials | InvalidToken | TokenExpired | SecurityViolation | InfrastructureError

__all__ = [
    "AuthError",
    "InfrastructureError",
    "InvalidCredentials",
    "InvalidToken",
    "Ok",
    "SecurityViolation",
    "TokenExpired",
]
