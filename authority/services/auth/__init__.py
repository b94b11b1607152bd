"""Login, refresh token rotation, logout and access token validation."""

from .dto import (
    AuthTokenConfig,
    ChangePasswordIn,
    LoginIn,
    LoginOut,
    LogoutIn,
    RefreshIn,
    TokenPairOut,
    UserSummary,
)
from .results import (
    AuthError,
    InfrastructureError,
    InvalidCredentials,
    InvalidToken,
    Ok,
    SecurityViolation,
    TokenExpired,
)
from .rotation import RotationEngine
from .service import AuthService

__all__ = [
    "AuthError",
    "AuthService",
    "AuthTokenConfig",
    "ChangePasswordIn",
    "InfrastructureError",
    "InvalidCredentials",
    "InvalidToken",
    "LoginIn",
    "LoginOut",
    "LogoutIn",
    "Ok",
    "RefreshIn",
    "RotationEngine",
    "SecurityViolation",
    "TokenExpired",
    "TokenPairOut",
    "UserSummary",
]
