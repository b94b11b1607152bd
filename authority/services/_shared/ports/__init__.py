"""
authority.services._shared.ports
================================

Collection of *ports* (hexagonal interfaces) that define the contracts for
token issuance, refresh token persistence and session tracking.

These ports decouple the service layer from concrete implementations.

Modules
-------
- :mod:`token_provider`:
    Defines :class:`~.AccessTokenIssuer`, the abstraction for signing and
    verifying access tokens, plus :class:`~.Principal` and
    :class:`~.AccessClaims`.

- :mod:`refresh_token_store`:
    Defines :class:`~.RefreshTokenStore`, :class:`~.RefreshToken` and
    :class:`~.RotationResult`: refresh token persistence with atomic rotation.

- :mod:`session_registrar`:
    Defines :class:`~.SessionRegistrar`: best-effort device/session tracking.

Design Notes
------------
Concrete adapters (Redis, Flask-JWT-Extended) live under ``authority.infra``.
The in-memory implementations here are reference implementations used by
tests and single-process deployments.
"""

from __future__ import annotations

from .refresh_token_store import (
    InMemoryRefreshTokenStore,
    RefreshToken,
    RefreshTokenStore,
    RotationResult,
)
from .session_registrar import (
    DeviceInfo,
    InMemorySessionRegistrar,
    SessionRecord,
    SessionRegistrar,
    describe_user_agent,
)
from .token_provider import (
    AccessClaims,
    AccessTokenIssuer,
    Principal,
    StubAccessTokenIssuer,
)

__all__ = [
    "AccessClaims",
    "AccessTokenIssuer",
    "DeviceInfo",
    "InMemoryRefreshTokenStore",
    "InMemorySessionRegistrar",
    "Principal",
    "RefreshToken",
    "RefreshTokenStore",
    "RotationResult",
    "SessionRecord",
    "SessionRegistrar",
    "StubAccessTokenIssuer",
    "describe_user_agent",
]
