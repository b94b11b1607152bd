# authority/infra/jwt/flask_jwt_token_provider.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, cast

import jwt as pyjwt

from authority.services._shared.errors import (
    AccessTokenExpiredError,
    InvalidAccessTokenError,
    SigningUnavailableError,
)
from authority.services._shared.ports import AccessClaims, AccessTokenIssuer, Principal


@dataclass(slots=True)
class FlaskJWTAccessTokenIssuer(AccessTokenIssuer):
    """
    Adapter for Flask-JWT-Extended.

    Signing key, algorithm, issuer, audience and clock leeway come from the
    ``JWT_*`` settings of the current app (see :mod:`authority.core.config`).

    .. note::
       Requires an active Flask app context with proper JWT settings.
    """

    def issue(self, principal: Principal, *, expires_delta: timedelta | None = None) -> str:
        from flask_jwt_extended import create_access_token as _create_access
        from flask_jwt_extended.exceptions import JWTExtendedException

        try:
            # expires_delta=None falls back to JWT_ACCESS_TOKEN_EXPIRES
            token = _create_access(
                identity=str(principal.user_id),
                additional_claims={"role": principal.role},
                expires_delta=expires_delta,
            )
        except (pyjwt.PyJWTError, JWTExtendedException, RuntimeError, TypeError, ValueError) as exc:
            # RuntimeError covers a missing app context or secret and unsupported algorithms
            raise SigningUnavailableError("Access token could not be signed.") from exc
        return cast(str, token)

    def validate(self, token: str) -> AccessClaims:
        return AccessClaims.from_payload(self._decode(token, allow_expired=False))

    def parse_expired(self, token: str) -> AccessClaims:
        return AccessClaims.from_payload(self._decode(token, allow_expired=True))

    def _decode(self, token: str, *, allow_expired: bool) -> dict[str, Any]:
        from flask_jwt_extended import decode_token
        from flask_jwt_extended.exceptions import JWTExtendedException

        if not token or not isinstance(token, str):
            raise InvalidAccessTokenError("Missing access token.")
        try:
            payload = cast(dict[str, Any], decode_token(token, allow_expired=allow_expired))
        except pyjwt.ExpiredSignatureError as exc:
            raise AccessTokenExpiredError("Access token expired.") from exc
        except (pyjwt.PyJWTError, JWTExtendedException) as exc:
            raise InvalidAccessTokenError("Access token rejected.") from exc

        # Flask-JWT-Extended sets "type": "access" | "refresh"
        if payload.get("type") != "access":
            raise InvalidAccessTokenError("Not an access token.")
        return payload
