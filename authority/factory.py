"""Application factory wiring Flask extensions, the auth service and the CLI."""

from __future__ import annotations

import logging

from flask import Flask, current_app

from authority.core.config import BaseConfig, get_config
from authority.core.logger import configure_logging, init_app as init_logging
from authority.services.auth import AuthService, AuthTokenConfig
from authority.services.credentials import CredentialVerifier, PasswordHasher

log = logging.getLogger(__name__)

AUTH_SERVICE_KEY = "auth_service"


def create_app(
    config: str | type[BaseConfig] | object | None = None,
    *,
    instance_relative_config: bool = True,
    instance_config_filename: str = "config.py",
) -> Flask:
    """Build and configure the Flask application."""

    app = Flask(__name__, instance_relative_config=instance_relative_config)

    app.config.from_object(get_config() if config is None else config)
    if instance_relative_config and instance_config_filename:
        app.config.from_pyfile(instance_config_filename, silent=True)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    from authority.core import extensions

    extensions.init_app(app)

    init_logging(app)

    app.extensions[AUTH_SERVICE_KEY] = build_auth_service(app)

    from authority import cli as app_cli

    app_cli.init_app(app)

    return app


def build_auth_service(app: Flask) -> AuthService:
    """
    Assemble an :class:`AuthService` from the app configuration.

    ``TOKEN_STORE_BACKEND`` selects the refresh token store and session
    registrar: ``redis`` uses the client set up by
    :func:`authority.core.extensions.init_app`, anything else the in-memory
    implementations.

    :raises RuntimeError: If ``redis`` is selected without ``REDIS_URL``.
    """
    cfg = app.config
    token_cfg = AuthTokenConfig.from_mapping(cfg)
    hasher = PasswordHasher(
        method=cfg.get("PASSWORD_HASH_METHOD", "scrypt"),
        legacy_algorithms=cfg.get("LEGACY_HASH_ALGORITHMS", ()),
    )

    from authority.infra.jwt import FlaskJWTAccessTokenIssuer

    backend = str(cfg.get("TOKEN_STORE_BACKEND", "memory")).strip().lower()
    if backend == "redis":
        from authority.core.extensions import get_redis
        from authority.infra.redis import RedisRefreshTokenStore, RedisSessionRegistrar

        client = get_redis()
        store = RedisRefreshTokenStore(client)
        sessions = RedisSessionRegistrar(client, ttl=token_cfg.refresh_expires)
    else:
        from authority.services._shared.ports import (
            InMemoryRefreshTokenStore,
            InMemorySessionRegistrar,
        )

        store = InMemoryRefreshTokenStore()
        sessions = InMemorySessionRegistrar()

    log.info("Refresh token store backend: %s", backend)
    return AuthService(
        token_issuer=FlaskJWTAccessTokenIssuer(),
        refresh_store=store,
        verifier=CredentialVerifier(hasher),
        session_registrar=sessions,
        token_cfg=token_cfg,
    )


def get_auth_service(app: Flask | None = None) -> AuthService:
    """Return the service built for ``app`` (default: the current app)."""
    target = app or current_app
    return target.extensions[AUTH_SERVICE_KEY]
