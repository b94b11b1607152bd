"""Application settings with environment-based simple classes."""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import timedelta
from typing import Final

from dotenv import load_dotenv

# Public selector env var (keep neutral name to avoid collisions)
ENV_VAR: Final[str] = "APP_ENV"  # 'development' | 'testing' | 'production'


# Load .env in development (no-op when the file does not exist)
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: bool, optional
        Value returned when the variable is unset. Defaults to ``False``.

    Returns
    -------
    bool
        ``True`` if the value resembles ``{"1", "true", "yes", "y", "on"}``
        ignoring case; otherwise ``False`` or ``default`` when missing.
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    """Parse an integer from an environment variable, falling back to ``default``."""
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return int(val)


def env_list(name: str, default: str) -> tuple[str, ...]:
    """Split a comma-separated environment variable into a tuple of tokens."""
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class BaseConfig:
    """Base configuration shared across environments.

    Attributes
    ----------
    SECRET_KEY: str
        Flask secret. Defaults to a development placeholder.
    JWT_SECRET_KEY: str
        Key used by ``flask-jwt-extended`` for signing access tokens. It is
        provisioned out of band; rotating it is not handled here.
    JWT_ISSUER / JWT_AUDIENCE: str
        Copied into the encode/decode issuer and audience settings so a token
        minted for another service is rejected.
    JWT_DECODE_LEEWAY: int
        Clock skew tolerance (seconds) applied when validating ``exp``/``iat``.
    ACCESS_TOKEN_TTL_MINUTES: int
        Access token lifetime. Deliberately much shorter than refresh tokens.
    REFRESH_TOKEN_TTL_DAYS: int
        Refresh token lifetime.
    PASSWORD_HASH_METHOD: str
        Werkzeug hashing method for the current credential format.
    LEGACY_HASH_ALGORITHMS: tuple[str, ...]
        Credential tags that verify but must be rehashed on login.
    TOKEN_STORE_BACKEND: str
        ``memory`` or ``redis``; selects the refresh token store.
    REDIS_URL: str | None
        Redis connection string; required when the backend is ``redis``.
    SQLALCHEMY_DATABASE_URI: str
        Database holding the ``users`` table.
    LOG_LEVEL: str
        Root logging verbosity (``INFO`` by default).

    Notes
    -----
    Values are primarily sourced from environment variables, enabling
    configuration without code changes.
    """

    # Secrets / security
    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_JWT")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "authority")
    JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authority-clients")
    JWT_DECODE_LEEWAY = env_int("JWT_DECODE_LEEWAY", 30)

    # flask-jwt-extended reads these names directly
    JWT_ENCODE_ISSUER = JWT_ISSUER
    JWT_DECODE_ISSUER = JWT_ISSUER
    JWT_ENCODE_AUDIENCE = JWT_AUDIENCE
    JWT_DECODE_AUDIENCE = JWT_AUDIENCE

    # Token lifetimes
    ACCESS_TOKEN_TTL_MINUTES = env_int("ACCESS_TOKEN_TTL_MINUTES", 15)
    REFRESH_TOKEN_TTL_DAYS = env_int("REFRESH_TOKEN_TTL_DAYS", 7)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=ACCESS_TOKEN_TTL_MINUTES)

    # Credentials
    PASSWORD_HASH_METHOD = os.getenv("PASSWORD_HASH_METHOD", "scrypt")
    LEGACY_HASH_ALGORITHMS = env_list("LEGACY_HASH_ALGORITHMS", "hmac-sha512")

    # Storage
    TOKEN_STORE_BACKEND = os.getenv("TOKEN_STORE_BACKEND", "memory")
    REDIS_URL = os.getenv("REDIS_URL")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///./dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Flask built-ins
    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    """Configuration tailored for local development."""

    DEBUG = env_bool("FLASK_DEBUG", True)


class TestingConfig(BaseConfig):
    """Configuration for automated test runs.

    Notes
    -----
    - Uses an in-memory SQLite database unless ``TEST_DATABASE_URL`` is set.
    - Forces the in-memory refresh token store and skips Redis entirely.
    - Uses the cheap ``pbkdf2`` hashing method to keep the suite fast.
    """

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    TOKEN_STORE_BACKEND = "memory"
    REDIS_URL = None
    PASSWORD_HASH_METHOD = "pbkdf2:sha256:1000"
    JWT_SECRET_KEY = "testing-secret"
    PROPAGATE_EXCEPTIONS = True


class ProductionConfig(BaseConfig):
    """Configuration defaults for production deployments."""

    DEBUG = False
    SQLALCHEMY_ECHO = False
    TOKEN_STORE_BACKEND = os.getenv("TOKEN_STORE_BACKEND", "redis")


# Map names -> classes (simple, explicit)
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Return the configuration class inferred from ``APP_ENV``.

    Falls back to :class:`DevelopmentConfig` when ``APP_ENV`` is unset or
    unknown.
    """
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)
