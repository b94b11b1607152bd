"""User model: the identity and credential material the authority verifies."""

from __future__ import annotations

from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import Boolean, Index, String, UniqueConstraint, true
from sqlalchemy.orm import Mapped, mapped_column, validates

from authority.core.extensions import db
from authority.services.credentials.hashing import (
    CURRENT_ALGORITHM,
    DEFAULT_METHOD,
    Credential,
    PasswordHasher,
)

from .base import PKMixin, ReprMixin, TimestampMixin

DEFAULT_ROLE = "User"


def _hasher() -> PasswordHasher:
    if has_app_context():
        return PasswordHasher(
            method=current_app.config.get("PASSWORD_HASH_METHOD", DEFAULT_METHOD)
        )
    return PasswordHasher()


class User(PKMixin, ReprMixin, TimestampMixin, db.Model):
    """
    Authentication identity.

    Profile data lives elsewhere; this table only carries what login and token
    issuance need.

    Fields
    ------
    email : str
        Login email. Stored normalized (lowercase, trimmed).
    username : str
        Public alias. Unique per system.
    password_hash : str
        Opaque hash (write via ``password`` or :meth:`apply_credential`).
    password_salt : str | None
        Separate salt, only used by legacy formats.
    hash_algorithm : str
        Credential format tag (``werkzeug`` or a legacy tag).
    role : str
        Role claim embedded in access tokens.
    is_active : bool
        Disabled users cannot log in or refresh.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(254), nullable=False)
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(254), nullable=False, default="")
    password_salt: Mapped[str | None] = mapped_column(String(128), nullable=True)
    hash_algorithm: Mapped[str] = mapped_column(
        String(32), nullable=False, default=CURRENT_ALGORITHM
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=DEFAULT_ROLE)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("username", name="uq_users_username"),
        Index("ix_users_email", "email"),
    )

    # -------------------- Credential API --------------------
    @property
    def password(self) -> Any:  # pragma: no cover - explicit write-only contract
        """
        Disallow reading passwords.

        :raises AttributeError: Always, to ensure password is write-only.
        """
        raise AttributeError("Password is write-only.")

    @password.setter
    def password(self, raw: str) -> None:
        """
        Hash and set the password in the current format.

        Uses ``PASSWORD_HASH_METHOD`` when an app context is active.

        :param raw: Plain text password to hash.
        :type raw: str
        """
        self.apply_credential(_hasher().hash(raw))

    @property
    def credential(self) -> Credential:
        return Credential(
            password_hash=self.password_hash or "",
            salt=self.password_salt,
            algorithm=self.hash_algorithm or CURRENT_ALGORITHM,
        )

    def apply_credential(self, credential: Credential) -> None:
        """Replace the stored credential (hash, salt and tag move together)."""
        self.password_hash = credential.password_hash
        self.password_salt = credential.salt
        self.hash_algorithm = credential.algorithm

    # -------------------- Validators --------------------
    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        """
        Normalize and validate email.

        :raises ValueError: If email is missing or malformed.
        """
        if not value or not isinstance(value, str):
            raise ValueError("Email is required.")
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Email format looks invalid.")
        return v

    @validates("username")
    def _normalize_username(self, key: str, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Username is required.")
        return value.strip()
