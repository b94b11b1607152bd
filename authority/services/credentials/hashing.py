"""
Password hashing formats.

Two families of stored credentials are recognised:

``werkzeug``
    The current format. The hash string is self-describing
    (``method$salt$digest``) so :attr:`Credential.salt` stays empty.

``hmac-sha512``
    Legacy format inherited from the previous platform: base64 HMAC-SHA512 of
    the UTF-8 password keyed with the (base64) salt. It still verifies, but
    must be rewritten in the current format on the next successful login.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from collections.abc import Iterable
from dataclasses import dataclass

from werkzeug.security import check_password_hash, generate_password_hash

CURRENT_ALGORITHM = "werkzeug"
LEGACY_HMAC_SHA512 = "hmac-sha512"

DEFAULT_METHOD = "scrypt"


@dataclass(frozen=True, slots=True)
class Credential:
    """
    Stored password material of a user.

    :ivar password_hash: Opaque hash value.
    :ivar salt: Separate salt (legacy formats only), ``None`` otherwise.
    :ivar algorithm: Algorithm tag used to pick the verification routine.
    """

    password_hash: str
    salt: str | None
    algorithm: str

    def __repr__(self) -> str:  # pragma: no cover - keep hashes out of logs
        return f"Credential(algorithm={self.algorithm!r})"


def _hmac_sha512(raw: str, salt_b64: str) -> str | None:
    try:
        key = base64.b64decode(salt_b64, validate=True)
    except (binascii.Error, ValueError):
        return None
    digest = hmac.new(key, raw.encode("utf-8"), hashlib.sha512).digest()
    return base64.b64encode(digest).decode("ascii")


def legacy_hmac_sha512_credential(raw: str, salt: bytes) -> Credential:
    """Build a credential in the legacy HMAC-SHA512 format (imports and tests)."""
    digest = hmac.new(salt, raw.encode("utf-8"), hashlib.sha512).digest()
    return Credential(
        password_hash=base64.b64encode(digest).decode("ascii"),
        salt=base64.b64encode(salt).decode("ascii"),
        algorithm=LEGACY_HMAC_SHA512,
    )


class PasswordHasher:
    """
    Hash and verify passwords across the supported credential formats.

    :param method: Werkzeug method for newly produced hashes.
    :param legacy_algorithms: Tags that verify but require migration.
    """

    def __init__(
        self,
        *,
        method: str = DEFAULT_METHOD,
        legacy_algorithms: Iterable[str] = (LEGACY_HMAC_SHA512,),
    ) -> None:
        self.method = method
        self.legacy_algorithms = frozenset(legacy_algorithms)

    def hash(self, raw: str) -> Credential:
        """Hash ``raw`` with the current algorithm."""
        if not isinstance(raw, str) or not raw:
            raise ValueError("Password must be a non-empty string.")
        return Credential(
            password_hash=generate_password_hash(raw, method=self.method),
            salt=None,
            algorithm=CURRENT_ALGORITHM,
        )

    def verify(self, credential: Credential, raw: str) -> bool:
        """Return ``True`` when ``raw`` matches the stored credential."""
        if not credential.password_hash or not raw:
            return False
        if credential.algorithm == CURRENT_ALGORITHM:
            return bool(check_password_hash(credential.password_hash, raw))
        if credential.algorithm == LEGACY_HMAC_SHA512:
            if credential.algorithm not in self.legacy_algorithms or not credential.salt:
                return False
            expected = _hmac_sha512(raw, credential.salt)
            if expected is None:
                return False
            return hmac.compare_digest(expected, credential.password_hash)
        # Unknown tag: never verifies
        return False

    def is_legacy(self, credential: Credential) -> bool:
        return credential.algorithm in self.legacy_algorithms

    def needs_rehash(self, credential: Credential) -> bool:
        """
        Return ``True`` when a verified credential should be rewritten.

        Legacy tags always migrate; current hashes migrate when they were
        produced with a different Werkzeug method than the configured one.
        """
        if self.is_legacy(credential):
            return True
        if credential.algorithm != CURRENT_ALGORITHM:
            return False
        # "scrypt:32768:8:1" -> "scrypt"; cost parameters alone do not force a rehash
        stored = credential.password_hash.split("$", 1)[0].split(":", 1)[0]
        return stored != self.method.split(":", 1)[0]
