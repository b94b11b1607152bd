"""Password verification and credential format migration."""

from .hashing import CURRENT_ALGORITHM, LEGACY_HMAC_SHA512, Credential, PasswordHasher
from .service import CredentialCheck, CredentialVerifier

__all__ = [
    "CURRENT_ALGORITHM",
    "LEGACY_HMAC_SHA512",
    "Credential",
    "CredentialCheck",
    "CredentialVerifier",
    "PasswordHasher",
]
