# authority/services/credentials/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass

from authority.services.credentials.hashing import Credential, PasswordHasher

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CredentialCheck:
    """
    Outcome of a password verification.

    :param valid: Whether the candidate password matched.
    :type valid: bool
    :param upgraded: Replacement credential in the current format when the
        stored one must be migrated; ``None`` otherwise.
    :type upgraded: Credential | None
    """

    valid: bool
    upgraded: Credential | None = None


class CredentialVerifier:
    """
    Check submitted passwords and produce rehash material for legacy formats.

    Persisting ``CredentialCheck.upgraded`` is the caller's job; it must happen
    before login returns but a failed write must not fail the login.
    """

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self.hasher = hasher or PasswordHasher()
        # Used to burn comparable time when the identity is unknown
        self._dummy = self.hasher.hash("authority-dummy-password")

    def verify(self, credential: Credential, candidate: str) -> bool:
        return self.hasher.verify(credential, candidate)

    def verify_and_upgrade(self, credential: Credential, candidate: str) -> CredentialCheck:
        """
        Verify ``candidate`` and, on success, rehash it when the stored format is stale.

        :param credential: Stored credential.
        :param candidate: Plain-text password from the caller (never logged).
        :returns: Verification outcome with optional upgraded credential.
        """
        if not self.hasher.verify(credential, candidate):
            return CredentialCheck(valid=False)

        if not self.hasher.needs_rehash(credential):
            return CredentialCheck(valid=True)

        log.info(
            "Credential format %r scheduled for upgrade to current algorithm",
            credential.algorithm,
        )
        return CredentialCheck(valid=True, upgraded=self.hasher.hash(candidate))

    def burn(self, candidate: str) -> None:
        """Run a throwaway comparison so unknown identities cost the same as wrong passwords."""
        self.hasher.verify(self._dummy, candidate)
