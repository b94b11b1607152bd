"""
Service-level exceptions used inside the authority.

These exceptions are **framework-agnostic** and never cross the public
service boundary: :class:`~authority.services.auth.service.AuthService`
converts them into tagged results (see ``services/auth/results.py``).
Adapters raise them with ``raise ... from exc`` so the original library error
stays attached for operators.
"""

from __future__ import annotations

from dataclasses import dataclass


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* transport errors.
    - They can be safely raised from repositories, stores or adapters.
    """

    pass


@dataclass(slots=True)
class NotFoundError(ServiceError):
    """
    Raised when an entity is not found in the repository.

    :param entity: Entity name (e.g., "User").
    :type entity: str
    :param key: Identifier or search key.
    :type key: str | int
    """

    entity: str
    key: str | int

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.entity} not found: {self.key}"


class InvalidAccessTokenError(ServiceError):
    """Raised when an access token fails signature, structure, issuer or audience checks."""

    pass


class AccessTokenExpiredError(InvalidAccessTokenError):
    """Raised when an otherwise valid access token is past its expiry."""

    pass


class StoreUnavailableError(ServiceError):
    """
    Raised when a backing store (Redis, database) cannot serve a request.

    Always retryable; must never be reported as an invalid token.
    """

    def __init__(self, message: str = "Backing store unavailable") -> None:
        super().__init__(message)


class SigningUnavailableError(ServiceError):
    """
    Raised when an access token cannot be signed (missing key, bad algorithm,
    no app context).

    Retryable like :class:`StoreUnavailableError`.
    """

    def __init__(self, message: str = "Access token signing unavailable") -> None:
        super().__init__(message)
