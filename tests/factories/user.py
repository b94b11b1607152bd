"""Factory Boy definition for :class:`authority.models.user.User`."""

from __future__ import annotations

import os

import factory

from authority.models.user import User
from authority.services.credentials import PasswordHasher
from authority.services.credentials.hashing import legacy_hmac_sha512_credential
from tests.factories import BaseFactory

DEFAULT_PASSWORD = "Passw0rd!"

# Cheap method keeps the suite fast; verification does not care about cost
TEST_HASHER = PasswordHasher(method="pbkdf2:sha256:1000")


class UserFactory(BaseFactory):
    """
    Build persisted :class:`authority.models.user.User` instances.

    Notes
    -----
    - ``password`` is hashed in the current format; pass
      ``password__legacy=True`` to store an ``hmac-sha512`` credential instead.
    """

    class Meta:
        model = User

    id = None  # let autoincrement handle it
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    username = factory.Sequence(lambda n: f"user{n}")
    role = "User"
    is_active = True
    password_hash = factory.LazyFunction(lambda: "")  # set via postgen

    @factory.post_generation
    def password(obj, create, extracted, **kwargs):
        """Store a credential for ``extracted`` (or the default password)."""
        value = extracted or DEFAULT_PASSWORD
        if kwargs.get("legacy"):
            obj.apply_credential(legacy_hmac_sha512_credential(value, os.urandom(32)))
        else:
            obj.apply_credential(TEST_HASHER.hash(value))
