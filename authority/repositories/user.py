"""User repository: lookup and credential persistence."""

from __future__ import annotations

from typing import cast

from sqlalchemy import select

from authority.models.user import User
from authority.repositories.base import BaseRepository
from authority.services._shared.errors import NotFoundError
from authority.services.credentials.hashing import Credential


class UserRepository(BaseRepository[User]):
    """Persistence-only repository for :class:`User`.

    It NEVER handles tokens or sessions, only DB-level user state.
    """

    model = User

    def get_by_email(self, email: str) -> User | None:
        """Fetch a user by email (case-insensitive).

        :param email: Email address to normalise and search.
        :type email: str
        :returns: User instance or ``None`` when not found.
        :rtype: User | None
        """
        stmt = select(User).where(User.email == email.lower().strip())
        result = self.session.execute(stmt).scalars().first()
        return cast(User | None, result)

    def update_credential(self, user_id: int, credential: Credential) -> None:
        """Replace a user's stored credential and flush.

        :raises NotFoundError: If the user does not exist.
        """
        user = self.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        user.apply_credential(credential)
        self.flush()
