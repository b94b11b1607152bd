from authority.repositories.base import BaseRepository
from authority.repositories.user import UserRepository

__all__ = ["BaseRepository", "UserRepository"]
