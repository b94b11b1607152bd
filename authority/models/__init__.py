from authority.models.user import User

__all__ = ["User"]
