from .redis_refresh_token_store import RedisRefreshTokenStore
from .redis_session_registrar import RedisSessionRegistrar

__all__ = ["RedisRefreshTokenStore", "RedisSessionRegistrar"]
