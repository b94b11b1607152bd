from .flask_jwt_token_provider import FlaskJWTAccessTokenIssuer

__all__ = ["FlaskJWTAccessTokenIssuer"]
