"""Authentication and authorization for fieldgate."""

from fieldgate.auth.jwt_service import (
    InvalidTokenError,
    JWTError,
    JWTService,
    TokenExpiredError,
)
from fieldgate.auth.middleware import AuthMiddleware, get_principal
from fieldgate.auth.types import Operation, Principal, TokenClaims

__all__ = [
    "AuthMiddleware",
    "InvalidTokenError",
    "JWTError",
    "JWTService",
    "Operation",
    "Principal",
    "TokenClaims",
    "TokenExpiredError",
    "get_principal",
]
