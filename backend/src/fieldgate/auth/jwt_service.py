"""JWT token generation and validation service."""

import time

import jwt

from fieldgate.auth.types import Principal, TokenClaims


class JWTError(Exception):
    """Base exception for JWT-related errors."""

    pass


class TokenExpiredError(JWTError):
    """Raised when a token has expired."""

    pass


class InvalidTokenError(JWTError):
    """Raised when a token is invalid or malformed."""

    pass


class JWTService:
    """Issues and validates role-bearing access tokens.

    Uses HS256 algorithm with a shared secret key.
    """

    ACCESS_TOKEN_TTL = 60 * 60  # 1 hour

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        """Initialize the JWT service.

        Args:
            secret_key: Secret key for signing tokens (should be at least 32 chars)
            algorithm: JWT algorithm (default HS256)
        """
        self._secret_key = secret_key
        self._algorithm = algorithm

    def encode_token(
        self,
        user_id: str,
        roles: list[str] | None = None,
        ttl: int | None = None,
    ) -> str:
        """Generate an access token carrying the given roles."""
        now = int(time.time())
        claims = {
            "sub": user_id,
            "roles": sorted(set(roles or [])),
            "iat": now,
            "exp": now + (self.ACCESS_TOKEN_TTL if ttl is None else ttl),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def decode_token(self, token: str) -> TokenClaims:
        """Decode and validate a JWT token.

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If the token is invalid or malformed
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        roles = payload.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
            raise InvalidTokenError("Invalid token: roles claim must be a list of strings")

        return TokenClaims(
            user_id=str(payload.get("sub", "")),
            roles=roles,
            exp=payload.get("exp", 0),
            iat=payload.get("iat", 0),
        )

    def decode_principal(self, token: str) -> Principal:
        return self.decode_token(token).to_principal()
