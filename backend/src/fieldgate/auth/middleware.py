"""Authentication middleware for FastAPI."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from fieldgate.auth.jwt_service import JWTError, JWTService
from fieldgate.auth.types import Principal

logger = logging.getLogger(__name__)

ROLES_HEADER = "X-Roles"


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolves the caller's Principal and stores it on request.state.

    With a JWTService, the principal comes from a Bearer token. Without one
    (auth disabled), roles are read from the comma-separated X-Roles header.
    A missing or invalid token leaves request.state.principal as None; the
    permission checks downstream decide what an anonymous caller may do.
    """

    def __init__(self, app, jwt_service: JWTService | None = None):
        super().__init__(app)
        self._jwt_service = jwt_service

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.principal = None

        if self._should_skip_auth(request.url.path):
            return await call_next(request)

        if self._jwt_service is None:
            request.state.principal = principal_from_header(request.headers.get(ROLES_HEADER))
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header[7:]
            try:
                request.state.principal = self._jwt_service.decode_principal(token)
            except JWTError as e:
                logger.debug("Rejected bearer token: %s", e)

        return await call_next(request)

    def _should_skip_auth(self, path: str) -> bool:
        skip_paths = ["/docs", "/openapi.json", "/redoc", "/api/health"]
        return any(path.startswith(p) for p in skip_paths)


def principal_from_header(value: str | None) -> Principal | None:
    if not value:
        return None
    return Principal.from_roles(r.strip() for r in value.split(","))


def get_principal(request: Request) -> Principal | None:
    """Get the principal from the request state (None if anonymous)."""
    return getattr(request.state, "principal", None)
