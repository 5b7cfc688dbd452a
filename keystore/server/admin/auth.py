"""Bearer token authentication for the admin API.

Every admin route requires ``Authorization: Bearer <ADMIN_TOKEN>``.  A
missing header, a malformed header and a wrong token all produce the same
``401 {"status": 401, "message": "Unauthorized"}`` so a caller cannot tell
which check failed.  There is no unauthenticated mode: the middleware
refuses to be constructed without a token.
"""

import hmac
import logging
from typing import Optional

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from keystore.errors import AuthError, ConfigError

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "Bearer "


def check_bearer(auth_header: Optional[str], token: str) -> None:
    """Raise :class:`AuthError` unless *auth_header* carries *token*."""
    if not auth_header or not auth_header.startswith(_BEARER_PREFIX):
        raise AuthError()
    provided = auth_header[len(_BEARER_PREFIX) :].strip()
    # Constant-time comparison to prevent timing attacks
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), token.encode("utf-8")):
        raise AuthError()


class BearerAuthMiddleware:
    """Pure ASGI middleware that enforces Bearer token auth on admin routes.

    Uses the ASGI interface directly (no ``BaseHTTPMiddleware``) so that
    request bodies are not consumed before the route sees them.

    Usage::

        middleware = BearerAuthMiddleware(app, token="my-secret")
    """

    def __init__(self, app: ASGIApp, token: Optional[str] = None) -> None:
        if not token:
            raise ConfigError("admin API requires a token.", "ADMIN_TOKEN")
        self.app = app
        self._token = token

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Extract Authorization header from raw ASGI headers
        auth_header = ""
        for key, value in scope.get("headers", []):
            if key == b"authorization":
                auth_header = value.decode("latin-1")
                break

        try:
            check_bearer(auth_header, self._token)
        except AuthError:
            client = scope.get("client")
            client_host = client[0] if client else "unknown"
            logger.warning(
                "Rejected admin request from %s for %s %s",
                client_host,
                scope.get("method", "?"),
                scope.get("path", "/"),
            )
            response = unauthorized()
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


def unauthorized() -> JSONResponse:
    """Return the uniform 401 Unauthorized JSON response."""
    return JSONResponse(
        {"status": 401, "message": "Unauthorized"},
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )
