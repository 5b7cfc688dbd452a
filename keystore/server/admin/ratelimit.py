"""Per-client rate limiting for the admin API.

Runs outside :class:`~keystore.server.admin.auth.BearerAuthMiddleware`, so
requests carrying a wrong token count against the same bucket as valid
ones and token guessing is throttled.  All admin routes share one bucket
per client address; the connectivity probe has an additional, stricter
slowapi limit on its route.
"""

import logging
from typing import Optional

from limits import parse as parse_limit
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

_BUCKET = "admin"


class ClientRateLimitMiddleware:
    """Pure ASGI middleware that rejects clients over *rate* with a 429.

    Usage::

        middleware = ClientRateLimitMiddleware(app, rate="10/minute")
    """

    def __init__(
        self,
        app: ASGIApp,
        rate: str,
        limiter: Optional[FixedWindowRateLimiter] = None,
    ) -> None:
        self.app = app
        self._item = parse_limit(rate)
        self._limiter = limiter or FixedWindowRateLimiter(MemoryStorage())

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        client = get_remote_address(Request(scope))
        if not self._limiter.hit(self._item, _BUCKET, client):
            logger.warning(
                "Admin rate limit (%s) exceeded for %s on %s %s",
                self._item,
                client,
                scope.get("method", "?"),
                scope.get("path", "/"),
            )
            await too_many_requests()(scope, receive, send)
            return

        await self.app(scope, receive, send)


def too_many_requests() -> JSONResponse:
    return JSONResponse({"status": 429, "message": "Too Many Requests"}, status_code=429)
