"""Admin API package.

Exposes ``create_admin_app`` to build the admin ASGI sub-app with auth and
rate limiting.
"""

from typing import Optional

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.routing import Route

from keystore.config import KeystoreConfig
from keystore.errors import ValidationError
from keystore.secrets.store import CredentialStore
from keystore.server.admin.auth import BearerAuthMiddleware
from keystore.server.admin.connectivity import ConnectivityChecker
from keystore.server.admin.ratelimit import ClientRateLimitMiddleware
from keystore.server.admin.router import (
    handle_delete_key,
    handle_http_error,
    handle_list_keys,
    handle_providers,
    handle_rate_limited,
    handle_set_key,
    handle_test_key,
    handle_unexpected_error,
    handle_validation_error,
)


def create_admin_app(
    config: KeystoreConfig,
    store: CredentialStore,
    checker: Optional[ConnectivityChecker] = None,
) -> Starlette:
    """Build the admin sub-application.

    The store and probe client are injected through ``app.state``; routes
    never reach for module globals.  Middleware order matters: the
    per-client admin limit is checked before the bearer token, so failed
    token guesses are throttled too.  ``/test`` carries its own stricter
    slowapi limit on top.
    """
    limiter = Limiter(key_func=get_remote_address, key_style="endpoint")
    test_limit = limiter.limit(config.test_rate_limit)

    routes = [
        Route("/keys", endpoint=handle_list_keys, methods=["GET"]),
        Route("/keys", endpoint=handle_set_key, methods=["POST"]),
        Route("/keys/{provider}", endpoint=handle_delete_key, methods=["DELETE"]),
        Route("/providers", endpoint=handle_providers, methods=["GET"]),
        Route("/test", endpoint=test_limit(handle_test_key), methods=["POST"]),
    ]

    admin_app = Starlette(
        routes=routes,
        middleware=[
            Middleware(ClientRateLimitMiddleware, rate=config.admin_rate_limit),
            Middleware(BearerAuthMiddleware, token=config.admin_token.get_secret_value()),
        ],
        exception_handlers={
            ValidationError: handle_validation_error,
            RateLimitExceeded: handle_rate_limited,
            HTTPException: handle_http_error,
            Exception: handle_unexpected_error,
        },
    )
    admin_app.state.limiter = limiter
    admin_app.state.config = config
    admin_app.state.store = store
    admin_app.state.checker = checker or ConnectivityChecker()
    return admin_app


__all__ = ["create_admin_app"]
