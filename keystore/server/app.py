"""Starlette ASGI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route

from keystore.config import KeystoreConfig
from keystore.constants import ADMIN_API_PREFIX, HEALTH_PATH, SERVER_NAME, SERVER_VERSION
from keystore.secrets.store import CredentialStore
from keystore.server.admin import create_admin_app
from keystore.server.admin.connectivity import ConnectivityChecker

logger = logging.getLogger(__name__)


async def handle_health(request: Request) -> JSONResponse:
    """Public liveness probe. Reports only the number of stored providers."""
    store: CredentialStore = request.app.state.store
    return JSONResponse(
        {
            "status": 200,
            "data": {
                "status": "ok" if store.is_loaded else "starting",
                "version": SERVER_VERSION,
                "providers": len(store),
            },
        }
    )


def create_app(
    config: KeystoreConfig,
    store: Optional[CredentialStore] = None,
    *,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Starlette:
    """Create and return the Starlette ASGI application.

    *store* defaults to one built from *config*.  It is loaded by the
    lifespan before the first request; a :class:`~keystore.errors.StoreInitError`
    there aborts startup.
    """
    if store is None:
        store = CredentialStore.from_config(config)
    checker = ConnectivityChecker(transport=http_transport)
    admin_app = create_admin_app(config, store, checker)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await store.load()
        await checker.connect()
        logger.info(
            "%s v%s ready with %d provider key(s).", SERVER_NAME, SERVER_VERSION, len(store)
        )
        try:
            yield
        finally:
            await checker.close()
            logger.info("%s shut down.", SERVER_NAME)

    application = Starlette(
        lifespan=lifespan,
        routes=[
            Route(HEALTH_PATH, endpoint=handle_health, methods=["GET"]),
            Mount(ADMIN_API_PREFIX, app=admin_app),
        ],
    )
    application.state.config = config
    application.state.store = store
    application.state.admin_app = admin_app
    logger.debug(
        "Starlette ASGI app '%s' created. Health on %s, Admin on %s",
        SERVER_NAME,
        HEALTH_PATH,
        ADMIN_API_PREFIX,
    )
    return application
