"""Admin API router: credential management endpoints.

All routes are mounted under ``/admin/`` by ``server/app.py`` and sit
behind :class:`~keystore.server.admin.auth.BearerAuthMiddleware`.  Request
flow for mutating routes: authenticate → validate body → store operation.
The store call is the last step, so a rejected request has no side effects.
"""

import json
import logging
from typing import Any, Dict, Optional

from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse

from keystore.config import KeystoreConfig
from keystore.constants import KNOWN_PROVIDERS
from keystore.errors import KeystoreError, ValidationError
from keystore.secrets.store import CredentialStore
from keystore.server.admin.connectivity import ConnectivityChecker
from keystore.server.admin.schemas import (
    DataResponse,
    DeleteKeyData,
    ErrorResponse,
    ProbeRequest,
    ProvidersData,
    SetKeyData,
    SetKeyRequest,
    parse_body,
)

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────


def _get_store(request: Request) -> CredentialStore:
    """Retrieve the CredentialStore instance from app state."""
    store: Optional[CredentialStore] = getattr(request.app.state, "store", None)
    if store is None:
        raise RuntimeError("CredentialStore not found on app.state")
    return store


def _get_checker(request: Request) -> ConnectivityChecker:
    checker: Optional[ConnectivityChecker] = getattr(request.app.state, "checker", None)
    if checker is None:
        raise RuntimeError("ConnectivityChecker not found on app.state")
    return checker


def _error_json(
    message: str, status_code: int, headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    body = ErrorResponse(status=status_code, message=message)
    return JSONResponse(body.model_dump(), status_code=status_code, headers=headers)


def _data_json(data: Any, status_code: int = 200) -> JSONResponse:
    body = DataResponse(status=status_code, data=data)
    return JSONResponse(body.model_dump(), status_code=status_code)


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be a JSON object.") from None


# ── GET /admin/keys ──────────────────────────────────────────────────────


async def handle_list_keys(request: Request) -> JSONResponse:
    """List stored provider names.  Secrets are never returned."""
    store = _get_store(request)
    return _data_json(ProvidersData(providers=store.list_providers()).model_dump())


# ── POST /admin/keys ─────────────────────────────────────────────────────


async def handle_set_key(request: Request) -> JSONResponse:
    """Create or rotate a provider key.  Echoes the provider name only."""
    body = parse_body(SetKeyRequest, await _read_json(request))
    store = _get_store(request)

    try:
        cred = await store.set(body.provider, body.secret)
    except (OSError, KeystoreError):
        logger.exception("Failed to persist provider key for '%s'.", body.provider)
        return _error_json("Failed to persist provider key", 500)

    data = SetKeyData(provider=cred.provider, updated_at=cred.updated_at.isoformat())
    return _data_json(data.model_dump())


# ── DELETE /admin/keys/{provider} ────────────────────────────────────────


async def handle_delete_key(request: Request) -> JSONResponse:
    """Delete a provider key.  Unknown providers report ``deleted: false``."""
    provider = request.path_params.get("provider", "")
    store = _get_store(request)

    try:
        deleted = await store.delete(provider)
    except (OSError, KeystoreError):
        logger.exception("Failed to persist deletion of provider key '%s'.", provider)
        return _error_json("Failed to persist provider key", 500)

    return _data_json(DeleteKeyData(deleted=deleted).model_dump())


# ── GET /admin/providers ─────────────────────────────────────────────────


async def handle_providers(request: Request) -> JSONResponse:
    """List the providers the connectivity probe supports."""
    return _data_json(ProvidersData(providers=list(KNOWN_PROVIDERS)).model_dump())


# ── POST /admin/test ─────────────────────────────────────────────────────


async def handle_test_key(request: Request) -> JSONResponse:
    """Probe a provider with its stored (or environment-seeded) key."""
    body = parse_body(ProbeRequest, await _read_json(request))
    provider = body.provider.strip()
    if provider not in KNOWN_PROVIDERS:
        raise ValidationError(f"provider must be one of {', '.join(KNOWN_PROVIDERS)}")

    key = _resolve_provider_key(request, provider)
    result = await _get_checker(request).check(provider, key)
    return _data_json(result.to_payload())


def _resolve_provider_key(request: Request, provider: str) -> Optional[str]:
    stored = _get_store(request).get_secret(provider)
    if stored and stored.strip():
        return stored.strip()
    config: Optional[KeystoreConfig] = getattr(request.app.state, "config", None)
    if config is None:
        return None
    return config.seed_secrets().get(provider)


# ── Exception handlers ───────────────────────────────────────────────────


async def handle_validation_error(request: Request, exc: Exception) -> JSONResponse:
    return _error_json(str(exc), 400)


async def handle_rate_limited(request: Request, exc: Exception) -> JSONResponse:
    client = request.client.host if request.client else "unknown"
    logger.warning("Rate limit exceeded for %s on %s %s", client, request.method, request.url.path)
    return _error_json("Too Many Requests", 429)


async def handle_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap routing errors (404, 405) in the standard error envelope."""
    return _error_json(exc.detail, exc.status_code, headers=exc.headers)


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path
    )
    return _error_json("Internal Server Error", 500)
