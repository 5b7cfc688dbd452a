"""Environment-driven configuration for Keystore.

:func:`load_config` reads the process environment once at startup and
returns an immutable :class:`KeystoreConfig`.  Invalid or missing values
raise :class:`~keystore.errors.ConfigError`; the server must not start.

Recognised variables:

``SECRETBOX_KEY``
    Base64 key material, exactly 32 bytes once decoded (required).
``ADMIN_TOKEN``
    Bearer token for the admin API, at least 12 characters (required).
``KEYS_STORE_PATH``
    Path of the encrypted store file (default ``data/keys.enc``).
``ADMIN_RATE_LIMIT`` / ``ADMIN_TEST_RATE_LIMIT``
    Per-client limits for admin routes and the connectivity probe.
``VISUALCROSSING_API_KEY`` / ``NEWSAPI_API_KEY`` / ``GNEWS_API_KEY``
    Optional seed keys used when no store file exists yet.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from limits import parse as parse_limit
from pydantic import BaseModel, ConfigDict, Field, SecretBytes, SecretStr

from keystore.constants import (
    DEFAULT_ADMIN_RATE_LIMIT,
    DEFAULT_STORE_PATH,
    DEFAULT_TEST_RATE_LIMIT,
    SEED_ENV_VARS,
)
from keystore.errors import ConfigError
from keystore.secrets.cipher import KEY_ENV_VAR, decode_key

logger = logging.getLogger(__name__)

ADMIN_TOKEN_ENV_VAR = "ADMIN_TOKEN"
STORE_PATH_ENV_VAR = "KEYS_STORE_PATH"
ADMIN_RATE_LIMIT_ENV_VAR = "ADMIN_RATE_LIMIT"
TEST_RATE_LIMIT_ENV_VAR = "ADMIN_TEST_RATE_LIMIT"

MIN_ADMIN_TOKEN_LENGTH = 12


class KeystoreConfig(BaseModel):
    """Validated, immutable runtime configuration."""

    model_config = ConfigDict(frozen=True)

    secretbox_key: SecretBytes
    admin_token: SecretStr
    store_path: Path
    admin_rate_limit: str = DEFAULT_ADMIN_RATE_LIMIT
    test_rate_limit: str = DEFAULT_TEST_RATE_LIMIT
    seed_keys: Dict[str, SecretStr] = Field(default_factory=dict)

    @property
    def key_bytes(self) -> bytes:
        return self.secretbox_key.get_secret_value()

    def seed_secrets(self) -> Dict[str, str]:
        """Return seed keys as plain strings (for the store's first load)."""
        return {name: value.get_secret_value() for name, value in self.seed_keys.items()}


def _read(env: Mapping[str, str], name: str) -> str:
    return (env.get(name) or "").strip()


def _check_rate_limit(value: str, var_name: str) -> str:
    try:
        parse_limit(value)
    except ValueError:
        raise ConfigError(
            "must use the '<count>/<period>' syntax, e.g. '10/minute'.", var_name
        ) from None
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> KeystoreConfig:
    """Build a :class:`KeystoreConfig` from *environ* (default ``os.environ``)."""
    env = os.environ if environ is None else environ

    key = decode_key(env.get(KEY_ENV_VAR))

    admin_token = _read(env, ADMIN_TOKEN_ENV_VAR)
    if not admin_token:
        raise ConfigError(
            "must be set; the admin API refuses to start without a token.",
            ADMIN_TOKEN_ENV_VAR,
        )
    if len(admin_token) < MIN_ADMIN_TOKEN_LENGTH:
        raise ConfigError(
            f"must be at least {MIN_ADMIN_TOKEN_LENGTH} characters.", ADMIN_TOKEN_ENV_VAR
        )

    store_path = Path(_read(env, STORE_PATH_ENV_VAR) or DEFAULT_STORE_PATH)
    if not store_path.is_absolute():
        store_path = Path.cwd() / store_path
    if store_path.exists() and store_path.is_dir():
        raise ConfigError("points at a directory, expected a file path.", STORE_PATH_ENV_VAR)

    admin_limit = _check_rate_limit(
        _read(env, ADMIN_RATE_LIMIT_ENV_VAR) or DEFAULT_ADMIN_RATE_LIMIT,
        ADMIN_RATE_LIMIT_ENV_VAR,
    )
    test_limit = _check_rate_limit(
        _read(env, TEST_RATE_LIMIT_ENV_VAR) or DEFAULT_TEST_RATE_LIMIT,
        TEST_RATE_LIMIT_ENV_VAR,
    )

    seeds = {
        provider: SecretStr(_read(env, var_name))
        for provider, var_name in SEED_ENV_VARS.items()
        if _read(env, var_name)
    }

    config = KeystoreConfig(
        secretbox_key=SecretBytes(key),
        admin_token=SecretStr(admin_token),
        store_path=store_path,
        admin_rate_limit=admin_limit,
        test_rate_limit=test_limit,
        seed_keys=seeds,
    )
    logger.debug(
        "Configuration loaded: store=%s, admin_limit=%s, seeds=%s",
        config.store_path,
        config.admin_rate_limit,
        sorted(seeds),
    )
    return config
