"""Shared fixtures for Keystore tests."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Callable, Dict

import pytest

from keystore.config import KeystoreConfig, load_config
from keystore.secrets.store import CredentialStore

RAW_KEY = b"abcdefghijklmnopqrstuvwxyz123456"
BASE64_KEY = base64.b64encode(RAW_KEY).decode("ascii")
ADMIN_TOKEN = "test-admin-token"
AUTH = {"Authorization": f"Bearer {ADMIN_TOKEN}"}

_SEED_VARS = ("VISUALCROSSING_API_KEY", "NEWSAPI_API_KEY", "GNEWS_API_KEY")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep seed keys from the developer's shell out of every test."""
    for name in _SEED_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "secrets" / "keys.enc"


@pytest.fixture
def base_env(store_path: Path) -> Dict[str, str]:
    return {
        "SECRETBOX_KEY": BASE64_KEY,
        "ADMIN_TOKEN": ADMIN_TOKEN,
        "KEYS_STORE_PATH": str(store_path),
        "ADMIN_RATE_LIMIT": "1000/minute",
        "ADMIN_TEST_RATE_LIMIT": "1000/minute",
    }


@pytest.fixture
def make_config(base_env: Dict[str, str]) -> Callable[..., KeystoreConfig]:
    def _make(**overrides: str) -> KeystoreConfig:
        env = dict(base_env)
        env.update(overrides)
        return load_config(env)

    return _make


@pytest.fixture
def config(make_config: Callable[..., KeystoreConfig]) -> KeystoreConfig:
    return make_config()


@pytest.fixture
def store(store_path: Path) -> CredentialStore:
    return CredentialStore(store_path, RAW_KEY)
