"""Credential store: the single owner of provider secrets.

The in-memory mapping is authoritative while the process runs.  Every
mutation re-seals the whole mapping and atomically replaces the store file
(temp file in the same directory, ``fsync``, ``os.replace``) before the
new mapping is published in memory, so a failed write leaves both the
file and the mapping as they were.

Mutations are serialized by an :class:`asyncio.Lock`: a second ``set`` or
``delete`` issued while one is in flight queues behind it.

Usage::

    store = CredentialStore.from_config(config)
    await store.load()
    await store.set("gnews", "abc123")
    store.get_secret("gnews")  # -> "abc123"
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Union

from keystore.display.logging_config import secret_redaction_filter
from keystore.errors import CorruptStoreError, DecryptionError, StoreInitError
from keystore.secrets.codec import open_mapping, seal_mapping
from keystore.secrets.models import Credential, CredentialMapping, utc_now

logger = logging.getLogger(__name__)

_STORE_FILE_MODE = 0o600


class CredentialStore:
    """Encrypted, file-backed mapping of provider name to :class:`Credential`.

    Parameters
    ----------
    path:
        Location of the encrypted store file.
    key:
        Raw 32-byte secretbox key.
    seeds:
        Provider secrets used to initialise the store when the file does
        not exist yet.  Ignored once a file is present.
    """

    def __init__(
        self,
        path: Union[str, Path],
        key: bytes,
        *,
        seeds: Optional[Dict[str, str]] = None,
    ) -> None:
        self._path = Path(path)
        self._key = key
        self._seeds = dict(seeds or {})
        self._mapping: CredentialMapping = {}
        self._loaded = False
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config) -> "CredentialStore":
        """Create a store from a :class:`~keystore.config.KeystoreConfig`."""
        return cls(config.store_path, config.key_bytes, seeds=config.seed_secrets())

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:
        return f"CredentialStore(path={str(self._path)!r}, providers={len(self._mapping)})"

    # ------------------------------------------------------------------ #
    #  Startup
    # ------------------------------------------------------------------ #

    async def load(self) -> None:
        """Populate the mapping from disk, or from seeds if no file exists.

        Raises :class:`StoreInitError` if the file exists but cannot be read,
        decrypted or decoded.  The store is never silently reset to empty.
        """
        if self._loaded:
            return

        try:
            data = await asyncio.to_thread(self._read_file)
        except OSError as exc:
            logger.error("Cannot read credential store %s: %s", self._path, exc)
            raise StoreInitError("Failed to read credential store.", str(self._path)) from exc

        if data is None:
            mapping = {
                provider: Credential(provider=provider, secret=secret)
                for provider, secret in self._seeds.items()
            }
            if mapping:
                await self._persist(mapping)
                logger.info(
                    "No credential store at %s; seeded %d provider(s) from environment: %s",
                    self._path,
                    len(mapping),
                    sorted(mapping),
                )
            else:
                logger.info("No credential store at %s; starting empty.", self._path)
        else:
            try:
                mapping = open_mapping(data, self._key)
            except DecryptionError as exc:
                logger.error("Credential store %s failed authentication.", self._path)
                raise StoreInitError(
                    "Failed to decrypt credential store. "
                    "Check SECRETBOX_KEY and key store integrity.",
                    str(self._path),
                ) from exc
            except CorruptStoreError as exc:
                logger.error("Credential store %s is corrupt: %s", self._path, exc)
                raise StoreInitError(
                    "Credential store contents are malformed.", str(self._path)
                ) from exc
            logger.info(
                "Credential store loaded from %s (%d provider(s)).", self._path, len(mapping)
            )

        for cred in mapping.values():
            secret_redaction_filter.register(cred.secret)
        self._mapping = mapping
        self._loaded = True

    # ------------------------------------------------------------------ #
    #  Reads (memory only)
    # ------------------------------------------------------------------ #

    def get(self, provider: str) -> Optional[Credential]:
        """Return the credential for *provider*, or ``None`` if absent."""
        return self._mapping.get(provider)

    def get_secret(self, provider: str) -> Optional[str]:
        """Return the plaintext secret for *provider*, or ``None``.

        For internal provider-calling code only; never exposed over HTTP.
        """
        cred = self._mapping.get(provider)
        return cred.secret if cred is not None else None

    def list_providers(self) -> List[str]:
        """Return stored provider names, sorted.  Never returns secrets."""
        return sorted(self._mapping)

    # ------------------------------------------------------------------ #
    #  Mutations (serialized, persisted before returning)
    # ------------------------------------------------------------------ #

    async def set(self, provider: str, secret: str) -> Credential:
        """Create or replace the secret for *provider* and persist it."""
        self._require_loaded()
        async with self._write_lock:
            cred = Credential(provider=provider, secret=secret, updated_at=utc_now())
            mapping = dict(self._mapping)
            mapping[provider] = cred
            secret_redaction_filter.register(secret)
            await self._commit(mapping)
        logger.info("Provider key stored for '%s'.", provider)
        return cred

    async def delete(self, provider: str) -> bool:
        """Remove *provider*.  Returns ``False`` (and writes nothing) if unknown."""
        self._require_loaded()
        async with self._write_lock:
            if provider not in self._mapping:
                return False
            mapping = dict(self._mapping)
            del mapping[provider]
            await self._commit(mapping)
        logger.info("Provider key deleted for '%s'.", provider)
        return True

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise RuntimeError("Credential store has not been loaded; call load() first.")

    # ------------------------------------------------------------------ #
    #  File I/O
    # ------------------------------------------------------------------ #

    async def _commit(self, mapping: CredentialMapping) -> None:
        """Persist *mapping*, then publish it in memory.

        Once started the write cannot be abandoned halfway: if the caller is
        cancelled, the commit still finishes and the write lock stays held
        until it has, so the file and the mapping never disagree.
        """
        task = asyncio.ensure_future(self._persist_and_publish(mapping))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Credential store write failed after cancellation: %s", task.exception()
                )
            raise

    async def _persist_and_publish(self, mapping: CredentialMapping) -> None:
        await self._persist(mapping)
        self._mapping = mapping

    async def _persist(self, mapping: CredentialMapping) -> None:
        data = seal_mapping(mapping, self._key)
        await asyncio.to_thread(self._write_atomic, data)

    def _read_file(self) -> Optional[bytes]:
        try:
            with open(self._path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _write_atomic(self, data: bytes) -> None:
        """Write *data* to a temp file and rename it over the store file."""
        dir_name = self._path.parent
        dir_name.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(dir_name), prefix=".keys_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, _STORE_FILE_MODE)
            os.replace(tmp_path, self._path)
        except BaseException:
            # Clean up temp file on failure; the previous store file is untouched
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
