"""Tests for the credential store."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import stat
import threading
from pathlib import Path

import pytest

from keystore.display.logging_config import secret_redaction_filter
from keystore.errors import CorruptStoreError, DecryptionError, StoreInitError
from keystore.secrets.codec import open_mapping, seal_mapping
from keystore.secrets.models import Credential
from keystore.secrets.store import CredentialStore

from .conftest import RAW_KEY


def _digest(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _fresh(path: Path, **kwargs) -> CredentialStore:
    store = CredentialStore(path, RAW_KEY, **kwargs)
    asyncio.run(store.load())
    return store


class TestLoad:
    def test_missing_file_starts_empty(self, store, store_path):
        asyncio.run(store.load())
        assert store.is_loaded
        assert store.list_providers() == []
        assert not store_path.exists()

    def test_load_is_idempotent(self, store):
        asyncio.run(store.load())
        asyncio.run(store.load())
        assert store.is_loaded

    def test_reload_after_writes(self, store, store_path):
        async def _scenario():
            await store.load()
            await store.set("visualcrossing", "abc123")
            await store.set("newsapi", "def456")

        asyncio.run(_scenario())
        reloaded = _fresh(store_path)
        assert reloaded.get_secret("visualcrossing") == "abc123"
        assert reloaded.get_secret("newsapi") == "def456"
        assert reloaded.list_providers() == ["newsapi", "visualcrossing"]

    def test_wrong_key_is_fatal(self, store, store_path):
        async def _scenario():
            await store.load()
            await store.set("gnews", "abc123")

        asyncio.run(_scenario())
        other = CredentialStore(store_path, b"z" * 32)
        with pytest.raises(StoreInitError, match="SECRETBOX_KEY") as exc_info:
            asyncio.run(other.load())
        assert isinstance(exc_info.value.__cause__, DecryptionError)
        assert not other.is_loaded
        assert other.list_providers() == []

    def test_garbage_file_is_fatal(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_bytes(b"not an envelope")
        store = CredentialStore(store_path, RAW_KEY)
        with pytest.raises(StoreInitError, match="malformed") as exc_info:
            asyncio.run(store.load())
        assert isinstance(exc_info.value.__cause__, CorruptStoreError)

    def test_empty_file_is_fatal(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_bytes(b"")
        with pytest.raises(StoreInitError):
            asyncio.run(CredentialStore(store_path, RAW_KEY).load())

    def test_tampered_file_is_fatal(self, store, store_path):
        async def _scenario():
            await store.load()
            await store.set("gnews", "abc123")

        asyncio.run(_scenario())
        envelope = json.loads(store_path.read_text())
        envelope["version"] = 2
        store_path.write_text(json.dumps(envelope))
        with pytest.raises(StoreInitError):
            asyncio.run(CredentialStore(store_path, RAW_KEY).load())

    def test_unreadable_path_is_fatal(self, tmp_path):
        # A directory where the file should be cannot be read as a file
        target = tmp_path / "keys.enc"
        target.mkdir()
        with pytest.raises(StoreInitError, match="read"):
            asyncio.run(CredentialStore(target, RAW_KEY).load())

    def test_seeds_used_when_file_missing(self, store_path):
        store = _fresh(store_path, seeds={"gnews": "seed-gnews", "newsapi": "seed-news"})
        assert store.get_secret("gnews") == "seed-gnews"
        assert store_path.exists()
        assert _fresh(store_path).list_providers() == ["gnews", "newsapi"]

    def test_seeds_ignored_when_file_exists(self, store_path):
        first = _fresh(store_path)
        asyncio.run(first.set("gnews", "stored"))
        store = _fresh(store_path, seeds={"gnews": "seed-gnews", "newsapi": "seed-news"})
        assert store.get_secret("gnews") == "stored"
        assert store.get("newsapi") is None


class TestReads:
    def test_get_missing_returns_none(self, store):
        asyncio.run(store.load())
        assert store.get("unknown") is None
        assert store.get_secret("unknown") is None

    def test_get_returns_credential(self, store):
        async def _scenario():
            await store.load()
            return await store.set("gnews", "abc123")

        cred = asyncio.run(_scenario())
        assert store.get("gnews") == cred
        assert cred.provider == "gnews"
        assert cred.updated_at.tzinfo is not None

    def test_provider_names_case_sensitive(self, store):
        async def _scenario():
            await store.load()
            await store.set("GNews", "upper")
            await store.set("gnews", "lower")

        asyncio.run(_scenario())
        assert store.get_secret("GNews") == "upper"
        assert store.get_secret("gnews") == "lower"
        assert len(store) == 2

    def test_repr_hides_secrets(self, store):
        async def _scenario():
            await store.load()
            await store.set("gnews", "super-secret-value")

        asyncio.run(_scenario())
        assert "super-secret-value" not in repr(store)
        assert "super-secret-value" not in repr(store.get("gnews"))


class TestMutations:
    def test_set_before_load_raises(self, store):
        with pytest.raises(RuntimeError, match="load"):
            asyncio.run(store.set("gnews", "abc"))

    def test_set_overwrites_and_bumps_timestamp(self, store):
        async def _scenario():
            await store.load()
            first = await store.set("gnews", "old")
            second = await store.set("gnews", "new")
            return first, second

        first, second = asyncio.run(_scenario())
        assert store.get_secret("gnews") == "new"
        assert second.updated_at >= first.updated_at
        assert store.list_providers() == ["gnews"]

    def test_set_writes_before_returning(self, store, store_path):
        async def _scenario():
            await store.load()
            await store.set("gnews", "abc123")
            return open_mapping(store_path.read_bytes(), RAW_KEY)

        on_disk = asyncio.run(_scenario())
        assert on_disk["gnews"].secret == "abc123"

    def test_file_permissions(self, store, store_path):
        async def _scenario():
            await store.load()
            await store.set("gnews", "abc123")

        asyncio.run(_scenario())
        mode = stat.S_IMODE(store_path.stat().st_mode)
        assert mode == 0o600

    def test_delete_existing(self, store, store_path):
        async def _scenario():
            await store.load()
            await store.set("gnews", "abc123")
            await store.set("newsapi", "def456")
            return await store.delete("gnews")

        assert asyncio.run(_scenario()) is True
        assert store.get("gnews") is None
        assert _fresh(store_path).list_providers() == ["newsapi"]

    def test_delete_missing_leaves_file_untouched(self, store, store_path):
        async def _setup():
            await store.load()
            await store.set("gnews", "abc123")

        asyncio.run(_setup())
        before = _digest(store_path)
        assert asyncio.run(store.delete("unknown")) is False
        assert _digest(store_path) == before

    def test_delete_missing_without_file_writes_nothing(self, store, store_path):
        asyncio.run(store.load())
        assert asyncio.run(store.delete("gnews")) is False
        assert not store_path.exists()

    def test_list_is_sorted_names_only(self, store):
        async def _scenario():
            await store.load()
            for name in ("newsapi", "gnews", "visualcrossing"):
                await store.set(name, f"{name}-secret")

        asyncio.run(_scenario())
        assert store.list_providers() == ["gnews", "newsapi", "visualcrossing"]


class TestAtomicity:
    def test_failed_rename_keeps_previous_state(self, store, store_path, monkeypatch):
        async def _setup():
            await store.load()
            await store.set("gnews", "original")

        asyncio.run(_setup())
        before = _digest(store_path)

        def _crash(src, dst):
            raise OSError("simulated crash before rename")

        monkeypatch.setattr(os, "replace", _crash)
        with pytest.raises(OSError, match="simulated"):
            asyncio.run(store.set("gnews", "replacement"))
        monkeypatch.undo()

        # Neither the file nor the in-memory mapping saw the failed write
        assert _digest(store_path) == before
        assert store.get_secret("gnews") == "original"
        assert _fresh(store_path).get_secret("gnews") == "original"
        leftovers = [p.name for p in store_path.parent.iterdir() if p.name != store_path.name]
        assert leftovers == []

    def test_failed_delete_keeps_entry(self, store, store_path, monkeypatch):
        async def _setup():
            await store.load()
            await store.set("gnews", "original")

        asyncio.run(_setup())
        def _crash(src, dst):
            raise OSError("boom")

        monkeypatch.setattr(os, "replace", _crash)
        with pytest.raises(OSError):
            asyncio.run(store.delete("gnews"))
        assert store.get_secret("gnews") == "original"

    def test_stray_temp_file_does_not_affect_load(self, store, store_path):
        async def _setup():
            await store.load()
            await store.set("gnews", "original")

        asyncio.run(_setup())
        # A half-written temp file left behind by a crash mid-write
        (store_path.parent / ".keys_abc.tmp").write_bytes(b'{"version":1,"nonce":"AA')
        assert _fresh(store_path).get_secret("gnews") == "original"


class TestConcurrency:
    def test_concurrent_sets_keep_both_entries(self, store, store_path):
        async def _scenario():
            await store.load()
            await asyncio.gather(store.set("gnews", "abc"), store.set("newsapi", "def"))

        asyncio.run(_scenario())
        assert store.list_providers() == ["gnews", "newsapi"]
        on_disk = open_mapping(store_path.read_bytes(), RAW_KEY)
        assert sorted(on_disk) == ["gnews", "newsapi"]

    def test_many_concurrent_mutations(self, store, store_path):
        names = [f"provider-{i}" for i in range(20)]

        async def _scenario():
            await store.load()
            await asyncio.gather(*(store.set(n, f"secret-{n}") for n in names))
            await asyncio.gather(*(store.delete(n) for n in names[:5]))

        asyncio.run(_scenario())
        expected = sorted(names[5:])
        assert store.list_providers() == expected
        assert _fresh(store_path).list_providers() == expected

    def test_writes_do_not_overlap(self, store, monkeypatch):
        active = 0
        peak = 0
        original = CredentialStore._write_atomic

        def _tracking_write(self, data):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                original(self, data)
            finally:
                active -= 1

        monkeypatch.setattr(CredentialStore, "_write_atomic", _tracking_write)

        async def _scenario():
            await store.load()
            await asyncio.gather(*(store.set(f"p{i}", "value") for i in range(10)))

        asyncio.run(_scenario())
        assert peak == 1

    def test_cancelled_set_still_publishes_written_value(self, store, store_path, monkeypatch):
        entered = threading.Event()
        release = threading.Event()
        original = CredentialStore._write_atomic

        def _gated_write(self, data):
            entered.set()
            release.wait(5)
            original(self, data)

        async def _scenario():
            await store.load()
            await store.set("gnews", "old-value")
            monkeypatch.setattr(CredentialStore, "_write_atomic", _gated_write)
            task = asyncio.create_task(store.set("gnews", "new-value"))
            await asyncio.to_thread(entered.wait, 5)
            task.cancel()
            release.set()
            with pytest.raises(asyncio.CancelledError):
                await task
            monkeypatch.undo()
            # A later write must build on the cancelled one, not undo it
            await store.set("newsapi", "other")

        asyncio.run(_scenario())
        on_disk = open_mapping(store_path.read_bytes(), RAW_KEY)
        assert store.get_secret("gnews") == "new-value"
        assert on_disk["gnews"].secret == "new-value"
        assert on_disk["newsapi"].secret == "other"

    def test_cancelled_delete_still_publishes(self, store, store_path, monkeypatch):
        entered = threading.Event()
        release = threading.Event()
        original = CredentialStore._write_atomic

        def _gated_write(self, data):
            entered.set()
            release.wait(5)
            original(self, data)

        async def _scenario():
            await store.load()
            await store.set("gnews", "value")
            monkeypatch.setattr(CredentialStore, "_write_atomic", _gated_write)
            task = asyncio.create_task(store.delete("gnews"))
            await asyncio.to_thread(entered.wait, 5)
            task.cancel()
            release.set()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(_scenario())
        assert store.get("gnews") is None
        assert open_mapping(store_path.read_bytes(), RAW_KEY) == {}


class TestRedaction:
    def test_loaded_and_stored_secrets_are_redacted(self, store, caplog):
        async def _scenario():
            await store.load()
            await store.set("gnews", "leaky-secret-value")

        asyncio.run(_scenario())
        record = logging.LogRecord("t", logging.INFO, __file__, 1, "key=%s", ("leaky-secret-value",), None)
        secret_redaction_filter.filter(record)
        assert "leaky-secret-value" not in record.getMessage()
        assert "***REDACTED***" in record.getMessage()

    def test_store_logs_never_contain_secret(self, store, caplog):
        caplog.set_level(logging.DEBUG, logger="keystore")

        async def _scenario():
            await store.load()
            await store.set("gnews", "another-secret-value")
            await store.delete("gnews")

        asyncio.run(_scenario())
        assert "gnews" in caplog.text
        assert "another-secret-value" not in caplog.text


def test_seal_mapping_used_by_store_is_readable(store_path):
    store_path.parent.mkdir(parents=True)
    store_path.write_bytes(seal_mapping({"gnews": Credential("gnews", "pre-existing")}, RAW_KEY))
    assert _fresh(store_path).get_secret("gnews") == "pre-existing"
