"""Key store codec: plaintext serialization and the on-disk envelope.

Two layers:

* **Mapping payload** (encrypted): canonical JSON, keys sorted, no
  whitespace, so an unchanged mapping always encodes to the same bytes::

      {"credentials":{"gnews":{"secret":"...","updated_at":"..."}},"version":1}

* **File envelope** (on disk): JSON carrying the format version and the
  base64 nonce and ciphertext (GCM tag appended)::

      {"ciphertext":"...","nonce":"...","version":1}

The envelope version is bound into the ciphertext as associated data, so
editing it on disk fails authentication rather than selecting another
decoder.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from keystore.constants import NONCE_SIZE, STORE_FORMAT_VERSION
from keystore.errors import CorruptStoreError
from keystore.secrets.cipher import open_sealed, seal
from keystore.secrets.models import Credential, CredentialMapping


@dataclass(frozen=True)
class EncryptedBlob:
    """On-disk representation of the sealed mapping."""

    version: int
    nonce: bytes
    ciphertext: bytes


def _associated_data(version: int) -> bytes:
    return f"keystore:v{version}".encode("ascii")


def _dumps(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def _loads_object(data: bytes, what: str) -> Dict[str, Any]:
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise CorruptStoreError(f"{what} is not valid JSON.") from None
    if not isinstance(obj, dict):
        raise CorruptStoreError(f"{what} must be a JSON object.")
    return obj


def _check_version(obj: Dict[str, Any], what: str) -> int:
    version = obj.get("version")
    # bool is an int subclass; reject it explicitly
    if not isinstance(version, int) or isinstance(version, bool):
        raise CorruptStoreError(f"{what} has a missing or non-integer version.")
    if version != STORE_FORMAT_VERSION:
        raise CorruptStoreError(f"{what} has unsupported version {version}.")
    return version


# ── Mapping payload ──────────────────────────────────────────────────────


def encode_mapping(mapping: CredentialMapping) -> bytes:
    """Serialize *mapping* to canonical JSON bytes."""
    credentials = {
        provider: {
            "secret": cred.secret,
            "updated_at": cred.updated_at.isoformat(),
        }
        for provider, cred in mapping.items()
    }
    return _dumps({"version": STORE_FORMAT_VERSION, "credentials": credentials})


def decode_mapping(data: bytes) -> CredentialMapping:
    """Parse and validate bytes produced by :func:`encode_mapping`.

    Raises :class:`CorruptStoreError` on any structural problem.  Error
    messages name providers and fields but never secret values.
    """
    obj = _loads_object(data, "Credential payload")
    _check_version(obj, "Credential payload")

    credentials = obj.get("credentials")
    if not isinstance(credentials, dict):
        raise CorruptStoreError("Credential payload is missing the 'credentials' object.")

    mapping: CredentialMapping = {}
    for provider, entry in credentials.items():
        if not isinstance(provider, str) or not provider:
            raise CorruptStoreError("Credential payload contains an empty provider name.")
        if not isinstance(entry, dict):
            raise CorruptStoreError(f"Entry for provider '{provider}' must be an object.")
        secret = entry.get("secret")
        if not isinstance(secret, str):
            raise CorruptStoreError(f"Secret for provider '{provider}' must be a string.")
        updated_raw = entry.get("updated_at")
        if not isinstance(updated_raw, str):
            raise CorruptStoreError(f"Timestamp for provider '{provider}' must be a string.")
        try:
            updated_at = datetime.fromisoformat(updated_raw)
        except ValueError:
            raise CorruptStoreError(
                f"Timestamp for provider '{provider}' is not ISO-8601."
            ) from None
        mapping[provider] = Credential(provider=provider, secret=secret, updated_at=updated_at)
    return mapping


# ── File envelope ────────────────────────────────────────────────────────


def encode_envelope(blob: EncryptedBlob) -> bytes:
    return _dumps(
        {
            "version": blob.version,
            "nonce": base64.b64encode(blob.nonce).decode("ascii"),
            "ciphertext": base64.b64encode(blob.ciphertext).decode("ascii"),
        }
    )


def decode_envelope(data: bytes) -> EncryptedBlob:
    """Parse an on-disk envelope.  Raises :class:`CorruptStoreError`."""
    obj = _loads_object(data, "Store envelope")
    version = _check_version(obj, "Store envelope")

    fields: Dict[str, bytes] = {}
    for name in ("nonce", "ciphertext"):
        raw = obj.get(name)
        if not isinstance(raw, str) or not raw:
            raise CorruptStoreError(f"Store envelope is missing '{name}'.")
        try:
            fields[name] = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError):
            raise CorruptStoreError(f"Store envelope field '{name}' is not valid base64.") from None

    if len(fields["nonce"]) != NONCE_SIZE:
        raise CorruptStoreError(f"Store envelope nonce must be {NONCE_SIZE} bytes.")
    return EncryptedBlob(version=version, nonce=fields["nonce"], ciphertext=fields["ciphertext"])


# ── Sealed file bytes ────────────────────────────────────────────────────


def seal_mapping(mapping: CredentialMapping, key: bytes) -> bytes:
    """Encode, encrypt and wrap *mapping* into the bytes written to disk."""
    nonce, ciphertext = seal(
        encode_mapping(mapping), key, _associated_data(STORE_FORMAT_VERSION)
    )
    return encode_envelope(
        EncryptedBlob(version=STORE_FORMAT_VERSION, nonce=nonce, ciphertext=ciphertext)
    )


def open_mapping(data: bytes, key: bytes) -> CredentialMapping:
    """Inverse of :func:`seal_mapping`.

    Raises :class:`CorruptStoreError` for a bad envelope or payload and
    :class:`~keystore.errors.DecryptionError` when authentication fails.
    """
    blob = decode_envelope(data)
    plaintext = open_sealed(blob.nonce, blob.ciphertext, key, _associated_data(blob.version))
    return decode_mapping(plaintext)
