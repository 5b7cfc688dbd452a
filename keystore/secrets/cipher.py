"""AES-256-GCM secretbox for the credential store.

Each call to :func:`seal` draws a fresh 12-byte nonce from the OS CSPRNG, so a
nonce is never reused under the same key.  The 16-byte GCM tag is appended to
the ciphertext by :class:`AESGCM` and verified by :func:`open_sealed` before
any plaintext is returned.

Usage::

    key = decode_key(os.environ["SECRETBOX_KEY"])
    nonce, ciphertext = seal(b"payload", key)
    assert open_sealed(nonce, ciphertext, key) == b"payload"
"""

from __future__ import annotations

import base64
import binascii
import secrets
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from keystore.constants import KEY_SIZE, NONCE_SIZE, TAG_SIZE
from keystore.errors import ConfigError, DecryptionError

KEY_ENV_VAR = "SECRETBOX_KEY"


def decode_key(encoded: Optional[str]) -> bytes:
    """Decode a base64 ``SECRETBOX_KEY`` value into raw key bytes.

    Raises :class:`ConfigError` if the value is missing, not valid base64,
    or does not decode to exactly 32 bytes.
    """
    if not encoded or not encoded.strip():
        raise ConfigError("must be set to a base64-encoded 32-byte key.", KEY_ENV_VAR)
    try:
        key = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise ConfigError("is not valid base64.", KEY_ENV_VAR) from None
    _check_key(key)
    return key


def generate_key() -> str:
    """Return a new random key, base64-encoded for use as ``SECRETBOX_KEY``."""
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("ascii")


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        length = len(key) if isinstance(key, (bytes, bytearray)) else 0
        raise ConfigError(
            f"must decode to {KEY_SIZE} bytes for AES-256-GCM, got {length}.",
            KEY_ENV_VAR,
        )


def seal(
    plaintext: bytes,
    key: bytes,
    associated_data: Optional[bytes] = None,
) -> Tuple[bytes, bytes]:
    """Encrypt *plaintext* and return ``(nonce, ciphertext_with_tag)``."""
    _check_key(key)
    nonce = secrets.token_bytes(NONCE_SIZE)
    ciphertext = AESGCM(bytes(key)).encrypt(nonce, plaintext, associated_data)
    return nonce, ciphertext


def open_sealed(
    nonce: bytes,
    ciphertext: bytes,
    key: bytes,
    associated_data: Optional[bytes] = None,
) -> bytes:
    """Verify and decrypt a payload produced by :func:`seal`.

    Every failure (wrong key, tampered nonce or ciphertext, truncation)
    raises the same :class:`DecryptionError` with no chained cause.
    """
    _check_key(key)
    if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
        raise DecryptionError()
    try:
        return AESGCM(bytes(key)).decrypt(nonce, ciphertext, associated_data)
    except (InvalidTag, ValueError):
        raise DecryptionError() from None
