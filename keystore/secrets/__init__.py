"""Encrypted credential storage.

Provides the AES-256-GCM secretbox, the on-disk codec and the
:class:`CredentialStore` that owns provider secrets at runtime.
"""

from keystore.secrets.models import Credential
from keystore.secrets.store import CredentialStore

__all__ = [
    "Credential",
    "CredentialStore",
]
