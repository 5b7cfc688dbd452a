"""Keystore: an admin-gated, encrypted store for third-party provider keys."""

from keystore.constants import SERVER_VERSION

__version__ = SERVER_VERSION
