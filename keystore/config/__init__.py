"""Configuration for Keystore.

Exposes :func:`load_config` and the immutable :class:`KeystoreConfig`.
"""

from keystore.config.settings import KeystoreConfig, load_config

__all__ = ["KeystoreConfig", "load_config"]
