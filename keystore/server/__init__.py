"""HTTP server for Keystore."""

from keystore.server.app import create_app

__all__ = ["create_app"]
