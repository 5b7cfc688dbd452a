"""Logging setup and secret redaction."""

from keystore.display.logging_config import secret_redaction_filter, setup_logging

__all__ = ["secret_redaction_filter", "setup_logging"]
