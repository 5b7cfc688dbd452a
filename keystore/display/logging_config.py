"""Logging configuration setup."""

import logging
import logging.config
import os
import re
from datetime import datetime
from typing import Any, Set, Tuple

from keystore.constants import LOG_DIR

# ── Secret redaction filter ──────────────────────────────────────────────

_REDACTED = "***REDACTED***"


class SecretRedactionFilter(logging.Filter):
    """Replaces registered secret values in log messages with a placeholder.

    The credential store registers every secret it loads or stores.  Values
    are never unregistered, so a rotated-out secret stays hidden.  The
    message is rendered before redaction, which also covers secrets that
    reach the log inside the ``repr`` of an argument.
    """

    min_length = 4

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._pattern: Any = None

    def register(self, value: str) -> None:
        if not value or len(value) < self.min_length or value in self._secrets:
            return
        self._secrets.add(value)
        # Longest first so a secret containing another is replaced whole
        alternatives = sorted(self._secrets, key=len, reverse=True)
        self._pattern = re.compile("|".join(re.escape(s) for s in alternatives))

    def redact(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(_REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is None:
            return True
        try:
            rendered = record.getMessage()
        except (TypeError, ValueError):
            # Malformed format args; the handler reports those itself
            return True
        record.msg = self.redact(rendered)
        record.args = ()
        return True


# Module-level singleton so the store can register values as it loads them.
secret_redaction_filter = SecretRedactionFilter()

# Fixed level per logger unless running at DEBUG; None follows the requested level.
_LOGGER_LEVELS = {
    "keystore": None,
    "uvicorn": None,
    "uvicorn.error": None,
    "uvicorn.access": "WARNING",
    "starlette": None,
    "httpx": "WARNING",
}
_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _build_log_config(log_fpath: str, level: str) -> dict:
    debug = level == "DEBUG"
    loggers = {}
    for name, quiet_level in _LOGGER_LEVELS.items():
        handlers = ["file"] + (["console"] if name == "keystore" else [])
        loggers[name] = {
            "handlers": handlers,
            "propagate": False,
            "level": level if debug or quiet_level is None else quiet_level,
        }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "file": {
                "format": "%(asctime)s - %(name)25s:%(lineno)-4d - %(levelname)-7s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "console": {"format": "%(levelname)-7s %(name)s: %(message)s"},
        },
        "handlers": {
            "file": {
                "class": "logging.FileHandler",
                "level": "DEBUG",
                "formatter": "file",
                "filename": log_fpath,
                "encoding": "utf-8",
            },
            "console": {
                "class": "logging.StreamHandler",
                "level": "WARNING",
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": loggers,
        "root": {"handlers": ["file"], "level": level if debug else "WARNING"},
    }


def setup_logging(log_lvl_str: str, *, quiet: bool = False) -> Tuple[str, str]:
    """Configure file logging under ``logs/`` and attach secret redaction.

    An unknown level falls back to INFO.  Returns ``(log_file_path, level)``.
    """
    level = log_lvl_str.upper()
    if level not in _VALID_LEVELS:
        if not quiet:
            print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.")
        level = "INFO"

    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    os.makedirs(LOG_DIR, exist_ok=True)
    log_fpath = os.path.join(LOG_DIR, f"keystore_{ts}_{level}.log")

    logging.config.dictConfig(_build_log_config(log_fpath, level))
    attach_redaction_filter()
    if not quiet:
        print(f"Logging initialized. File log level: {level}, log file: {log_fpath}")
    return log_fpath, level


def attach_redaction_filter() -> None:
    """Add the redaction filter to every handler reachable from configured loggers."""
    loggers = [logging.root] + [
        logging.getLogger(name) for name in logging.root.manager.loggerDict
    ]
    for lg in loggers:
        for handler in getattr(lg, "handlers", []):
            if secret_redaction_filter not in handler.filters:
                handler.addFilter(secret_redaction_filter)
