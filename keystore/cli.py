"""CLI argument parsing and main entry point.

Subcommands:

* ``keystore serve``: run the admin API under Uvicorn.
* ``keystore genkey``: print a fresh base64 ``SECRETBOX_KEY``.
* ``keystore list``: print the provider names in the store.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv

from keystore.constants import DEFAULT_HOST, DEFAULT_PORT, SERVER_NAME, SERVER_VERSION
from keystore.display.logging_config import setup_logging
from keystore.errors import ConfigError, StoreInitError

module_logger = logging.getLogger(__name__)

# Loaded in order; values already in the environment win over .env,
# and .env.local overrides .env.
_ENV_FILES = ((".env", False), (".env.local", True))


def _load_env_files(base_dir: Optional[Path] = None) -> List[Path]:
    root = base_dir or Path.cwd()
    loaded: List[Path] = []
    for name, override in _ENV_FILES:
        path = root / name
        if path.is_file():
            load_dotenv(path, override=override)
            loaded.append(path)
    return loaded


def _fail(message: str) -> None:
    print(f"❌ Error: {message}", file=sys.stderr)
    sys.exit(1)


# ── ``keystore serve`` ───────────────────────────────────────────────────


async def _run_server(host: str, port: int, log_lvl_cli: str) -> None:
    """Async main for the serve subcommand."""
    from keystore.config import load_config
    from keystore.secrets.store import CredentialStore
    from keystore.server.app import create_app

    loaded_env = _load_env_files()
    log_fpath, cfg_log_lvl = setup_logging(log_lvl_cli)
    module_logger.info(
        "---- %s v%s starting (file log level: %s) ----",
        SERVER_NAME,
        SERVER_VERSION,
        cfg_log_lvl,
    )
    if loaded_env:
        module_logger.info("Loaded environment files: %s", [str(p) for p in loaded_env])

    try:
        config = load_config()
    except ConfigError as exc:
        module_logger.error("%s", exc)
        _fail(str(exc))
        return

    # Load before binding the port so a bad store never reaches a listening state
    store = CredentialStore.from_config(config)
    try:
        await store.load()
    except StoreInitError as exc:
        module_logger.error("Refusing to start: %s", exc)
        _fail(str(exc))
        return

    app = create_app(config, store)
    uvicorn_cfg = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level=cfg_log_lvl.lower() if cfg_log_lvl == "DEBUG" else "warning",
    )
    server = uvicorn.Server(uvicorn_cfg)

    module_logger.info("Starting Uvicorn server: http://%s:%s (log: %s)", host, port, log_fpath)
    try:
        await server.serve()
    finally:
        module_logger.info("%s has shut down or is shutting down.", SERVER_NAME)


def _cmd_serve(args: argparse.Namespace) -> None:
    try:
        asyncio.run(_run_server(host=args.host, port=args.port, log_lvl_cli=args.log_level))
    except KeyboardInterrupt:
        module_logger.info("%s interrupted by KeyboardInterrupt.", SERVER_NAME)


# ── ``keystore genkey`` ──────────────────────────────────────────────────


def _cmd_genkey(args: argparse.Namespace) -> None:
    from keystore.secrets.cipher import generate_key

    print(generate_key())


# ── ``keystore list`` ────────────────────────────────────────────────────


def _cmd_list(args: argparse.Namespace) -> None:
    from keystore.config import load_config
    from keystore.secrets.store import CredentialStore

    _load_env_files()
    try:
        config = load_config()
    except ConfigError as exc:
        _fail(str(exc))
        return

    store = CredentialStore.from_config(config)
    try:
        asyncio.run(store.load())
    except StoreInitError as exc:
        _fail(str(exc))
        return

    providers = store.list_providers()
    if not providers:
        print(f"No provider keys stored in {store.path}.")
        return
    for name in providers:
        cred = store.get(name)
        stamp = cred.updated_at.isoformat() if cred else ""
        print(f"{name}\t{stamp}")


# ── Argument parsing ─────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keystore",
        description=f"{SERVER_NAME} v{SERVER_VERSION}: encrypted provider key store.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {SERVER_VERSION}")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the admin API server.")
    serve.add_argument("--host", default=DEFAULT_HOST, help=f"Bind host (default {DEFAULT_HOST}).")
    serve.add_argument(
        "--port", type=int, default=DEFAULT_PORT, help=f"Bind port (default {DEFAULT_PORT})."
    )
    serve.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="File log level (default info).",
    )
    serve.set_defaults(func=_cmd_serve)

    genkey = sub.add_parser("genkey", help="Print a new base64 SECRETBOX_KEY.")
    genkey.set_defaults(func=_cmd_genkey)

    list_cmd = sub.add_parser("list", help="List stored provider names.")
    list_cmd.set_defaults(func=_cmd_list)
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(2)
    args.func(args)
