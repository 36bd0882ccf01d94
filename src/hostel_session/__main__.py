"""
Hostel console session - command line entry point

Logs in to the console API, keeps the session (identity and cookies) on disk
between invocations and issues authenticated requests through the same
renewal logic the console uses.

Usage:
    hostel-session login -u owner1        # Prompt for password, store session
    hostel-session whoami                 # Verify and print the identity
    hostel-session get /rooms             # Authenticated GET, prints JSON
    hostel-session logout                 # End the session
"""

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import SessionConfig, normalize_api_url
from .errors import SessionError
from .identity import LOGIN_ROUTE
from .session import SessionManager

logger = logging.getLogger(__name__)


class _JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps({
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        })


def configure_logging(verbose: bool = False) -> None:
    """Set up root logging based on HMS_LOG_FORMAT env var.

    ``text`` (default): human-readable ``[LEVEL] message`` format.
    ``json``: structured JSON lines suitable for log aggregators.
    """
    log_format = os.environ.get("HMS_LOG_FORMAT", "text").lower()

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(handler)

    # Silence noisy third-party loggers
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def _on_navigate(route: str) -> None:
    if route == LOGIN_ROUTE:
        print("Session expired - run 'hostel-session login' again", file=sys.stderr)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _forget_cookies(config: SessionConfig) -> None:
    try:
        config.cookie_path.unlink()
    except FileNotFoundError:
        pass


async def _run(args: argparse.Namespace, config: SessionConfig) -> int:
    manager = SessionManager.from_config(config, navigate=_on_navigate)
    try:
        if args.command == "login":
            password = args.password or getpass.getpass("Password: ")
            await manager.boot(LOGIN_ROUTE)
            identity = await manager.login(args.username, password)
            print(f"Logged in as {identity.username} ({identity.role.value})")
            print(f"Home: {identity.home_route}")

        elif args.command == "whoami":
            await manager.boot("/")
            if manager.identity is None:
                print("Not logged in", file=sys.stderr)
                return 1
            _print_json(manager.identity.to_dict())

        elif args.command == "get":
            await manager.boot(args.route or "/")
            response = await manager.client.get(args.path)
            if response.synthetic:
                logger.info(f"{args.path} unavailable for this role, showing empty result")
            _print_json(response.data)

        elif args.command == "logout":
            await manager.boot(LOGIN_ROUTE)
            await manager.logout()
            _forget_cookies(config)
            print("Logged out")
            return 0

        if manager.identity is None:
            _forget_cookies(config)
        else:
            manager.client.save_cookies(config.cookie_path)
        return 0

    except (SessionError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if manager.identity is None:
            _forget_cookies(config)
        else:
            manager.client.save_cookies(config.cookie_path)
        return 1
    finally:
        await manager.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostel-session",
        description="Session client for the hostel administration console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hostel-session login -u owner1
  hostel-session whoami
  hostel-session get /rooms
  hostel-session get /semesters/active     # null if not available to your role
  hostel-session logout

Environment variables:
  HMS_API_URL           API base URL
  HMS_STATE_DIR         Where identity and cookies are kept
  HMS_RENEWAL_TIMEOUT   Give up on a hung renewal after N seconds (0 = never)
  HMS_LOG_FORMAT        text (default) or json
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("--api-url", help="API base URL (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Log in and store the session")
    login.add_argument("-u", "--username", required=True)
    login.add_argument("-p", "--password", help="Password (prompted if omitted)")

    sub.add_parser("whoami", help="Verify the session and print the identity")

    get = sub.add_parser("get", help="Authenticated GET request")
    get.add_argument("path", help="API path, e.g. /rooms")
    get.add_argument("--route", help="Console route the request is issued from")

    sub.add_parser("logout", help="End the session")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the hostel-session CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = SessionConfig.load(args.config)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    if args.api_url:
        config.api_url = normalize_api_url(args.api_url)

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
