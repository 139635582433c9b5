"""Command line diagnostics for configuration and connectivity."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Sequence

from . import __version__
from .config import load_settings
from .errors import GatewayError, ProfileConnectionError
from .query import run_statement
from .registry import ConnectionRegistry
from .resolver import describe

LOG = logging.getLogger(__name__)

Command = Callable[[ConnectionRegistry, argparse.Namespace], Awaitable[int]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mysqlgate", description="Inspect and test MySQL connection profiles.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("sources", help="Show every configuration source and which one is active.")
    commands.add_parser("profiles", help="List configured profiles without connecting.")

    test = commands.add_parser("test", help="Test one profile (default when omitted) or all of them.")
    test.add_argument("profile", nargs="?", help="Profile name.")
    test.add_argument("--all", action="store_true", help="Test every configured profile.")

    status = commands.add_parser("status", help="Connect a profile, then report status for all profiles.")
    status.add_argument("--profile", help="Profile to connect first (default profile when omitted).")

    query = commands.add_parser("query", help="Run a single SQL statement.")
    query.add_argument("sql", help="Statement to execute.")
    query.add_argument("--profile", help="Profile name (default profile when omitted).")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except GatewayError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    registry = ConnectionRegistry(settings=settings)
    try:
        return asyncio.run(_dispatch(registry, args))
    except GatewayError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


async def _dispatch(registry: ConnectionRegistry, args: argparse.Namespace) -> int:
    async with registry:
        return await COMMANDS[args.command](registry, args)


async def _sources(registry: ConnectionRegistry, args: argparse.Namespace) -> int:
    print(describe(registry.resolution))
    return 0


async def _profiles(registry: ConnectionRegistry, args: argparse.Namespace) -> int:
    _print_json(registry.list_profiles())
    return 0


async def _test(registry: ConnectionRegistry, args: argparse.Namespace) -> int:
    if args.all:
        results = await registry.test_all_profiles()
        _print_json({name: result.as_dict() for name, result in results.items()})
        return 0 if all(result.success for result in results.values()) else 1
    result = await registry.test_profile(args.profile)
    _print_json(result.as_dict())
    return 0 if result.success else 1


async def _status(registry: ConnectionRegistry, args: argparse.Namespace) -> int:
    try:
        await registry.get_handle(args.profile)
    except ProfileConnectionError as exc:
        LOG.warning("Could not connect before status snapshot", extra={"reason": str(exc)})
        print(f"warning: {exc}", file=sys.stderr)
    snapshot = await registry.status_snapshot()
    _print_json({name: status.as_dict() for name, status in snapshot.items()})
    return 0


async def _query(registry: ConnectionRegistry, args: argparse.Namespace) -> int:
    result = await run_statement(registry, args.sql, args.profile)
    _print_json(result.as_dict())
    return 0


COMMANDS: dict[str, Command] = {
    "sources": _sources,
    "profiles": _profiles,
    "test": _test,
    "status": _status,
    "query": _query,
}


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


__all__ = ["build_parser", "main"]
