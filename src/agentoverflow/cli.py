"""
agentoverflow CLI - operator tooling for the knowledge base core.

Commands:
  agentoverflow fingerprint   Compute the fingerprint of an error report
  agentoverflow confidence    Score a solution from its counters
  agentoverflow init-db       Create the PostgreSQL schema (idempotent)
  agentoverflow check-db      Verify database connectivity
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from typing import Any

from .core.confidence import calculate_confidence, confidence_label, is_solved
from .core.exceptions import AgentOverflowException
from .core.fingerprint import generate_fingerprint, normalized_signature

logger = logging.getLogger(__name__)


def _print(data: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
    else:
        for key, value in data.items():
            print(f"{key}: {value}")


def cmd_fingerprint(args: argparse.Namespace) -> int:
    """Print the fingerprint and normalized signature of an error."""
    data = {
        "fingerprint": generate_fingerprint(args.type, args.message, args.runtime),
        "signature": normalized_signature(args.type, args.message, args.runtime),
    }
    _print(data, args.json)
    return 0


def cmd_confidence(args: argparse.Namespace) -> int:
    """Print the confidence a solution with the given counters would have."""
    if args.count < 0 or args.successes < 0 or (args.days is not None and args.days < 0):
        print("Error: counts and days must be non-negative", file=sys.stderr)
        return 1

    now = datetime.now(UTC)
    last_verified_at = now - timedelta(days=args.days) if args.days is not None else None
    score = calculate_confidence(args.count, args.successes, last_verified_at, now=now)
    data = {
        "confidence": round(score, 4),
        "label": confidence_label(score),
        "solved": is_solved(score),
    }
    _print(data, args.json)
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create tables and indexes."""
    from .core.db import close_pool, init_schema

    try:
        init_schema(args.schema)
    except (AgentOverflowException, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        close_pool()

    print("Schema initialized")
    return 0


def cmd_check_db(args: argparse.Namespace) -> int:
    from .core.db import check_connection, close_pool

    try:
        ok = check_connection()
    finally:
        close_pool()
    print("Database reachable" if ok else "Database unreachable")
    return 0 if ok else 1


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agentoverflow",
        description="Error/fix knowledge base core tooling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agentoverflow fingerprint -t TypeError -m "x is undefined" -r node@20.1.0
  agentoverflow confidence 3 3 --days 30
  agentoverflow init-db
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # fingerprint
    fp_parser = subparsers.add_parser("fingerprint", help="Compute an error fingerprint")
    fp_parser.add_argument("--type", "-t", default=None, help="Error type, e.g. TypeError")
    fp_parser.add_argument("--message", "-m", default=None, help="Error message")
    fp_parser.add_argument("--runtime", "-r", default=None, help="Runtime, e.g. node@20.1.0")
    fp_parser.add_argument("--json", action="store_true", help="Output JSON")

    # confidence
    conf_parser = subparsers.add_parser("confidence", help="Score a solution from its counters")
    conf_parser.add_argument("count", type=int, help="Number of verifications")
    conf_parser.add_argument("successes", type=float, help="Weighted success count")
    conf_parser.add_argument("--days", "-d", type=float, default=None, help="Days since last verification")
    conf_parser.add_argument("--json", action="store_true", help="Output JSON")

    # init-db
    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.add_argument("--schema", default=None, help="Path to an alternative schema.sql")

    # check-db
    subparsers.add_parser("check-db", help="Verify database connectivity")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)

    if args.verbose:
        from .core.logging import configure_logging

        configure_logging(level="DEBUG")

    commands = {
        "fingerprint": cmd_fingerprint,
        "confidence": cmd_confidence,
        "init-db": cmd_init_db,
        "check-db": cmd_check_db,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
