"""Command-line entry point.

Usage:
    python -m stock_brain.app --init-db
    python -m stock_brain.app --org acme --user u-owner "Add 20 units to Biltong"
    python -m stock_brain.app --metrics --org acme --user u-owner "Sold 15 Biltong"
"""
from __future__ import annotations

import argparse
import json
import sys

from services import memory
from services.command_engine import handle_command
from services.metrics import metrics
from stock_brain.config import load_config
from stock_brain.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a free-text inventory command")
    parser.add_argument("message", nargs="?", help="Command text, e.g. \"Sold 15 Biltong\"")
    parser.add_argument("--org", metavar="ORG_ID", help="Organization id")
    parser.add_argument("--user", metavar="USER_ID", help="Acting user id")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the database schema and exit",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print a metrics snapshot to stderr after the command",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    configure_logging(config)
    memory.init_db()

    if args.init_db:
        print(f"Database ready at {memory.get_db_path()}")
        return 0

    if not args.message or not args.org:
        print("A message and --org are required (see --help).", file=sys.stderr)
        return 2

    response = handle_command(args.message, args.org, args.user, config=config)
    print(json.dumps(response.body, indent=2, default=str))
    if args.metrics:
        print(json.dumps(metrics.get_all_metrics(), indent=2, default=str), file=sys.stderr)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
