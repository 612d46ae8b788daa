#!/usr/bin/env python3
"""
Phase Gate CLI

Usage:
    python -m phasegate config [--config phasegate.yaml]
    python -m phasegate gate-template [--format yaml|json]
    python -m phasegate chronicle --db chronicle.db [--phase 2] [--since ISO] [--until ISO]
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from . import __version__
from .chronicle import ChronicleStore
from .config import ConfigManager, configure_logging
from .errors import PhaseGateError

logger = logging.getLogger(__name__)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an ISO timestamp: {value}")


def _dump(data, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2, default=str)
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


# ============================================================================
# Commands
# ============================================================================

def cmd_config(args: argparse.Namespace, manager: ConfigManager) -> int:
    """Print the effective configuration and validate it."""
    print(_dump(manager.get().to_dict(), args.format))
    is_valid, errors = manager.validate()
    if not is_valid:
        for error in errors:
            print(f"error: {error}", file=sys.stderr)
        return 1
    return 0


def cmd_gate_template(args: argparse.Namespace, manager: ConfigManager) -> int:
    """Print the phase table: reviewers, priority and gate criteria per phase."""
    config = manager.get()
    table = []
    for phase in config.phases:
        table.append({
            "ordinal": phase.ordinal,
            "name": phase.name,
            "priority": config.priority_for(phase.ordinal).value,
            "reviewers": list(phase.reviewers),
            "criteria": [
                {"id": c.id, "kind": c.kind, "description": c.description}
                for c in phase.criteria
            ],
        })
    print(_dump({"phases": table}, args.format))
    return 0


def cmd_chronicle(args: argparse.Namespace, manager: ConfigManager) -> int:
    """Export chronicle records from a SQLite chronicle file."""
    db_path = args.db or manager.get().chronicle.db_path
    if db_path == ":memory:" or not Path(db_path).exists():
        print(f"error: chronicle file not found: {db_path}", file=sys.stderr)
        return 1

    store = ChronicleStore(db_path)
    try:
        records = store.export(args.phase, _parse_time(args.since), _parse_time(args.until))
    finally:
        store.close()
    logger.debug(f"Exported {len(records)} record(s) from {db_path}")
    print(_dump(records, args.format))
    return 0


COMMANDS = {
    "config": cmd_config,
    "gate-template": cmd_gate_template,
    "chronicle": cmd_chronicle,
}


# ============================================================================
# Main
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phasegate",
        description="Phase-gated review workflow engine",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: phasegate.yaml)",
    )
    parser.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Output format (default: yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("config", help="Print and validate the effective configuration")
    subparsers.add_parser("gate-template", help="Print the phase table")

    chronicle = subparsers.add_parser("chronicle", help="Export chronicle records")
    chronicle.add_argument("--db", help="Chronicle SQLite file (default: chronicle.db_path)")
    chronicle.add_argument("--phase", type=int, default=None, help="Only records of this phase")
    chronicle.add_argument("--since", default=None, help="Only records at or after this ISO time")
    chronicle.add_argument("--until", default=None, help="Only records at or before this ISO time")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        manager = ConfigManager(args.config)
    except PhaseGateError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    configure_logging(manager.get().logging)

    try:
        return COMMANDS[args.command](args, manager)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except PhaseGateError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
