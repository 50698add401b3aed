"""Tenure CLI — command-line interface for the property-token system.

Usage:
    python -m tenure.cli status
    python -m tenure.cli scenario --events data/events.jsonl
    python -m tenure.cli check-invariants
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from tenure.config import DEFAULT_CONFIG_DIR, TenureConfig
from tenure.errors import TenureError
from tenure.persistence.event_log import EventLog
from tenure.scenario import ScenarioError, run_reference_scenario


def _load_config(args: argparse.Namespace) -> TenureConfig:
    return TenureConfig.load(config_dir=args.config, env_file=args.env_file)


def cmd_status(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
    except TenureError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(config.summary(), indent=2))
    return 0


def cmd_scenario(args: argparse.Namespace) -> int:
    """Run the reference lease end-to-end."""
    try:
        config = _load_config(args)
        event_log = None
        if args.events is not None:
            args.events.parent.mkdir(parents=True, exist_ok=True)
            event_log = EventLog(storage_path=args.events)
        outcome = run_reference_scenario(config, event_log=event_log)
    except (TenureError, ScenarioError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(outcome, indent=2, default=str))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run configuration invariant checks."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenure",
        description="Tenure — permissioned property token and lease escrow",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Optional .env file with TENURE_* overrides",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show effective configuration")

    # scenario
    p_scn = sub.add_parser("scenario", help="Run the reference lease scenario")
    p_scn.add_argument("--events", type=Path, help="Write the audit log to this JSONL file")

    # check-invariants
    sub.add_parser("check-invariants", help="Validate configuration invariants")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "scenario": cmd_scenario,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
