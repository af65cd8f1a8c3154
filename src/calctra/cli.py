"""Calctra CLI — command-line interface for the compute market.

Usage:
    python -m calctra.cli status
    python -m calctra.cli policy
    python -m calctra.cli replay --file commands.json --authority operator
    python -m calctra.cli verify-log --file data/events.jsonl

The market keeps its records in memory, so ``replay`` builds a fresh
market, executes a JSON list of commands against it and prints each
result followed by the final status.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from calctra.commands import command_from_dict
from calctra.persistence.event_log import EventLog
from calctra.policy.resolver import PolicyResolver
from calctra.service import CalctraService
from calctra.telemetry.logging import setup_logging


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_AUTHORITY = "authority"


def _make_service(args: argparse.Namespace) -> CalctraService:
    resolver = PolicyResolver.from_config_dir(args.config)
    setup_logging(resolver.logging_config())
    event_log = None
    if getattr(args, "event_log", None) is not None:
        args.event_log.parent.mkdir(parents=True, exist_ok=True)
        event_log = EventLog(storage_path=args.event_log)
    return CalctraService(args.authority, resolver, event_log=event_log)


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_policy(args: argparse.Namespace) -> int:
    resolver = PolicyResolver.from_config_dir(args.config)
    print(json.dumps(resolver.as_dict(), indent=2, sort_keys=True))
    return 0


def cmd_replay(args: argparse.Namespace) -> int:
    try:
        with args.file.open("r", encoding="utf-8") as f:
            raw_commands = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read replay file {args.file}: {e}", file=sys.stderr)
        return 1
    if not isinstance(raw_commands, list):
        print("Replay file must hold a JSON list of commands", file=sys.stderr)
        return 1

    service = _make_service(args)
    failures = 0
    for index, raw in enumerate(raw_commands):
        try:
            command = command_from_dict(raw)
        except ValueError as e:
            print(f"[{index}] invalid command: {e}", file=sys.stderr)
            return 1
        result = service.execute(command)
        if result.success:
            print(f"[{index}] {raw.get('op')}: ok {json.dumps(result.data, default=str)}")
        else:
            failures += 1
            print(f"[{index}] {raw.get('op')}: failed {'; '.join(result.errors)}")

    print(json.dumps(service.status(), indent=2))
    if failures and args.strict:
        return 1
    return 0


def cmd_verify_log(args: argparse.Namespace) -> int:
    if not args.file.is_file():
        print(f"Event log not found: {args.file}", file=sys.stderr)
        return 1
    try:
        log = EventLog(storage_path=args.file)
    except ValueError as e:
        print(f"Event log rejected: {e}", file=sys.stderr)
        return 1
    print(f"Event log intact: {log.count} events")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="calctra",
        description="Calctra compute market CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--authority",
        default=DEFAULT_AUTHORITY,
        help="Authority identity for the market instance",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show market status")

    # policy
    sub.add_parser("policy", help="Show the resolved market policy")

    # replay
    p_replay = sub.add_parser("replay", help="Execute a JSON list of commands")
    p_replay.add_argument("--file", type=Path, required=True, help="Commands file")
    p_replay.add_argument("--event-log", type=Path, help="Persist events to this JSONL file")
    p_replay.add_argument(
        "--strict", action="store_true",
        help="Exit non-zero if any command is rejected",
    )

    # verify-log
    p_verify = sub.add_parser("verify-log", help="Check a JSONL event log's integrity")
    p_verify.add_argument("--file", type=Path, required=True, help="Event log file")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "policy": cmd_policy,
        "replay": cmd_replay,
        "verify-log": cmd_verify_log,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
