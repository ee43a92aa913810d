"""Command-line interface for the athwatch runtime."""

from __future__ import annotations

import argparse
import sys

from athwatch.config import Settings
from athwatch.errors import AthWatchError
from athwatch.runtime import (
    resend,
    run,
    run_once_command,
    show_recent,
    show_stats,
    show_user_count,
)

ACTION_FLAGS = ("once", "resend", "recent", "user_count", "stats")


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(
        description="Detect crypto all-time highs and notify subscribers"
    )
    parser.add_argument(
        "--interval-seconds", type=int, help="Seconds between detect-then-dispatch cycles"
    )
    parser.add_argument("--state-db", type=str, help="SQLite ledger path")
    parser.add_argument("--data-source", choices=["coingecko", "csv"], help="Snapshot source")
    parser.add_argument("--quotes-csv", type=str, help="Quotes CSV for the csv data source")
    parser.add_argument("--subscribers", type=str, help="Subscribers CSV path")
    parser.add_argument("--sender", choices=["log", "resend"], help="Notification sender")
    parser.add_argument("--events-dir", type=str, help="Run outputs directory")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one detect-then-dispatch cycle, then exit",
    )
    parser.add_argument(
        "--resend",
        type=str,
        metavar="EVENT_ID",
        help="Re-dispatch a stored event to recipients that have no record yet, then exit",
    )
    parser.add_argument(
        "--recent",
        type=int,
        metavar="HOURS",
        help="List ATH events detected in the last HOURS, then exit",
    )
    parser.add_argument(
        "--user-count",
        type=str,
        metavar="USER_ID",
        help="Show notification counts for one recipient, then exit",
    )
    parser.add_argument(
        "--stats",
        type=int,
        metavar="DAYS",
        help="Show notification statistics for the last DAYS, then exit",
    )
    return parser


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply CLI values onto environment-derived settings."""
    selected = [name for name in ACTION_FLAGS if _action_requested(args, name)]
    if len(selected) > 1:
        flags = ", ".join(f"--{name.replace('_', '-')}" for name in selected)
        raise ValueError(f"Use only one action flag, got: {flags}")
    if args.recent is not None and args.recent <= 0:
        raise ValueError("--recent must be a positive number of hours")
    if args.stats is not None and args.stats <= 0:
        raise ValueError("--stats must be a positive number of days")

    overrides: dict[str, object] = {}
    if args.interval_seconds is not None:
        overrides["interval_seconds"] = args.interval_seconds
    if args.state_db:
        overrides["state_db_path"] = args.state_db
    if args.data_source:
        overrides["data_source"] = args.data_source
    if args.quotes_csv:
        overrides["quotes_csv_path"] = args.quotes_csv
    if args.subscribers:
        overrides["subscribers_path"] = args.subscribers
    if args.sender:
        overrides["sender"] = args.sender
    if args.events_dir:
        overrides["events_dir"] = args.events_dir
    return settings.with_overrides(**overrides)


def _action_requested(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name)
    if isinstance(value, bool):
        return value
    return value is not None


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = apply_cli_overrides(Settings.from_env(), args)
    except ValueError as exc:
        print(f"Configuration error: {exc}")
        return 2
    try:
        if args.once:
            return run_once_command(settings)
        if args.resend is not None:
            return resend(settings, args.resend)
        if args.recent is not None:
            return show_recent(settings, args.recent)
        if args.user_count is not None:
            return show_user_count(settings, args.user_count)
        if args.stats is not None:
            return show_stats(settings, args.stats)
        return run(settings)
    except AthWatchError as exc:
        print(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
