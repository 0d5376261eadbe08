"""
CLI script for running tool digests.

Usage:
    # Run today's daily digest now (skipped if already sent or below minimum)
    uv run python -m notifications.process_digest --daily

    # Run the weekly digest for the trailing seven days
    uv run python -m notifications.process_digest --weekly

    # Startup catch-up: run the daily digest if its trigger time has passed
    uv run python -m notifications.process_digest --catch-up

    # Long-running scheduler (catch-up, then daily/weekly triggers)
    uv run python -m notifications.process_digest --serve

    # Show recent ledger rows
    uv run python -m notifications.process_digest --status

    # Dry run (don't write the ledger or send emails); not accepted with --serve or --status
    uv run python -m notifications.process_digest --daily --dry-run
    uv run python -m notifications.process_digest --catch-up --dry-run
"""

import argparse
import sys
from typing import Any, List

from config.digest_settings import load_digest_settings
from models import DigestOutcome, NotificationWindow
from models.types import DAILY, WEEKLY
from notifications.catch_up import run_catch_up
from notifications.digest_runner import DigestRunner
from notifications.errors import DigestError
from notifications.ledger import list_recent_windows
from notifications.scheduler import build_scheduler
from shared.db import get_supabase_client


def print_status(windows: List[NotificationWindow]) -> None:
    """Print ledger rows the way operators check them."""
    if not windows:
        print("No digest notifications recorded yet.")
        return

    print(f"Found {len(windows)} recent digest notification(s):")
    for window in windows:
        line = (
            f"- {window.kind:<6} {window.window_key}  opened {window.opened_at.isoformat()}  "
            f"tools {window.tool_count}  recipients {window.recipient_count} "
            f"(sent {window.succeeded_count}, failed {window.failed_count})  "
            f"status {window.status}"
        )
        if window.attempts > 1:
            line += f"  attempts {window.attempts}"
        if window.error_message:
            line += f"  error: {window.error_message}"
        print(line)


def _exit_code(outcome: DigestOutcome | None) -> int:
    return 1 if outcome is not None and outcome.status == "failed" else 0


def main(argv: List[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Run tool announcement digests")

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--daily", action="store_true", help="Run the daily digest now")
    mode.add_argument("--weekly", action="store_true", help="Run the weekly digest now")
    mode.add_argument(
        "--catch-up",
        action="store_true",
        help="Run the daily digest if today's trigger time has already passed",
    )
    mode.add_argument("--serve", action="store_true", help="Run the scheduler until interrupted")
    mode.add_argument("--status", action="store_true", help="Show recent ledger rows")

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode (don't write the ledger or send emails)",
    )
    parser.add_argument(
        "--limit", type=int, default=20, help="Number of ledger rows shown with --status"
    )
    parser.add_argument(
        "--poll-seconds", type=float, default=30.0, help="Scheduler tick interval with --serve"
    )

    args = parser.parse_args(argv)
    if args.dry_run and (args.serve or args.status):
        parser.error("--dry-run only applies to --daily, --weekly and --catch-up")

    settings = load_digest_settings()
    supabase: Any = get_supabase_client()

    try:
        if args.status:
            print_status(list_recent_windows(supabase, limit=args.limit))
            return 0

        if args.serve:
            build_scheduler(supabase, settings).run_forever(poll_seconds=args.poll_seconds)
            return 0

        runner = DigestRunner(supabase, settings)
        if args.catch_up:
            return _exit_code(run_catch_up(runner, settings, dry_run=args.dry_run))

        kind = DAILY if args.daily else WEEKLY
        return _exit_code(runner.run(kind, dry_run=args.dry_run))

    except DigestError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
