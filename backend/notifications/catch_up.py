"""
Startup catch-up for the daily digest.

If the process was down at the daily trigger time (deploy, restart, host
sleep), the day's digest would silently be skipped. At startup we run the
daily path once when the trigger time has already passed; the ledger guard
decides whether today's window still needs sending. The weekly digest is
not caught up.
"""

from datetime import datetime
from typing import Optional

from config.digest_settings import DigestSettings
from models import DigestOutcome
from models.types import DAILY
from notifications.digest_runner import DigestRunner
from shared.utils import utc_now


def should_catch_up(now: datetime, settings: DigestSettings) -> bool:
    """True if local time is at or past today's daily trigger time."""
    local_now = now.astimezone(settings.tz)
    return local_now.time() >= settings.daily_time


def run_catch_up(
    runner: DigestRunner,
    settings: DigestSettings,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> Optional[DigestOutcome]:
    """
    Run today's daily digest if its trigger time has passed.

    Args:
        runner: Runner that owns the ledger guard
        settings: Digest settings (timezone, daily trigger time)
        now: Current time (defaults to utc_now())
        dry_run: Passed through to the runner

    Returns:
        The run's DigestOutcome, or None if the trigger time is still ahead
    """
    now = now or utc_now()
    if not should_catch_up(now, settings):
        print(f"⏰ Daily trigger {settings.daily_time.strftime('%H:%M')} not reached yet, no catch-up needed")
        return None

    print("⏰ Daily trigger time has passed, running catch-up check...")
    return runner.run(DAILY, now=now, dry_run=dry_run)
