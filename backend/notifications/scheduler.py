"""
Wall-clock scheduling for tool digests.

Runs in a single thread. With the schedule policy the daily and weekly
triggers fire at fixed local times in the configured timezone, and the
catch-up check runs once at startup. With the accumulator policy each
tick polls for newly approved tools and lets the announcement queue flush
when due.
"""

import time
from datetime import datetime, time as dt_time, timedelta
from typing import Any, Callable, List, Optional
from zoneinfo import ZoneInfo

from config.digest_settings import POLICY_ACCUMULATOR, DigestSettings
from models import DigestOutcome
from models.types import DAILY, WEEKLY
from notifications.announcement_queue import (
    AnnouncementQueue,
    ApprovalPoller,
    build_announcement_queue,
)
from notifications.catch_up import run_catch_up
from notifications.digest_runner import DigestRunner
from notifications.error_logger import log_notification_error
from shared.utils import utc_now


def next_daily_run(now: datetime, at: dt_time, tz: ZoneInfo) -> datetime:
    """Next local occurrence of `at` strictly after `now`."""
    local_now = now.astimezone(tz)
    candidate = local_now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = candidate + timedelta(days=1)
    return candidate


def next_weekly_run(now: datetime, weekday: int, at: dt_time, tz: ZoneInfo) -> datetime:
    """Next local occurrence of `weekday` (Monday == 0) at `at`, strictly after `now`."""
    local_now = now.astimezone(tz)
    days_ahead = (weekday - local_now.weekday()) % 7
    candidate = (local_now + timedelta(days=days_ahead)).replace(
        hour=at.hour, minute=at.minute, second=0, microsecond=0
    )
    if candidate <= local_now:
        candidate = candidate + timedelta(days=7)
    return candidate


class DigestScheduler:
    """Owns the digest triggers for one process."""

    def __init__(
        self,
        runner: DigestRunner,
        settings: DigestSettings,
        queue: Optional[AnnouncementQueue] = None,
        poller: Optional[ApprovalPoller] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if settings.policy == POLICY_ACCUMULATOR and (queue is None or poller is None):
            raise ValueError("Accumulator policy needs an announcement queue and poller")

        self.runner = runner
        self.settings = settings
        self.queue = queue
        self.poller = poller
        self.clock = clock
        self.sleep = sleep
        self.next_daily: Optional[datetime] = None
        self.next_weekly: Optional[datetime] = None
        self._started = False

    @property
    def uses_accumulator(self) -> bool:
        return self.settings.policy == POLICY_ACCUMULATOR

    def _safely(self, job: str, fn: Callable[[], Any]) -> Any:
        # A failed job is retried by its next natural trigger
        try:
            return fn()
        except Exception as e:
            error_file = log_notification_error(
                error_type="scheduler", error_message=str(e), context={"job": job}
            )
            print(f"❌ {job} failed: {e}. Details logged to: {error_file}")
            return None

    def start(self, now: Optional[datetime] = None) -> Optional[DigestOutcome]:
        """
        Start the triggers. Runs the catch-up check synchronously first.

        Returns:
            The catch-up outcome, if a catch-up run happened
        """
        now = now or self.clock()
        outcome = None

        if self.uses_accumulator:
            print("⏰ Scheduler initialized (accumulator policy)")
            self.queue.start()
        else:
            print("⏰ Scheduler initialized (schedule policy)")
            outcome = self._safely(
                "catch-up", lambda: run_catch_up(self.runner, self.settings, now)
            )
            tz = self.settings.tz
            self.next_daily = next_daily_run(now, self.settings.daily_time, tz)
            self.next_weekly = next_weekly_run(
                now, self.settings.weekly_day, self.settings.weekly_time, tz
            )
            print(f"  Next daily digest:  {self.next_daily.isoformat()}")
            print(f"  Next weekly digest: {self.next_weekly.isoformat()}")

        self._started = True
        return outcome

    def run_pending(self, now: Optional[datetime] = None) -> List[DigestOutcome]:
        """Fire every trigger that is due at `now`."""
        if not self._started:
            raise RuntimeError("Scheduler not started")

        now = now or self.clock()
        outcomes: List[DigestOutcome] = []

        if self.uses_accumulator:
            self._safely("approval poll", self.poller.poll)
            self._safely("announcement flush", self.queue.tick)
            return outcomes

        tz = self.settings.tz
        if now >= self.next_daily:
            print("⏰ Running Daily Digest Job...")
            outcome = self._safely("daily digest", lambda: self.runner.run(DAILY, now=now))
            if outcome:
                outcomes.append(outcome)
            self.next_daily = next_daily_run(now, self.settings.daily_time, tz)

        if now >= self.next_weekly:
            print("⏰ Running Weekly Digest Job...")
            outcome = self._safely("weekly digest", lambda: self.runner.run(WEEKLY, now=now))
            if outcome:
                outcomes.append(outcome)
            self.next_weekly = next_weekly_run(
                now, self.settings.weekly_day, self.settings.weekly_time, tz
            )

        return outcomes

    def stop(self) -> None:
        if self.queue:
            self.queue.stop()
        self._started = False

    def run_forever(self, poll_seconds: float = 30.0) -> None:
        """Block and run triggers until interrupted."""
        if not self._started:
            self.start()
        try:
            while True:
                self.run_pending()
                self.sleep(poll_seconds)
        except KeyboardInterrupt:
            print("\n⏹️  Scheduler stopped")
        finally:
            self.stop()


def build_scheduler(supabase: Any, settings: DigestSettings) -> DigestScheduler:
    """Wire a scheduler for the configured policy."""
    runner = DigestRunner(supabase, settings)
    queue = None
    poller = None
    if settings.policy == POLICY_ACCUMULATOR:
        queue = build_announcement_queue(supabase, settings)
        poller = ApprovalPoller(supabase, queue, since=utc_now())
    return DigestScheduler(runner, settings, queue=queue, poller=poller)
