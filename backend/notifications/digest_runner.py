"""
Schedule-driven digest runs.

A run looks at every tool approved inside the active window (today for the
daily digest, the trailing seven days for the weekly one), checks the
ledger so a window is never notified twice, and hands eligible windows to
the rate-limited dispatcher.
"""

import time
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, List, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from config.digest_settings import DigestSettings
from models import ApprovedTool, DigestOutcome, Recipient
from models.types import DAILY, DIGEST_KINDS, WEEKLY
from notifications import ledger
from notifications.dispatcher import RateLimitedDispatcher, Renderer, Sender
from notifications.email_sender import render_digest
from notifications.error_logger import log_notification_error
from notifications.errors import LedgerError, RecipientFetchError, WindowQueryError
from notifications.recipients import get_all_recipients, mark_recipient_sent
from shared.db import TOOLS_TABLE
from shared.utils import print_summary, to_iso, utc_now

# Refresh the ledger row every N send attempts during long runs
HEARTBEAT_EVERY = 25


def compute_window_start(kind: str, now: datetime, tz: ZoneInfo) -> datetime:
    """
    Start of the active window in the configured timezone.

    Daily: local midnight of the current day.
    Weekly: local midnight seven days before the current day.
    """
    if kind not in DIGEST_KINDS:
        raise ValueError(f"Unknown digest kind: {kind}")

    local_now = now.astimezone(tz)
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    if kind == WEEKLY:
        midnight = midnight - timedelta(days=7)
    return midnight


def compute_window_key(now: datetime, tz: ZoneInfo) -> str:
    """Local calendar date of the run; one ledger row per (kind, key)."""
    return now.astimezone(tz).date().isoformat()


def fetch_approved_tools(supabase: Any, since: datetime) -> List[ApprovedTool]:
    """
    Fetch tools approved at or after `since`, newest first.

    Raises:
        WindowQueryError: If the tools table cannot be queried
    """
    try:
        response = (
            supabase.table(TOOLS_TABLE)
            .select("id, name, description, url, image_url, approved_at")
            .eq("status", "approved")
            .gte("approved_at", to_iso(since))
            .order("approved_at", desc=True)
            .execute()
        )
    except Exception as e:
        raise WindowQueryError(f"Could not fetch approved tools: {e}") from e

    tools = []
    for row in response.data or []:
        try:
            tools.append(ApprovedTool(**{**row, "id": str(row["id"])}))
        except (ValidationError, KeyError) as e:
            print(f"  ⚠️  Skipping malformed tool row {row.get('id')}: {e}")
    return tools


class DigestRunner:
    """Runs one daily or weekly digest window end to end."""

    def __init__(
        self,
        supabase: Any,
        settings: DigestSettings,
        renderer: Optional[Renderer] = None,
        sender: Optional[Sender] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.supabase = supabase
        self.settings = settings
        self.renderer = renderer
        self.sender = sender
        self.sleep = sleep
        self.clock = clock

    @property
    def grace(self) -> timedelta:
        return timedelta(minutes=self.settings.stale_grace_minutes)

    def run(
        self, kind: str, now: Optional[datetime] = None, dry_run: bool = False
    ) -> DigestOutcome:
        """
        Run the digest for the window containing `now`.

        Args:
            kind: 'daily' or 'weekly'
            now: Trigger time (defaults to the current time)
            dry_run: If True, report what would be sent without writing or sending

        Returns:
            DigestOutcome describing what happened

        Raises:
            LedgerError: If the ledger cannot be read or written
        """
        now = now or self.clock()
        tz = self.settings.tz
        window_start = compute_window_start(kind, now, tz)
        window_key = compute_window_key(now, tz)

        print(f"Processing {kind} digest for window starting {window_start.isoformat()}")

        blocking = ledger.find_blocking_window(
            self.supabase, kind, window_start, now, self.grace
        )
        if blocking:
            print(
                f"✅ {kind.capitalize()} digest already handled "
                f"(ledger row {blocking.id}, status {blocking.status})"
            )
            return DigestOutcome(
                kind=kind,
                window_start=window_start,
                status="skipped_duplicate",
                window_id=blocking.id,
                reason=f"ledger row {blocking.status}",
            )

        try:
            tools = fetch_approved_tools(self.supabase, window_start)
        except WindowQueryError as e:
            error_file = log_notification_error(
                error_type="window_query",
                error_message=str(e),
                context={"kind": kind, "window_start": window_start.isoformat()},
            )
            print(f"  ✗ {e}. Details logged to: {error_file}")
            return DigestOutcome(
                kind=kind, window_start=window_start, status="failed", reason=str(e)
            )

        min_tools = self.settings.min_tools_for(kind)
        print(f"📊 Found {len(tools)} tools approved in window (minimum {min_tools})")

        if len(tools) < min_tools:
            print(f"⏭️  Fewer than {min_tools} tools, skipping {kind} digest")
            return DigestOutcome(
                kind=kind,
                window_start=window_start,
                status="skipped_threshold",
                tool_count=len(tools),
                reason=f"{len(tools)} < {min_tools}",
            )

        if dry_run:
            recipients = get_all_recipients(self.supabase)
            print(f"  [DRY RUN] Would send {kind} digest with {len(tools)} tools "
                  f"to {len(recipients)} recipients")
            return DigestOutcome(
                kind=kind,
                window_start=window_start,
                status="dry_run",
                tool_count=len(tools),
                recipient_count=len(recipients),
            )

        window = ledger.claim_window(
            self.supabase, kind, window_start, window_key, tools, now, self.grace
        )
        if window is None:
            print(f"✅ {kind.capitalize()} window {window_key} claimed by another run, skipping")
            return DigestOutcome(
                kind=kind,
                window_start=window_start,
                status="lost_race",
                tool_count=len(tools),
            )

        try:
            recipients = get_all_recipients(self.supabase)
        except RecipientFetchError as e:
            ledger.fail_window(self.supabase, window, str(e), self.clock())
            error_file = log_notification_error(
                error_type="recipients",
                error_message=str(e),
                context={"kind": kind, "window_id": window.id, "window_key": window_key},
            )
            print(f"  ✗ {e}. Details logged to: {error_file}")
            return DigestOutcome(
                kind=kind,
                window_start=window_start,
                status="failed",
                tool_count=len(tools),
                window_id=window.id,
                reason=str(e),
            )

        if not recipients:
            # Release the claim so a later run the same day can still send
            ledger.fail_window(self.supabase, window, "No recipients found", self.clock())
            print(f"⚠️  No recipients found, skipping {kind} digest")
            return DigestOutcome(
                kind=kind,
                window_start=window_start,
                status="skipped_no_recipients",
                tool_count=len(tools),
                window_id=window.id,
            )

        window = ledger.mark_sending(self.supabase, window, len(recipients), self.clock())
        print(f"📧 Sending {kind} digest to {len(recipients)} recipients...")

        renderer = self.renderer or partial(
            render_digest,
            max_tools=self.settings.max_tools_per_email,
            digest_date=now.astimezone(tz).date(),
        )
        dispatcher = RateLimitedDispatcher(
            renderer=renderer,
            sender=self.sender,
            delay_seconds=self.settings.send_delay_seconds,
            sleep=self.sleep,
            on_sent=self._record_sent,
            on_attempt=self._heartbeat_hook(window),
        )
        result = dispatcher.dispatch(kind, tools, recipients)

        ledger.complete_window(self.supabase, window, result, self.clock())

        print_summary(
            f"{kind.capitalize()} Digest Complete",
            {
                "Window": window_key,
                "Tools": len(tools),
                "Attempted": result.attempted,
                "Sent": result.succeeded,
                "Failed": result.failed,
            },
        )

        return DigestOutcome(
            kind=kind,
            window_start=window_start,
            status="completed",
            tool_count=len(tools),
            recipient_count=result.attempted,
            window_id=window.id,
            dispatch=result,
        )

    def _record_sent(self, recipient: Recipient) -> None:
        mark_recipient_sent(self.supabase, recipient, self.clock())

    def _heartbeat_hook(self, window) -> Callable[[Recipient], None]:
        attempts = 0

        def on_attempt(recipient: Recipient) -> None:
            nonlocal attempts
            attempts += 1
            if attempts % HEARTBEAT_EVERY == 0:
                try:
                    ledger.touch_window(self.supabase, window, self.clock())
                except LedgerError as e:
                    print(f"  ⚠️  {e}")

        return on_attempt

    def run_daily(self, now: Optional[datetime] = None, dry_run: bool = False) -> DigestOutcome:
        return self.run(DAILY, now=now, dry_run=dry_run)

    def run_weekly(self, now: Optional[datetime] = None, dry_run: bool = False) -> DigestOutcome:
        return self.run(WEEKLY, now=now, dry_run=dry_run)
