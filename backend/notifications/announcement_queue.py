"""
Accumulating announcement queue (alternate batching policy).

Collects newly approved tools in memory and flushes them as one digest
after a fixed interval, or immediately once the queue reaches its cap.
A flush with fewer than the minimum number of tools is deferred: the
items stay queued and the interval restarts. Nothing here is persisted
and no ledger row is written; a restart loses the queue.

Selected with DIGEST_POLICY=accumulator. The scheduler owns the queue and
drives it with tick(); there are no background threads.
"""

import time
from datetime import datetime
from functools import partial
from typing import Any, Callable, List, Optional

from config.digest_settings import DigestSettings
from models import PendingAnnouncement
from models.types import DAILY
from notifications.digest_runner import fetch_approved_tools
from notifications.dispatcher import RateLimitedDispatcher, Renderer, Sender
from notifications.email_sender import render_digest
from notifications.error_logger import log_notification_error
from notifications.recipients import get_all_recipients
from shared.utils import utc_now

BatchSender = Callable[[List[PendingAnnouncement]], None]


class AnnouncementQueue:
    """In-memory tool accumulator with an explicit start/stop/flush lifecycle."""

    def __init__(
        self,
        send_batch: BatchSender,
        min_count: int = 5,
        interval_seconds: float = 300.0,
        cap: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.send_batch = send_batch
        self.min_count = min_count
        self.interval_seconds = interval_seconds
        self.cap = cap
        self.clock = clock
        self._items: List[PendingAnnouncement] = []
        self._deadline: Optional[float] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> tuple:
        return tuple(self._items)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def _arm(self) -> None:
        if self._running and self._items and self._deadline is None:
            self._deadline = self.clock() + self.interval_seconds

    def start(self) -> None:
        self._running = True
        self._arm()

    def stop(self) -> None:
        """Disarm the flush deadline. Queued items are kept."""
        self._running = False
        self._deadline = None

    def register(self, tool: PendingAnnouncement) -> bool:
        """
        Queue a newly approved tool.

        Returns:
            True if the registration caused a batch to be sent
        """
        if not self._running:
            return False

        self._items.append(tool)
        if len(self._items) >= self.cap:
            return self.flush(reason="cap")

        self._arm()
        return False

    def tick(self) -> bool:
        """Flush if the interval has elapsed. Returns True if a batch was sent."""
        if self._deadline is None or self.clock() < self._deadline:
            return False
        return self.flush(reason="interval")

    def flush(self, reason: str = "manual") -> bool:
        """
        Send the queued batch if it meets the minimum size.

        Returns:
            True if a batch was handed to send_batch
        """
        self._deadline = None
        if not self._items:
            return False

        if len(self._items) < self.min_count:
            print(
                f"ℹ️  Announcement digest deferred ({reason}); only "
                f"{len(self._items)} < {self.min_count}. Waiting for more tools."
            )
            self._arm()
            return False

        batch = self._items
        self._items = []
        try:
            self.send_batch(batch)
        except Exception as e:
            error_file = log_notification_error(
                error_type="announcement_batch",
                error_message=str(e),
                context={"reason": reason, "tool_ids": [tool.id for tool in batch]},
            )
            print(f"  ✗ Announcement digest failed: {e}. Details logged to: {error_file}")
        return True


class ApprovalPoller:
    """Feeds the queue from approval timestamps; moderation never calls us directly."""

    def __init__(self, supabase: Any, queue: AnnouncementQueue, since: datetime):
        self.supabase = supabase
        self.queue = queue
        self.cursor = since
        self._seen_at_cursor: set[str] = set()

    def poll(self) -> int:
        """
        Register tools approved since the last poll.

        Returns:
            Number of tools registered
        """
        tools = fetch_approved_tools(self.supabase, self.cursor)
        new_tools = [tool for tool in reversed(tools) if tool.id not in self._seen_at_cursor]

        for tool in new_tools:
            if tool.approved_at > self.cursor:
                self.cursor = tool.approved_at
                self._seen_at_cursor = set()
            self._seen_at_cursor.add(tool.id)
            self.queue.register(PendingAnnouncement.from_tool(tool))

        return len(new_tools)


def make_batch_sender(
    supabase: Any,
    settings: DigestSettings,
    renderer: Optional[Renderer] = None,
    sender: Optional[Sender] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchSender:
    """Build the send_batch callable: resolve the audience, then dispatch."""

    def send_batch(batch: List[PendingAnnouncement]) -> None:
        recipients = get_all_recipients(supabase)
        print(f"📧 Sending announcement digest ({len(batch)} tools) to {len(recipients)} recipients...")
        dispatcher = RateLimitedDispatcher(
            renderer=renderer or partial(
                render_digest,
                max_tools=settings.max_tools_per_email,
                digest_date=utc_now().astimezone(settings.tz).date(),
            ),
            sender=sender,
            delay_seconds=settings.send_delay_seconds,
            sleep=sleep,
        )
        result = dispatcher.dispatch(DAILY, batch, recipients)
        print(f"✅ Announcement digest sent! Success: {result.succeeded}, Failed: {result.failed}")

    return send_batch


def build_announcement_queue(
    supabase: Any,
    settings: DigestSettings,
    renderer: Optional[Renderer] = None,
    sender: Optional[Sender] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> AnnouncementQueue:
    return AnnouncementQueue(
        send_batch=make_batch_sender(supabase, settings, renderer, sender, sleep),
        min_count=settings.accumulator_min_tools,
        interval_seconds=settings.batch_interval_seconds,
        cap=settings.queue_cap,
        clock=clock,
    )
