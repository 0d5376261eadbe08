"""
Notification ledger access for tool digests.

Each eligible window gets one row in tool_notifications, keyed by
(kind, window_key). The row's status decides whether a window may be
dispatched again:

- completed: always blocks
- pending/sending: blocks while fresh; once older than the grace period
  the row is treated as abandoned by a crashed run and may be reclaimed
  exactly once
- failed: never blocks (the run aborted before any email was sent)

Rows are created with an atomic insert-if-absent and reclaimed with a
conditional update, so two triggers racing for the same window cannot
both win.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from models import ApprovedTool, DispatchResult, NotificationWindow
from models.types import (
    IN_FLIGHT_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SENDING,
    WindowKey,
)
from notifications.errors import LedgerError
from shared.db import LEDGER_TABLE
from shared.utils import to_iso

# Original attempt plus one retry of an abandoned row
MAX_ATTEMPTS = 2

BLOCKING = "blocking"
RETRYABLE = "retryable"


def _row_to_window(row: Dict[str, Any]) -> NotificationWindow:
    data = dict(row)
    data["id"] = str(data["id"])
    data["tool_ids"] = [str(tool_id) for tool_id in data.get("tool_ids") or []]
    return NotificationWindow(**data)


def find_windows(
    supabase: Any, kind: str, window_start: datetime
) -> List[NotificationWindow]:
    """
    Fetch ledger rows of this kind whose window starts at or after window_start,
    newest first.

    Raises:
        LedgerError: If the ledger cannot be read
    """
    try:
        response = (
            supabase.table(LEDGER_TABLE)
            .select("*")
            .eq("kind", kind)
            .gte("window_start", to_iso(window_start))
            .order("opened_at", desc=True)
            .execute()
        )
    except Exception as e:
        raise LedgerError(f"Could not read {kind} ledger: {e}") from e

    return [_row_to_window(row) for row in response.data or []]


def _last_activity(window: NotificationWindow) -> datetime:
    return window.updated_at or window.opened_at


def classify_window(
    window: NotificationWindow, now: datetime, grace: timedelta
) -> str:
    """Decide whether an existing row blocks its window or may be retried."""
    if window.status == STATUS_COMPLETED:
        return BLOCKING
    if window.status == STATUS_FAILED:
        return RETRYABLE

    # pending / sending
    if now - _last_activity(window) < grace:
        return BLOCKING
    if window.attempts >= MAX_ATTEMPTS:
        return BLOCKING
    return RETRYABLE


def find_blocking_window(
    supabase: Any,
    kind: str,
    window_start: datetime,
    now: datetime,
    grace: timedelta,
) -> Optional[NotificationWindow]:
    """
    Idempotency guard: return the row that blocks this window, if any.

    Args:
        supabase: Supabase client
        kind: 'daily' or 'weekly'
        window_start: Start of the window being considered
        now: Current time (aware)
        grace: Age after which an in-flight row counts as abandoned

    Returns:
        Blocking NotificationWindow or None if dispatch may proceed
    """
    for window in find_windows(supabase, kind, window_start):
        if classify_window(window, now, grace) == BLOCKING:
            return window
    return None


def _insert_if_absent(
    supabase: Any,
    kind: str,
    window_start: datetime,
    window_key: WindowKey,
    tools: List[ApprovedTool],
    now: datetime,
) -> Optional[NotificationWindow]:
    row = {
        "id": str(uuid.uuid4()),
        "kind": kind,
        "window_key": window_key,
        "window_start": to_iso(window_start),
        "opened_at": to_iso(now),
        "updated_at": to_iso(now),
        "tool_count": len(tools),
        "tool_ids": [tool.id for tool in tools],
        "recipient_count": 0,
        "succeeded_count": 0,
        "failed_count": 0,
        "status": STATUS_PENDING,
        "attempts": 1,
    }

    try:
        # Unique constraint on (kind, window_key): a duplicate is ignored
        # and comes back as an empty result
        response = (
            supabase.table(LEDGER_TABLE)
            .upsert(row, on_conflict="kind,window_key", ignore_duplicates=True)
            .execute()
        )
    except Exception as e:
        raise LedgerError(f"Could not create {kind} ledger row: {e}") from e

    if not response.data:
        return None
    return _row_to_window(response.data[0])


def _reclaim(
    supabase: Any,
    window: NotificationWindow,
    window_start: datetime,
    tools: List[ApprovedTool],
    now: datetime,
) -> Optional[NotificationWindow]:
    # A failed row sent nothing, so reclaiming it does not spend the retry
    attempts = 1 if window.status == STATUS_FAILED else window.attempts + 1
    changes = {
        "status": STATUS_PENDING,
        "attempts": attempts,
        "window_start": to_iso(window_start),
        "tool_count": len(tools),
        "tool_ids": [tool.id for tool in tools],
        "error_message": None,
        "updated_at": to_iso(now),
    }

    try:
        response = (
            supabase.table(LEDGER_TABLE)
            .update(changes)
            .eq("id", window.id)
            .eq("status", window.status)
            .eq("attempts", window.attempts)
            .execute()
        )
    except Exception as e:
        raise LedgerError(f"Could not reclaim ledger row {window.id}: {e}") from e

    if not response.data:
        return None
    return _row_to_window(response.data[0])


def claim_window(
    supabase: Any,
    kind: str,
    window_start: datetime,
    window_key: WindowKey,
    tools: List[ApprovedTool],
    now: datetime,
    grace: timedelta,
) -> Optional[NotificationWindow]:
    """
    Take ownership of a window's ledger row before any email is sent.

    Creates the row if absent, or reclaims a failed/abandoned row for the
    same window. Only one concurrent caller can win.

    Returns:
        The owned NotificationWindow (status pending), or None if the window
        is blocked or another run claimed it first
    """
    retryable: Optional[NotificationWindow] = None

    for window in find_windows(supabase, kind, window_start):
        decision = classify_window(window, now, grace)
        if decision == BLOCKING:
            return None
        if window.window_key == window_key and retryable is None:
            retryable = window

    if retryable is not None:
        if retryable.status in IN_FLIGHT_STATUSES:
            print(
                f"  ⚠️  Retrying abandoned {kind} window {window_key} "
                f"(status {retryable.status}, attempt {retryable.attempts + 1})"
            )
        return _reclaim(supabase, retryable, window_start, tools, now)

    return _insert_if_absent(supabase, kind, window_start, window_key, tools, now)


def _update(supabase: Any, window: NotificationWindow, changes: Dict[str, Any]) -> None:
    try:
        supabase.table(LEDGER_TABLE).update(changes).eq("id", window.id).execute()
    except Exception as e:
        raise LedgerError(f"Could not update ledger row {window.id}: {e}") from e


def mark_sending(
    supabase: Any, window: NotificationWindow, recipient_count: int, now: datetime
) -> NotificationWindow:
    """Move a claimed row to sending once the audience is known."""
    changes = {
        "status": STATUS_SENDING,
        "recipient_count": recipient_count,
        "updated_at": to_iso(now),
    }
    _update(supabase, window, changes)
    return window.model_copy(
        update={"status": STATUS_SENDING, "recipient_count": recipient_count, "updated_at": now}
    )


def touch_window(supabase: Any, window: NotificationWindow, now: datetime) -> None:
    """Refresh updated_at so a long-running dispatch is not taken for abandoned."""
    _update(supabase, window, {"updated_at": to_iso(now)})


def complete_window(
    supabase: Any, window: NotificationWindow, result: DispatchResult, now: datetime
) -> NotificationWindow:
    """
    Mark a window completed.

    recipient_count is the number of attempted sends; succeeded_count and
    failed_count record how many of those were delivered.
    """
    changes = {
        "status": STATUS_COMPLETED,
        "recipient_count": result.attempted,
        "succeeded_count": result.succeeded,
        "failed_count": result.failed,
        "updated_at": to_iso(now),
        "completed_at": to_iso(now),
    }
    _update(supabase, window, changes)
    return window.model_copy(
        update={
            "status": STATUS_COMPLETED,
            "recipient_count": result.attempted,
            "succeeded_count": result.succeeded,
            "failed_count": result.failed,
            "updated_at": now,
            "completed_at": now,
        }
    )


def fail_window(
    supabase: Any, window: NotificationWindow, error_message: str, now: datetime
) -> NotificationWindow:
    """Mark a window failed (run aborted before sending)."""
    changes = {
        "status": STATUS_FAILED,
        "error_message": error_message,
        "updated_at": to_iso(now),
    }
    _update(supabase, window, changes)
    return window.model_copy(
        update={"status": STATUS_FAILED, "error_message": error_message, "updated_at": now}
    )


def list_recent_windows(supabase: Any, limit: int = 20) -> List[NotificationWindow]:
    """Most recent ledger rows of any kind, newest first."""
    try:
        response = (
            supabase.table(LEDGER_TABLE)
            .select("*")
            .order("opened_at", desc=True)
            .limit(limit)
            .execute()
        )
    except Exception as e:
        raise LedgerError(f"Could not read ledger: {e}") from e

    return [_row_to_window(row) for row in response.data or []]
