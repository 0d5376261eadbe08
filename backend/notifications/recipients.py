"""
Recipient resolution for tool digests.

Merges the opt-in mailing list and registered accounts into one
deduplicated audience. Either fetch failing fails the whole run before
any email is sent.
"""

from datetime import datetime
from typing import Any, Dict, List

from pydantic import ValidationError

from models import Recipient
from models.types import ACCOUNT, MAILING_LIST
from notifications.error_logger import log_notification_error
from notifications.errors import RecipientFetchError
from shared.db import SUBSCRIBERS_TABLE, USERS_TABLE
from shared.utils import parse_timestamp, to_iso


def fetch_mailing_list(supabase: Any) -> List[Dict[str, Any]]:
    """Fetch active (not unsubscribed) mailing-list entries."""
    try:
        response = (
            supabase.table(SUBSCRIBERS_TABLE)
            .select("id, email, unsubscribe_token, last_sent_at")
            .eq("is_unsubscribed", False)
            .execute()
        )
    except Exception as e:
        raise RecipientFetchError(f"Could not fetch mailing list: {e}") from e
    return response.data or []


def fetch_accounts(supabase: Any) -> List[Dict[str, Any]]:
    """Fetch registered accounts. Accounts without is_verified count as verified."""
    try:
        response = (
            supabase.table(USERS_TABLE).select("id, email, is_verified").execute()
        )
    except Exception as e:
        raise RecipientFetchError(f"Could not fetch accounts: {e}") from e
    return [row for row in (response.data or []) if row.get("is_verified") is not False]


def _to_recipient(row: Dict[str, Any], source: str) -> Recipient | None:
    email = (row.get("email") or "").strip()
    if not email:
        return None
    try:
        return Recipient(
            email=email,
            source=source,
            unsubscribe_token=row.get("unsubscribe_token") if source == MAILING_LIST else None,
            last_sent_at=parse_timestamp(row.get("last_sent_at")),
            record_id=str(row["id"]) if row.get("id") is not None else None,
        )
    except ValidationError:
        print(f"  ⚠️  Skipping malformed {source} address: {email}")
        return None


def merge_recipients(
    subscribers: List[Dict[str, Any]], accounts: List[Dict[str, Any]]
) -> List[Recipient]:
    """
    Merge both recipient sources into one entry per lowercased email.

    Mailing-list entries go in first so their unsubscribe token survives
    when the same address is also a registered account. A mailing-list
    entry without a token is replaced by the account entry, so the
    recipient is linked to account settings instead.

    Args:
        subscribers: Rows from the subscribers table
        accounts: Rows from the users table

    Returns:
        Deduplicated recipients (order not guaranteed)
    """
    recipients_by_email: Dict[str, Recipient] = {}

    for row in subscribers:
        recipient = _to_recipient(row, MAILING_LIST)
        if recipient and recipient.key not in recipients_by_email:
            recipients_by_email[recipient.key] = recipient

    for row in accounts:
        recipient = _to_recipient(row, ACCOUNT)
        if not recipient:
            continue
        existing = recipients_by_email.get(recipient.key)
        if existing is None or (
            existing.source == MAILING_LIST and not existing.unsubscribe_token
        ):
            recipients_by_email[recipient.key] = recipient

    return list(recipients_by_email.values())


def get_all_recipients(supabase: Any) -> List[Recipient]:
    """
    Resolve the deduplicated, currently eligible digest audience.

    Raises:
        RecipientFetchError: If either source cannot be read
    """
    subscribers = fetch_mailing_list(supabase)
    accounts = fetch_accounts(supabase)
    return merge_recipients(subscribers, accounts)


def mark_recipient_sent(supabase: Any, recipient: Recipient, now: datetime) -> None:
    """Record last_sent_at for mailing-list members. Failures are logged only."""
    if recipient.source != MAILING_LIST or not recipient.record_id:
        return

    try:
        supabase.table(SUBSCRIBERS_TABLE).update(
            {"last_sent_at": to_iso(now)}
        ).eq("id", recipient.record_id).execute()
    except Exception as e:
        log_notification_error(
            error_type="bookkeeping",
            error_message=str(e),
            context={"email": recipient.email, "subscriber_id": recipient.record_id},
        )
        print(f"  ⚠️  Could not update last_sent_at for {recipient.email}: {e}")
