"""Shared type definitions for type checking.

Uses NewType for IDs to provide compile-time type safety - prevents mixing
different ID types (e.g., passing a NotificationID where a ToolID is expected).

Uses TypeAlias for complex types that are purely structural.
"""

from typing import NewType, TypeAlias

# ID types using NewType for type safety
ToolID = NewType("ToolID", str)
NotificationID = NewType("NotificationID", str)

# Structural aliases using TypeAlias
EmailAddress: TypeAlias = str
WindowKey: TypeAlias = str  # YYYY-MM-DD, local date of the window

# Digest kinds
DAILY = "daily"
WEEKLY = "weekly"
DIGEST_KINDS = (DAILY, WEEKLY)

# Recipient sources
MAILING_LIST = "mailing-list"
ACCOUNT = "account"

# Ledger row lifecycle: pending -> sending -> completed | failed
STATUS_PENDING = "pending"
STATUS_SENDING = "sending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
IN_FLIGHT_STATUSES = (STATUS_PENDING, STATUS_SENDING)
