"""Pydantic models for data validation and type checking."""

from models.notification import DigestOutcome, DispatchResult, NotificationWindow
from models.recipient import Recipient
from models.tool import ApprovedTool, PendingAnnouncement, ToolSummary

__all__ = [
    "ToolSummary",
    "ApprovedTool",
    "PendingAnnouncement",
    "Recipient",
    "NotificationWindow",
    "DispatchResult",
    "DigestOutcome",
]
