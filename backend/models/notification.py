"""Pydantic models for the digest notification ledger and run results."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.types import NotificationID, ToolID, WindowKey


class NotificationWindow(BaseModel):
    """Ledger row recording one window's digest dispatch attempt."""

    model_config = ConfigDict(validate_assignment=True)

    id: NotificationID
    kind: str = Field(..., pattern="^(daily|weekly)$")
    window_key: WindowKey
    window_start: datetime
    opened_at: datetime
    tool_count: int = Field(0, ge=0)
    tool_ids: list[ToolID] = Field(default_factory=list)
    recipient_count: int = Field(0, ge=0)
    succeeded_count: int = Field(0, ge=0)
    failed_count: int = Field(0, ge=0)
    status: str = Field(..., pattern="^(pending|sending|completed|failed)$")
    attempts: int = Field(1, ge=1)
    error_message: str | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


class DispatchResult(BaseModel):
    """Per-run send counts from the rate-limited dispatcher."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_emails: list[str] = Field(default_factory=list)


class DigestOutcome(BaseModel):
    """What a single batching-policy run decided and did."""

    kind: str = Field(..., pattern="^(daily|weekly)$")
    window_start: datetime
    status: str = Field(
        ...,
        pattern="^(skipped_duplicate|skipped_threshold|skipped_no_recipients|lost_race|dry_run|completed|failed)$",
    )
    tool_count: int = 0
    recipient_count: int = 0
    window_id: NotificationID | None = None
    reason: str | None = None
    dispatch: DispatchResult | None = None

    @property
    def dispatched(self) -> bool:
        return self.status == "completed"
