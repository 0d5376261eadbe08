"""Pydantic models for digest recipients."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.types import EmailAddress


class Recipient(BaseModel):
    """One deduplicated digest recipient.

    Merged from the opt-in mailing list and registered accounts. When an
    address exists in both sources the mailing-list entry wins, so its
    unsubscribe token is kept.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailAddress = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    source: str = Field(..., pattern="^(mailing-list|account)$")
    unsubscribe_token: str | None = None
    last_sent_at: datetime | None = None
    record_id: str | None = None

    @property
    def key(self) -> str:
        """Case-insensitive identity of the recipient."""
        return self.email.lower()
