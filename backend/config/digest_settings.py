"""
Digest scheduling and delivery settings.

All values come from environment variables (a local .env is loaded first).
Defaults match the production schedule: daily digest at 21:00, weekly
digest on Monday at 10:00.
"""

import os
from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

POLICY_SCHEDULE = "schedule"
POLICY_ACCUMULATOR = "accumulator"


class DigestSettings(BaseModel):
    """Validated digest configuration."""

    model_config = ConfigDict(frozen=True)

    timezone: str = "UTC"
    daily_time: time = time(21, 0)
    weekly_day: int = Field(0, ge=0, le=6)  # Monday == 0
    weekly_time: time = time(10, 0)

    daily_min_tools: int = Field(1, ge=1)
    weekly_min_tools: int = Field(1, ge=1)

    send_delay_ms: int = Field(800, ge=0)
    max_tools_per_email: int = Field(10, ge=1)
    stale_grace_minutes: int = Field(60, ge=1)

    policy: str = Field(POLICY_SCHEDULE, pattern="^(schedule|accumulator)$")
    batch_interval_ms: int = Field(300_000, ge=1)
    queue_cap: int = Field(10, ge=1)
    accumulator_min_tools: int = Field(5, ge=1)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def send_delay_seconds(self) -> float:
        return self.send_delay_ms / 1000

    @property
    def batch_interval_seconds(self) -> float:
        return self.batch_interval_ms / 1000

    def min_tools_for(self, kind: str) -> int:
        return self.daily_min_tools if kind == "daily" else self.weekly_min_tools


def _parse_time(value: str) -> time:
    """Parse HH:MM (24h)."""
    try:
        hour, minute = value.strip().split(":")
        return time(int(hour), int(minute))
    except ValueError as e:
        raise ValueError(f"Invalid time '{value}', expected HH:MM") from e


def _parse_weekday(value: str) -> int:
    value = value.strip().lower()
    if value.isdigit():
        return int(value)
    if value not in WEEKDAYS:
        raise ValueError(f"Invalid weekday '{value}'")
    return WEEKDAYS.index(value)


def load_digest_settings() -> DigestSettings:
    """
    Build DigestSettings from the environment.

    Returns:
        DigestSettings instance

    Raises:
        ValueError: If any variable is malformed or out of range
    """
    return DigestSettings(
        timezone=os.getenv("DIGEST_TIMEZONE", "UTC"),
        daily_time=_parse_time(os.getenv("DIGEST_DAILY_TIME", "21:00")),
        weekly_day=_parse_weekday(os.getenv("DIGEST_WEEKLY_DAY", "monday")),
        weekly_time=_parse_time(os.getenv("DIGEST_WEEKLY_TIME", "10:00")),
        daily_min_tools=int(os.getenv("DIGEST_DAILY_MIN_TOOLS", "1")),
        weekly_min_tools=int(os.getenv("DIGEST_WEEKLY_MIN_TOOLS", "1")),
        send_delay_ms=int(os.getenv("DIGEST_SEND_DELAY_MS", "800")),
        max_tools_per_email=int(os.getenv("DIGEST_MAX_TOOLS_PER_EMAIL", "10")),
        stale_grace_minutes=int(os.getenv("DIGEST_STALE_GRACE_MINUTES", "60")),
        policy=os.getenv("DIGEST_POLICY", POLICY_SCHEDULE).strip().lower(),
        batch_interval_ms=int(os.getenv("ANNOUNCEMENT_BATCH_INTERVAL_MS", "300000")),
        queue_cap=int(os.getenv("ANNOUNCEMENT_QUEUE_CAP", "10")),
        accumulator_min_tools=int(os.getenv("ANNOUNCEMENT_MIN_TOOLS", "5")),
    )
