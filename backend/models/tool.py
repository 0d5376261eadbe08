"""Pydantic models for approved catalog tools."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.types import ToolID


class ToolSummary(BaseModel):
    """Fields a digest needs to list one tool."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: ToolID
    name: str = Field(..., min_length=1)
    description: str = ""
    url: str | None = None
    image_url: str | None = None

    @field_validator("description", mode="before")
    @classmethod
    def _empty_description(cls, value):
        return value or ""


class ApprovedTool(ToolSummary):
    """Approved tool record from database (read-only to the digest)."""

    approved_at: datetime


class PendingAnnouncement(ToolSummary):
    """Lightweight tool summary held by the in-memory announcement queue."""

    @classmethod
    def from_tool(cls, tool: ApprovedTool) -> "PendingAnnouncement":
        return cls(**tool.model_dump(exclude={"approved_at"}))
