"""Pydantic schemas for timeline endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class TimelineSchema(BaseModel):
    """A generated timeline instance."""

    timeline_id: int
    client_id: int
    activity_id: int
    subactivity_id: int | None
    subactivity: dict[str, Any] | None = Field(
        None, description="Snapshot of the subactivity at generation time"
    )
    branch_id: int
    financial_year: str | None
    period: str | None
    due_date: datetime | None
    status: str
    timeline_type: str
    frequency: str
    fields: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class AssignActivityRequest(BaseModel):
    activity: int = Field(..., ge=1, description="Activity id")
    subactivity: int | None = Field(None, ge=1, description="Subactivity id")
    financial_year: str | None = Field(
        None, description="Financial year to generate, e.g. '2024-2025'"
    )


class GenerationResultSchema(BaseModel):
    created: int
    existing: int
    removed: int
    timelines: list[TimelineSchema]
