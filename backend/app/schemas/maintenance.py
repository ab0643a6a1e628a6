"""Pydantic schemas for maintenance endpoints."""

from datetime import datetime

from pydantic import BaseModel


class DuplicateGroupSchema(BaseModel):
    client_id: int
    activity_id: int
    subactivity_id: int
    period: str
    count: int
    would_delete: int


class DuplicateReportSchema(BaseModel):
    dry_run: bool = True
    groups: list[DuplicateGroupSchema]
    total_would_delete: int


class ReconcileResultSchema(BaseModel):
    dry_run: bool = False
    deleted: int
    groups: int
    repaired: int


class JobSummarySchema(BaseModel):
    frequencies: list[str]
    processed_clients: int
    created: int
    failed_clients: list[int]


class ScheduledJobSchema(BaseModel):
    name: str
    cron: str
    description: str
    next_run_time: datetime | None


class SchedulerStatusSchema(BaseModel):
    running: bool
    timezone: str
    jobs: list[ScheduledJobSchema]
