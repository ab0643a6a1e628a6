"""Pydantic schemas module.

This module contains Pydantic models used for:
- API request/response validation
- Validating bulk import items before they reach the database

Naming convention:
- Schema suffix to distinguish from SQLAlchemy models
- ClientImportItem is the exception: it is the validated import record
  passed through the obligations pipeline
"""

from app.schemas.imports import (
    ActivityAssignmentSchema,
    BulkImportRequest,
    BulkImportResponse,
    ClientImportItem,
    ImportErrorSchema,
)
from app.schemas.maintenance import (
    DuplicateGroupSchema,
    DuplicateReportSchema,
    JobSummarySchema,
    ReconcileResultSchema,
    ScheduledJobSchema,
    SchedulerStatusSchema,
)
from app.schemas.timeline import (
    AssignActivityRequest,
    GenerationResultSchema,
    TimelineSchema,
)

__all__ = [
    # Import schemas
    "ActivityAssignmentSchema",
    "BulkImportRequest",
    "BulkImportResponse",
    "ClientImportItem",
    "ImportErrorSchema",
    # Maintenance schemas
    "DuplicateGroupSchema",
    "DuplicateReportSchema",
    "JobSummarySchema",
    "ReconcileResultSchema",
    "ScheduledJobSchema",
    "SchedulerStatusSchema",
    # Timeline schemas
    "AssignActivityRequest",
    "GenerationResultSchema",
    "TimelineSchema",
]
