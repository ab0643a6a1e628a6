"""Pydantic schemas for client bulk import."""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from app.models.enums import ClientStatus


class ActivityAssignmentSchema(BaseModel):
    """An activity to assign, optionally narrowed to one subactivity."""

    activity: int = Field(..., ge=1, description="Activity id")
    subactivity: int | None = Field(None, ge=1, description="Subactivity id")


class ClientImportItem(BaseModel):
    """One client record in a bulk import.

    Items with an ``id`` update that client; items without one are created.
    """

    id: int | None = Field(None, ge=1, description="Existing client id to update")
    name: str = Field(..., min_length=1, max_length=200)
    email: str | None = Field(None, max_length=254)
    phone: str | None = Field(None, max_length=32)
    branch: int = Field(..., ge=1, description="Branch id the client belongs to")
    status: ClientStatus = ClientStatus.ACTIVE
    activities: list[ActivityAssignmentSchema] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().lower()
        if not value:
            return None
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError(f"invalid email address: {value!r}")
        return value


class BulkImportRequest(BaseModel):
    # Items stay untyped here so one malformed record is reported per index
    # instead of rejecting the whole request.
    clients: list[dict[str, Any]] = Field(..., description="Client records to import")


class ImportErrorSchema(BaseModel):
    index: int = Field(..., ge=0, description="Position of the item in the request")
    error: str
    data: Any = None


class BulkImportResponse(BaseModel):
    created: int
    updated: int
    errors: list[ImportErrorSchema]
    timelines_created: int = 0
    cancelled: bool = False
