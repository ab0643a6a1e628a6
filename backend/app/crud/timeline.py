"""Read helpers for client timeline endpoints."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.client import Client
from app.schemas.timeline import TimelineSchema
from obligations.catalog import ClientRef
from obligations.store import SqlTimelineStore, TimelineRecord


async def get_client_ref(session: AsyncSession, client_id: int) -> ClientRef | None:
    """Return the client's id/branch/name, or None if it does not exist."""
    client = await session.get(Client, client_id)
    if client is None:
        return None
    return ClientRef(client.client_id, client.branch_id, client.name)


def to_schema(record: TimelineRecord) -> TimelineSchema:
    return TimelineSchema(
        timeline_id=record.timeline_id,
        client_id=record.client_id,
        activity_id=record.activity_id,
        subactivity_id=record.subactivity_id,
        subactivity=record.subactivity,
        branch_id=record.branch_id,
        financial_year=record.financial_year,
        period=record.period,
        due_date=record.due_date,
        status=record.status.value,
        timeline_type=record.timeline_type.value,
        frequency=record.frequency.value,
        fields=record.fields,
        created_at=record.created_at,
    )


async def get_client_timelines(
    session: AsyncSession, client_id: int, financial_year: str | None = None
) -> list[TimelineSchema]:
    """Timelines of one client ordered by due date."""
    records = await SqlTimelineStore(session).list_for_client(client_id, financial_year)
    return [to_schema(r) for r in records]
