"""Client endpoints: bulk import, activity assignment and timelines."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.crud.timeline import get_client_ref, get_client_timelines, to_schema
from app.models.base import get_async_session
from app.schemas.imports import BulkImportRequest, BulkImportResponse, ImportErrorSchema
from app.schemas.timeline import (
    AssignActivityRequest,
    GenerationResultSchema,
    TimelineSchema,
)
from obligations.catalog import ActivityAssignment
from obligations.financial_year import FinancialYear
from obligations.services import build_generator, build_importer

router = APIRouter()


@router.post("/bulk-import")
async def bulk_import_clients(
    body: BulkImportRequest,
    session: AsyncSession = Depends(get_async_session),
) -> BulkImportResponse:
    """Create or update many clients; failures are reported per item."""
    result = await build_importer(session, settings).import_batch(body.clients)
    return BulkImportResponse(
        created=result.created_count,
        updated=result.updated_count,
        errors=[ImportErrorSchema(**e.to_dict()) for e in result.errors],
        timelines_created=result.timelines_created,
        cancelled=result.cancelled,
    )


@router.post("/{client_id}/activities")
async def assign_activity(
    client_id: int,
    body: AssignActivityRequest,
    session: AsyncSession = Depends(get_async_session),
) -> GenerationResultSchema:
    """Assign an activity (optionally one subactivity) and generate its timelines."""
    client = await get_client_ref(session, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail=f"Client {client_id} not found")

    fy = FinancialYear.parse(body.financial_year) if body.financial_year else None
    generator = build_generator(session, settings)
    try:
        result = await generator.generate(
            client,
            [ActivityAssignment(body.activity, body.subactivity)],
            financial_year=fy,
        )
        await generator.assignments.add(client_id, body.activity, body.subactivity)
        await generator.store.commit()
    except Exception:
        await generator.store.rollback()
        raise

    return GenerationResultSchema(
        created=result.created_count,
        existing=result.existing_count,
        removed=result.removed_count,
        timelines=[to_schema(r) for r in result.instances],
    )


@router.get("/{client_id}/timelines")
async def list_client_timelines(
    client_id: int,
    financial_year: str | None = Query(
        None, description="Financial year label, e.g. 2024-2025"
    ),
    session: AsyncSession = Depends(get_async_session),
) -> list[TimelineSchema]:
    """List a client's timelines ordered by due date."""
    if financial_year is not None:
        financial_year = FinancialYear.parse(financial_year).label
    if await get_client_ref(session, client_id) is None:
        raise HTTPException(status_code=404, detail=f"Client {client_id} not found")
    return await get_client_timelines(session, client_id, financial_year)
