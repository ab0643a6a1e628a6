"""Wiring helpers: build obligations services on top of one AsyncSession."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings as default_settings
from obligations.assignments import SqlAssignmentStore
from obligations.bulk_import import BulkImportOrchestrator
from obligations.catalog import SqlActivityCatalog
from obligations.client_writer import SqlClientWriter
from obligations.generator import TimelineGenerator
from obligations.reconciler import DuplicateReconciler
from obligations.store import SqlTimelineStore


def build_generator(
    session: AsyncSession, settings: Settings = default_settings
) -> TimelineGenerator:
    return TimelineGenerator(
        catalog=SqlActivityCatalog(session),
        store=SqlTimelineStore(session),
        assignments=SqlAssignmentStore(session),
        grace_days=settings.one_time_grace_days,
    )


def build_reconciler(
    session: AsyncSession, settings: Settings = default_settings
) -> DuplicateReconciler:
    return DuplicateReconciler(
        SqlTimelineStore(session),
        delete_batch_size=settings.reconcile_delete_batch_size,
    )


def build_importer(
    session: AsyncSession, settings: Settings = default_settings
) -> BulkImportOrchestrator:
    generator = build_generator(session, settings)
    return BulkImportOrchestrator(
        writer=SqlClientWriter(session),
        generator=generator,
        store=generator.store,
        chunk_size=settings.import_chunk_size,
        chunk_timeout=settings.import_chunk_timeout_seconds,
        retry_attempts=settings.storage_retry_attempts,
    )
