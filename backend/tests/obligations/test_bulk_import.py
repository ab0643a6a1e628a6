"""Tests for BulkImportOrchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from app.schemas.imports import ClientImportItem
from fakes import (
    ADVISORY,
    GST,
    GSTR1,
    FakeAssignmentStore,
    FakeCatalog,
    FakeClientWriter,
    InMemoryTimelineStore,
)
from obligations.bulk_import import BulkImportOrchestrator, ChunkWriteResult
from obligations.catalog import ActivityDefinition
from obligations.generator import TimelineGenerator

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _item(n: int, **overrides: Any) -> dict[str, Any]:
    item: dict[str, Any] = {
        "name": f"Client {n}",
        "email": f"client{n}@example.com",
        "branch": 1,
    }
    item.update(overrides)
    return item


def _make_orchestrator(
    writer: FakeClientWriter | None = None,
    store: InMemoryTimelineStore | None = None,
    **kwargs: Any,
) -> tuple[BulkImportOrchestrator, FakeClientWriter, InMemoryTimelineStore]:
    writer = writer or FakeClientWriter()
    store = store or InMemoryTimelineStore()
    generator = TimelineGenerator(
        catalog=FakeCatalog(),
        store=store,
        assignments=FakeAssignmentStore(),
        clock=lambda: datetime(2024, 6, 15),
    )
    orchestrator = BulkImportOrchestrator(writer, generator, store, **kwargs)
    return orchestrator, writer, store


class CommitThenHangWriter(FakeClientWriter):
    """Commits the creates of a chunk, then stalls before the updates."""

    def __init__(self) -> None:
        super().__init__()
        self._committed: ChunkWriteResult | None = None

    async def persist_chunk(
        self, items: Sequence[tuple[int, ClientImportItem]]
    ) -> ChunkWriteResult:
        creates = [(index, item) for index, item in items if item.id is None]
        self._committed = await super().persist_chunk(creates)
        self.calls[-1] = [index for index, _ in items]
        await asyncio.sleep(10)
        return self._committed

    async def reset(self) -> ChunkWriteResult | None:
        await super().reset()
        committed, self._committed = self._committed, None
        return committed


class UnreachableCatalog(FakeCatalog):
    async def get_activity(self, activity_id: int) -> ActivityDefinition | None:
        raise OperationalError("SELECT activity", {}, Exception("server closed the connection"))


# ---------------------------------------------------------------------------
# Validation and batch isolation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.asyncio
    async def test_one_malformed_item_does_not_block_the_rest(self) -> None:
        items = [_item(n) for n in range(10)]
        items[4] = {"email": "no-name@example.com", "branch": 1}
        orchestrator, _, _ = _make_orchestrator()

        result = await orchestrator.import_batch(items)

        assert result.created_count == 9
        assert result.updated_count == 0
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.index == 4
        assert "name" in error.error
        assert error.data == items[4]

    @pytest.mark.asyncio
    async def test_invalid_email_and_branch(self) -> None:
        items = [_item(0, email="not-an-email"), _item(1, branch=0), _item(2)]
        orchestrator, writer, _ = _make_orchestrator()

        result = await orchestrator.import_batch(items)

        assert [e.index for e in result.errors] == [0, 1]
        assert result.created_count == 1
        assert writer.calls == [[2]]

    @pytest.mark.asyncio
    async def test_empty_batch(self) -> None:
        orchestrator, writer, _ = _make_orchestrator()

        result = await orchestrator.import_batch([])

        assert result.created_count == 0
        assert result.errors == []
        assert writer.calls == []


class TestChunking:
    @pytest.mark.asyncio
    async def test_chunks_keep_global_indices(self) -> None:
        orchestrator, writer, _ = _make_orchestrator(chunk_size=3)

        result = await orchestrator.import_batch([_item(n) for n in range(7)])

        assert writer.calls == [[0, 1, 2], [3, 4, 5], [6]]
        assert result.chunks_processed == 3
        assert result.created_count == 7

    @pytest.mark.asyncio
    async def test_writer_item_failures_are_reported_by_index(self) -> None:
        writer = FakeClientWriter(conflicts=["client5@example.com"])
        orchestrator, _, _ = _make_orchestrator(writer, chunk_size=4)

        result = await orchestrator.import_batch([_item(n) for n in range(8)])

        assert result.created_count == 7
        assert [(e.index, e.data["email"]) for e in result.errors] == [
            (5, "client5@example.com")
        ]

    @pytest.mark.asyncio
    async def test_updates_are_counted_separately(self) -> None:
        orchestrator, _, _ = _make_orchestrator()

        result = await orchestrator.import_batch([_item(0, id=42), _item(1)])

        assert result.created_count == 1
        assert result.updated_count == 1


class TestStorageFailures:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self) -> None:
        writer = FakeClientWriter(storage_failures=1)
        orchestrator, _, _ = _make_orchestrator(writer, retry_attempts=3)

        result = await orchestrator.import_batch([_item(0), _item(1)])

        assert result.created_count == 2
        assert result.errors == []
        assert len(writer.calls) == 2
        assert writer.resets == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_only_that_chunk(self) -> None:
        writer = FakeClientWriter(storage_failures=2)
        orchestrator, _, _ = _make_orchestrator(writer, chunk_size=2, retry_attempts=2)

        result = await orchestrator.import_batch([_item(n) for n in range(4)])

        assert [e.index for e in result.errors] == [0, 1]
        assert all("Storage unavailable" in e.error for e in result.errors)
        assert result.created_count == 2

    @pytest.mark.asyncio
    async def test_chunk_timeout(self) -> None:
        writer = FakeClientWriter(hang=True)
        orchestrator, _, _ = _make_orchestrator(writer, chunk_timeout=0.01, retry_attempts=1)

        result = await orchestrator.import_batch([_item(0)])

        assert result.created_count == 0
        assert [e.index for e in result.errors] == [0]

    @pytest.mark.asyncio
    async def test_timeout_after_creates_committed_is_not_retried(self) -> None:
        writer = CommitThenHangWriter()
        orchestrator, _, _ = _make_orchestrator(writer, chunk_timeout=0.05, retry_attempts=3)

        result = await orchestrator.import_batch([_item(0), _item(1, id=42), _item(2)])

        assert result.created_count == 2
        assert result.updated_count == 0
        assert [e.index for e in result.errors] == [1]
        assert result.errors[0].error == "Not saved: TimeoutError"
        assert len(writer.calls) == 1

    @pytest.mark.asyncio
    async def test_partial_write_is_decomposed(self) -> None:
        writer = FakeClientWriter(partial_after=1)
        orchestrator, _, _ = _make_orchestrator(writer)

        result = await orchestrator.import_batch([_item(0), _item(1), _item(2)])

        assert result.created_count == 1
        assert [e.index for e in result.errors] == [1, 2]
        # partial writes are not retried
        assert len(writer.calls) == 1


class TestPostProcessing:
    @pytest.mark.asyncio
    async def test_timelines_generated_for_assigned_activities(self) -> None:
        items = [
            _item(0, activities=[{"activity": GST.activity_id, "subactivity": GSTR1.subactivity_id}]),
            _item(1),
        ]
        orchestrator, _, store = _make_orchestrator()

        result = await orchestrator.import_batch(items)

        assert result.created_count == 2
        assert result.timelines_created == 12
        assert len(store.rows) == 12
        assert store.commits == 1

    @pytest.mark.asyncio
    async def test_generation_failure_keeps_client(self) -> None:
        items = [
            _item(0, activities=[{"activity": 999}]),
            _item(1, activities=[{"activity": ADVISORY.activity_id}]),
        ]
        orchestrator, _, store = _make_orchestrator()

        result = await orchestrator.import_batch(items)

        assert result.created_count == 2
        assert result.timelines_created == 1
        assert len(result.errors) == 1
        assert result.errors[0].index == 0
        assert "timeline generation failed" in result.errors[0].error
        assert store.rollbacks == 1


    @pytest.mark.asyncio
    async def test_database_error_during_generation_keeps_batch_going(self) -> None:
        store = InMemoryTimelineStore()
        generator = TimelineGenerator(
            catalog=UnreachableCatalog(),
            store=store,
            assignments=FakeAssignmentStore(),
        )
        orchestrator = BulkImportOrchestrator(FakeClientWriter(), generator, store, chunk_size=2)
        items = [_item(n, activities=[{"activity": GST.activity_id}]) for n in range(3)]

        result = await orchestrator.import_batch(items)

        assert result.created_count == 3
        assert result.chunks_processed == 2
        assert [e.index for e in result.errors] == [0, 1, 2]
        assert all("server closed" in e.error for e in result.errors)
        assert store.rollbacks == 3


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(self) -> None:
        cancel = asyncio.Event()
        cancel.set()
        orchestrator, writer, _ = _make_orchestrator()

        result = await orchestrator.import_batch([_item(0)], cancel_event=cancel)

        assert result.cancelled is True
        assert result.chunks_processed == 0
        assert writer.calls == []

    @pytest.mark.asyncio
    async def test_cancel_between_chunks(self) -> None:
        cancel = asyncio.Event()

        class CancellingWriter(FakeClientWriter):
            async def persist_chunk(self, items):
                result = await super().persist_chunk(items)
                cancel.set()
                return result

        orchestrator, writer, _ = _make_orchestrator(CancellingWriter(), chunk_size=2)

        result = await orchestrator.import_batch(
            [_item(n) for n in range(6)], cancel_event=cancel
        )

        assert result.cancelled is True
        assert result.created_count == 2
        assert writer.calls == [[0, 1]]


def test_chunk_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _make_orchestrator(chunk_size=0)
