"""Bulk client import with per-item failure isolation.

A batch is validated item by item, written in fixed-size chunks and then
post-processed (timeline generation for every client that came with
activities). A bad item, a failed chunk or a failed generation never aborts
the batch: each problem is reported against the item's index in the input.

Item lifecycle:

    received -> validated -> rejected
                          -> persisted -> timelines generated
                                       -> post-process failed

A post-process failure is reported as an error, but the client record it
belongs to stays persisted and is still counted as created/updated.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import ItemFailure, PartialWriteError, StorageError, TimelineError
from app.schemas.imports import ClientImportItem
from obligations.catalog import ActivityAssignment, ClientRef
from obligations.generator import TimelineGenerator
from obligations.store import TimelineStore

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100
DEFAULT_CHUNK_TIMEOUT = 60.0
DEFAULT_RETRY_ATTEMPTS = 3


@dataclass
class AppliedItem:
    """A client record that the writer persisted."""

    index: int
    client: ClientRef
    created: bool
    assignments: list[ActivityAssignment] = field(default_factory=list)


@dataclass
class ChunkWriteResult:
    applied: list[AppliedItem] = field(default_factory=list)
    failed: list[ItemFailure] = field(default_factory=list)


class ClientWriter(Protocol):
    async def persist_chunk(
        self, items: Sequence[tuple[int, ClientImportItem]]
    ) -> ChunkWriteResult:
        """Persist a chunk. Item-level problems go into ``failed``.

        Raises:
            StorageError: Nothing from the chunk was applied.
            PartialWriteError: Some items were applied before the failure.
        """
        ...

    async def reset(self) -> ChunkWriteResult | None:
        """Discard uncommitted state after a failed or timed-out call.

        Returns the items that call had already committed, or None when
        nothing is durable and the chunk can be retried as a whole.
        """
        ...


@dataclass
class ImportItemError:
    index: int
    error: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "error": self.error, "data": self.data}


@dataclass
class ImportResult:
    created_count: int = 0
    updated_count: int = 0
    errors: list[ImportItemError] = field(default_factory=list)
    timelines_created: int = 0
    chunks_processed: int = 0
    cancelled: bool = False


def describe_validation_error(error: SchemaValidationError) -> str:
    """Flatten pydantic errors into ``"field: message; ..."``."""
    parts = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "item"
        parts.append(f"{location}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


class BulkImportOrchestrator:
    """Validates, writes and post-processes a batch of client records."""

    def __init__(
        self,
        writer: ClientWriter,
        generator: TimelineGenerator,
        store: TimelineStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.writer = writer
        self.generator = generator
        self.store = store
        self.chunk_size = chunk_size
        self.chunk_timeout = chunk_timeout
        self.retry_attempts = max(1, retry_attempts)

    async def import_batch(
        self,
        items: Sequence[Any],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ImportResult:
        """Import ``items`` and report what happened to each of them.

        Never raises for item, chunk or post-processing failures; those are
        returned in ``ImportResult.errors`` keyed by input index. Setting
        ``cancel_event`` stops the import before the next chunk starts.
        """
        result = ImportResult()
        total = len(items)
        logger.info(f"Importing {total} client records in chunks of {self.chunk_size}")

        for start in range(0, total, self.chunk_size):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.warning(f"Import cancelled before item {start} of {total}")
                break

            valid: list[tuple[int, ClientImportItem]] = []
            for index in range(start, min(start + self.chunk_size, total)):
                try:
                    valid.append((index, ClientImportItem.model_validate(items[index])))
                except SchemaValidationError as e:
                    result.errors.append(
                        ImportItemError(index, describe_validation_error(e), items[index])
                    )

            if valid:
                await self._process_chunk(valid, items, result)
            result.chunks_processed += 1

        result.errors.sort(key=lambda e: e.index)
        logger.info(
            f"Import finished: {result.created_count} created, "
            f"{result.updated_count} updated, {len(result.errors)} errors, "
            f"{result.timelines_created} timelines"
        )
        return result

    async def _process_chunk(
        self,
        chunk: list[tuple[int, ClientImportItem]],
        items: Sequence[Any],
        result: ImportResult,
    ) -> None:
        written = await self._write_with_retry(chunk)
        if written is None:
            for index, _ in chunk:
                result.errors.append(
                    ImportItemError(
                        index,
                        f"Storage unavailable after {self.retry_attempts} attempts",
                        items[index],
                    )
                )
            return

        for failure in written.failed:
            result.errors.append(
                ImportItemError(failure.index, failure.error, items[failure.index])
            )

        for applied in written.applied:
            if applied.created:
                result.created_count += 1
            else:
                result.updated_count += 1
            if applied.assignments:
                await self._generate_timelines(applied, items, result)

    async def _write_with_retry(
        self, chunk: list[tuple[int, ClientImportItem]]
    ) -> ChunkWriteResult | None:
        first, last = chunk[0][0], chunk[-1][0]
        for attempt in range(1, self.retry_attempts + 1):
            try:
                async with asyncio.timeout(self.chunk_timeout):
                    return await self.writer.persist_chunk(chunk)
            except PartialWriteError as e:
                # Part of the chunk is committed; retrying would re-apply it.
                logger.warning(
                    f"Chunk {first}-{last} partially written: "
                    f"{len(e.applied)} applied, {len(e.failed)} failed ({e})"
                )
                return ChunkWriteResult(applied=list(e.applied), failed=list(e.failed))
            except (StorageError, TimeoutError) as e:
                reason = str(e) or type(e).__name__
                logger.warning(
                    f"Chunk {first}-{last} attempt {attempt}/{self.retry_attempts} "
                    f"failed: {reason}"
                )
                committed = await self.writer.reset()
                if committed is not None:
                    # Part of the chunk is committed; retrying would re-apply it.
                    return self._settle_interrupted(chunk, committed, reason)

        logger.error(f"Giving up on chunk {first}-{last}")
        return None

    @staticmethod
    def _settle_interrupted(
        chunk: list[tuple[int, ClientImportItem]],
        committed: ChunkWriteResult,
        reason: str,
    ) -> ChunkWriteResult:
        settled = {a.index for a in committed.applied}
        settled.update(f.index for f in committed.failed)
        failed = list(committed.failed) + [
            ItemFailure(index, f"Not saved: {reason}")
            for index, _ in chunk
            if index not in settled
        ]
        return ChunkWriteResult(applied=list(committed.applied), failed=failed)

    async def _generate_timelines(
        self, applied: AppliedItem, items: Sequence[Any], result: ImportResult
    ) -> None:
        try:
            generated = await self.generator.generate(applied.client, applied.assignments)
            await self.store.commit()
        except (TimelineError, SQLAlchemyError) as e:
            await self.store.rollback()
            logger.warning(
                f"Timeline generation failed for item {applied.index} "
                f"(client {applied.client.client_id}): {e}"
            )
            result.errors.append(
                ImportItemError(
                    applied.index,
                    f"Client saved but timeline generation failed: {e}",
                    items[applied.index],
                )
            )
            return
        result.timelines_created += generated.created_count
