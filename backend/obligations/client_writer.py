"""SQL persistence for bulk-imported client records."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ItemFailure, NotFoundError, PartialWriteError, StorageError
from app.models.client import Client
from app.schemas.imports import ClientImportItem
from obligations.assignments import SqlAssignmentStore
from obligations.bulk_import import AppliedItem, ChunkWriteResult
from obligations.catalog import ActivityAssignment, ClientRef

logger = logging.getLogger(__name__)

_TRANSIENT = (OperationalError, InterfaceError)

ApplyFunc = Callable[[int, ClientImportItem], Awaitable[AppliedItem]]


class SqlClientWriter:
    """Writes import chunks: creates first, then updates.

    Each item runs inside its own SAVEPOINT so a constraint violation only
    discards that item. Creates are committed before updates start, so a
    failed update commit is reported as a partial write, and a call cut short
    by a timeout reports its committed creates from ``reset``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.assignments = SqlAssignmentStore(session)
        # Creates committed by the current or last interrupted call.
        self._committed: ChunkWriteResult | None = None

    async def persist_chunk(
        self, items: Sequence[tuple[int, ClientImportItem]]
    ) -> ChunkWriteResult:
        creates = [(i, item) for i, item in items if item.id is None]
        updates = [(i, item) for i, item in items if item.id is not None]
        result = ChunkWriteResult()
        self._committed = None

        try:
            await self._apply_each(creates, self._create, result)
            await self.session.commit()
        except _TRANSIENT as e:
            await self.session.rollback()
            raise StorageError(f"Client create failed: {e}") from e

        committed = list(result.applied)
        failed_before_updates = list(result.failed)
        if committed:
            self._committed = ChunkWriteResult(
                applied=committed, failed=list(failed_before_updates)
            )
        try:
            await self._apply_each(updates, self._update, result)
            await self.session.commit()
        except _TRANSIENT as e:
            await self.session.rollback()
            if not committed:
                raise StorageError(f"Client update failed: {e}") from e
            failed = failed_before_updates + [
                ItemFailure(i, f"Update not saved: {e}") for i, _ in updates
            ]
            raise PartialWriteError(
                f"{len(committed)} creates committed, updates failed: {e}",
                applied=committed,
                failed=failed,
            ) from e

        self._committed = None
        return result

    async def reset(self) -> ChunkWriteResult | None:
        """Roll back the interrupted call and report the creates it committed."""
        await self.session.rollback()
        committed, self._committed = self._committed, None
        return committed

    async def _apply_each(
        self,
        items: list[tuple[int, ClientImportItem]],
        apply: ApplyFunc,
        result: ChunkWriteResult,
    ) -> None:
        for index, item in items:
            try:
                async with self.session.begin_nested():
                    applied = await apply(index, item)
            except IntegrityError as e:
                logger.debug(f"Item {index} rejected by constraint: {e.orig}")
                result.failed.append(
                    ItemFailure(index, f"Conflicts with existing data: {e.orig}")
                )
                continue
            except NotFoundError as e:
                result.failed.append(ItemFailure(index, str(e)))
                continue
            result.applied.append(applied)

    async def _create(self, index: int, item: ClientImportItem) -> AppliedItem:
        client = Client(
            name=item.name,
            email=item.email,
            phone=item.phone,
            branch_id=item.branch,
            status=item.status.value,
        )
        self.session.add(client)
        await self.session.flush()
        assignments = await self._assign(client.client_id, item)
        return AppliedItem(
            index=index,
            client=ClientRef(client.client_id, client.branch_id, client.name),
            created=True,
            assignments=assignments,
        )

    async def _update(self, index: int, item: ClientImportItem) -> AppliedItem:
        client = await self.session.get(Client, item.id)
        if client is None:
            raise NotFoundError(f"Client {item.id} not found")

        client.name = item.name
        client.email = item.email
        client.phone = item.phone
        client.branch_id = item.branch
        client.status = item.status.value
        await self.session.flush()
        assignments = await self._assign(client.client_id, item)
        return AppliedItem(
            index=index,
            client=ClientRef(client.client_id, client.branch_id, client.name),
            created=False,
            assignments=assignments,
        )

    async def _assign(
        self, client_id: int, item: ClientImportItem
    ) -> list[ActivityAssignment]:
        assignments: list[ActivityAssignment] = []
        for entry in item.activities:
            assignment = ActivityAssignment(entry.activity, entry.subactivity)
            if assignment in assignments:
                continue
            await self.assignments.add(
                client_id, assignment.activity_id, assignment.subactivity_id
            )
            assignments.append(assignment)
        return assignments
