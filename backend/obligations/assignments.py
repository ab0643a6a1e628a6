"""Client-activity assignment writes needed by GST exclusivity."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.client import WHOLE_ACTIVITY_PREDICATE, ClientActivity
from app.models.enums import AssignmentStatus


class AssignmentStore(Protocol):
    async def remove(
        self, client_id: int, activity_id: int, subactivity_ids: Sequence[int]
    ) -> int: ...

    async def narrow(
        self, client_id: int, activity_id: int, subactivity_ids: Sequence[int]
    ) -> bool: ...

    async def add(
        self, client_id: int, activity_id: int, subactivity_id: int | None
    ) -> bool: ...


class SqlAssignmentStore:
    """Assignment rows in ``client_activity``. Never commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def remove(
        self, client_id: int, activity_id: int, subactivity_ids: Sequence[int]
    ) -> int:
        """Delete the client's assignments narrowed to any of ``subactivity_ids``."""
        if not subactivity_ids:
            return 0
        stmt = delete(ClientActivity).where(
            ClientActivity.client_id == client_id,
            ClientActivity.activity_id == activity_id,
            ClientActivity.subactivity_id.in_(list(subactivity_ids)),
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def narrow(
        self, client_id: int, activity_id: int, subactivity_ids: Sequence[int]
    ) -> bool:
        """Replace an active whole-activity assignment with narrowed rows.

        Returns False (and writes nothing) when the client has no active
        whole-activity assignment for ``activity_id``.
        """
        stmt = delete(ClientActivity).where(
            ClientActivity.client_id == client_id,
            ClientActivity.activity_id == activity_id,
            WHOLE_ACTIVITY_PREDICATE,
            ClientActivity.status == AssignmentStatus.ACTIVE.value,
        )
        result = await self.session.execute(stmt)
        if not result.rowcount:
            return False
        for subactivity_id in subactivity_ids:
            await self.add(client_id, activity_id, subactivity_id)
        return True

    async def add(
        self, client_id: int, activity_id: int, subactivity_id: int | None
    ) -> bool:
        """Insert the assignment unless it already exists. True if inserted."""
        stmt = pg_insert(ClientActivity).values(
            client_id=client_id,
            activity_id=activity_id,
            subactivity_id=subactivity_id,
            status=AssignmentStatus.ACTIVE.value,
        )
        if subactivity_id is None:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=["client_id", "activity_id"],
                index_where=WHOLE_ACTIVITY_PREDICATE,
            )
        else:
            stmt = stmt.on_conflict_do_nothing(constraint="uq_client_activity_assignment")
        result = await self.session.execute(stmt.returning(ClientActivity.assignment_id))
        return result.scalar_one_or_none() is not None
