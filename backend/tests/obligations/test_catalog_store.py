"""Tests for the SQL activity catalog and assignment store against a mocked AsyncSession."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.core.errors import ValidationError
from app.models.enums import Frequency
from obligations.assignments import SqlAssignmentStore
from obligations.catalog import SqlActivityCatalog


def _compile(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def _scalar_result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _statements(session: AsyncMock) -> list[str]:
    return [_compile(call.args[0]) for call in session.execute.await_args_list]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestSqlActivityCatalog:
    @pytest.mark.asyncio
    async def test_maps_rows_to_definitions(self) -> None:
        activity = SimpleNamespace(
            activity_id=1,
            name="GST",
            subactivities=[
                SimpleNamespace(
                    subactivity_id=11,
                    name="GSTR-1",
                    frequency="Monthly",
                    frequency_config={"monthlyDay": 11},
                    fields=None,
                ),
                SimpleNamespace(
                    subactivity_id=15,
                    name="Registration",
                    frequency=None,
                    frequency_config=None,
                    fields=[{"name": "Certificate", "type": "file"}],
                ),
            ],
        )
        session = AsyncMock()
        session.execute.return_value = _scalar_result(activity)

        definition = await SqlActivityCatalog(session).get_activity(1)

        assert definition.name == "GST"
        monthly, registration = definition.subactivities
        assert monthly.frequency == Frequency.MONTHLY
        assert monthly.is_recurring
        assert monthly.fields == []
        assert registration.frequency == Frequency.NONE
        assert registration.fields == [{"name": "Certificate", "type": "file"}]
        sql = _compile(session.execute.await_args.args[0])
        assert "WHERE activity.activity_id =" in sql

    @pytest.mark.asyncio
    async def test_missing_activity(self) -> None:
        session = AsyncMock()
        session.execute.return_value = _scalar_result(None)

        assert await SqlActivityCatalog(session).get_activity(999) is None

    @pytest.mark.asyncio
    async def test_unknown_frequency_is_rejected(self) -> None:
        activity = SimpleNamespace(
            activity_id=1,
            name="GST",
            subactivities=[
                SimpleNamespace(
                    subactivity_id=11,
                    name="GSTR-1",
                    frequency="Fortnightly",
                    frequency_config=None,
                    fields=[],
                )
            ],
        )
        session = AsyncMock()
        session.execute.return_value = _scalar_result(activity)

        with pytest.raises(ValidationError):
            await SqlActivityCatalog(session).get_activity(1)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


class TestAdd:
    @pytest.mark.asyncio
    async def test_whole_activity_targets_partial_index(self) -> None:
        session = AsyncMock()
        session.execute.return_value = _scalar_result(41)

        inserted = await SqlAssignmentStore(session).add(100, 1, None)

        assert inserted is True
        sql = _compile(session.execute.await_args.args[0])
        assert sql.startswith("INSERT INTO client_activity")
        assert "ON CONFLICT (client_id, activity_id) WHERE subactivity_id IS NULL" in sql
        assert "DO NOTHING" in sql
        assert "RETURNING" in sql

    @pytest.mark.asyncio
    async def test_narrowed_targets_unique_constraint(self) -> None:
        session = AsyncMock()
        session.execute.return_value = _scalar_result(42)

        assert await SqlAssignmentStore(session).add(100, 1, 13) is True
        sql = _compile(session.execute.await_args.args[0])
        assert "ON CONFLICT ON CONSTRAINT uq_client_activity_assignment DO NOTHING" in sql

    @pytest.mark.asyncio
    async def test_existing_assignment_is_not_inserted(self) -> None:
        session = AsyncMock()
        session.execute.return_value = _scalar_result(None)

        assert await SqlAssignmentStore(session).add(100, 1, 13) is False
        assert session.execute.await_count == 1
        session.commit.assert_not_awaited()


class TestRemove:
    @pytest.mark.asyncio
    async def test_deletes_only_listed_subactivities(self) -> None:
        session = AsyncMock()
        session.execute.return_value = MagicMock(rowcount=2)

        removed = await SqlAssignmentStore(session).remove(100, 1, [11, 12])

        assert removed == 2
        sql = _compile(session.execute.await_args.args[0])
        assert sql.startswith("DELETE FROM client_activity")
        assert "client_activity.subactivity_id IN" in sql
        assert "IS NULL" not in sql

    @pytest.mark.asyncio
    async def test_without_ids_is_a_no_op(self) -> None:
        session = AsyncMock()

        assert await SqlAssignmentStore(session).remove(100, 1, []) == 0
        session.execute.assert_not_awaited()


class TestNarrow:
    @pytest.mark.asyncio
    async def test_no_whole_assignment_writes_nothing(self) -> None:
        session = AsyncMock()
        session.execute.return_value = MagicMock(rowcount=0)

        assert await SqlAssignmentStore(session).narrow(100, 1, [12, 13, 14]) is False
        assert session.execute.await_count == 1
        sql = _compile(session.execute.await_args.args[0])
        assert "client_activity.subactivity_id IS NULL" in sql
        assert "client_activity.status =" in sql

    @pytest.mark.asyncio
    async def test_whole_assignment_is_replaced_by_narrowed_rows(self) -> None:
        session = AsyncMock()
        session.execute.side_effect = [
            MagicMock(rowcount=1),
            _scalar_result(51),
            _scalar_result(52),
        ]

        assert await SqlAssignmentStore(session).narrow(100, 1, [12, 14]) is True
        delete_sql, *insert_sql = _statements(session)
        assert delete_sql.startswith("DELETE FROM client_activity")
        assert len(insert_sql) == 2
        assert all("ON CONSTRAINT uq_client_activity_assignment" in sql for sql in insert_sql)
