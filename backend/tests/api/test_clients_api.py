"""Tests for client API endpoints."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.core.errors import StorageError
from app.schemas.timeline import TimelineSchema
from fakes import (
    CLIENT,
    GST,
    GSTR1_Q,
    INCOME_TAX,
    PAN,
    FakeAssignmentStore,
    FakeCatalog,
    FakeClientWriter,
    InMemoryTimelineStore,
)
from obligations.bulk_import import BulkImportOrchestrator
from obligations.generator import TimelineGenerator


def _generator(
    store: InMemoryTimelineStore, assignments: FakeAssignmentStore | None = None
) -> TimelineGenerator:
    return TimelineGenerator(
        FakeCatalog(),
        store,
        assignments or FakeAssignmentStore(),
        clock=lambda: datetime(2024, 6, 15, 10, 0),
    )


# ---------------------------------------------------------------------------
# POST /api/v1/clients/bulk-import
# ---------------------------------------------------------------------------


@patch("app.api.v1.clients.build_importer")
def test_bulk_import_reports_errors_per_item(mock_build: MagicMock, client: TestClient) -> None:
    """Bad items are reported by index; the rest are imported."""
    store = InMemoryTimelineStore()
    mock_build.return_value = BulkImportOrchestrator(
        FakeClientWriter(conflicts=["dup@example.com"]), _generator(store), store
    )

    response = client.post(
        "/api/v1/clients/bulk-import",
        json={
            "clients": [
                {"name": "Acme", "branch": 1, "activities": [{"activity": INCOME_TAX.activity_id}]},
                {"branch": 1},
                {"name": "Dup", "email": "dup@example.com", "branch": 1},
                {"id": 42, "name": "Existing", "branch": 2},
            ]
        },
    )
    assert response.status_code == 200

    data = response.json()
    assert data["created"] == 1
    assert data["updated"] == 1
    assert data["timelines_created"] == 2  # ITR yearly + PAN one-time
    assert data["cancelled"] is False
    assert [e["index"] for e in data["errors"]] == [1, 2]
    assert data["errors"][0]["error"].startswith("name:")
    assert data["errors"][0]["data"] == {"branch": 1}


def test_bulk_import_requires_client_list(client: TestClient) -> None:
    response = client.post("/api/v1/clients/bulk-import", json={"items": []})
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# POST /api/v1/clients/{client_id}/activities
# ---------------------------------------------------------------------------


@patch("app.api.v1.clients.build_generator")
@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_assign_activity_generates_timelines(
    mock_ref: AsyncMock, mock_build: MagicMock, client: TestClient
) -> None:
    store = InMemoryTimelineStore()
    assignments = FakeAssignmentStore()
    mock_ref.return_value = CLIENT
    mock_build.return_value = _generator(store, assignments)

    response = client.post(
        f"/api/v1/clients/{CLIENT.client_id}/activities",
        json={"activity": INCOME_TAX.activity_id, "subactivity": PAN.subactivity_id},
    )
    assert response.status_code == 200

    data = response.json()
    assert data["created"] == 1
    assert data["existing"] == 0
    assert data["removed"] == 0
    timeline = data["timelines"][0]
    assert timeline["timeline_type"] == "oneTime"
    assert timeline["period"] == "June-2024"
    assert timeline["due_date"] == "2024-07-15T10:00:00"
    assert store.commits == 1
    assert (CLIENT.client_id, INCOME_TAX.activity_id, PAN.subactivity_id) in assignments.rows


@patch("app.api.v1.clients.build_generator")
@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_assign_quarterly_gst_removes_monthly(
    mock_ref: AsyncMock, mock_build: MagicMock, client: TestClient
) -> None:
    store = InMemoryTimelineStore()
    mock_ref.return_value = CLIENT
    mock_build.return_value = _generator(store)
    client.post(
        f"/api/v1/clients/{CLIENT.client_id}/activities",
        json={"activity": GST.activity_id, "subactivity": 11, "financial_year": "2024-2025"},
    )

    response = client.post(
        f"/api/v1/clients/{CLIENT.client_id}/activities",
        json={"activity": GST.activity_id, "subactivity": GSTR1_Q.subactivity_id},
    )
    assert response.status_code == 200

    data = response.json()
    assert data["created"] == 4
    assert data["removed"] == 9
    assert sorted(store.periods(11)) == ["April-2024", "June-2024", "May-2024"]


@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_assign_activity_client_not_found(mock_ref: AsyncMock, client: TestClient) -> None:
    mock_ref.return_value = None

    response = client.post("/api/v1/clients/999/activities", json={"activity": 1})
    assert response.status_code == 404
    assert response.json()["detail"] == "Client 999 not found"


@patch("app.api.v1.clients.build_generator")
@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_assign_unknown_activity(
    mock_ref: AsyncMock, mock_build: MagicMock, client: TestClient
) -> None:
    store = InMemoryTimelineStore()
    mock_ref.return_value = CLIENT
    mock_build.return_value = _generator(store)

    response = client.post(f"/api/v1/clients/{CLIENT.client_id}/activities", json={"activity": 77})
    assert response.status_code == 404
    assert response.json()["detail"] == "Activity 77 not found"
    assert store.rollbacks == 1


@patch("app.api.v1.clients.build_generator")
@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_assign_activity_storage_unavailable(
    mock_ref: AsyncMock, mock_build: MagicMock, client: TestClient
) -> None:
    store = InMemoryTimelineStore()
    store.upsert_error = StorageError("connection refused")
    mock_ref.return_value = CLIENT
    mock_build.return_value = _generator(store)

    response = client.post(f"/api/v1/clients/{CLIENT.client_id}/activities", json={"activity": 2})
    assert response.status_code == 503


@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_assign_activity_bad_financial_year(mock_ref: AsyncMock, client: TestClient) -> None:
    mock_ref.return_value = CLIENT

    response = client.post(
        f"/api/v1/clients/{CLIENT.client_id}/activities",
        json={"activity": 1, "financial_year": "2024"},
    )
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# GET /api/v1/clients/{client_id}/timelines
# ---------------------------------------------------------------------------


@patch("app.api.v1.clients.get_client_timelines", new_callable=AsyncMock)
@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_list_timelines(mock_ref: AsyncMock, mock_list: AsyncMock, client: TestClient) -> None:
    mock_ref.return_value = CLIENT
    mock_list.return_value = [
        TimelineSchema(
            timeline_id=1,
            client_id=CLIENT.client_id,
            activity_id=1,
            subactivity_id=12,
            branch_id=CLIENT.branch_id,
            financial_year="2024-2025",
            period="April-2024",
            due_date=datetime(2024, 4, 20, 9, 0),
            status="pending",
            timeline_type="recurring",
            frequency="Monthly",
        )
    ]

    response = client.get(
        f"/api/v1/clients/{CLIENT.client_id}/timelines",
        params={"financial_year": "2024-2025"},
    )
    assert response.status_code == 200
    assert response.json()[0]["period"] == "April-2024"
    mock_list.assert_awaited_once()
    assert mock_list.call_args.args[1:] == (CLIENT.client_id, "2024-2025")


@patch("app.api.v1.clients.get_client_ref", new_callable=AsyncMock)
def test_list_timelines_client_not_found(mock_ref: AsyncMock, client: TestClient) -> None:
    mock_ref.return_value = None

    response = client.get("/api/v1/clients/5/timelines")
    assert response.status_code == 404


def test_list_timelines_bad_financial_year(client: TestClient) -> None:
    response = client.get("/api/v1/clients/5/timelines", params={"financial_year": "next"})
    assert response.status_code == 422
    assert "Invalid financial year" in response.json()["detail"]
