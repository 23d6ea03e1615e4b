"""Tests for API endpoints."""

import uuid
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from syncengine.config import Settings, get_settings
from syncengine.main import app
from syncengine.models import SyncRunStatus
from syncengine.services.sync_runs import MANUAL_RESET_MESSAGE, SyncRunLedger
from syncengine.services.sync_state import SyncStateTracker


def _primary_handler(payment_intent, json_response):
    def handler(request: httpx.Request) -> httpx.Response:
        return json_response(
            200,
            {"data": [payment_intent("pi_1", 1704067200), payment_intent("pi_2", 1704067300)], "has_more": False},
        )

    return handler


class TestRootEndpoint:
    """Tests for root endpoint."""

    @pytest.mark.asyncio
    async def test_root_endpoint(self, client):
        """Test root endpoint returns API info."""
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Sync Engine API"
        assert "version" in data
        assert "docs" in data
        assert "crm" in data["sources"]


class TestHealthEndpoint:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_endpoint(self, client):
        """Test health endpoint returns status for every source."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["sources"]) == {
            "payments-primary",
            "payments-secondary",
            "invoices",
            "crm",
            "messaging",
        }
        assert data["sources"]["crm"]["freshness"] == "red"
        assert data["sources"]["crm"]["record_count"] == 0

    @pytest.mark.asyncio
    async def test_health_reflects_sync_state(self, client, db_session):
        await SyncStateTracker(db_session).record_success(
            "invoices", range_start=datetime.now(UTC) - timedelta(days=1), range_end=datetime.now(UTC)
        )
        await SyncRunLedger(db_session).start("crm")

        data = (await client.get("/health")).json()

        assert data["sources"]["invoices"]["freshness"] == "green"
        assert data["sources"]["invoices"]["last_sync"] is not None
        assert data["sources"]["crm"]["active_runs"] == 1

    @pytest.mark.asyncio
    async def test_probes(self, client):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestTriggerAuth:
    """Tests for admin key enforcement on triggers."""

    @pytest.mark.asyncio
    async def test_missing_key(self, client):
        response = await client.post("/sync/crm")

        assert response.status_code == 403
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_wrong_key(self, client):
        response = await client.post("/sync/crm", headers={"x-admin-key": "nope"})

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unconfigured_key_rejects_everything(self, client, admin_headers):
        app.dependency_overrides[get_settings] = lambda: Settings(admin_api_key=None)

        response = await client.post("/sync/crm", headers=admin_headers)

        assert response.status_code == 403


class TestTriggerSync:
    """Tests for POST /sync/{source}."""

    @pytest.mark.asyncio
    async def test_unknown_source(self, client, admin_headers, use_service):
        use_service()

        response = await client.post("/sync/ledger", headers=admin_headers)

        assert response.status_code == 404
        assert "ledger" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_inverted_range_rejected(self, client, admin_headers, use_service):
        use_service()

        response = await client.post(
            "/sync/payments-primary",
            headers=admin_headers,
            json={"startDate": "2024-02-01T00:00:00Z", "endDate": "2024-01-01T00:00:00Z"},
        )

        assert response.status_code == 422
        assert "startDate must not be after endDate" in response.json()["error"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "continuation",
        [
            {"sync_run_id": "not-a-uuid"},
            {"chunk_index": 1},
            {"sync_run_id": "00000000-0000-0000-0000-000000000001", "chunk_index": -1},
            "resume",
        ],
    )
    async def test_malformed_continuation_rejected(self, client, admin_headers, use_service, continuation):
        use_service()

        response = await client.post(
            "/sync/payments-secondary",
            headers=admin_headers,
            json={"continuation": continuation},
        )

        assert response.status_code == 422
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_continuation_of_finished_run_returns_409(self, client, admin_headers, use_service, db_session):
        use_service()
        ledger = SyncRunLedger(db_session)
        run = await ledger.start("payments-secondary")
        await ledger.complete(run.id)

        response = await client.post(
            "/sync/payments-secondary",
            headers=admin_headers,
            json={"continuation": {"sync_run_id": str(run.id), "chunk_index": 3}},
        )

        assert response.status_code == 409
        assert "cannot be continued" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_success(self, client, admin_headers, use_service, payment_intent, json_response, db_session):
        use_service(primary_handler=_primary_handler(payment_intent, json_response))

        response = await client.post(
            "/sync/payments-primary",
            headers=admin_headers,
            json={"startDate": "2024-01-01T00:00:00Z", "endDate": "2024-01-31T00:00:00Z"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["synced_transactions"] == 2
        assert data["status"] == "completed"
        assert data["pages_fetched"] == 1
        assert data["truncated"] is False
        assert data["duration_ms"] >= 0

        run = await SyncRunLedger(db_session).get(uuid.UUID(data["sync_run_id"]))
        assert run.status == SyncRunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_continuation_returns_202(self, client, admin_headers, use_service, json_response):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/oauth2/token":
                return json_response(200, {"access_token": "tok"})
            return json_response(404, {"name": "NO_DATA"})

        use_service(secondary_handler=handler)
        end = datetime.now(UTC)

        response = await client.post(
            "/sync/payments-secondary",
            headers=admin_headers,
            json={"startDate": (end - timedelta(days=200)).isoformat(), "endDate": end.isoformat()},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "continuing"
        assert data["continuation"]["sync_run_id"] == data["sync_run_id"]
        assert data["continuation"]["chunk_index"] == 3
        assert "auto_continue" not in data

    @pytest.mark.asyncio
    async def test_provider_failure_returns_502(self, client, admin_headers, use_service, json_response):
        def handler(request: httpx.Request) -> httpx.Response:
            return json_response(503, {"error": {"message": "Service unavailable"}})

        use_service(primary_handler=handler)

        response = await client.post("/sync/invoices", headers=admin_headers)

        assert response.status_code == 502
        data = response.json()
        assert "503" in data["error"]
        assert data["processed"] == 0
        assert data["sync_run_id"] is not None

    @pytest.mark.asyncio
    async def test_active_run_returns_409(self, client, admin_headers, use_service, db_session):
        use_service()
        active = await SyncRunLedger(db_session).start("crm")

        response = await client.post("/sync/crm", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["sync_run_id"] == str(active.id)


class TestSyncRunsEndpoints:
    """Tests for run history and the stuck-run reset."""

    @pytest.mark.asyncio
    async def test_list_runs(self, client, admin_headers, db_session):
        ledger = SyncRunLedger(db_session)
        run = await ledger.start("crm", {"fetchAll": True})
        await ledger.start("invoices")

        response = await client.get("/sync/runs", params={"source": "crm"}, headers=admin_headers)

        assert response.status_code == 200
        runs = response.json()["runs"]
        assert [r["id"] for r in runs] == [str(run.id)]
        assert runs[0]["status"] == "running"
        assert runs[0]["metadata"] == {"fetchAll": True}

    @pytest.mark.asyncio
    async def test_list_runs_bad_status(self, client, admin_headers):
        response = await client.get("/sync/runs", params={"status": "exploded"}, headers=admin_headers)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_sync_state(self, client, admin_headers, db_session):
        now = datetime.now(UTC)
        tracker = SyncStateTracker(db_session)
        await tracker.record_success("crm", range_start=now - timedelta(days=10), range_end=now - timedelta(days=3))

        response = await client.get("/sync/state", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["available"] is True
        crm = next(s for s in data["sources"] if s["source"] == "crm")
        assert crm["freshness"] == "yellow"
        assert crm["recommended_range"] == "last24h"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/sync/runs", "/sync/state"])
    async def test_reads_require_admin(self, client, path):
        missing = await client.get(path)
        wrong = await client.get(path, headers={"x-admin-key": "nope"})

        assert missing.status_code == 403
        assert "error" in missing.json()
        assert wrong.status_code == 403

    @pytest.mark.asyncio
    async def test_reset_stuck_requires_admin(self, client):
        response = await client.post("/sync/runs/reset-stuck")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_reset_stuck_with_zero_timeout(self, client, admin_headers, db_session):
        ledger = SyncRunLedger(db_session)
        run = await ledger.start("payments-primary")

        response = await client.post(
            "/sync/runs/reset-stuck", params={"timeout_minutes": 0}, headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["reset_count"] == 1
        assert data["run_ids"] == [str(run.id)]

        stuck = await ledger.get(run.id)
        assert stuck.status == SyncRunStatus.FAILED
        assert stuck.error_message == MANUAL_RESET_MESSAGE
