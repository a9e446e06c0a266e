from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from src.api.main import app
from src.api.routes import downtime as downtime_routes
from src.core.deps import get_current_roles, get_current_user_id
from src.core.errors import ConflictError

TENANT = str(uuid4())


class FakeDowntimeService:
    def __init__(self, error=None):
        self.error = error

    async def get_reasons(self, active_only=True):
        now = datetime(2026, 3, 2, tzinfo=timezone.utc)
        return [
            SimpleNamespace(
                id=uuid4(),
                code="BRK",
                name="Breakdown",
                description=None,
                category="unplanned",
                reason_group="mechanical",
                parent_code_id=None,
                display_order=10,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
        ]

    async def start_downtime(self, payload, user_id):
        raise self.error


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def grant(*roles, service=None):
    app.dependency_overrides[get_current_roles] = lambda: set(roles)
    app.dependency_overrides[get_current_user_id] = lambda: uuid4()
    app.dependency_overrides[downtime_routes.get_service] = lambda: service or FakeDowntimeService()


def test_health(client):
    res = client.get("/api/v1/health", headers={"X-Correlation-ID": "corr-123"})
    assert res.status_code == 200
    assert res.json()["message"] == "Healthy"
    assert res.headers["X-Correlation-ID"] == "corr-123"


def test_tenant_header_required(client):
    res = client.get("/api/v1/health/tenant")
    assert res.status_code == 400
    body = res.json()
    assert body["status"] == 400
    assert body["error"]["type"] == "http_error"
    assert body["path"] == "/api/v1/health/tenant"
    assert res.headers["X-Correlation-ID"]


def test_tenant_header_must_be_uuid(client):
    res = client.get("/api/v1/health/tenant", headers={"X-Tenant-ID": "plant-1"})
    assert res.status_code == 400
    assert "UUID" in res.json()["error"]["message"]


def test_tenant_echo(client):
    res = client.get("/api/v1/health/tenant", headers={"X-Tenant-ID": TENANT})
    assert res.json() == {"tenant_id": TENANT}


def test_missing_bearer_token_is_unauthorized(client):
    res = client.get("/api/v1/downtime/reasons", headers={"X-Tenant-ID": TENANT})
    assert res.status_code == 401


def test_role_without_permission_is_forbidden(client):
    grant("material_handler")
    res = client.get("/api/v1/downtime/reasons", headers={"X-Tenant-ID": TENANT})
    assert res.status_code == 403
    assert res.json()["error"]["message"] == "Insufficient role"


def test_permission_code_grants_access(client):
    grant("downtime:view")
    res = client.get("/api/v1/downtime/reasons", headers={"X-Tenant-ID": TENANT})
    assert res.status_code == 200
    [reason] = res.json()
    assert reason["code"] == "BRK"
    assert reason["reason_group"] == "mechanical"


def test_domain_error_uses_error_envelope(client):
    error = ConflictError("Equipment already has an active downtime event.", details={"existing_event": None})
    grant("operator", service=FakeDowntimeService(error))
    res = client.post(
        "/api/v1/downtime/events",
        json={"equipment_asset_id": str(uuid4()), "state": "STOP"},
        headers={"X-Tenant-ID": TENANT},
    )
    assert res.status_code == 409
    body = res.json()
    assert body["error"] == {
        "type": "conflict",
        "message": "Equipment already has an active downtime event.",
        "details": {"existing_event": None},
    }
    assert body["tenant_id"] == TENANT
    assert body["method"] == "POST"


def test_integrity_error_maps_to_conflict(client):
    error = IntegrityError("INSERT INTO downtime_events", {}, Exception("duplicate key"))
    grant("operator", service=FakeDowntimeService(error))
    res = client.post(
        "/api/v1/downtime/events",
        json={"equipment_asset_id": str(uuid4())},
        headers={"X-Tenant-ID": TENANT},
    )
    assert res.status_code == 409
    assert res.json()["error"]["type"] == "conflict"


def test_request_validation_error(client):
    grant("operator")
    res = client.post(
        "/api/v1/downtime/events",
        json={"equipment_asset_id": "not-a-uuid", "state": "SLEEPING"},
        headers={"X-Tenant-ID": TENANT},
    )
    assert res.status_code == 422
    body = res.json()
    assert body["error"]["type"] == "validation_error"
    fields = {tuple(d["loc"])[-1] for d in body["error"]["details"]}
    assert {"equipment_asset_id", "state"} <= fields


def test_unexpected_error_is_masked():
    grant("operator", service=FakeDowntimeService(RuntimeError("boom")))
    try:
        res = TestClient(app, raise_server_exceptions=False).post(
            "/api/v1/downtime/events",
            json={"equipment_asset_id": str(uuid4())},
            headers={"X-Tenant-ID": TENANT},
        )
    finally:
        app.dependency_overrides.clear()
    assert res.status_code == 500
    assert res.json()["error"]["message"] == "An unexpected error occurred"


def test_websocket_info_lists_endpoints(client):
    res = client.get("/api/v1/websocket-info")
    paths = [e["path"] for e in res.json()["endpoints"]]
    assert paths == ["/ws/dashboard", "/ws/scheduler"]
