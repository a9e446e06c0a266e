from __future__ import annotations

import io
from uuid import uuid4

import pandas as pd
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routes import reports as report_routes
from src.api.routes.reports import export_dataframe
from src.core.deps import get_current_roles, get_tenant_session
from src.schemas.downtime import ParetoItem

FRAME = pd.DataFrame(
    [
        {"code": "MAT", "name": "Waiting for material", "duration_minutes": 30, "cumulative_percentage": 60.0},
        {"code": "BRK", "name": "Breakdown", "duration_minutes": 20, "cumulative_percentage": 100.0},
    ]
)


@pytest.fixture
def export_client():
    app = FastAPI()

    @app.get("/export")
    def export(format: str = "csv"):
        return export_dataframe(FRAME, "downtime_pareto", format)

    return TestClient(app)


def test_csv_export(export_client):
    res = export_client.get("/export")
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    assert res.headers["content-disposition"] == 'attachment; filename="downtime_pareto.csv"'
    lines = res.text.strip().splitlines()
    assert lines[0] == "code,name,duration_minutes,cumulative_percentage"
    assert lines[1].startswith("MAT,Waiting for material,30")


def test_xlsx_export_round_trips_through_openpyxl(export_client):
    res = export_client.get("/export", params={"format": "XLSX"})
    assert res.headers["content-disposition"].endswith('downtime_pareto.xlsx"')
    frame = pd.read_excel(io.BytesIO(res.content), sheet_name="Report", engine="openpyxl")
    assert list(frame["code"]) == ["MAT", "BRK"]


def test_pdf_export(export_client):
    res = export_client.get("/export", params={"format": "pdf"})
    assert res.headers["content-type"] == "application/pdf"
    assert res.content.startswith(b"%PDF")


def test_unknown_format_falls_back_to_csv(export_client):
    res = export_client.get("/export", params={"format": "json"})
    assert res.headers["content-type"].startswith("text/csv")


class FakeParetoService:
    def __init__(self, session, tenant_id):
        pass

    async def get_pareto_by_reason(self, work_center_id, from_ts, to_ts):
        return [
            ParetoItem(
                code="MAT",
                name="Waiting for material",
                category="unplanned",
                reason_group="material",
                count=1,
                duration_minutes=30,
                percentage_of_total=100.0,
                cumulative_percentage=100.0,
            )
        ]


@pytest.fixture
def report_client(monkeypatch):
    monkeypatch.setattr(report_routes, "DowntimeService", FakeParetoService)
    app.dependency_overrides[get_current_roles] = lambda: {"reports:view"}
    app.dependency_overrides[get_tenant_session] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.mark.parametrize("fmt, suffix", [("excel", "xlsx"), ("xls", "xlsx"), ("json", "csv")])
def test_report_route_accepts_format_aliases(report_client, fmt, suffix):
    res = report_client.get(
        "/api/v1/reports/downtime-pareto",
        params={"format": fmt},
        headers={"X-Tenant-ID": str(uuid4())},
    )
    assert res.status_code == 200
    assert res.headers["content-disposition"].endswith(f'downtime_pareto_by_reason.{suffix}"')
