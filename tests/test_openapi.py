from __future__ import annotations

import json
import os

from src.api.generate_openapi import build_openapi_schema, main


def test_schema_documents_websockets_and_routers():
    schema = build_openapi_schema()
    assert [e["path"] for e in schema["x-websocket-endpoints"]] == ["/ws/dashboard", "/ws/scheduler"]
    tag_names = {t["name"] for t in schema["tags"]}
    assert {"Production", "Scheduling", "OEE", "Downtime", "Quality", "SPC", "Inventory", "Reports"} <= tag_names
    paths = schema["paths"]
    assert "/api/v1/oee/work-centers/{work_center_id}" in paths
    assert "/api/v1/downtime/pareto" in paths
    assert "/api/v1/spc/characteristics/{characteristic_id}/chart" in paths
    assert "/api/v1/reports/downtime-pareto" in paths


def test_main_writes_openapi_json(tmp_path):
    path = main(str(tmp_path / "interfaces"))
    assert os.path.basename(path) == "openapi.json"
    with open(path) as f:
        assert json.load(f)["info"]["title"]
