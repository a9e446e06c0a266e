from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.api.main import WsAuthError, app, authenticate_websocket
from src.core.security import create_access_token

TENANT = str(uuid4())
USER = str(uuid4())


def test_valid_token_returns_tenant_and_user():
    token = create_access_token(USER, TENANT, roles=["operator"])
    assert authenticate_websocket(token, TENANT) == (TENANT, USER)


@pytest.mark.parametrize("token, header", [(None, TENANT), ("", TENANT), ("abc", None)])
def test_missing_credentials_close_with_4401(token, header):
    with pytest.raises(WsAuthError) as exc:
        authenticate_websocket(token, header)
    assert exc.value.code == 4401


def test_garbage_token_closes_with_4401():
    with pytest.raises(WsAuthError) as exc:
        authenticate_websocket("not-a-jwt", TENANT)
    assert exc.value.code == 4401


def test_tenant_mismatch_closes_with_4403():
    token = create_access_token(USER, str(uuid4()))
    with pytest.raises(WsAuthError) as exc:
        authenticate_websocket(token, TENANT)
    assert exc.value.code == 4403


def test_dashboard_socket_rejects_missing_token():
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/dashboard", headers={"X-Tenant-ID": TENANT}) as ws:
            ws.receive_json()
    assert exc.value.code == 4401
