from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jose import JWTError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.core.errors import DomainError
from src.core.settings import get_app_settings
from src.core.deps import get_tenant_id
from src.core.security import decode_token
from src.core.logging import configure_logging, correlation_id_var, tenant_id_var
from src.db.run_migrations import main as run_alembic
from src.db.seed import seed_all
from src.db.session import get_engine, tenant_context
from src.schemas.common import ErrorInfo, ErrorResponse, MessageResponse, TenantEcho
from src.schemas.realtime import KpiSnapshot, WsEnvelope
from src.services.realtime import broadcast_manager, compute_kpi_snapshot

# Routers
from src.api.routes.auth import router as auth_router
from src.api.routes.master_data import router as masterdata_router
from src.api.routes.production import router as production_router
from src.api.routes.scheduling import router as scheduling_router
from src.api.routes.inventory import router as inventory_router
from src.api.routes.oee import router as oee_router
from src.api.routes.downtime import router as downtime_router
from src.api.routes.quality import router as quality_router
from src.api.routes.spc import router as spc_router
from src.api.routes.reports import router as reports_router

# Configure structured logging once at import
configure_logging()
logger = logging.getLogger(__name__)

settings = get_app_settings()

openapi_tags = [
    {"name": "System", "description": "System and operational endpoints."},
    {"name": "Health", "description": "Liveness and readiness probes."},
    {"name": "Auth", "description": "Authentication and token endpoints."},
    {"name": "Master Data", "description": "Work centers, equipment, parts and stock locations."},
    {"name": "Production", "description": "Production orders, steps, BOM, time logs and material moves."},
    {"name": "Scheduling", "description": "Operation run scheduling, conflicts, capacity and execution."},
    {"name": "Inventory", "description": "Material consumption, reversals, stock and serialized parts."},
    {"name": "OEE", "description": "OEE calculation, production counts, cycle times and snapshots."},
    {"name": "Downtime", "description": "Reason codes, downtime capture, classification and Pareto."},
    {"name": "Quality", "description": "Inspection plans and runs, nonconformances, dispositions and CAPA."},
    {"name": "SPC", "description": "Subgroups, control charts, capability and rule violations."},
    {
        "name": "WebSocket",
        "description": "WebSocket usage, endpoints, and connection details.",
    },
    {"name": "Reports", "description": "Exportable shop-floor reports (CSV/Excel/PDF)."},
]

WEBSOCKET_ENDPOINTS = [
    {
        "path": "/ws/dashboard",
        "summary": "Real-time dashboard KPI snapshots (server push).",
        "query": ["token"],
        "headers": ["X-Tenant-ID"],
        "messages": {"server_to_client": ["kpi.snapshot"]},
    },
    {
        "path": "/ws/scheduler",
        "summary": "Real-time collaborative scheduler board.",
        "query": ["token", "board?"],
        "headers": ["X-Tenant-ID"],
        "messages": {
            "client_to_server": ["schedule.update", "operation.move", "operation.assign", "ping"],
            "server_to_client": [
                "scheduler.schedule.created",
                "scheduler.schedule.updated",
                "scheduler.schedule.deleted",
                "scheduler.schedule.reordered",
                "scheduler.operation.started",
                "scheduler.operation.paused",
                "scheduler.operation.completed",
                "scheduler.schedule.update",
                "scheduler.operation.move",
                "scheduler.operation.assign",
                "kpi.snapshot",
            ],
        },
    },
]

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    openapi_tags=openapi_tags,
)

# CORS - avoid wildcard with credentials
cors_allow_credentials = settings.CORS_ALLOW_CREDENTIALS
if settings.CORS_ORIGINS == ["*"] and cors_allow_credentials:
    logger.warning("CORS_ALLOW_CREDENTIALS=True with '*' origins is not permitted; disabling credentials.")
    cors_allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Enrich request context with correlation_id and tenant_id for logging and error responses.
    Adds 'X-Correlation-ID' to every response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    tenant = request.headers.get("X-Tenant-ID")
    token_corr = correlation_id_var.set(corr)
    token_tenant = tenant_id_var.set(tenant)
    request.state.correlation_id = corr
    request.state.tenant_id = tenant

    logger.info("Incoming request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token_corr)
        tenant_id_var.reset(token_tenant)

    response.headers["X-Correlation-ID"] = corr
    return response


def _build_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Build a standardized ErrorResponse JSONResponse."""
    ts = datetime.now(tz=timezone.utc)
    corr = getattr(request.state, "correlation_id", None)
    tenant = getattr(request.state, "tenant_id", None)
    err = ErrorResponse(
        status=status_code,
        error=ErrorInfo(type=error_type, message=message, details=details),
        correlation_id=corr,
        tenant_id=tenant,
        path=request.url.path,
        method=request.method,
        timestamp=ts,
    )
    response = JSONResponse(status_code=status_code, content=err.model_dump(mode="json"))
    if corr:
        response.headers["X-Correlation-ID"] = corr
    return response


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    """
    Map service-layer business errors (not found, rule violations, conflicts) to the error envelope.
    """
    logger.info("Domain error %s: %s", exc.error_type, exc.message)
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        error_type=exc.error_type,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(IntegrityError)
async def integrity_exception_handler(request: Request, exc: IntegrityError):
    """
    Unique and foreign-key violations surface as 409 conflicts.
    """
    logger.warning("Integrity error: %s", exc.orig)
    return _build_error_response(
        request=request,
        status_code=409,
        error_type="conflict",
        message="The request conflicts with existing data",
        details=None,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global handler for HTTPException to produce a standardized error envelope.
    """
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        error_type="http_error",
        message=str(detail),
        details=None if isinstance(exc.detail, str) else exc.detail,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Global handler for request validation errors with a standard structure.
    """
    return _build_error_response(
        request=request,
        status_code=422,
        error_type="validation_error",
        message="Request validation failed",
        details=jsonable_errors(exc),
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without the non-serializable `ctx`/`input` payloads."""
    return [{k: v for k, v in e.items() if k in ("type", "loc", "msg")} for e in exc.errors()]


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler to avoid leaking stack traces and to return a structured error.
    """
    logger.exception("Unhandled error processing request")
    return _build_error_response(
        request=request,
        status_code=500,
        error_type="internal_error",
        message="An unexpected error occurred",
        details=None,
    )


@app.on_event("startup")
async def on_startup() -> None:
    """
    Run migrations and optional seeding on service startup.

    Alembic's env runs its own event loop, so the upgrade runs in a worker thread.
    """
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        try:
            logger.info("Running Alembic migrations: upgrade head")
            await asyncio.to_thread(run_alembic, ["upgrade", "head"])
            logger.info("Migrations completed.")
        except Exception as exc:
            # Transient DB issues are left to readiness probes and restarts.
            logger.exception("Migration step failed: %s", exc)

    if settings.AUTO_SEED:
        try:
            logger.info("Running database seeding...")
            await seed_all()
            logger.info("Seeding completed.")
        except Exception as exc:
            logger.exception("Seeding step failed: %s", exc)


# Build API v1 router and include sub-routers
api_v1 = APIRouter(prefix="/api/v1")


# PUBLIC_INTERFACE
@api_v1.get(
    "/health",
    response_model=MessageResponse,
    summary="Health Check",
    tags=["Health"],
)
def health_check() -> MessageResponse:
    """
    Basic liveness health check endpoint.

    Returns:
        MessageResponse: Simple confirmation that the service is running.
    """
    return MessageResponse(message="Healthy")


# PUBLIC_INTERFACE
@api_v1.get(
    "/health/tenant",
    response_model=TenantEcho,
    summary="Tenant Health Echo",
    description="Echoes the tenant context to verify header handling and RLS setup.",
    tags=["Health"],
)
async def tenant_health_echo(tenant_id=Depends(get_tenant_id)) -> TenantEcho:
    """
    Echo the provided tenant ID to verify multi-tenant request handling.

    Parameters:
        X-Tenant-ID (header): UUID of the tenant.
    Returns:
        TenantEcho: The tenant_id extracted from the header.
    """
    return TenantEcho(tenant_id=tenant_id)


# PUBLIC_INTERFACE
@api_v1.get(
    "/websocket-info",
    response_model=Dict[str, Any],
    summary="WebSocket Usage Information",
    description="Connection details for the dashboard and scheduler WebSocket endpoints.",
    tags=["WebSocket"],
)
def websocket_info() -> Dict[str, Any]:
    """
    Describe how to connect to WebSocket endpoints in this service.

    Returns:
        JSON object with usage notes and endpoints list describing query params, headers, and message format.
    """
    return {
        "usage": (
            "Connect with a valid user JWT as a 'token' query parameter and include the 'X-Tenant-ID' header. "
            "Dashboards receive 'kpi.snapshot' after order, downtime and NCR changes. "
            "Scheduler clients receive 'scheduler.*' events after schedule changes; messages they send are "
            "re-broadcast to the other subscribers of the same board. "
            "Message format is JSON with fields: { type: string, payload: object, at: ISO-8601, user_id?: string, channel?: string }."
        ),
        "security": {
            "token": "JWT must contain 'sub' (user id) and 'tenant_id' matching the X-Tenant-ID header.",
            "header": "X-Tenant-ID: UUID",
        },
        "endpoints": WEBSOCKET_ENDPOINTS,
        "notes": "WebSocket endpoints are not represented in OpenAPI paths; see x-websocket-endpoints.",
    }


# Include all routers under /api/v1
api_v1.include_router(auth_router)
api_v1.include_router(masterdata_router)
api_v1.include_router(production_router)
api_v1.include_router(scheduling_router)
api_v1.include_router(inventory_router)
api_v1.include_router(oee_router)
api_v1.include_router(downtime_router)
api_v1.include_router(quality_router)
api_v1.include_router(spc_router)
api_v1.include_router(reports_router)

app.include_router(api_v1)


class WsAuthError(Exception):
    """Raised when a WebSocket handshake fails authentication; carries the close code."""

    def __init__(self, code: int) -> None:
        super().__init__(code)
        self.code = code


# PUBLIC_INTERFACE
def authenticate_websocket(token: Optional[str], tenant_header: Optional[str]) -> tuple[str, str]:
    """
    Validate the 'token' query param against the 'X-Tenant-ID' header.

    Returns:
        (tenant_id, user_id)
    Raises:
        WsAuthError: 4401 for a missing or invalid token, 4403 for a tenant mismatch.
    """
    if not token or not tenant_header:
        raise WsAuthError(4401)
    try:
        claims = decode_token(token)
    except JWTError:
        raise WsAuthError(4401)
    if str(claims.get("tenant_id")) != str(tenant_header):
        raise WsAuthError(4403)
    user_id = claims.get("sub")
    if not user_id:
        raise WsAuthError(4401)
    return str(tenant_header), str(user_id)


async def _accept_authenticated(websocket: WebSocket) -> Optional[tuple[str, str]]:
    """Accept the socket and return (tenant_id, user_id), or close it with the auth error code."""
    await websocket.accept()
    try:
        return authenticate_websocket(websocket.query_params.get("token"), websocket.headers.get("x-tenant-id"))
    except WsAuthError as exc:
        logger.info("WebSocket rejected with code %s", exc.code)
        await websocket.close(code=exc.code)
        return None


async def _initial_snapshot(tenant_id: str) -> KpiSnapshot:
    """Compute KPIs in a short-lived session bound to the tenant."""
    maker = async_sessionmaker(bind=get_engine(), expire_on_commit=False, autoflush=False, autocommit=False)
    async with maker() as session:
        async with tenant_context(session, UUID(tenant_id)):
            return await compute_kpi_snapshot(session)


# PUBLIC_INTERFACE
@app.websocket("/ws/dashboard")
async def ws_dashboard(websocket: WebSocket):
    """
    WebSocket endpoint for real-time dashboard KPI updates.

    Security:
      - Query param 'token' must be a valid JWT.
      - Header 'X-Tenant-ID' must match JWT tenant_id.
    Messages:
      - Server -> Client: type='kpi.snapshot' payload=KpiSnapshot
      - Client -> Server: optional 'ping' to keepalive; other messages ignored.
    """
    auth = await _accept_authenticated(websocket)
    if auth is None:
        return
    tenant_id, _user_id = auth

    topic = broadcast_manager.dashboard_topic(tenant_id)
    await broadcast_manager.connect(topic, websocket)

    try:
        snapshot = await _initial_snapshot(tenant_id)
        env = WsEnvelope(type="kpi.snapshot", payload=snapshot.model_dump(mode="json"))
        await websocket.send_json(env.model_dump(mode="json"))
    except Exception:
        logger.exception("Failed to send initial KPI snapshot")

    try:
        while True:
            msg = await websocket.receive_text()
            if msg and msg.lower() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        await broadcast_manager.disconnect(topic, websocket)
    except Exception:
        logger.exception("Error on ws_dashboard connection")
        await broadcast_manager.disconnect(topic, websocket)
        await websocket.close()


# PUBLIC_INTERFACE
@app.websocket("/ws/scheduler")
async def ws_scheduler(websocket: WebSocket):
    """
    WebSocket endpoint for real-time collaborative scheduler updates.

    Query Parameters:
      - token: JWT bearer token
      - board: Optional channel/board key

    Messages:
      - Client -> Server:
          type: 'schedule.update' | 'operation.move' | 'operation.assign' | 'ping'
          payload: object
      - Server -> Client:
          Rebroadcasts as 'scheduler.<type>' envelopes to the other subscribers, plus
          'scheduler.*' events published after REST schedule changes.
    """
    auth = await _accept_authenticated(websocket)
    if auth is None:
        return
    tenant_id, user_id = auth

    board = websocket.query_params.get("board")
    topic = broadcast_manager.scheduler_topic(tenant_id, board=board)
    await broadcast_manager.connect(topic, websocket)

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type") if isinstance(data, dict) else None
            if msg_type == "ping":
                await websocket.send_text("pong")
                continue
            if not isinstance(msg_type, str):
                continue
            payload = data.get("payload") or {}
            env = WsEnvelope(type=f"scheduler.{msg_type}", payload=payload, channel=board, user_id=UUID(user_id))
            await broadcast_manager.broadcast(topic, env.model_dump(mode="json"), exclude=websocket)
    except WebSocketDisconnect:
        await broadcast_manager.disconnect(topic, websocket)
    except Exception:
        logger.exception("Error on ws_scheduler connection")
        await broadcast_manager.disconnect(topic, websocket)
        await websocket.close()
