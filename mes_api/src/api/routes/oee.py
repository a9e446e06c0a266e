from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_user_id, get_tenant_id, get_tenant_session, require_roles
from src.schemas.oee import (
    CycleTimeInfo,
    Grain,
    OEEMetrics,
    OEESnapshotRead,
    OEETrendPoint,
    ProductionCountCreate,
    ProductionCountRead,
    SaveSnapshotRequest,
    ScopeType,
    SetCycleTimeRequest,
)
from src.services.oee import OEEService

router = APIRouter(prefix="/oee", tags=["OEE"])

VIEW = require_roles("admin", "oee:view", "production:view")
MANAGE = require_roles("admin", "oee:manage")


# PUBLIC_INTERFACE
async def get_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
) -> OEEService:
    """Build the OEE service for the request's tenant session."""
    return OEEService(session, tenant_id)


# PUBLIC_INTERFACE
@router.get(
    "/work-centers/{work_center_id}",
    response_model=OEEMetrics,
    summary="Calculate OEE",
    description="Availability, performance, quality and OEE for a work center over [from, to].",
    dependencies=[Depends(VIEW)],
)
async def calculate_oee(
    work_center_id: UUID = Path(...),
    from_ts: datetime = Query(..., alias="from"),
    to_ts: datetime = Query(..., alias="to"),
    service: OEEService = Depends(get_service),
) -> OEEMetrics:
    return await service.calculate_oee(work_center_id, from_ts, to_ts)


# PUBLIC_INTERFACE
@router.get(
    "/work-centers/{work_center_id}/shift",
    response_model=OEEMetrics,
    summary="Calculate shift OEE",
    description="OEE for a named shift ('1st Shift', '2nd Shift', '3rd Shift') or the whole day in plant time.",
    dependencies=[Depends(VIEW)],
)
async def calculate_shift_oee(
    work_center_id: UUID = Path(...),
    day: date = Query(..., alias="date"),
    shift_name: Optional[str] = Query(None),
    service: OEEService = Depends(get_service),
) -> OEEMetrics:
    return await service.calculate_shift_oee(work_center_id, day, shift_name)


# PUBLIC_INTERFACE
@router.get(
    "/work-centers/{work_center_id}/trend",
    response_model=List[OEETrendPoint],
    summary="OEE trend",
    dependencies=[Depends(VIEW)],
)
async def get_trend(
    work_center_id: UUID = Path(...),
    from_ts: datetime = Query(..., alias="from"),
    to_ts: datetime = Query(..., alias="to"),
    granularity: Grain = Query("daily"),
    service: OEEService = Depends(get_service),
) -> List[OEETrendPoint]:
    return await service.get_oee_trend(work_center_id, from_ts, to_ts, granularity)


# PUBLIC_INTERFACE
@router.get(
    "/cycle-time",
    response_model=CycleTimeInfo,
    summary="Ideal cycle time",
    description="Resolved ideal cycle time: equipment, then work center, then system default.",
    dependencies=[Depends(VIEW)],
)
async def get_cycle_time(
    service: OEEService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
    equipment_asset_id: Optional[UUID] = Query(None),
) -> CycleTimeInfo:
    return await service.get_ideal_cycle_time(work_center_id, equipment_asset_id)


# PUBLIC_INTERFACE
@router.put(
    "/cycle-time",
    response_model=CycleTimeInfo,
    summary="Set ideal cycle time",
    dependencies=[Depends(MANAGE)],
)
async def set_cycle_time(
    payload: SetCycleTimeRequest,
    service: OEEService = Depends(get_service),
) -> CycleTimeInfo:
    return await service.set_ideal_cycle_time(payload)


# PUBLIC_INTERFACE
@router.post(
    "/counts",
    response_model=ProductionCountRead,
    status_code=status.HTTP_201_CREATED,
    summary="Record production count",
    dependencies=[Depends(require_roles("admin", "oee:manage", "production:manage", "operator"))],
)
async def record_count(
    payload: ProductionCountCreate,
    service: OEEService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> ProductionCountRead:
    return ProductionCountRead.model_validate(await service.record_production_count(payload, user_id))


# PUBLIC_INTERFACE
@router.get(
    "/counts",
    response_model=List[ProductionCountRead],
    summary="List production counts",
    dependencies=[Depends(VIEW)],
)
async def list_counts(
    service: OEEService = Depends(get_service),
    work_center_id: UUID = Query(...),
    from_ts: datetime = Query(..., alias="from"),
    to_ts: datetime = Query(..., alias="to"),
) -> List[ProductionCountRead]:
    counts = await service.get_production_counts(work_center_id, from_ts, to_ts)
    return [ProductionCountRead.model_validate(c) for c in counts]


# PUBLIC_INTERFACE
@router.get(
    "/operation-runs/{run_id}/counts",
    response_model=List[ProductionCountRead],
    summary="Counts for an operation run",
    dependencies=[Depends(VIEW)],
)
async def list_counts_for_run(
    run_id: UUID = Path(...),
    service: OEEService = Depends(get_service),
) -> List[ProductionCountRead]:
    return [ProductionCountRead.model_validate(c) for c in await service.get_counts_by_operation_run(run_id)]


# PUBLIC_INTERFACE
@router.get(
    "/snapshots",
    response_model=List[OEESnapshotRead],
    summary="List OEE snapshots",
    dependencies=[Depends(VIEW)],
)
async def list_snapshots(
    service: OEEService = Depends(get_service),
    grain: Optional[Grain] = Query(None),
    scope_type: Optional[ScopeType] = Query(None),
    scope_id: Optional[UUID] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(500, ge=1, le=5000),
) -> List[OEESnapshotRead]:
    snapshots = await service.get_oee_snapshots(
        grain=grain, scope_type=scope_type, scope_id=scope_id, from_ts=from_ts, to_ts=to_ts, limit=limit
    )
    return [OEESnapshotRead.model_validate(s) for s in snapshots]


# PUBLIC_INTERFACE
@router.post(
    "/snapshots",
    response_model=OEESnapshotRead,
    summary="Save OEE snapshot",
    description="Compute OEE for the period and store it, replacing an existing snapshot for the same period.",
    dependencies=[Depends(MANAGE)],
)
async def save_snapshot(
    payload: SaveSnapshotRequest,
    service: OEEService = Depends(get_service),
) -> OEESnapshotRead:
    snapshot = await service.save_oee_snapshot(
        payload.work_center_id, payload.grain, payload.period_start, payload.period_end, payload.shift_name
    )
    return OEESnapshotRead.model_validate(snapshot)
