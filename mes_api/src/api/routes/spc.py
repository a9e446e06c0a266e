from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_user_id, get_tenant_id, get_tenant_session, require_roles
from src.schemas.spc import (
    AcknowledgeRequest,
    AddPointRequest,
    ControlChartData,
    SigmaLevelResult,
    SPCMeasurementRequest,
    SPCPointRead,
    SPCSubgroupRead,
    SubgroupCreate,
    ViolationRead,
)
from src.services.spc import SPCService, calculate_sigma_level

router = APIRouter(prefix="/spc", tags=["SPC"])

VIEW = require_roles("admin", "quality:view", "quality:manage", "production:view")
RECORD = require_roles("admin", "quality:manage", "quality", "operator")
MANAGE = require_roles("admin", "quality:manage")


# PUBLIC_INTERFACE
async def get_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
) -> SPCService:
    """Build the SPC service for the request's tenant session."""
    return SPCService(session, tenant_id)


# PUBLIC_INTERFACE
@router.get(
    "/characteristics/{characteristic_id}/subgroups",
    response_model=List[SPCSubgroupRead],
    summary="List subgroups",
    description="Subgroups in time order with their points.",
    dependencies=[Depends(VIEW)],
)
async def list_subgroups(
    characteristic_id: UUID = Path(...),
    service: SPCService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
    product_id: Optional[UUID] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
    limit: Optional[int] = Query(None, ge=1, le=5000),
) -> List[SPCSubgroupRead]:
    return await service.get_subgroups(
        characteristic_id,
        work_center_id=work_center_id,
        product_id=product_id,
        from_ts=from_ts,
        to_ts=to_ts,
        limit=limit,
    )


# PUBLIC_INTERFACE
@router.post(
    "/subgroups",
    response_model=SPCSubgroupRead,
    status_code=status.HTTP_201_CREATED,
    summary="Record subgroup",
    description="Store a subgroup, compute its statistics and check the Western Electric rules.",
    dependencies=[Depends(RECORD)],
)
async def create_subgroup(
    payload: SubgroupCreate,
    service: SPCService = Depends(get_service),
) -> SPCSubgroupRead:
    return await service.create_subgroup(payload)


# PUBLIC_INTERFACE
@router.post(
    "/subgroups/{subgroup_id}/points",
    response_model=SPCPointRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add point to subgroup",
    dependencies=[Depends(RECORD)],
)
async def add_point(
    payload: AddPointRequest,
    subgroup_id: UUID = Path(...),
    service: SPCService = Depends(get_service),
) -> SPCPointRead:
    point = await service.add_point_to_subgroup(subgroup_id, payload.value, payload.measurement_id)
    return SPCPointRead.model_validate(point)


# PUBLIC_INTERFACE
@router.post(
    "/subgroups/{subgroup_id}/detect",
    response_model=List[ViolationRead],
    summary="Re-run rule detection",
    dependencies=[Depends(MANAGE)],
)
async def detect_violations(
    subgroup_id: UUID = Path(...),
    service: SPCService = Depends(get_service),
) -> List[ViolationRead]:
    return [ViolationRead.model_validate(v) for v in await service.detect_violations_for_subgroup(subgroup_id)]


# PUBLIC_INTERFACE
@router.post(
    "/measurements",
    response_model=SPCSubgroupRead,
    status_code=status.HTTP_201_CREATED,
    summary="Feed measurement into SPC",
    description="Records a single inspection measurement as an n=1 subgroup.",
    dependencies=[Depends(RECORD)],
)
async def record_measurement(
    payload: SPCMeasurementRequest,
    service: SPCService = Depends(get_service),
) -> SPCSubgroupRead:
    return await service.record_measurement_for_spc(payload)


# PUBLIC_INTERFACE
@router.get(
    "/characteristics/{characteristic_id}/chart",
    response_model=ControlChartData,
    summary="Control chart data",
    description="X-bar/R chart with control limits, capability and violations.",
    dependencies=[Depends(VIEW)],
)
async def get_control_chart(
    characteristic_id: UUID = Path(...),
    service: SPCService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
    product_id: Optional[UUID] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
    min_subgroups: Optional[int] = Query(None, ge=2),
) -> ControlChartData:
    return await service.get_control_chart_data(
        characteristic_id,
        work_center_id=work_center_id,
        product_id=product_id,
        from_ts=from_ts,
        to_ts=to_ts,
        min_subgroups=min_subgroups,
    )


# PUBLIC_INTERFACE
@router.get(
    "/violations",
    response_model=List[ViolationRead],
    summary="List rule violations",
    dependencies=[Depends(VIEW)],
)
async def list_violations(
    service: SPCService = Depends(get_service),
    characteristic_id: Optional[UUID] = Query(None),
    acknowledged: Optional[bool] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
) -> List[ViolationRead]:
    violations = await service.get_violations(
        characteristic_id=characteristic_id, acknowledged=acknowledged, from_ts=from_ts, to_ts=to_ts
    )
    return [ViolationRead.model_validate(v) for v in violations]


# PUBLIC_INTERFACE
@router.post(
    "/violations/{violation_id}/acknowledge",
    response_model=ViolationRead,
    summary="Acknowledge violation",
    dependencies=[Depends(RECORD)],
)
async def acknowledge_violation(
    payload: AcknowledgeRequest,
    violation_id: UUID = Path(...),
    service: SPCService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> ViolationRead:
    return ViolationRead.model_validate(await service.acknowledge_violation(violation_id, user_id, payload.notes))


# PUBLIC_INTERFACE
@router.get(
    "/sigma-level",
    response_model=SigmaLevelResult,
    summary="Sigma level",
    description="DPMO, DPU and sigma level (with 1.5 shift) from defect counts.",
    dependencies=[Depends(VIEW)],
)
async def get_sigma_level(
    defects: float = Query(..., ge=0),
    opportunities: float = Query(...),
    units: float = Query(...),
) -> SigmaLevelResult:
    return calculate_sigma_level(defects, opportunities, units)
