from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_user_id, get_tenant_id, get_tenant_session, require_roles
from src.schemas.downtime import (
    AutoDowntimeRequest,
    ClassifyRequest,
    DowntimeCategory,
    DowntimeLogEntry,
    DowntimeSummary,
    EndDowntimeRequest,
    ParetoItem,
    ReasonCodeCreate,
    ReasonCodeRead,
    ReasonCodeUpdate,
    ReasonGroup,
    StartDowntimeRequest,
)
from src.services.downtime import DowntimeService

router = APIRouter(prefix="/downtime", tags=["Downtime"])

VIEW = require_roles("admin", "downtime:view", "oee:view", "production:view")
MANAGE = require_roles("admin", "downtime:manage")
REPORT = require_roles("admin", "downtime:manage", "operator", "technician")


# PUBLIC_INTERFACE
async def get_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
) -> DowntimeService:
    """Build the downtime service for the request's tenant session."""
    return DowntimeService(session, tenant_id)


# Reason codes

# PUBLIC_INTERFACE
@router.get(
    "/reasons",
    response_model=List[ReasonCodeRead],
    summary="List reason codes",
    description="Reason codes ordered by display order then name.",
    dependencies=[Depends(VIEW)],
)
async def list_reasons(
    service: DowntimeService = Depends(get_service),
    include_inactive: bool = Query(False),
) -> List[ReasonCodeRead]:
    return [ReasonCodeRead.model_validate(r) for r in await service.get_reasons(active_only=not include_inactive)]


# PUBLIC_INTERFACE
@router.post(
    "/reasons",
    response_model=ReasonCodeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create reason code",
    dependencies=[Depends(MANAGE)],
)
async def create_reason(
    payload: ReasonCodeCreate,
    service: DowntimeService = Depends(get_service),
) -> ReasonCodeRead:
    return ReasonCodeRead.model_validate(await service.create_reason(payload))


# PUBLIC_INTERFACE
@router.patch(
    "/reasons/{reason_id}",
    response_model=ReasonCodeRead,
    summary="Update reason code",
    dependencies=[Depends(MANAGE)],
)
async def update_reason(
    payload: ReasonCodeUpdate,
    reason_id: UUID = Path(...),
    service: DowntimeService = Depends(get_service),
) -> ReasonCodeRead:
    return ReasonCodeRead.model_validate(await service.update_reason(reason_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/reasons/{reason_id}",
    response_model=ReasonCodeRead,
    summary="Deactivate reason code",
    dependencies=[Depends(MANAGE)],
)
async def deactivate_reason(
    reason_id: UUID = Path(...),
    service: DowntimeService = Depends(get_service),
) -> ReasonCodeRead:
    return ReasonCodeRead.model_validate(await service.deactivate_reason(reason_id))


# Events

# PUBLIC_INTERFACE
@router.get(
    "/events",
    response_model=List[DowntimeLogEntry],
    summary="List downtime events",
    description="Downtime log, newest first.",
    dependencies=[Depends(VIEW)],
)
async def list_events(
    service: DowntimeService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
    equipment_asset_id: Optional[UUID] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
    is_classified: Optional[bool] = Query(None),
    category: Optional[DowntimeCategory] = Query(None),
    reason_group: Optional[ReasonGroup] = Query(None),
    limit: int = Query(1000, ge=1, le=5000),
    offset: int = Query(0, ge=0),
) -> List[DowntimeLogEntry]:
    return await service.get_downtime_events(
        work_center_id=work_center_id,
        equipment_asset_id=equipment_asset_id,
        from_ts=from_ts,
        to_ts=to_ts,
        is_classified=is_classified,
        category=category,
        reason_group=reason_group,
        limit=limit,
        offset=offset,
    )


# PUBLIC_INTERFACE
@router.get(
    "/events/active",
    response_model=List[DowntimeLogEntry],
    summary="Active downtime",
    description="Downtime events that have not ended.",
    dependencies=[Depends(VIEW)],
)
async def list_active_events(
    service: DowntimeService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
) -> List[DowntimeLogEntry]:
    return await service.get_active_downtime_events(work_center_id)


# PUBLIC_INTERFACE
@router.post(
    "/events",
    response_model=DowntimeLogEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Start downtime",
    dependencies=[Depends(REPORT)],
)
async def start_downtime(
    payload: StartDowntimeRequest,
    service: DowntimeService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> DowntimeLogEntry:
    return await service.start_downtime(payload, user_id)


# PUBLIC_INTERFACE
@router.post(
    "/events/auto",
    response_model=DowntimeLogEntry,
    summary="Ingest equipment stop",
    description="Idempotent on external_event_id.",
    dependencies=[Depends(MANAGE)],
)
async def auto_create_downtime(
    payload: AutoDowntimeRequest,
    service: DowntimeService = Depends(get_service),
) -> DowntimeLogEntry:
    return await service.auto_create_downtime(payload)


# PUBLIC_INTERFACE
@router.post(
    "/state-events/{state_event_id}/end",
    response_model=DowntimeLogEntry,
    summary="End downtime",
    dependencies=[Depends(REPORT)],
)
async def end_downtime(
    payload: EndDowntimeRequest,
    state_event_id: UUID = Path(...),
    service: DowntimeService = Depends(get_service),
) -> DowntimeLogEntry:
    return await service.end_downtime(state_event_id, payload.end_ts)


# PUBLIC_INTERFACE
@router.post(
    "/events/{downtime_event_id}/classify",
    response_model=DowntimeLogEntry,
    summary="Classify downtime",
    dependencies=[Depends(REPORT)],
)
async def classify_downtime(
    payload: ClassifyRequest,
    downtime_event_id: UUID = Path(...),
    service: DowntimeService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> DowntimeLogEntry:
    return await service.classify_downtime(downtime_event_id, payload, user_id)


# Analysis

# PUBLIC_INTERFACE
@router.get(
    "/summary",
    response_model=DowntimeSummary,
    summary="Downtime summary",
    dependencies=[Depends(VIEW)],
)
async def get_summary(
    service: DowntimeService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
) -> DowntimeSummary:
    return await service.get_downtime_summary(work_center_id, from_ts, to_ts)


# PUBLIC_INTERFACE
@router.get(
    "/pareto",
    response_model=List[ParetoItem],
    summary="Downtime Pareto",
    description="Downtime duration by reason, category or group, largest first.",
    dependencies=[Depends(VIEW)],
)
async def get_pareto(
    service: DowntimeService = Depends(get_service),
    by: Literal["reason", "category", "group"] = Query("reason"),
    work_center_id: Optional[UUID] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
) -> List[ParetoItem]:
    if by == "category":
        return await service.get_pareto_by_category(work_center_id, from_ts, to_ts)
    if by == "group":
        return await service.get_pareto_by_group(work_center_id, from_ts, to_ts)
    return await service.get_pareto_by_reason(work_center_id, from_ts, to_ts)
