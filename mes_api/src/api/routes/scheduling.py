from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_user_id, get_tenant_id, get_tenant_session, require_roles
from src.schemas.common import MessageResponse
from src.schemas.scheduling import (
    OperationRunRead,
    ScheduleConflict,
    ScheduleCreate,
    ScheduleListItem,
    ScheduleReorder,
    ScheduleUpdate,
    ScheduleValidationResult,
    WorkCenterCapacity,
)
from src.services.scheduling import ProductionSchedulingService

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])

VIEW = require_roles("admin", "scheduling:view", "production:view")
MANAGE = require_roles("admin", "scheduling:manage")
OPERATE = require_roles("admin", "scheduling:manage", "production:manage", "operator", "technician")


# PUBLIC_INTERFACE
async def get_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
) -> ProductionSchedulingService:
    """Build the scheduling service for the request's tenant session."""
    return ProductionSchedulingService(session, tenant_id)


# PUBLIC_INTERFACE
@router.get(
    "/schedules",
    response_model=List[ScheduleListItem],
    summary="List schedules",
    description="Operation runs ordered by scheduled start; from_date/to_date are inclusive plant-local dates.",
    dependencies=[Depends(VIEW)],
)
async def list_schedules(
    service: ProductionSchedulingService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    production_order_id: Optional[UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(500, ge=1, le=2000),
    offset: int = Query(0, ge=0),
) -> List[ScheduleListItem]:
    return await service.list_schedules(
        work_center_id=work_center_id,
        status=status_filter,
        production_order_id=production_order_id,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset,
    )


# PUBLIC_INTERFACE
@router.post(
    "/schedules/validate",
    response_model=ScheduleValidationResult,
    summary="Validate schedule",
    description="Dry-run a schedule: returns conflicts and warnings without saving.",
    dependencies=[Depends(VIEW)],
)
async def validate_schedule(
    payload: ScheduleCreate,
    service: ProductionSchedulingService = Depends(get_service),
) -> ScheduleValidationResult:
    return await service.validate_schedule(payload)


# PUBLIC_INTERFACE
@router.get(
    "/conflicts",
    response_model=List[ScheduleConflict],
    summary="Detect conflicts",
    description="Overlapping runs on a work center for a proposed window.",
    dependencies=[Depends(VIEW)],
)
async def detect_conflicts(
    service: ProductionSchedulingService = Depends(get_service),
    work_center_id: UUID = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    exclude_id: Optional[UUID] = Query(None, description="Schedule being edited"),
) -> List[ScheduleConflict]:
    return await service.detect_conflicts(work_center_id, start, end, exclude_id)


# PUBLIC_INTERFACE
@router.post(
    "/schedules",
    response_model=OperationRunRead,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule order",
    dependencies=[Depends(MANAGE)],
)
async def schedule_order(
    payload: ScheduleCreate,
    service: ProductionSchedulingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> OperationRunRead:
    return OperationRunRead.model_validate(await service.schedule_order(payload, user_id))


# PUBLIC_INTERFACE
@router.patch(
    "/schedules/{run_id}",
    response_model=OperationRunRead,
    summary="Update schedule",
    dependencies=[Depends(MANAGE)],
)
async def update_schedule(
    payload: ScheduleUpdate,
    run_id: UUID = Path(...),
    service: ProductionSchedulingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> OperationRunRead:
    return OperationRunRead.model_validate(await service.update_schedule(run_id, payload, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/schedules/reorder",
    response_model=List[OperationRunRead],
    summary="Reorder schedules",
    description="Assign sequence numbers on a work center in the given order.",
    dependencies=[Depends(MANAGE)],
)
async def reorder_schedules(
    payload: ScheduleReorder,
    service: ProductionSchedulingService = Depends(get_service),
) -> List[OperationRunRead]:
    runs = await service.reorder_schedules(payload.work_center_id, payload.ordered_ids)
    return [OperationRunRead.model_validate(r) for r in runs]


# PUBLIC_INTERFACE
@router.delete(
    "/schedules/{run_id}",
    response_model=MessageResponse,
    summary="Delete schedule",
    dependencies=[Depends(MANAGE)],
)
async def delete_schedule(
    run_id: UUID = Path(...),
    service: ProductionSchedulingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> MessageResponse:
    await service.delete_schedule(run_id, user_id)
    return MessageResponse(message="Schedule deleted")


# PUBLIC_INTERFACE
@router.get(
    "/work-centers/{work_center_id}/timeline",
    response_model=List[OperationRunRead],
    summary="Work center timeline",
    dependencies=[Depends(VIEW)],
)
async def get_timeline(
    work_center_id: UUID = Path(...),
    from_ts: datetime = Query(..., alias="from"),
    to_ts: datetime = Query(..., alias="to"),
    service: ProductionSchedulingService = Depends(get_service),
) -> List[OperationRunRead]:
    runs = await service.get_work_center_timeline(work_center_id, from_ts, to_ts)
    return [OperationRunRead.model_validate(r) for r in runs]


# PUBLIC_INTERFACE
@router.get(
    "/capacity",
    response_model=List[WorkCenterCapacity],
    summary="Work center capacity",
    description="Scheduled versus available minutes per work center per day.",
    dependencies=[Depends(VIEW)],
)
async def get_capacity(
    service: ProductionSchedulingService = Depends(get_service),
    from_date: date = Query(...),
    to_date: date = Query(...),
    work_center_id: Optional[List[UUID]] = Query(None, description="Repeat for several centers; all active when omitted"),
) -> List[WorkCenterCapacity]:
    return await service.get_work_center_capacity(work_center_id, from_date, to_date)


# Operation execution

# PUBLIC_INTERFACE
@router.post(
    "/operations/{run_id}/start",
    response_model=OperationRunRead,
    summary="Start operation",
    dependencies=[Depends(OPERATE)],
)
async def start_operation(
    run_id: UUID = Path(...),
    service: ProductionSchedulingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> OperationRunRead:
    return OperationRunRead.model_validate(await service.start_operation(run_id, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/operations/{run_id}/pause",
    response_model=OperationRunRead,
    summary="Pause operation",
    dependencies=[Depends(OPERATE)],
)
async def pause_operation(
    run_id: UUID = Path(...),
    service: ProductionSchedulingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> OperationRunRead:
    return OperationRunRead.model_validate(await service.pause_operation(run_id, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/operations/{run_id}/complete",
    response_model=OperationRunRead,
    summary="Complete operation",
    dependencies=[Depends(OPERATE)],
)
async def complete_operation(
    run_id: UUID = Path(...),
    service: ProductionSchedulingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> OperationRunRead:
    return OperationRunRead.model_validate(await service.complete_operation(run_id, user_id))
