from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_user_id, get_tenant_id, get_tenant_session, require_roles
from src.schemas.common import MessageResponse
from src.schemas.production import (
    BomAllocateRequest,
    BomItemCreate,
    BomItemRead,
    ClockInRequest,
    ClockOutRequest,
    CompleteOrderRequest,
    CompleteOrderResult,
    DashboardFilters,
    DashboardOrder,
    HoldRequest,
    MaterialMoveCreate,
    MaterialMoveRead,
    MoveAssignRequest,
    MoveCancelRequest,
    OrderDetail,
    ProductionOrderCreate,
    ProductionOrderRead,
    ProductionOrderUpdate,
    ProductionStats,
    ProductionStepCreate,
    ProductionStepRead,
    StepStatusUpdate,
    TimeLogRead,
    WorkCenterQueue,
)
from src.services.manufacturing import ManufacturingService

router = APIRouter(prefix="/production", tags=["Production"])

VIEW = require_roles("admin", "production:view")
MANAGE = require_roles("admin", "production:manage")


# PUBLIC_INTERFACE
async def get_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
) -> ManufacturingService:
    """Build the manufacturing service for the request's tenant session."""
    return ManufacturingService(session, tenant_id)


# Orders

# PUBLIC_INTERFACE
@router.get(
    "/orders",
    response_model=List[DashboardOrder],
    summary="Production dashboard",
    description="List production orders ordered by priority then scheduled start, with step progress.",
    dependencies=[Depends(VIEW)],
)
async def list_orders(
    service: ManufacturingService = Depends(get_service),
    status_filter: Optional[str] = Query(None, alias="status", description="Order status or 'all'"),
    priority: Optional[int] = Query(None, ge=1, le=5),
    customer_id: Optional[UUID] = Query(None),
    assigned_to: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None, description="Order number or title (case-insensitive)"),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[DashboardOrder]:
    filters = DashboardFilters(
        status=status_filter, priority=priority, customer_id=customer_id, assigned_to=assigned_to, search=search
    )
    return await service.get_dashboard(filters, limit=limit, offset=offset)


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=ProductionStats,
    summary="Production statistics",
    description="Order counts by status, orders completed today and average cycle time.",
    dependencies=[Depends(VIEW)],
)
async def get_stats(service: ManufacturingService = Depends(get_service)) -> ProductionStats:
    return await service.get_stats()


# PUBLIC_INTERFACE
@router.post(
    "/orders",
    response_model=ProductionOrderRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create production order",
    description="Create an order; the next PO-YY-NNNNN number is assigned.",
    dependencies=[Depends(MANAGE)],
)
async def create_order(
    payload: ProductionOrderCreate,
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> ProductionOrderRead:
    order = await service.create_order(payload, created_by=user_id)
    return ProductionOrderRead.model_validate(order)


# PUBLIC_INTERFACE
@router.get(
    "/orders/{order_id}",
    response_model=OrderDetail,
    summary="Get production order",
    description="Order with steps, BOM, time logs and material moves.",
    dependencies=[Depends(VIEW)],
)
async def get_order(
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> OrderDetail:
    return await service.get_order_detail(order_id)


# PUBLIC_INTERFACE
@router.patch(
    "/orders/{order_id}",
    response_model=ProductionOrderRead,
    summary="Update production order",
    dependencies=[Depends(MANAGE)],
)
async def update_order(
    payload: ProductionOrderUpdate,
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> ProductionOrderRead:
    return ProductionOrderRead.model_validate(await service.update_order(order_id, payload))


# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/hold",
    response_model=ProductionOrderRead,
    summary="Put order on hold",
    dependencies=[Depends(MANAGE)],
)
async def hold_order(
    payload: HoldRequest,
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> ProductionOrderRead:
    return ProductionOrderRead.model_validate(await service.put_on_hold(order_id, payload.reason))


# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/resume",
    response_model=ProductionOrderRead,
    summary="Resume order",
    dependencies=[Depends(MANAGE)],
)
async def resume_order(
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> ProductionOrderRead:
    return ProductionOrderRead.model_validate(await service.resume_order(order_id))


# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/complete",
    response_model=CompleteOrderResult,
    summary="Complete order",
    description="Backflush outstanding BOM lines and mark the order complete.",
    dependencies=[Depends(MANAGE)],
)
async def complete_order(
    payload: CompleteOrderRequest,
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> CompleteOrderResult:
    return await service.complete_order(order_id, user_id, payload.quantity_completed)


# Steps

# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/steps",
    response_model=ProductionStepRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add routing step",
    dependencies=[Depends(MANAGE)],
)
async def add_step(
    payload: ProductionStepCreate,
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> ProductionStepRead:
    return ProductionStepRead.model_validate(await service.add_step(order_id, payload))


# PUBLIC_INTERFACE
@router.post(
    "/steps/{step_id}/status",
    response_model=ProductionStepRead,
    summary="Change step status",
    dependencies=[Depends(require_roles("admin", "production:manage", "operator", "technician"))],
)
async def update_step_status(
    payload: StepStatusUpdate,
    step_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> ProductionStepRead:
    return ProductionStepRead.model_validate(await service.update_step_status(step_id, payload.status, user_id))


# PUBLIC_INTERFACE
@router.delete(
    "/steps/{step_id}",
    response_model=MessageResponse,
    summary="Delete step",
    dependencies=[Depends(MANAGE)],
)
async def delete_step(
    step_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> MessageResponse:
    await service.delete_step(step_id)
    return MessageResponse(message="Step deleted")


# BOM

# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/bom",
    response_model=BomItemRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add BOM item",
    dependencies=[Depends(MANAGE)],
)
async def add_bom_item(
    payload: BomItemCreate,
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> BomItemRead:
    return BomItemRead.model_validate(await service.add_bom_item(order_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/bom/{item_id}",
    response_model=MessageResponse,
    summary="Remove BOM item",
    dependencies=[Depends(MANAGE)],
)
async def remove_bom_item(
    item_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> MessageResponse:
    await service.remove_bom_item(item_id)
    return MessageResponse(message="BOM item removed")


# PUBLIC_INTERFACE
@router.post(
    "/bom/{item_id}/allocate",
    response_model=BomItemRead,
    summary="Allocate BOM item",
    description="Reserve stock at a location for a BOM item.",
    dependencies=[Depends(require_roles("admin", "production:manage", "inventory:manage"))],
)
async def allocate_bom_item(
    payload: BomAllocateRequest,
    item_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> BomItemRead:
    item = await service.allocate_bom_item(item_id, payload.location_id, payload.quantity)
    return BomItemRead.model_validate(item)


# Time logs

# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/clock-in",
    response_model=TimeLogRead,
    status_code=status.HTTP_201_CREATED,
    summary="Clock in",
    description="Start a time log for the current user on an order.",
    dependencies=[Depends(require_roles("admin", "production:manage", "operator", "technician"))],
)
async def clock_in(
    payload: ClockInRequest,
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> TimeLogRead:
    log = await service.clock_in(order_id, user_id, payload.production_step_id, payload.work_center_id)
    return TimeLogRead.model_validate(log)


# PUBLIC_INTERFACE
@router.post(
    "/time-logs/{time_log_id}/clock-out",
    response_model=TimeLogRead,
    summary="Clock out",
    dependencies=[Depends(require_roles("admin", "production:manage", "operator", "technician"))],
)
async def clock_out(
    payload: ClockOutRequest,
    time_log_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> TimeLogRead:
    return TimeLogRead.model_validate(await service.clock_out(time_log_id, payload.notes))


# PUBLIC_INTERFACE
@router.get(
    "/orders/{order_id}/active-time-log",
    response_model=Optional[TimeLogRead],
    summary="Active time log",
    description="The current user's open time log on the order, or null.",
    dependencies=[Depends(VIEW)],
)
async def get_active_time_log(
    order_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> Optional[TimeLogRead]:
    log = await service.get_active_time_log(order_id, user_id)
    return TimeLogRead.model_validate(log) if log is not None else None


# Material moves

# PUBLIC_INTERFACE
@router.get(
    "/moves",
    response_model=List[MaterialMoveRead],
    summary="Material move queue",
    description="Move requests ordered by priority then age.",
    dependencies=[Depends(require_roles("admin", "production:view", "inventory:view", "material_handler"))],
)
async def list_moves(
    service: ManufacturingService = Depends(get_service),
    status_filter: Optional[str] = Query(None, alias="status", description="Move status or 'all'"),
    assigned_to: Optional[UUID] = Query(None),
    work_center_id: Optional[UUID] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[MaterialMoveRead]:
    moves = await service.get_move_queue(status_filter, assigned_to, work_center_id, limit=limit, offset=offset)
    return [MaterialMoveRead.model_validate(m) for m in moves]


# PUBLIC_INTERFACE
@router.post(
    "/moves",
    response_model=MaterialMoveRead,
    status_code=status.HTTP_201_CREATED,
    summary="Request material move",
    dependencies=[Depends(require_roles("admin", "production:manage", "operator", "technician"))],
)
async def request_move(
    payload: MaterialMoveCreate,
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> MaterialMoveRead:
    return MaterialMoveRead.model_validate(await service.request_material_move(payload, user_id))


MOVE_HANDLERS = require_roles("admin", "inventory:manage", "material_handler")


# PUBLIC_INTERFACE
@router.post(
    "/moves/{move_id}/assign",
    response_model=MaterialMoveRead,
    summary="Assign move",
    dependencies=[Depends(MOVE_HANDLERS)],
)
async def assign_move(
    payload: MoveAssignRequest,
    move_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> MaterialMoveRead:
    return MaterialMoveRead.model_validate(await service.assign_move(move_id, payload.assignee_id))


# PUBLIC_INTERFACE
@router.post(
    "/moves/{move_id}/start",
    response_model=MaterialMoveRead,
    summary="Start move",
    dependencies=[Depends(MOVE_HANDLERS)],
)
async def start_move(
    move_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> MaterialMoveRead:
    return MaterialMoveRead.model_validate(await service.start_move(move_id, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/moves/{move_id}/claim",
    response_model=MaterialMoveRead,
    summary="Claim move",
    description="Take an unassigned request and start it.",
    dependencies=[Depends(MOVE_HANDLERS)],
)
async def claim_move(
    move_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> MaterialMoveRead:
    return MaterialMoveRead.model_validate(await service.claim_move(move_id, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/moves/{move_id}/complete",
    response_model=MaterialMoveRead,
    summary="Complete move",
    dependencies=[Depends(MOVE_HANDLERS)],
)
async def complete_move(
    move_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> MaterialMoveRead:
    return MaterialMoveRead.model_validate(await service.complete_move(move_id))


# PUBLIC_INTERFACE
@router.post(
    "/moves/{move_id}/cancel",
    response_model=MaterialMoveRead,
    summary="Cancel move",
    dependencies=[Depends(require_roles("admin", "production:manage", "inventory:manage", "material_handler"))],
)
async def cancel_move(
    payload: MoveCancelRequest,
    move_id: UUID = Path(...),
    service: ManufacturingService = Depends(get_service),
) -> MaterialMoveRead:
    return MaterialMoveRead.model_validate(await service.cancel_move(move_id, payload.reason))


# Work center queue

# PUBLIC_INTERFACE
@router.get(
    "/work-centers/queue",
    response_model=WorkCenterQueue,
    summary="Work center queue",
    description="Open orders routed to each work center with their current step.",
    dependencies=[Depends(VIEW)],
)
async def get_work_center_queue(
    service: ManufacturingService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None, description="Restrict to one work center"),
) -> WorkCenterQueue:
    return await service.get_work_center_queue(work_center_id)
