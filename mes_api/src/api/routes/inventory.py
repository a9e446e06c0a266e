from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_user_id, get_tenant_id, get_tenant_session, require_roles
from src.schemas.inventory import (
    AvailableInventory,
    BomConsumptionResult,
    ConsumeMaterialRequest,
    ConsumeSerialRequest,
    ConsumptionLogEntry,
    ConsumptionSummary,
    InventoryAdjustment,
    MaterialConsumptionRead,
    PartInventoryRead,
    ReversalResult,
    ReverseRequest,
    SerializedPartCreate,
    SerializedPartRead,
)
from src.services.inventory import MESInventoryService

router = APIRouter(prefix="/inventory", tags=["Inventory"])

VIEW = require_roles("admin", "inventory:view", "production:view")
MANAGE = require_roles("admin", "inventory:manage")
CONSUME = require_roles("admin", "inventory:manage", "production:manage", "operator", "material_handler")


# PUBLIC_INTERFACE
async def get_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
) -> MESInventoryService:
    """Build the material consumption service for the request's tenant session."""
    return MESInventoryService(session, tenant_id)


# Consumption

# PUBLIC_INTERFACE
@router.post(
    "/consumptions",
    response_model=MaterialConsumptionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Consume material",
    description="Issue material from a stock location to a production order. Idempotent per idempotency_key.",
    dependencies=[Depends(CONSUME)],
)
async def consume_material(
    payload: ConsumeMaterialRequest,
    service: MESInventoryService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> MaterialConsumptionRead:
    return MaterialConsumptionRead.model_validate(await service.consume_material(payload, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/serials/{serial_id}/consume",
    response_model=MaterialConsumptionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Consume serialized part",
    dependencies=[Depends(CONSUME)],
)
async def consume_serialized_part(
    payload: ConsumeSerialRequest,
    serial_id: UUID = Path(...),
    service: MESInventoryService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> MaterialConsumptionRead:
    return MaterialConsumptionRead.model_validate(await service.consume_serialized_part(serial_id, payload, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/backflush",
    response_model=BomConsumptionResult,
    summary="Backflush order BOM",
    description="Consume every outstanding BOM line; failures are reported per line.",
    dependencies=[Depends(CONSUME)],
)
async def backflush_order(
    order_id: UUID = Path(...),
    service: MESInventoryService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> BomConsumptionResult:
    return await service.consume_bom_for_order(order_id, user_id)


# PUBLIC_INTERFACE
@router.post(
    "/consumptions/{consumption_id}/reverse",
    response_model=MaterialConsumptionRead,
    summary="Reverse consumption",
    dependencies=[Depends(MANAGE)],
)
async def reverse_consumption(
    payload: ReverseRequest,
    consumption_id: UUID = Path(...),
    service: MESInventoryService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> MaterialConsumptionRead:
    return MaterialConsumptionRead.model_validate(
        await service.reverse_consumption(consumption_id, payload.reason, user_id)
    )


# PUBLIC_INTERFACE
@router.post(
    "/orders/{order_id}/reverse",
    response_model=ReversalResult,
    summary="Reverse order consumptions",
    dependencies=[Depends(MANAGE)],
)
async def reverse_order_consumptions(
    payload: ReverseRequest,
    order_id: UUID = Path(...),
    service: MESInventoryService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> ReversalResult:
    return await service.reverse_order_consumptions(order_id, payload.reason, user_id)


# PUBLIC_INTERFACE
@router.get(
    "/orders/{order_id}/consumptions",
    response_model=List[ConsumptionLogEntry],
    summary="Consumption log",
    dependencies=[Depends(VIEW)],
)
async def get_consumption_log(
    order_id: UUID = Path(...),
    service: MESInventoryService = Depends(get_service),
) -> List[ConsumptionLogEntry]:
    return await service.get_consumption_log(order_id)


# PUBLIC_INTERFACE
@router.get(
    "/orders/{order_id}/consumption-summary",
    response_model=List[ConsumptionSummary],
    summary="Consumption summary",
    description="Per-part consumed, reversed and net quantities with cost.",
    dependencies=[Depends(VIEW)],
)
async def get_consumption_summary(
    order_id: UUID = Path(...),
    service: MESInventoryService = Depends(get_service),
) -> List[ConsumptionSummary]:
    return await service.get_consumption_summary(order_id)


# Stock

# PUBLIC_INTERFACE
@router.get(
    "/available",
    response_model=AvailableInventory,
    summary="Available inventory",
    description="On hand minus quantity reserved by allocated, unconsumed BOM lines.",
    dependencies=[Depends(VIEW)],
)
async def get_available_inventory(
    service: MESInventoryService = Depends(get_service),
    part_id: UUID = Query(...),
    location_id: UUID = Query(...),
) -> AvailableInventory:
    return await service.get_available_inventory(part_id, location_id)


# PUBLIC_INTERFACE
@router.get(
    "/stock",
    response_model=List[PartInventoryRead],
    summary="List stock",
    dependencies=[Depends(VIEW)],
)
async def list_stock(
    service: MESInventoryService = Depends(get_service),
    part_id: Optional[UUID] = Query(None),
    location_id: Optional[UUID] = Query(None),
) -> List[PartInventoryRead]:
    return [PartInventoryRead.model_validate(x) for x in await service.list_part_inventory(part_id, location_id)]


# PUBLIC_INTERFACE
@router.post(
    "/stock/adjust",
    response_model=PartInventoryRead,
    summary="Adjust stock",
    dependencies=[Depends(MANAGE)],
)
async def adjust_stock(
    payload: InventoryAdjustment,
    service: MESInventoryService = Depends(get_service),
) -> PartInventoryRead:
    inventory = await service.adjust_inventory(payload.part_id, payload.location_id, payload.delta, payload.reason)
    return PartInventoryRead.model_validate(inventory)


# Serialized parts

# PUBLIC_INTERFACE
@router.get(
    "/serials",
    response_model=List[SerializedPartRead],
    summary="List serialized parts",
    dependencies=[Depends(VIEW)],
)
async def list_serials(
    service: MESInventoryService = Depends(get_service),
    part_id: Optional[UUID] = Query(None),
    location_id: Optional[UUID] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
) -> List[SerializedPartRead]:
    serials = await service.list_serialized_parts(part_id, location_id, status_filter)
    return [SerializedPartRead.model_validate(s) for s in serials]


# PUBLIC_INTERFACE
@router.get(
    "/serials/available",
    response_model=List[SerializedPartRead],
    summary="Serials available for consumption",
    dependencies=[Depends(VIEW)],
)
async def list_available_serials(
    service: MESInventoryService = Depends(get_service),
    part_id: UUID = Query(...),
    location_id: UUID = Query(...),
) -> List[SerializedPartRead]:
    serials = await service.get_serialized_parts_for_consumption(part_id, location_id)
    return [SerializedPartRead.model_validate(s) for s in serials]


# PUBLIC_INTERFACE
@router.post(
    "/serials",
    response_model=SerializedPartRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register serialized part",
    dependencies=[Depends(MANAGE)],
)
async def create_serial(
    payload: SerializedPartCreate,
    service: MESInventoryService = Depends(get_service),
) -> SerializedPartRead:
    return SerializedPartRead.model_validate(await service.create_serialized_part(payload))
