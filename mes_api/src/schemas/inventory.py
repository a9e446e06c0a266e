from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


ConsumptionMethod = Literal["scan", "manual", "backflush"]


class PartInventoryRead(BaseModel):
    """On-hand quantity of a part at a stock location."""
    id: UUID = Field(...)
    part_id: UUID = Field(...)
    stock_location_id: UUID = Field(...)
    quantity: float = Field(..., description="On-hand quantity")
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class InventoryAdjustment(BaseModel):
    """Stock administration adjustment; delta may be negative."""
    part_id: UUID = Field(...)
    location_id: UUID = Field(...)
    delta: float = Field(..., description="Signed quantity change")
    reason: Optional[str] = Field(None)


class SerializedPartRead(BaseModel):
    """Serialized part read model."""
    id: UUID = Field(...)
    part_id: UUID = Field(...)
    serial_number: str = Field(...)
    status: str = Field(..., description="in_stock/consumed/scrapped")
    current_location_id: Optional[UUID] = Field(None)
    lot_number: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class SerializedPartCreate(BaseModel):
    part_id: UUID = Field(...)
    serial_number: str = Field(..., min_length=1)
    current_location_id: Optional[UUID] = Field(None)
    lot_number: Optional[str] = Field(None)


class MaterialConsumptionRead(BaseModel):
    """Consumption log row. Reversals carry negative qty."""
    id: UUID = Field(...)
    production_order_id: UUID = Field(...)
    production_step_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)
    part_id: UUID = Field(...)
    bom_item_id: Optional[UUID] = Field(None)
    source_location_id: Optional[UUID] = Field(None)
    qty: float = Field(...)
    unit_cost: Optional[float] = Field(None)
    method: str = Field(...)
    is_reversal: bool = Field(...)
    reversal_of_id: Optional[UUID] = Field(None)
    reversal_reason: Optional[str] = Field(None)
    serialized_part_id: Optional[UUID] = Field(None)
    lot_number: Optional[str] = Field(None)
    idempotency_key: Optional[str] = Field(None)
    consumed_by: Optional[UUID] = Field(None)
    consumed_at: datetime = Field(...)

    class Config:
        from_attributes = True


class ConsumptionLogEntry(MaterialConsumptionRead):
    """Consumption row joined with part and location names."""
    part_number: Optional[str] = Field(None)
    part_name: Optional[str] = Field(None)
    location_name: Optional[str] = Field(None)


class ConsumeMaterialRequest(BaseModel):
    """Issue material to a production order."""
    production_order_id: UUID = Field(...)
    part_id: UUID = Field(...)
    source_location_id: UUID = Field(...)
    qty: float = Field(..., description="Quantity to consume; forced to 1 for serialized parts")
    production_step_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)
    bom_item_id: Optional[UUID] = Field(None)
    serialized_part_id: Optional[UUID] = Field(None)
    lot_number: Optional[str] = Field(None)
    unit_cost: Optional[float] = Field(None, ge=0)
    method: ConsumptionMethod = Field("manual")
    idempotency_key: Optional[str] = Field(None, description="Retries with the same key return the original row")


class ConsumeSerialRequest(BaseModel):
    production_order_id: UUID = Field(...)
    source_location_id: UUID = Field(...)
    production_step_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)
    bom_item_id: Optional[UUID] = Field(None)
    method: ConsumptionMethod = Field("scan")


class ReverseRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ConsumedItem(BaseModel):
    bom_item_id: UUID
    part_id: UUID
    part_name: Optional[str] = None
    qty_consumed: float
    consumption_id: UUID


class ConsumptionItemError(BaseModel):
    bom_item_id: UUID
    part_id: UUID
    part_name: Optional[str] = None
    error: str


class BomConsumptionResult(BaseModel):
    """Outcome of backflushing an order's BOM; success means no item failed."""
    success: bool = True
    consumed_items: List[ConsumedItem] = Field(default_factory=list)
    errors: List[ConsumptionItemError] = Field(default_factory=list)


class ReversalError(BaseModel):
    consumption_id: UUID
    error: str


class ReversalResult(BaseModel):
    success: bool = True
    reversed_count: int = 0
    errors: List[ReversalError] = Field(default_factory=list)


class ConsumptionSummary(BaseModel):
    """Per-part aggregate of an order's consumption log."""
    part_id: UUID
    part_number: Optional[str] = None
    part_name: Optional[str] = None
    total_consumed: float = 0
    total_reversed: float = 0
    net_consumed: float = 0
    total_cost: float = 0
    consumption_count: int = 0
    reversal_count: int = 0
    last_consumption_at: Optional[datetime] = None


class AvailableInventory(BaseModel):
    part_id: UUID
    location_id: UUID
    on_hand: float
    reserved: float
    available: float
