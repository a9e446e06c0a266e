from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.schemas.inventory import BomConsumptionResult


OrderStatus = Literal["queued", "in_progress", "hold", "complete"]
StepStatus = Literal["pending", "in_progress", "complete", "skipped"]
MoveStatus = Literal["requested", "in_transit", "delivered", "cancelled"]


class ProductionOrderRead(BaseModel):
    """Production order read model."""
    id: UUID = Field(..., description="Production order id")
    order_number: str = Field(..., description="Order number, PO-YY-NNNNN")
    title: str = Field(...)
    description: Optional[str] = Field(None)
    status: str = Field(..., description="queued/in_progress/hold/complete")
    priority: int = Field(..., description="1 (highest) .. 5 (lowest)")
    ticket_id: Optional[UUID] = Field(None)
    project_id: Optional[UUID] = Field(None)
    customer_id: Optional[UUID] = Field(None)
    scheduled_start: Optional[datetime] = Field(None)
    scheduled_end: Optional[datetime] = Field(None)
    actual_start: Optional[datetime] = Field(None)
    actual_end: Optional[datetime] = Field(None)
    quantity_ordered: float = Field(...)
    quantity_completed: float = Field(...)
    assigned_to: Optional[UUID] = Field(None)
    hold_reason: Optional[str] = Field(None)
    notes: Optional[str] = Field(None)
    created_by: Optional[UUID] = Field(None)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")

    class Config:
        from_attributes = True


class ProductionOrderCreate(BaseModel):
    """Create production order payload. The order number is assigned by the server."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    priority: int = Field(3, ge=1, le=5)
    ticket_id: Optional[UUID] = Field(None)
    project_id: Optional[UUID] = Field(None)
    customer_id: Optional[UUID] = Field(None)
    scheduled_start: Optional[datetime] = Field(None)
    scheduled_end: Optional[datetime] = Field(None)
    quantity_ordered: float = Field(1, gt=0)
    assigned_to: Optional[UUID] = Field(None)
    notes: Optional[str] = Field(None)


class ProductionOrderUpdate(BaseModel):
    """Partial update of a production order (status changes use dedicated endpoints)."""
    title: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    priority: Optional[int] = Field(None, ge=1, le=5)
    customer_id: Optional[UUID] = Field(None)
    scheduled_start: Optional[datetime] = Field(None)
    scheduled_end: Optional[datetime] = Field(None)
    quantity_ordered: Optional[float] = Field(None, gt=0)
    assigned_to: Optional[UUID] = Field(None)
    notes: Optional[str] = Field(None)


class DashboardFilters(BaseModel):
    """Server-side filters for the production dashboard."""
    status: Optional[str] = Field(None, description="Order status or 'all'")
    priority: Optional[int] = Field(None, ge=1, le=5)
    customer_id: Optional[UUID] = Field(None)
    assigned_to: Optional[UUID] = Field(None)
    search: Optional[str] = Field(None, description="Case-insensitive match on order number or title")


class DashboardOrder(ProductionOrderRead):
    """Production order with routing progress for dashboard lists."""
    total_steps: int = Field(0)
    completed_steps: int = Field(0)
    current_work_center_id: Optional[UUID] = Field(None)
    current_work_center_name: Optional[str] = Field(None)


class StatusCounts(BaseModel):
    queued: int = 0
    in_progress: int = 0
    hold: int = 0
    complete: int = 0


class ProductionStats(BaseModel):
    """Aggregate production statistics."""
    total: int = Field(...)
    by_status: StatusCounts = Field(...)
    today_completed: int = Field(...)
    avg_cycle_time_hours: Optional[float] = Field(None, description="Mean actual_end - actual_start of complete orders")


class HoldRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the order is put on hold")


class CompleteOrderRequest(BaseModel):
    quantity_completed: Optional[float] = Field(None, ge=0)


class CompleteOrderResult(BaseModel):
    """Result of completing an order, including the BOM backflush outcome."""
    order: ProductionOrderRead
    consumption: BomConsumptionResult


class ProductionStepRead(BaseModel):
    """Production step read model."""
    id: UUID = Field(...)
    production_order_id: UUID = Field(...)
    step_number: int = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    status: str = Field(...)
    estimated_minutes: Optional[int] = Field(None)
    actual_minutes: Optional[int] = Field(None)
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)
    completed_by: Optional[UUID] = Field(None)
    notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class ProductionStepCreate(BaseModel):
    """Add a step to an order; step_number is assigned as max + 1."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    estimated_minutes: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None)


class StepStatusUpdate(BaseModel):
    status: StepStatus = Field(...)


class BomItemRead(BaseModel):
    """BOM item read model."""
    id: UUID = Field(...)
    production_order_id: UUID = Field(...)
    part_id: UUID = Field(...)
    quantity_required: float = Field(...)
    quantity_allocated: float = Field(...)
    quantity_consumed: float = Field(...)
    source_location_id: Optional[UUID] = Field(None)
    unit_cost: Optional[float] = Field(None)
    is_allocated: bool = Field(...)
    is_consumed: bool = Field(...)
    notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class BomItemCreate(BaseModel):
    part_id: UUID = Field(...)
    quantity_required: float = Field(1, gt=0)
    source_location_id: Optional[UUID] = Field(None)
    unit_cost: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None)


class BomAllocateRequest(BaseModel):
    location_id: UUID = Field(..., description="Stock location to allocate from")
    quantity: float = Field(..., gt=0)


class TimeLogRead(BaseModel):
    """Time log read model."""
    id: UUID = Field(...)
    production_order_id: UUID = Field(...)
    production_step_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    technician_id: UUID = Field(...)
    clock_in: datetime = Field(...)
    clock_out: Optional[datetime] = Field(None)
    duration_minutes: Optional[float] = Field(None)
    notes: Optional[str] = Field(None)

    class Config:
        from_attributes = True


class ClockInRequest(BaseModel):
    production_step_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)


class ClockOutRequest(BaseModel):
    notes: Optional[str] = Field(None)


class MaterialMoveRead(BaseModel):
    """Material move request read model."""
    id: UUID = Field(...)
    production_order_id: Optional[UUID] = Field(None)
    from_location_id: Optional[UUID] = Field(None)
    to_work_center_id: Optional[UUID] = Field(None)
    to_location_id: Optional[UUID] = Field(None)
    part_id: Optional[UUID] = Field(None)
    quantity: float = Field(...)
    status: str = Field(...)
    priority: int = Field(...)
    requested_by: Optional[UUID] = Field(None)
    assigned_to: Optional[UUID] = Field(None)
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)
    notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class MaterialMoveCreate(BaseModel):
    production_order_id: Optional[UUID] = Field(None)
    from_location_id: Optional[UUID] = Field(None)
    to_work_center_id: Optional[UUID] = Field(None)
    to_location_id: Optional[UUID] = Field(None)
    part_id: Optional[UUID] = Field(None)
    quantity: float = Field(1, gt=0)
    priority: int = Field(3, ge=1, le=5)
    notes: Optional[str] = Field(None)


class MoveAssignRequest(BaseModel):
    assignee_id: UUID = Field(...)


class MoveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None)


class OrderDetail(BaseModel):
    """Order with steps, BOM, time logs and material moves."""
    order: ProductionOrderRead
    steps: List[ProductionStepRead] = Field(default_factory=list)
    bom: List[BomItemRead] = Field(default_factory=list)
    time_logs: List[TimeLogRead] = Field(default_factory=list)
    material_moves: List[MaterialMoveRead] = Field(default_factory=list)


class WorkCenterQueueItem(BaseModel):
    """Order waiting at (or running on) a work center."""
    order_id: UUID
    order_number: str
    title: str
    status: str
    priority: int
    scheduled_start: Optional[datetime] = None
    step_id: UUID
    step_number: int
    step_name: str
    step_status: str
    work_center_id: Optional[UUID] = None


class WorkCenterQueue(BaseModel):
    work_center_id: Optional[UUID] = None
    items: List[WorkCenterQueueItem] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
