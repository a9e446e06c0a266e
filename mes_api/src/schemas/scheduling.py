from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


RunStatus = Literal["NOT_STARTED", "RUNNING", "PAUSED", "COMPLETED"]
ConflictType = Literal["overlap", "capacity", "resource"]


class OperationRunRead(BaseModel):
    """Scheduled operation run (schedule row)."""
    id: UUID = Field(...)
    production_order_id: UUID = Field(...)
    production_step_id: Optional[UUID] = Field(None)
    work_center_id: UUID = Field(...)
    equipment_asset_id: Optional[UUID] = Field(None)
    status: str = Field(..., description="NOT_STARTED/RUNNING/PAUSED/COMPLETED")
    scheduled_start_ts: Optional[datetime] = Field(None)
    scheduled_end_ts: Optional[datetime] = Field(None)
    start_ts: Optional[datetime] = Field(None)
    end_ts: Optional[datetime] = Field(None)
    sequence_number: Optional[int] = Field(None)
    started_by: Optional[UUID] = Field(None)
    completed_by: Optional[UUID] = Field(None)
    notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class ScheduleListItem(OperationRunRead):
    """Schedule row joined with its order and work center."""
    order_number: Optional[str] = Field(None)
    order_title: Optional[str] = Field(None)
    order_priority: Optional[int] = Field(None)
    work_center_name: Optional[str] = Field(None)
    work_center_code: Optional[str] = Field(None)


class ScheduleCreate(BaseModel):
    """Schedule an order (optionally one of its steps) on a work center."""
    production_order_id: UUID = Field(...)
    work_center_id: UUID = Field(...)
    production_step_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    scheduled_start_ts: datetime = Field(...)
    scheduled_end_ts: Optional[datetime] = Field(None, description="Defaults to start + the default schedule duration")
    sequence_number: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None)


class ScheduleUpdate(BaseModel):
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    scheduled_start_ts: Optional[datetime] = Field(None)
    scheduled_end_ts: Optional[datetime] = Field(None)
    sequence_number: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None)


class ScheduleReorder(BaseModel):
    work_center_id: UUID = Field(...)
    ordered_ids: List[UUID] = Field(..., description="Schedule ids in their new order")


class ScheduleConflict(BaseModel):
    type: ConflictType
    message: str
    conflicting_schedule_id: Optional[UUID] = None
    conflicting_order_number: Optional[str] = None
    start_ts: Optional[datetime] = None
    end_ts: Optional[datetime] = None


class ScheduleValidationResult(BaseModel):
    valid: bool = True
    conflicts: List[ScheduleConflict] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class WorkCenterCapacity(BaseModel):
    """Capacity of one work center on one calendar day."""
    work_center_id: UUID
    work_center_name: str
    work_center_code: str
    date: date
    total_capacity_minutes: int
    scheduled_minutes: int
    available_minutes: int
    utilization_percent: int
