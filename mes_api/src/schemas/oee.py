from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


Grain = Literal["hourly", "shift", "daily"]
ScopeType = Literal["work_center", "equipment", "line", "plant", "site"]


class OEEMetrics(BaseModel):
    """Availability x Performance x Quality for a scope and period."""
    planned_production_time_seconds: float = 0
    actual_run_time_seconds: float = 0
    downtime_seconds: float = 0
    planned_downtime_seconds: float = 0
    unplanned_downtime_seconds: float = 0
    total_count: float = 0
    good_count: float = 0
    scrap_count: float = 0
    rework_count: float = 0
    ideal_cycle_time_seconds: Optional[float] = None
    actual_cycle_time_seconds: Optional[float] = None
    availability: float = Field(0, ge=0, le=1)
    performance: float = Field(0, ge=0, le=1)
    quality: float = Field(0, ge=0, le=1)
    oee: float = Field(0, ge=0, le=1)
    availability_pct: float = 0
    performance_pct: float = 0
    quality_pct: float = 0
    oee_pct: float = 0
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    scope_type: str = "work_center"
    scope_id: Optional[UUID] = None
    scope_name: Optional[str] = None


class OEETrendPoint(BaseModel):
    period_start: datetime
    period_end: datetime
    shift_name: Optional[str] = None
    availability_pct: float = 0
    performance_pct: float = 0
    quality_pct: float = 0
    oee_pct: float = 0
    total_count: float = 0
    good_count: float = 0
    downtime_minutes: float = 0


class CycleTimeInfo(BaseModel):
    cycle_time_seconds: float
    source: Literal["equipment", "work_center", "default"]
    source_id: Optional[UUID] = None
    source_name: Optional[str] = None


class SetCycleTimeRequest(BaseModel):
    """Set the ideal cycle time on equipment (preferred) or a work center."""
    cycle_time_seconds: float = Field(..., gt=0)
    equipment_asset_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)


class ProductionCountRead(BaseModel):
    """Production count read model."""
    id: UUID = Field(...)
    operation_run_id: Optional[UUID] = Field(None)
    production_order_id: Optional[UUID] = Field(None)
    work_center_id: UUID = Field(...)
    equipment_asset_id: Optional[UUID] = Field(None)
    count_timestamp: datetime = Field(...)
    total_qty: float = Field(...)
    good_qty: float = Field(...)
    scrap_qty: float = Field(...)
    rework_qty: float = Field(...)
    scrap_reason_code_id: Optional[UUID] = Field(None)
    rework_reason_code_id: Optional[UUID] = Field(None)
    recorded_by: Optional[UUID] = Field(None)
    notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)

    class Config:
        from_attributes = True


class ProductionCountCreate(BaseModel):
    """Report produced quantities; total must equal good + scrap + rework."""
    operation_run_id: Optional[UUID] = Field(None)
    production_order_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None, description="Defaults from the operation run")
    equipment_asset_id: Optional[UUID] = Field(None)
    count_timestamp: Optional[datetime] = Field(None)
    total_qty: float = Field(..., ge=0)
    good_qty: float = Field(0, ge=0)
    scrap_qty: float = Field(0, ge=0)
    rework_qty: float = Field(0, ge=0)
    scrap_reason_code_id: Optional[UUID] = Field(None)
    rework_reason_code_id: Optional[UUID] = Field(None)
    notes: Optional[str] = Field(None)


class OEESnapshotRead(BaseModel):
    """Stored OEE snapshot."""
    id: UUID = Field(...)
    grain: str = Field(...)
    scope_type: str = Field(...)
    scope_id: UUID = Field(...)
    period_start: datetime = Field(...)
    period_end: datetime = Field(...)
    shift_name: Optional[str] = Field(None)
    planned_production_time_seconds: float = Field(...)
    actual_run_time_seconds: float = Field(...)
    downtime_seconds: float = Field(...)
    total_count: float = Field(...)
    good_count: float = Field(...)
    scrap_count: float = Field(...)
    rework_count: float = Field(...)
    ideal_cycle_time_seconds: Optional[float] = Field(None)
    availability_pct: float = Field(...)
    performance_pct: float = Field(...)
    quality_pct: float = Field(...)
    oee_pct: float = Field(...)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class SaveSnapshotRequest(BaseModel):
    work_center_id: UUID = Field(...)
    grain: Grain = Field("daily")
    period_start: datetime = Field(...)
    period_end: datetime = Field(...)
    shift_name: Optional[str] = Field(None)
