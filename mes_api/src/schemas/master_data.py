from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


WorkCenterType = Literal["fabrication", "assembly", "testing", "finishing", "packaging", "general"]


class WorkCenterRead(BaseModel):
    """Work center read model."""
    id: UUID = Field(..., description="Work center id")
    code: str = Field(..., description="Unique work center code")
    name: str = Field(..., description="Display name")
    center_type: str = Field(..., description="fabrication/assembly/testing/finishing/packaging/general")
    description: Optional[str] = Field(None)
    capacity_per_hour: Optional[float] = Field(None)
    is_active: bool = Field(...)
    default_technician_id: Optional[UUID] = Field(None)
    location_notes: Optional[str] = Field(None)
    ideal_cycle_time_seconds: Optional[float] = Field(None)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")

    class Config:
        from_attributes = True


class WorkCenterCreate(BaseModel):
    """Create work center payload."""
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    center_type: WorkCenterType = Field("general")
    description: Optional[str] = Field(None)
    capacity_per_hour: Optional[float] = Field(None, ge=0)
    is_active: bool = Field(True)
    default_technician_id: Optional[UUID] = Field(None)
    location_notes: Optional[str] = Field(None)
    ideal_cycle_time_seconds: Optional[float] = Field(None, gt=0)


class WorkCenterUpdate(BaseModel):
    """Partial update of a work center."""
    name: Optional[str] = Field(None)
    center_type: Optional[WorkCenterType] = Field(None)
    description: Optional[str] = Field(None)
    capacity_per_hour: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = Field(None)
    default_technician_id: Optional[UUID] = Field(None)
    location_notes: Optional[str] = Field(None)
    ideal_cycle_time_seconds: Optional[float] = Field(None, gt=0)


class EquipmentAssetRead(BaseModel):
    """Equipment asset read model."""
    id: UUID = Field(...)
    work_center_id: Optional[UUID] = Field(None)
    asset_code: str = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    manufacturer: Optional[str] = Field(None)
    model: Optional[str] = Field(None)
    serial_number: Optional[str] = Field(None)
    ideal_cycle_time_seconds: Optional[float] = Field(None)
    is_active: bool = Field(...)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class EquipmentAssetCreate(BaseModel):
    """Create equipment asset payload."""
    work_center_id: Optional[UUID] = Field(None)
    asset_code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    manufacturer: Optional[str] = Field(None)
    model: Optional[str] = Field(None)
    serial_number: Optional[str] = Field(None)
    ideal_cycle_time_seconds: Optional[float] = Field(None, gt=0)
    is_active: bool = Field(True)


class EquipmentAssetUpdate(BaseModel):
    """Partial update of an equipment asset."""
    work_center_id: Optional[UUID] = Field(None)
    name: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    manufacturer: Optional[str] = Field(None)
    model: Optional[str] = Field(None)
    serial_number: Optional[str] = Field(None)
    ideal_cycle_time_seconds: Optional[float] = Field(None, gt=0)
    is_active: Optional[bool] = Field(None)


class PartRead(BaseModel):
    """Part read model."""
    id: UUID = Field(...)
    part_number: str = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    uom: str = Field(...)
    unit_cost: Optional[float] = Field(None)
    is_serialized: bool = Field(...)
    is_active: bool = Field(...)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class PartCreate(BaseModel):
    """Create part payload."""
    part_number: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    uom: str = Field("ea")
    unit_cost: Optional[float] = Field(None, ge=0)
    is_serialized: bool = Field(False)


class PartUpdate(BaseModel):
    """Partial update of a part."""
    name: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    uom: Optional[str] = Field(None)
    unit_cost: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = Field(None)


class StockLocationRead(BaseModel):
    """Stock location read model."""
    id: UUID = Field(...)
    code: str = Field(...)
    name: str = Field(...)
    location_type: str = Field(...)
    is_active: bool = Field(...)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class StockLocationCreate(BaseModel):
    """Create stock location payload."""
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    location_type: str = Field("warehouse")
