from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SPCPointRead(BaseModel):
    id: UUID = Field(...)
    subgroup_id: UUID = Field(...)
    measured_value: float = Field(...)
    sequence: int = Field(...)
    measurement_id: Optional[UUID] = Field(None)

    class Config:
        from_attributes = True


class SPCSubgroupRead(BaseModel):
    """Subgroup with cached statistics and its individual points."""
    id: UUID = Field(...)
    characteristic_id: UUID = Field(...)
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    product_id: Optional[UUID] = Field(None)
    production_step_id: Optional[UUID] = Field(None)
    subgroup_ts: datetime = Field(...)
    n: int = Field(...)
    mean: float = Field(...)
    range_value: float = Field(0)
    stddev: Optional[float] = Field(None)
    min_value: Optional[float] = Field(None)
    max_value: Optional[float] = Field(None)
    points: List[SPCPointRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class SubgroupCreate(BaseModel):
    characteristic_id: UUID = Field(...)
    values: List[float] = Field(..., description="Individual measured values in sampling order")
    measurement_ids: Optional[List[Optional[UUID]]] = Field(None, description="Source measurement per value")
    subgroup_ts: Optional[datetime] = Field(None, description="Defaults to now")
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    product_id: Optional[UUID] = Field(None)
    production_step_id: Optional[UUID] = Field(None)


class AddPointRequest(BaseModel):
    value: float = Field(...)
    measurement_id: Optional[UUID] = Field(None)


class SPCMeasurementRequest(BaseModel):
    """Feed one inspection measurement into SPC as an n=1 subgroup."""
    measurement_id: UUID = Field(...)
    characteristic_id: UUID = Field(...)
    value: float = Field(...)
    work_center_id: Optional[UUID] = Field(None)
    product_id: Optional[UUID] = Field(None)
    production_step_id: Optional[UUID] = Field(None)


class ViolationRead(BaseModel):
    id: UUID = Field(...)
    characteristic_id: UUID = Field(...)
    subgroup_id: Optional[UUID] = Field(None)
    violation_type: str = Field(...)
    detected_at: datetime = Field(...)
    details: Dict[str, Any] = Field(default_factory=dict)
    acknowledged_by: Optional[UUID] = Field(None)
    acknowledged_at: Optional[datetime] = Field(None)
    acknowledgment_notes: Optional[str] = Field(None)

    class Config:
        from_attributes = True


class AcknowledgeRequest(BaseModel):
    notes: Optional[str] = Field(None)


class ControlLimits(BaseModel):
    ucl: float = 0
    lcl: float = 0
    center_line: float = 0
    usl: Optional[float] = None
    lsl: Optional[float] = None
    target: Optional[float] = None


class ProcessCapability(BaseModel):
    cp: Optional[float] = None
    cpk: Optional[float] = None
    pp: Optional[float] = None
    ppk: Optional[float] = None
    cpu: Optional[float] = None
    cpl: Optional[float] = None
    sigma_level: Optional[float] = None
    dpmo: Optional[float] = None
    ppm: Optional[float] = None
    mean: float
    stddev: float
    n: int


class ControlChartData(BaseModel):
    characteristic_id: UUID
    characteristic_name: str
    chart_type: Literal["XBAR_R"] = "XBAR_R"
    subgroups: List[SPCSubgroupRead] = Field(default_factory=list)
    control_limits: ControlLimits
    capability: Optional[ProcessCapability] = None
    violations: List[ViolationRead] = Field(default_factory=list)


class SigmaLevelResult(BaseModel):
    dpmo: float
    dpu: float
    sigma_level: float
