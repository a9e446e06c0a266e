from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


EquipmentState = Literal["RUN", "STOP", "IDLE", "CHANGEOVER", "PLANNED_STOP"]
DowntimeCategory = Literal["planned", "unplanned"]
ReasonGroup = Literal["mechanical", "electrical", "material", "quality", "ops", "other"]


class ReasonCodeRead(BaseModel):
    """Downtime reason code read model."""
    id: UUID = Field(...)
    code: str = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    category: str = Field(..., description="planned/unplanned")
    reason_group: str = Field(..., description="mechanical/electrical/material/quality/ops/other")
    parent_code_id: Optional[UUID] = Field(None)
    display_order: int = Field(...)
    is_active: bool = Field(...)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class ReasonCodeCreate(BaseModel):
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    category: DowntimeCategory = Field("unplanned")
    reason_group: ReasonGroup = Field("other")
    parent_code_id: Optional[UUID] = Field(None)
    display_order: int = Field(0)


class ReasonCodeUpdate(BaseModel):
    name: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    category: Optional[DowntimeCategory] = Field(None)
    reason_group: Optional[ReasonGroup] = Field(None)
    parent_code_id: Optional[UUID] = Field(None)
    display_order: Optional[int] = Field(None)
    is_active: Optional[bool] = Field(None)


class StateEventRead(BaseModel):
    """Equipment state event read model."""
    id: UUID = Field(...)
    equipment_asset_id: UUID = Field(...)
    work_center_id: Optional[UUID] = Field(None)
    state: str = Field(...)
    start_ts: datetime = Field(...)
    end_ts: Optional[datetime] = Field(None)
    duration_seconds: Optional[float] = Field(None, description="Null while the event is open")
    external_event_id: Optional[str] = Field(None)
    source: str = Field(...)
    notes: Optional[str] = Field(None)
    created_by: Optional[UUID] = Field(None)

    class Config:
        from_attributes = True


class DowntimeEventRead(BaseModel):
    """Downtime classification record."""
    id: UUID = Field(...)
    equipment_state_event_id: UUID = Field(...)
    reason_code_id: Optional[UUID] = Field(None)
    is_classified: bool = Field(...)
    classification_notes: Optional[str] = Field(None)
    classified_by: Optional[UUID] = Field(None)
    classified_at: Optional[datetime] = Field(None)
    is_planned: bool = Field(...)

    class Config:
        from_attributes = True


class StartDowntimeRequest(BaseModel):
    equipment_asset_id: UUID = Field(...)
    state: EquipmentState = Field("STOP")
    start_ts: Optional[datetime] = Field(None, description="Defaults to now")
    reason_code_id: Optional[UUID] = Field(None, description="Classify immediately when given")
    source: str = Field("manual")
    notes: Optional[str] = Field(None)


class EndDowntimeRequest(BaseModel):
    end_ts: Optional[datetime] = Field(None, description="Defaults to now")


class ClassifyRequest(BaseModel):
    reason_code_id: UUID = Field(...)
    classification_notes: Optional[str] = Field(None)
    is_planned: Optional[bool] = Field(None, description="Defaults to the reason's category")


class AutoDowntimeRequest(BaseModel):
    """Ingest a closed stop interval from an equipment signal."""
    equipment_asset_id: UUID = Field(...)
    start_ts: datetime = Field(...)
    end_ts: datetime = Field(...)
    external_event_id: Optional[str] = Field(None)


class DowntimeLogEntry(BaseModel):
    """Flattened downtime event, state event, equipment, work center and reason."""
    downtime_event_id: UUID
    state_event_id: UUID
    equipment_asset_id: UUID
    equipment_code: Optional[str] = None
    equipment_name: Optional[str] = None
    work_center_id: Optional[UUID] = None
    work_center_name: Optional[str] = None
    state: str
    start_ts: datetime
    end_ts: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    source: str = "manual"
    external_event_id: Optional[str] = None
    notes: Optional[str] = None
    is_classified: bool = False
    is_planned: bool = False
    classification_notes: Optional[str] = None
    classified_by: Optional[UUID] = None
    classified_at: Optional[datetime] = None
    reason_code_id: Optional[UUID] = None
    reason_code: Optional[str] = None
    reason_name: Optional[str] = None
    reason_category: Optional[str] = None
    reason_group: Optional[str] = None


class SummaryBucket(BaseModel):
    key: str
    count: int = 0
    duration_seconds: float = 0


class DowntimeSummary(BaseModel):
    total_events: int = 0
    total_duration_seconds: float = 0
    classified_events: int = 0
    unclassified_events: int = 0
    planned_duration_seconds: float = 0
    unplanned_duration_seconds: float = 0
    avg_duration_seconds: float = 0
    by_category: List[SummaryBucket] = Field(default_factory=list)
    by_group: List[SummaryBucket] = Field(default_factory=list)


class ParetoItem(BaseModel):
    code: str
    name: str
    category: str
    reason_group: str
    count: int = 0
    duration_seconds: float = 0
    duration_minutes: int = 0
    percentage_of_total: float = 0
    cumulative_percentage: float = 0
