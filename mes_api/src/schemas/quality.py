from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


PlanType = Literal["INCOMING", "IN_PROCESS", "FINAL", "AUDIT"]
AppliesTo = Literal["PRODUCT", "OPERATION", "WORK_CENTER", "ASSET", "VENDOR_PART"]
CharType = Literal["VARIABLE", "ATTRIBUTE"]
DataCapture = Literal["numeric", "pass_fail", "count", "text", "photo"]
SamplingMethod = Literal["100_PERCENT", "EVERY_N", "PER_LOT", "AQL"]
NCSource = Literal["INSPECTION", "OPERATOR_REPORTED", "CUSTOMER_RETURN", "AUDIT"]
Severity = Literal["MINOR", "MAJOR", "CRITICAL"]
NCStatus = Literal["OPEN", "UNDER_REVIEW", "DISPOSITIONED", "CLOSED"]
DispositionType = Literal["SCRAP", "REWORK", "USE_AS_IS", "RETURN_TO_VENDOR", "SORT_100"]
CAPAStatus = Literal["OPEN", "IN_PROGRESS", "VERIFIED", "CLOSED"]


# Sampling and inspection plans

class SamplingPlanRead(BaseModel):
    id: UUID = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    method: str = Field(...)
    sample_size: Optional[int] = Field(None)
    frequency_n: Optional[int] = Field(None)
    aql_level: Optional[float] = Field(None)
    is_active: bool = Field(...)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class SamplingPlanCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    method: SamplingMethod = Field("100_PERCENT")
    sample_size: Optional[int] = Field(None, ge=1)
    frequency_n: Optional[int] = Field(None, ge=1)
    aql_level: Optional[float] = Field(None, ge=0)


class CharacteristicRead(BaseModel):
    """Inspection characteristic read model."""
    id: UUID = Field(...)
    inspection_plan_id: UUID = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    char_type: str = Field(..., description="VARIABLE/ATTRIBUTE")
    uom: Optional[str] = Field(None)
    target_value: Optional[float] = Field(None)
    lsl: Optional[float] = Field(None, description="Lower spec limit")
    usl: Optional[float] = Field(None, description="Upper spec limit")
    data_capture: str = Field(...)
    required: bool = Field(...)
    is_critical: bool = Field(...)
    instructions: Optional[str] = Field(None)
    sequence: int = Field(...)
    is_active: bool = Field(...)

    class Config:
        from_attributes = True


class CharacteristicCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    char_type: CharType = Field("VARIABLE")
    uom: Optional[str] = Field(None)
    target_value: Optional[float] = Field(None)
    lsl: Optional[float] = Field(None)
    usl: Optional[float] = Field(None)
    data_capture: DataCapture = Field("numeric")
    required: bool = Field(True)
    is_critical: bool = Field(False)
    instructions: Optional[str] = Field(None)
    sequence: int = Field(1, ge=1)


class CharacteristicUpdate(BaseModel):
    name: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    char_type: Optional[CharType] = Field(None)
    uom: Optional[str] = Field(None)
    target_value: Optional[float] = Field(None)
    lsl: Optional[float] = Field(None)
    usl: Optional[float] = Field(None)
    data_capture: Optional[DataCapture] = Field(None)
    required: Optional[bool] = Field(None)
    is_critical: Optional[bool] = Field(None)
    instructions: Optional[str] = Field(None)
    sequence: Optional[int] = Field(None, ge=1)


class InspectionPlanRead(BaseModel):
    """Inspection plan read model."""
    id: UUID = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    plan_type: str = Field(...)
    applies_to: str = Field(...)
    product_id: Optional[UUID] = Field(None)
    production_step_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    part_id: Optional[UUID] = Field(None)
    revision: str = Field(...)
    effective_date: Optional[date] = Field(None)
    is_active: bool = Field(...)
    sampling_plan_id: Optional[UUID] = Field(None)
    created_by: Optional[UUID] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class InspectionPlanDetail(InspectionPlanRead):
    characteristics: List[CharacteristicRead] = Field(default_factory=list)


class InspectionPlanCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    plan_type: PlanType = Field("IN_PROCESS")
    applies_to: AppliesTo = Field("OPERATION")
    product_id: Optional[UUID] = Field(None)
    production_step_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    part_id: Optional[UUID] = Field(None)
    revision: str = Field("1.0")
    effective_date: Optional[date] = Field(None)
    sampling_plan_id: Optional[UUID] = Field(None)


class InspectionPlanUpdate(BaseModel):
    name: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    plan_type: Optional[PlanType] = Field(None)
    applies_to: Optional[AppliesTo] = Field(None)
    product_id: Optional[UUID] = Field(None)
    production_step_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    part_id: Optional[UUID] = Field(None)
    revision: Optional[str] = Field(None)
    effective_date: Optional[date] = Field(None)
    is_active: Optional[bool] = Field(None)
    sampling_plan_id: Optional[UUID] = Field(None)


# Inspection runs and measurements

class InspectionRunRead(BaseModel):
    """Inspection run read model."""
    id: UUID = Field(...)
    inspection_plan_id: UUID = Field(...)
    production_order_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    lot_id: Optional[str] = Field(None)
    serial_id: Optional[str] = Field(None)
    status: str = Field(...)
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)
    inspector_id: Optional[UUID] = Field(None)
    total_characteristics: int = Field(...)
    passed_characteristics: int = Field(...)
    failed_characteristics: int = Field(...)
    notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class InspectionRunCreate(BaseModel):
    inspection_plan_id: UUID = Field(...)
    production_order_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)
    work_center_id: Optional[UUID] = Field(None)
    equipment_asset_id: Optional[UUID] = Field(None)
    lot_id: Optional[str] = Field(None)
    serial_id: Optional[str] = Field(None)
    inspector_id: Optional[UUID] = Field(None)
    notes: Optional[str] = Field(None)


class MeasurementRead(BaseModel):
    """Inspection measurement read model."""
    id: UUID = Field(...)
    inspection_run_id: UUID = Field(...)
    characteristic_id: UUID = Field(...)
    measured_value: Optional[float] = Field(None)
    pass_fail: Optional[bool] = Field(None)
    defect_count: Optional[int] = Field(None)
    notes: Optional[str] = Field(None)
    attachment_url: Optional[str] = Field(None)
    is_within_spec: Optional[bool] = Field(None)
    revision_number: int = Field(...)
    recorded_by: Optional[UUID] = Field(None)
    recorded_at: datetime = Field(...)
    revised_by: Optional[UUID] = Field(None)
    revised_at: Optional[datetime] = Field(None)
    revision_reason: Optional[str] = Field(None)

    class Config:
        from_attributes = True


class MeasurementInput(BaseModel):
    """A result for one characteristic; recording it again revises the existing measurement."""
    characteristic_id: UUID = Field(...)
    measured_value: Optional[float] = Field(None)
    pass_fail: Optional[bool] = Field(None)
    defect_count: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None)
    attachment_url: Optional[str] = Field(None)
    change_reason: Optional[str] = Field(None, description="Used when revising an existing measurement")


class InspectionRunDetail(InspectionRunRead):
    measurements: List[MeasurementRead] = Field(default_factory=list)


class WaiveRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class CreateInspectionsForOrder(BaseModel):
    production_order_id: UUID = Field(...)
    work_center_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)


# Defects, nonconformances, dispositions, CAPA

class DefectCodeRead(BaseModel):
    id: UUID = Field(...)
    code: str = Field(...)
    name: str = Field(...)
    description: Optional[str] = Field(None)
    category: Optional[str] = Field(None)
    severity_default: str = Field(...)
    is_active: bool = Field(...)

    class Config:
        from_attributes = True


class DefectCodeCreate(BaseModel):
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    category: Optional[str] = Field(None)
    severity_default: Severity = Field("MINOR")


class DefectCodeUpdate(BaseModel):
    name: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    category: Optional[str] = Field(None)
    severity_default: Optional[Severity] = Field(None)
    is_active: Optional[bool] = Field(None)


class NCDefectRead(BaseModel):
    id: UUID = Field(...)
    nonconformance_id: UUID = Field(...)
    defect_code_id: UUID = Field(...)
    qty_affected: float = Field(...)
    notes: Optional[str] = Field(None)

    class Config:
        from_attributes = True


class NCDefectCreate(BaseModel):
    defect_code_id: UUID = Field(...)
    qty_affected: float = Field(1, gt=0)
    notes: Optional[str] = Field(None)


class NonconformanceRead(BaseModel):
    """Nonconformance (NCR) read model."""
    id: UUID = Field(...)
    nc_number: str = Field(..., description="NCR-YY-NNNNN")
    source: str = Field(...)
    inspection_run_id: Optional[UUID] = Field(None)
    production_order_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)
    lot_id: Optional[str] = Field(None)
    serial_id: Optional[str] = Field(None)
    part_id: Optional[UUID] = Field(None)
    product_id: Optional[UUID] = Field(None)
    severity: str = Field(...)
    status: str = Field(...)
    title: str = Field(...)
    description: Optional[str] = Field(None)
    qty_affected: float = Field(...)
    reported_by: Optional[UUID] = Field(None)
    assigned_to: Optional[UUID] = Field(None)
    reported_at: datetime = Field(...)
    closed_at: Optional[datetime] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class NonconformanceCreate(BaseModel):
    source: NCSource = Field("OPERATOR_REPORTED")
    title: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    severity: Severity = Field("MINOR")
    inspection_run_id: Optional[UUID] = Field(None)
    production_order_id: Optional[UUID] = Field(None)
    operation_run_id: Optional[UUID] = Field(None)
    lot_id: Optional[str] = Field(None)
    serial_id: Optional[str] = Field(None)
    part_id: Optional[UUID] = Field(None)
    product_id: Optional[UUID] = Field(None)
    qty_affected: float = Field(1, gt=0)
    assigned_to: Optional[UUID] = Field(None)
    defects: List[NCDefectCreate] = Field(default_factory=list)


class NonconformanceUpdate(BaseModel):
    title: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    severity: Optional[Severity] = Field(None)
    status: Optional[NCStatus] = Field(None)
    qty_affected: Optional[float] = Field(None, gt=0)
    assigned_to: Optional[UUID] = Field(None)
    part_id: Optional[UUID] = Field(None)


class DispositionRead(BaseModel):
    id: UUID = Field(...)
    nonconformance_id: UUID = Field(...)
    disposition: str = Field(...)
    instructions: Optional[str] = Field(None)
    approved_by: Optional[UUID] = Field(None)
    approved_at: Optional[datetime] = Field(None)
    executed_by: Optional[UUID] = Field(None)
    executed_at: Optional[datetime] = Field(None)
    execution_notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)

    class Config:
        from_attributes = True


class DispositionCreate(BaseModel):
    disposition: DispositionType = Field(...)
    instructions: Optional[str] = Field(None)


class ExecuteDispositionRequest(BaseModel):
    execution_notes: Optional[str] = Field(None)


class CAPARead(BaseModel):
    """CAPA read model."""
    id: UUID = Field(...)
    capa_number: str = Field(..., description="CAPA-YY-NNNNN")
    nonconformance_id: Optional[UUID] = Field(None)
    root_cause: Optional[str] = Field(None)
    root_cause_method: Optional[str] = Field(None)
    corrective_action: Optional[str] = Field(None)
    corrective_action_due: Optional[date] = Field(None)
    corrective_action_completed: Optional[date] = Field(None)
    preventive_action: Optional[str] = Field(None)
    preventive_action_due: Optional[date] = Field(None)
    preventive_action_completed: Optional[date] = Field(None)
    owner_id: Optional[UUID] = Field(None)
    status: str = Field(...)
    verified_by: Optional[UUID] = Field(None)
    verified_at: Optional[datetime] = Field(None)
    verification_notes: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)

    class Config:
        from_attributes = True


class CAPACreate(BaseModel):
    nonconformance_id: Optional[UUID] = Field(None)
    root_cause: Optional[str] = Field(None)
    root_cause_method: Optional[str] = Field(None)
    corrective_action: Optional[str] = Field(None)
    corrective_action_due: Optional[date] = Field(None)
    preventive_action: Optional[str] = Field(None)
    preventive_action_due: Optional[date] = Field(None)
    owner_id: Optional[UUID] = Field(None)


class CAPAUpdate(BaseModel):
    root_cause: Optional[str] = Field(None)
    root_cause_method: Optional[str] = Field(None)
    corrective_action: Optional[str] = Field(None)
    corrective_action_due: Optional[date] = Field(None)
    corrective_action_completed: Optional[date] = Field(None)
    preventive_action: Optional[str] = Field(None)
    preventive_action_due: Optional[date] = Field(None)
    preventive_action_completed: Optional[date] = Field(None)
    owner_id: Optional[UUID] = Field(None)
    status: Optional[Literal["OPEN", "IN_PROGRESS"]] = Field(None, description="Use verify/close for later states")


class VerifyCAPARequest(BaseModel):
    verification_notes: Optional[str] = Field(None)


class NonconformanceDetail(NonconformanceRead):
    defects: List[NCDefectRead] = Field(default_factory=list)
    dispositions: List[DispositionRead] = Field(default_factory=list)
    capas: List[CAPARead] = Field(default_factory=list)


# Reports

class NCRSummaryRow(BaseModel):
    nc_id: UUID
    nc_number: str
    title: str
    severity: str
    status: str
    source: str
    reported_at: datetime
    order_number: Optional[str] = None
    part_number: Optional[str] = None
    part_name: Optional[str] = None
    defect_count: int = 0
    latest_disposition: Optional[str] = None


class DefectParetoRow(BaseModel):
    defect_code_id: UUID
    code: str
    name: str
    category: Optional[str] = None
    occurrence_count: int = 0
    total_qty_affected: float = 0
