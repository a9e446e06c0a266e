from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


PLAN_TYPES = ("INCOMING", "IN_PROCESS", "FINAL", "AUDIT")
APPLIES_TO = ("PRODUCT", "OPERATION", "WORK_CENTER", "ASSET", "VENDOR_PART")
CHAR_TYPES = ("VARIABLE", "ATTRIBUTE")
DATA_CAPTURE = ("numeric", "pass_fail", "count", "text", "photo")
SAMPLING_METHODS = ("100_PERCENT", "EVERY_N", "PER_LOT", "AQL")
RUN_STATUSES = ("PENDING", "IN_PROGRESS", "PASSED", "FAILED", "WAIVED")
NC_SOURCES = ("INSPECTION", "OPERATOR_REPORTED", "CUSTOMER_RETURN", "AUDIT")
SEVERITIES = ("MINOR", "MAJOR", "CRITICAL")
NC_STATUSES = ("OPEN", "UNDER_REVIEW", "DISPOSITIONED", "CLOSED")
DISPOSITIONS = ("SCRAP", "REWORK", "USE_AS_IS", "RETURN_TO_VENDOR", "SORT_100")
CAPA_STATUSES = ("OPEN", "IN_PROGRESS", "VERIFIED", "CLOSED")


class SamplingPlan(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """How many units to inspect and how often."""
    __tablename__ = "sampling_plans"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    method: Mapped[str] = mapped_column(Text, nullable=False, server_default="100_PERCENT")
    sample_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    frequency_n: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    aql_level: Mapped[Optional[float]] = mapped_column(Numeric(8, 3, asdecimal=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class InspectionPlan(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Versioned set of characteristics to check for a product, operation or work center."""
    __tablename__ = "inspection_plans"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    plan_type: Mapped[str] = mapped_column(Text, nullable=False, server_default="IN_PROCESS")
    applies_to: Mapped[str] = mapped_column(Text, nullable=False, server_default="OPERATION")
    product_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    production_step_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    equipment_asset_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    part_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    revision: Mapped[str] = mapped_column(Text, nullable=False, server_default="1.0")
    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    sampling_plan_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)


class Characteristic(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Measurable feature of an inspection plan with optional spec limits."""
    __tablename__ = "inspection_characteristics"

    inspection_plan_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    char_type: Mapped[str] = mapped_column(Text, nullable=False, server_default="VARIABLE")
    uom: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    target_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    lsl: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    usl: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    data_capture: Mapped[str] = mapped_column(Text, nullable=False, server_default="numeric")
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class InspectionRun(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Execution of an inspection plan against an order, operation run, lot or serial."""
    __tablename__ = "inspection_runs"

    inspection_plan_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    production_order_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    operation_run_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    equipment_asset_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    lot_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    serial_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="PENDING")
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    inspector_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    total_characteristics: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    passed_characteristics: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    failed_characteristics: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Measurement(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Recorded result for one characteristic within an inspection run."""
    __tablename__ = "inspection_measurements"
    __table_args__ = (
        UniqueConstraint("tenant_id", "inspection_run_id", "characteristic_id", name="uq_inspection_measurements_run_char"),
    )

    inspection_run_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    characteristic_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    measured_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    pass_fail: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    defect_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_within_spec: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    revision_number: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    recorded_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))
    revised_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    revised_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    revision_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MeasurementRevision(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Audit trail row written whenever a recorded measurement is changed."""
    __tablename__ = "inspection_measurement_revisions"

    measurement_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    revision_number: Mapped[int] = mapped_column(Integer, nullable=False)
    before_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    after_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    before_pass_fail: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    after_pass_fail: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    before_defect_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    after_defect_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    before_is_within_spec: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    after_is_within_spec: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    changed_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    change_reason: Mapped[str] = mapped_column(Text, nullable=False)


class DefectCode(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Catalogued defect type used on nonconformances."""
    __tablename__ = "defect_codes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_defect_codes_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    severity_default: Mapped[str] = mapped_column(Text, nullable=False, server_default="MINOR")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class Nonconformance(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Nonconformance report (NCR) numbered NCR-YY-NNNNN."""
    __tablename__ = "nonconformances"
    __table_args__ = (
        UniqueConstraint("tenant_id", "nc_number", name="uq_nonconformances_tenant_nc_number"),
    )

    nc_number: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False, server_default="OPERATOR_REPORTED")
    inspection_run_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    production_order_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    operation_run_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    lot_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    serial_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    part_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    product_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    severity: Mapped[str] = mapped_column(Text, nullable=False, server_default="MINOR")
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="OPEN")
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qty_affected: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="1")
    reported_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    assigned_to: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class NCDefect(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Defect code occurrence attached to a nonconformance."""
    __tablename__ = "nc_defects"

    nonconformance_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    defect_code_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    qty_affected: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="1")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Disposition(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Decision on what to do with nonconforming material."""
    __tablename__ = "nc_dispositions"

    nonconformance_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    disposition: Mapped[str] = mapped_column(Text, nullable=False)
    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    execution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class CAPA(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Corrective and preventive action, numbered CAPA-YY-NNNNN."""
    __tablename__ = "capas"
    __table_args__ = (
        UniqueConstraint("tenant_id", "capa_number", name="uq_capas_tenant_capa_number"),
    )

    capa_number: Mapped[str] = mapped_column(Text, nullable=False)
    nonconformance_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    root_cause: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    root_cause_method: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    corrective_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    corrective_action_due: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    corrective_action_completed: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    preventive_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preventive_action_due: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    preventive_action_completed: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    owner_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="OPEN")
    verified_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
