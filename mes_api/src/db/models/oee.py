from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Numeric, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


OEE_GRAINS = ("hourly", "shift", "daily")
OEE_SCOPES = ("work_center", "equipment", "line", "plant", "site")


class ProductionCount(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Good/scrap/rework quantities reported for a work center at a point in time."""
    __tablename__ = "production_counts"

    operation_run_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    production_order_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    work_center_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    equipment_asset_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    count_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"), index=True)
    total_qty: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    good_qty: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    scrap_qty: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    rework_qty: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    scrap_reason_code_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    rework_reason_code_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    recorded_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class OEESnapshot(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Persisted OEE calculation for a scope and period."""
    __tablename__ = "oee_snapshots"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "grain", "scope_type", "scope_id", "period_start",
            name="uq_oee_snapshots_scope_period",
        ),
    )

    grain: Mapped[str] = mapped_column(Text, nullable=False)
    scope_type: Mapped[str] = mapped_column(Text, nullable=False)
    scope_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    shift_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    planned_production_time_seconds: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, server_default="0")
    actual_run_time_seconds: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, server_default="0")
    downtime_seconds: Mapped[float] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=False, server_default="0")
    total_count: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    good_count: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    scrap_count: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    rework_count: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    ideal_cycle_time_seconds: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    availability_pct: Mapped[float] = mapped_column(Numeric(7, 2, asdecimal=False), nullable=False, server_default="0")
    performance_pct: Mapped[float] = mapped_column(Numeric(7, 2, asdecimal=False), nullable=False, server_default="0")
    quality_pct: Mapped[float] = mapped_column(Numeric(7, 2, asdecimal=False), nullable=False, server_default="0")
    oee_pct: Mapped[float] = mapped_column(Numeric(7, 2, asdecimal=False), nullable=False, server_default="0")
