from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Integer, Numeric, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


VIOLATION_TYPES = (
    "WESTERN_ELECTRIC_1",
    "WESTERN_ELECTRIC_2",
    "WESTERN_ELECTRIC_3",
    "WESTERN_ELECTRIC_4",
    "NELSON_1",
    "NELSON_2",
    "NELSON_3",
    "NELSON_4",
    "NELSON_5",
    "NELSON_6",
    "NELSON_7",
    "NELSON_8",
)


class SPCSubgroup(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Rational subgroup of measurements for one characteristic with cached statistics."""
    __tablename__ = "spc_subgroups"

    characteristic_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    equipment_asset_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    product_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    production_step_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    subgroup_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"), index=True)
    n: Mapped[int] = mapped_column(Integer, nullable=False)
    mean: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    range_value: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    stddev: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    min_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    max_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)


class SPCPoint(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Individual value within a subgroup."""
    __tablename__ = "spc_points"

    subgroup_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    measured_value: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    measurement_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)


class SPCRuleViolation(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Detected out-of-control signal on a control chart."""
    __tablename__ = "spc_rule_violations"

    characteristic_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    subgroup_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    violation_type: Mapped[str] = mapped_column(Text, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"), index=True)
    details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    acknowledged_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledgment_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
