from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


WORK_CENTER_TYPES = ("fabrication", "assembly", "testing", "finishing", "packaging", "general")


class WorkCenter(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Physical or logical station where production steps are performed."""
    __tablename__ = "work_centers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_work_centers_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    center_type: Mapped[str] = mapped_column(Text, nullable=False, server_default="general")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    capacity_per_hour: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    default_technician_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    location_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ideal_cycle_time_seconds: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)


class EquipmentAsset(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Machine or asset belonging to a work center; source of state events and counts."""
    __tablename__ = "equipment_assets"
    __table_args__ = (
        UniqueConstraint("tenant_id", "asset_code", name="uq_equipment_assets_tenant_asset_code"),
    )

    work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    asset_code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    manufacturer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ideal_cycle_time_seconds: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class Part(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Material or component consumed by production orders."""
    __tablename__ = "parts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "part_number", name="uq_parts_tenant_part_number"),
    )

    part_number: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    uom: Mapped[str] = mapped_column(Text, nullable=False, server_default="ea")
    unit_cost: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    is_serialized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class StockLocation(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Warehouse bin, line-side rack or staging area holding inventory."""
    __tablename__ = "stock_locations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_stock_locations_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    location_type: Mapped[str] = mapped_column(Text, nullable=False, server_default="warehouse")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
