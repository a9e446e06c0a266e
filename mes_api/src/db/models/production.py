from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, Computed, DateTime, Integer, Numeric, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


ORDER_STATUSES = ("queued", "in_progress", "hold", "complete")
STEP_STATUSES = ("pending", "in_progress", "complete", "skipped")
MOVE_STATUSES = ("requested", "in_transit", "delivered", "cancelled")


class ProductionOrder(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Order to manufacture a quantity of a product, numbered PO-YY-NNNNN."""
    __tablename__ = "production_orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_production_orders_tenant_order_number"),
    )

    order_number: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="queued")
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default="3")
    ticket_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    project_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    customer_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    scheduled_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    quantity_ordered: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="1")
    quantity_completed: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    assigned_to: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    hold_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)


class ProductionStep(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Ordered routing step of a production order, performed at a work center."""
    __tablename__ = "production_steps"
    __table_args__ = (
        UniqueConstraint("tenant_id", "production_order_id", "step_number", name="uq_production_steps_order_step"),
    )

    production_order_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="pending")
    estimated_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actual_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class BomItem(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Material requirement of a production order; tracks allocation and consumption."""
    __tablename__ = "production_bom_items"
    __table_args__ = (
        UniqueConstraint("tenant_id", "production_order_id", "part_id", name="uq_production_bom_items_order_part"),
    )

    production_order_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    part_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    quantity_required: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="1")
    quantity_allocated: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    quantity_consumed: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")
    source_location_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    unit_cost: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    is_allocated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class TimeLog(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Technician clock-in/clock-out record against an order (and optionally a step)."""
    __tablename__ = "production_time_logs"

    production_order_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    production_step_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    technician_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    clock_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))
    clock_out: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[Optional[float]] = mapped_column(
        Numeric(18, 2, asdecimal=False),
        Computed("EXTRACT(EPOCH FROM (clock_out - clock_in)) / 60", persisted=True),
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MaterialMoveRequest(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Request to move material from a stock location to a work center."""
    __tablename__ = "material_move_requests"

    production_order_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    from_location_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    to_work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    to_location_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    part_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    quantity: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="1")
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="requested")
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default="3")
    requested_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    assigned_to: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
