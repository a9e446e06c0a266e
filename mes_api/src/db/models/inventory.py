from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, Numeric, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


SERIAL_STATUSES = ("in_stock", "consumed", "scrapped")
CONSUMPTION_METHODS = ("scan", "manual", "backflush")


class PartInventory(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """On-hand quantity of a part at a stock location."""
    __tablename__ = "part_inventory"
    __table_args__ = (
        UniqueConstraint("tenant_id", "part_id", "stock_location_id", name="uq_part_inventory_part_location"),
    )

    part_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    stock_location_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    quantity: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False, server_default="0")


class SerializedPart(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Individually tracked unit of a serialized part."""
    __tablename__ = "serialized_parts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "part_id", "serial_number", name="uq_serialized_parts_part_serial"),
    )

    part_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    serial_number: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="in_stock")
    current_location_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    lot_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MaterialConsumption(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """
    Append-only log of material issued to production orders.

    Reversals are separate rows with negative qty pointing at the original via
    reversal_of_id.
    """
    __tablename__ = "material_consumption"
    __table_args__ = (
        Index(
            "uq_material_consumption_idempotency_key",
            "tenant_id",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
        ),
    )

    production_order_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    production_step_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    operation_run_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    part_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    bom_item_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    source_location_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    qty: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=False)
    unit_cost: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    method: Mapped[str] = mapped_column(Text, nullable=False, server_default="manual")
    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    reversal_of_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    reversal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    serialized_part_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    lot_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    consumed_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    consumed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))
