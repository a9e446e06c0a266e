from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, Computed, DateTime, Index, Integer, Numeric, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


EQUIPMENT_STATES = ("RUN", "STOP", "IDLE", "CHANGEOVER", "PLANNED_STOP")
DOWNTIME_CATEGORIES = ("planned", "unplanned")
REASON_GROUPS = ("mechanical", "electrical", "material", "quality", "ops", "other")


class DowntimeReasonCode(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Classification code for downtime (e.g. MECH-01 Bearing failure)."""
    __tablename__ = "downtime_reason_codes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_downtime_reason_codes_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(Text, nullable=False, server_default="unplanned")
    reason_group: Mapped[str] = mapped_column(Text, nullable=False, server_default="other")
    parent_code_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class EquipmentStateEvent(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Interval during which a piece of equipment was in a given state."""
    __tablename__ = "equipment_state_events"
    __table_args__ = (
        Index(
            "uq_equipment_state_events_external_event_id",
            "tenant_id",
            "external_event_id",
            unique=True,
            postgresql_where=text("external_event_id IS NOT NULL"),
        ),
    )

    equipment_asset_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    work_center_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    state: Mapped[str] = mapped_column(Text, nullable=False, server_default="STOP")
    start_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_ts: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[Optional[float]] = mapped_column(
        Numeric(18, 2, asdecimal=False),
        Computed("EXTRACT(EPOCH FROM (end_ts - start_ts))", persisted=True),
    )
    external_event_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(Text, nullable=False, server_default="manual")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)


class DowntimeEvent(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Classification record attached to a non-RUN equipment state event."""
    __tablename__ = "downtime_events"
    __table_args__ = (
        UniqueConstraint("tenant_id", "equipment_state_event_id", name="uq_downtime_events_state_event"),
    )

    equipment_state_event_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    reason_code_id: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True, index=True)
    is_classified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    classification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    classified_by: Mapped[Optional[UUID]] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    classified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_planned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
