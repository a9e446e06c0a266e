from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select

from src.db.models.downtime import DowntimeEvent, EquipmentStateEvent
from src.db.models.oee import OEESnapshot, ProductionCount
from .base import BaseRepository


class OEERepository(BaseRepository):
    """Repository for production counts, downtime totals and OEE snapshots."""

    async def sum_downtime(self, work_center_id: UUID, from_ts: datetime, to_ts: datetime) -> Tuple[float, float]:
        """Return (planned_seconds, unplanned_seconds) of closed downtime starting in [from_ts, to_ts]."""
        stmt = (
            select(DowntimeEvent.is_planned, func.coalesce(func.sum(EquipmentStateEvent.duration_seconds), 0))
            .join(EquipmentStateEvent, EquipmentStateEvent.id == DowntimeEvent.equipment_state_event_id)
            .where(
                EquipmentStateEvent.work_center_id == work_center_id,
                EquipmentStateEvent.start_ts >= from_ts,
                EquipmentStateEvent.start_ts <= to_ts,
                EquipmentStateEvent.end_ts.is_not(None),
            )
            .group_by(DowntimeEvent.is_planned)
        )
        res = await self.execute(stmt)
        planned = unplanned = 0.0
        for is_planned, seconds in res.all():
            if is_planned:
                planned += float(seconds or 0)
            else:
                unplanned += float(seconds or 0)
        return planned, unplanned

    async def sum_counts(self, work_center_id: UUID, from_ts: datetime, to_ts: datetime) -> Tuple[float, float, float, float]:
        """Return (total, good, scrap, rework) summed over counts in [from_ts, to_ts]."""
        stmt = select(
            func.coalesce(func.sum(ProductionCount.total_qty), 0),
            func.coalesce(func.sum(ProductionCount.good_qty), 0),
            func.coalesce(func.sum(ProductionCount.scrap_qty), 0),
            func.coalesce(func.sum(ProductionCount.rework_qty), 0),
        ).where(
            ProductionCount.work_center_id == work_center_id,
            ProductionCount.count_timestamp >= from_ts,
            ProductionCount.count_timestamp <= to_ts,
        )
        res = await self.execute(stmt)
        total, good, scrap, rework = res.one()
        return float(total), float(good), float(scrap), float(rework)

    async def create_count(self, **values) -> ProductionCount:
        return await self.add(ProductionCount(**values))

    async def list_counts(self, work_center_id: UUID, from_ts: datetime, to_ts: datetime) -> List[ProductionCount]:
        stmt = (
            select(ProductionCount)
            .where(
                ProductionCount.work_center_id == work_center_id,
                ProductionCount.count_timestamp >= from_ts,
                ProductionCount.count_timestamp <= to_ts,
            )
            .order_by(ProductionCount.count_timestamp.asc())
        )
        res = await self.scalars(stmt)
        return list(res)

    async def list_counts_by_run(self, run_id: UUID) -> List[ProductionCount]:
        stmt = (
            select(ProductionCount)
            .where(ProductionCount.operation_run_id == run_id)
            .order_by(ProductionCount.count_timestamp.asc())
        )
        res = await self.scalars(stmt)
        return list(res)

    async def list_snapshots(
        self,
        *,
        grain: Optional[str] = None,
        scope_type: Optional[str] = None,
        scope_id: Optional[UUID] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        ascending: bool = False,
        limit: int = 500,
    ) -> List[OEESnapshot]:
        stmt = select(OEESnapshot)
        if grain:
            stmt = stmt.where(OEESnapshot.grain == grain)
        if scope_type:
            stmt = stmt.where(OEESnapshot.scope_type == scope_type)
        if scope_id:
            stmt = stmt.where(OEESnapshot.scope_id == scope_id)
        if from_ts:
            stmt = stmt.where(OEESnapshot.period_start >= from_ts)
        if to_ts:
            stmt = stmt.where(OEESnapshot.period_end <= to_ts)
        order = OEESnapshot.period_start.asc() if ascending else OEESnapshot.period_start.desc()
        stmt = stmt.order_by(order).limit(limit)
        res = await self.scalars(stmt)
        return list(res)

    async def upsert_snapshot(
        self, *, grain: str, scope_type: str, scope_id: UUID, period_start: datetime, values: dict
    ) -> OEESnapshot:
        """Insert or overwrite the snapshot keyed by (grain, scope_type, scope_id, period_start)."""
        stmt = select(OEESnapshot).where(
            OEESnapshot.grain == grain,
            OEESnapshot.scope_type == scope_type,
            OEESnapshot.scope_id == scope_id,
            OEESnapshot.period_start == period_start,
        )
        existing = await self.scalar_one_or_none(stmt)
        if existing is not None:
            return await self.update_values(OEESnapshot, existing.id, values)  # type: ignore[return-value]
        return await self.add(
            OEESnapshot(grain=grain, scope_type=scope_type, scope_id=scope_id, period_start=period_start, **values)
        )
