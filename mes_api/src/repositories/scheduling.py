from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select

from src.db.models.master_data import WorkCenter
from src.db.models.production import ProductionOrder
from src.db.models.scheduling import OperationRun
from .base import BaseRepository


class OperationRunRepository(BaseRepository):
    """Repository for operation runs (production schedule rows)."""

    async def get_run(self, run_id: UUID) -> Optional[OperationRun]:
        return await self.get_by_id(OperationRun, run_id)

    async def create_run(self, **values) -> OperationRun:
        return await self.add(OperationRun(**values))

    async def update_run(self, run_id: UUID, values: dict) -> Optional[OperationRun]:
        return await self.update_values(OperationRun, run_id, values)

    async def list_active_with_orders(
        self,
        work_center_id: UUID,
        *,
        exclude_id: Optional[UUID] = None,
    ) -> List[Tuple[OperationRun, Optional[str]]]:
        """Non-COMPLETED runs with a scheduled start on a work center, with their order number."""
        stmt = (
            select(OperationRun, ProductionOrder.order_number)
            .outerjoin(ProductionOrder, ProductionOrder.id == OperationRun.production_order_id)
            .where(
                OperationRun.work_center_id == work_center_id,
                OperationRun.status != "COMPLETED",
                OperationRun.scheduled_start_ts.is_not(None),
            )
            .order_by(OperationRun.scheduled_start_ts)
        )
        if exclude_id:
            stmt = stmt.where(OperationRun.id != exclude_id)
        res = await self.execute(stmt)
        return [(row[0], row[1]) for row in res.all()]

    async def max_sequence(self, work_center_id: UUID) -> int:
        stmt = select(func.max(OperationRun.sequence_number)).where(OperationRun.work_center_id == work_center_id)
        return int((await self.scalar_one_or_none(stmt)) or 0)

    async def list_for_work_center(self, work_center_id: UUID) -> List[OperationRun]:
        stmt = select(OperationRun).where(OperationRun.work_center_id == work_center_id)
        res = await self.scalars(stmt)
        return list(res)

    async def list_schedules(
        self,
        *,
        work_center_id: Optional[UUID] = None,
        status: Optional[str] = None,
        production_order_id: Optional[UUID] = None,
        start_from: Optional[datetime] = None,
        start_before: Optional[datetime] = None,
        limit: int = 500,
        offset: int = 0,
    ) -> List[Tuple[OperationRun, ProductionOrder, WorkCenter]]:
        """Runs joined with order and work center; `start_before` is exclusive."""
        stmt = (
            select(OperationRun, ProductionOrder, WorkCenter)
            .join(ProductionOrder, ProductionOrder.id == OperationRun.production_order_id)
            .join(WorkCenter, WorkCenter.id == OperationRun.work_center_id)
        )
        if work_center_id:
            stmt = stmt.where(OperationRun.work_center_id == work_center_id)
        if status:
            stmt = stmt.where(OperationRun.status == status)
        if production_order_id:
            stmt = stmt.where(OperationRun.production_order_id == production_order_id)
        if start_from:
            stmt = stmt.where(OperationRun.scheduled_start_ts >= start_from)
        if start_before:
            stmt = stmt.where(OperationRun.scheduled_start_ts < start_before)
        stmt = stmt.order_by(OperationRun.scheduled_start_ts.asc().nullslast()).offset(offset).limit(limit)
        res = await self.execute(stmt)
        return [(row[0], row[1], row[2]) for row in res.all()]

    async def list_timeline(self, work_center_id: UUID, from_ts: datetime, to_ts: datetime) -> List[OperationRun]:
        stmt = (
            select(OperationRun)
            .where(
                OperationRun.work_center_id == work_center_id,
                OperationRun.scheduled_start_ts >= from_ts,
                OperationRun.scheduled_start_ts <= to_ts,
            )
            .order_by(OperationRun.scheduled_start_ts.asc())
        )
        res = await self.scalars(stmt)
        return list(res)

    async def list_overlapping(self, work_center_ids: List[UUID], from_ts: datetime, to_ts: datetime) -> List[OperationRun]:
        """Non-COMPLETED runs of the given centers starting before `to_ts`; callers clip to the window."""
        if not work_center_ids:
            return []
        stmt = select(OperationRun).where(
            OperationRun.work_center_id.in_(work_center_ids),
            OperationRun.status != "COMPLETED",
            OperationRun.scheduled_start_ts.is_not(None),
            OperationRun.scheduled_start_ts < to_ts,
        )
        res = await self.scalars(stmt)
        return [r for r in res if (r.scheduled_end_ts is None or r.scheduled_end_ts > from_ts)]
