from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import extract, func, or_, select

from src.db.models.production import BomItem, MaterialMoveRequest, ProductionOrder, ProductionStep, TimeLog
from .base import BaseRepository


class ProductionOrderRepository(BaseRepository):
    """Repository for production orders and their routing steps."""

    async def latest_order_number(self, prefix: str) -> Optional[str]:
        """Highest order number starting with `prefix` (e.g. 'PO-26-')."""
        stmt = select(func.max(ProductionOrder.order_number)).where(ProductionOrder.order_number.like(f"{prefix}%"))
        return await self.scalar_one_or_none(stmt)

    async def list_orders(
        self,
        *,
        status: Optional[str] = None,
        priority: Optional[int] = None,
        customer_id: Optional[UUID] = None,
        assigned_to: Optional[UUID] = None,
        search: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[ProductionOrder]:
        stmt = select(ProductionOrder)
        if status and status != "all":
            stmt = stmt.where(ProductionOrder.status == status)
        if priority:
            stmt = stmt.where(ProductionOrder.priority == priority)
        if customer_id:
            stmt = stmt.where(ProductionOrder.customer_id == customer_id)
        if assigned_to:
            stmt = stmt.where(ProductionOrder.assigned_to == assigned_to)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(ProductionOrder.order_number.ilike(like), ProductionOrder.title.ilike(like)))
        if created_from:
            stmt = stmt.where(ProductionOrder.created_at >= created_from)
        if created_to:
            stmt = stmt.where(ProductionOrder.created_at <= created_to)
        stmt = (
            stmt.order_by(ProductionOrder.priority.asc(), ProductionOrder.scheduled_start.asc().nullslast())
            .offset(offset)
            .limit(limit)
        )
        res = await self.scalars(stmt)
        return list(res)

    async def get_order(self, order_id: UUID) -> Optional[ProductionOrder]:
        return await self.get_by_id(ProductionOrder, order_id)

    async def create_order(self, **values) -> ProductionOrder:
        return await self.add(ProductionOrder(**values))

    async def update_order(self, order_id: UUID, values: dict) -> Optional[ProductionOrder]:
        return await self.update_values(ProductionOrder, order_id, values)

    async def count_by_status(self) -> dict[str, int]:
        res = await self.execute(select(ProductionOrder.status, func.count()).group_by(ProductionOrder.status))
        return {row[0]: int(row[1]) for row in res.all()}

    async def count_completed_since(self, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(ProductionOrder)
            .where(ProductionOrder.status == "complete", ProductionOrder.actual_end >= since)
        )
        return int((await self.scalar_one_or_none(stmt)) or 0)

    async def avg_cycle_time_seconds(self) -> Optional[float]:
        """Mean (actual_end - actual_start) in seconds over complete orders with both stamps."""
        stmt = select(
            func.avg(extract("epoch", ProductionOrder.actual_end - ProductionOrder.actual_start))
        ).where(
            ProductionOrder.status == "complete",
            ProductionOrder.actual_start.is_not(None),
            ProductionOrder.actual_end.is_not(None),
        )
        value = await self.scalar_one_or_none(stmt)
        return float(value) if value is not None else None

    # Steps

    async def list_steps(self, order_id: UUID) -> List[ProductionStep]:
        stmt = (
            select(ProductionStep)
            .where(ProductionStep.production_order_id == order_id)
            .order_by(ProductionStep.step_number)
        )
        res = await self.scalars(stmt)
        return list(res)

    async def list_steps_for_orders(self, order_ids: Sequence[UUID]) -> List[ProductionStep]:
        if not order_ids:
            return []
        stmt = (
            select(ProductionStep)
            .where(ProductionStep.production_order_id.in_(list(order_ids)))
            .order_by(ProductionStep.production_order_id, ProductionStep.step_number)
        )
        res = await self.scalars(stmt)
        return list(res)

    async def list_open_steps(self) -> List[Tuple[ProductionStep, ProductionOrder]]:
        """Pending/in-progress steps of orders that are neither complete nor on hold, by order then step number."""
        stmt = (
            select(ProductionStep, ProductionOrder)
            .join(ProductionOrder, ProductionOrder.id == ProductionStep.production_order_id)
            .where(
                ProductionOrder.status.notin_(("complete", "hold")),
                ProductionStep.status.in_(("pending", "in_progress")),
            )
            .order_by(
                ProductionOrder.priority.asc(),
                ProductionOrder.scheduled_start.asc().nullslast(),
                ProductionOrder.id,
                ProductionStep.step_number,
            )
        )
        res = await self.execute(stmt)
        return [(row[0], row[1]) for row in res.all()]

    async def get_step(self, step_id: UUID) -> Optional[ProductionStep]:
        return await self.get_by_id(ProductionStep, step_id)

    async def max_step_number(self, order_id: UUID) -> int:
        stmt = select(func.max(ProductionStep.step_number)).where(ProductionStep.production_order_id == order_id)
        return int((await self.scalar_one_or_none(stmt)) or 0)

    async def create_step(self, **values) -> ProductionStep:
        return await self.add(ProductionStep(**values))

    async def update_step(self, step_id: UUID, values: dict) -> Optional[ProductionStep]:
        return await self.update_values(ProductionStep, step_id, values)

    # BOM

    async def list_bom(self, order_id: UUID) -> List[BomItem]:
        stmt = select(BomItem).where(BomItem.production_order_id == order_id).order_by(BomItem.created_at)
        res = await self.scalars(stmt)
        return list(res)

    async def get_bom_item(self, item_id: UUID) -> Optional[BomItem]:
        return await self.get_by_id(BomItem, item_id)

    async def create_bom_item(self, **values) -> BomItem:
        return await self.add(BomItem(**values))

    async def update_bom_item(self, item_id: UUID, values: dict) -> Optional[BomItem]:
        return await self.update_values(BomItem, item_id, values)

    async def list_reserving_bom_items(self, part_id: UUID, location_id: UUID) -> List[BomItem]:
        """Allocated, not yet fully consumed BOM lines drawing on a part at a location."""
        stmt = select(BomItem).where(
            BomItem.part_id == part_id,
            BomItem.source_location_id == location_id,
            BomItem.is_allocated.is_(True),
            BomItem.is_consumed.is_(False),
        )
        res = await self.scalars(stmt)
        return list(res)


class TimeLogRepository(BaseRepository):
    """Repository for technician time logs."""

    async def list_for_order(self, order_id: UUID) -> List[TimeLog]:
        stmt = select(TimeLog).where(TimeLog.production_order_id == order_id).order_by(TimeLog.clock_in.desc())
        res = await self.scalars(stmt)
        return list(res)

    async def get_open_log(self, order_id: UUID, technician_id: UUID) -> Optional[TimeLog]:
        stmt = (
            select(TimeLog)
            .where(
                TimeLog.production_order_id == order_id,
                TimeLog.technician_id == technician_id,
                TimeLog.clock_out.is_(None),
            )
            .order_by(TimeLog.clock_in.desc())
            .limit(1)
        )
        return await self.scalar_one_or_none(stmt)

    async def get_time_log(self, log_id: UUID) -> Optional[TimeLog]:
        return await self.get_by_id(TimeLog, log_id)

    async def create_time_log(self, **values) -> TimeLog:
        return await self.add(TimeLog(**values))

    async def update_time_log(self, log_id: UUID, values: dict) -> Optional[TimeLog]:
        return await self.update_values(TimeLog, log_id, values)


class MaterialMoveRepository(BaseRepository):
    """Repository for material move requests."""

    async def list_moves(
        self,
        *,
        status: Optional[str] = None,
        assigned_to: Optional[UUID] = None,
        work_center_id: Optional[UUID] = None,
        production_order_id: Optional[UUID] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[MaterialMoveRequest]:
        stmt = select(MaterialMoveRequest)
        if status and status != "all":
            stmt = stmt.where(MaterialMoveRequest.status == status)
        if assigned_to:
            stmt = stmt.where(MaterialMoveRequest.assigned_to == assigned_to)
        if work_center_id:
            stmt = stmt.where(MaterialMoveRequest.to_work_center_id == work_center_id)
        if production_order_id:
            stmt = stmt.where(MaterialMoveRequest.production_order_id == production_order_id)
        stmt = (
            stmt.order_by(MaterialMoveRequest.priority.asc(), MaterialMoveRequest.created_at.asc())
            .offset(offset)
            .limit(limit)
        )
        res = await self.scalars(stmt)
        return list(res)

    async def list_for_order(self, order_id: UUID) -> List[MaterialMoveRequest]:
        stmt = (
            select(MaterialMoveRequest)
            .where(MaterialMoveRequest.production_order_id == order_id)
            .order_by(MaterialMoveRequest.created_at.desc())
        )
        res = await self.scalars(stmt)
        return list(res)

    async def get_move(self, move_id: UUID) -> Optional[MaterialMoveRequest]:
        return await self.get_by_id(MaterialMoveRequest, move_id)

    async def create_move(self, **values) -> MaterialMoveRequest:
        return await self.add(MaterialMoveRequest(**values))

    async def update_move(self, move_id: UUID, values: dict) -> Optional[MaterialMoveRequest]:
        return await self.update_values(MaterialMoveRequest, move_id, values)
