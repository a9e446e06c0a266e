from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.db.models.production import BomItem, MaterialMoveRequest, ProductionOrder, ProductionStep, TimeLog
from src.repositories.master_data import PartRepository, WorkCenterRepository
from src.repositories.production import MaterialMoveRepository, ProductionOrderRepository, TimeLogRepository
from src.schemas.production import (
    BomItemCreate,
    BomItemRead,
    CompleteOrderResult,
    DashboardFilters,
    DashboardOrder,
    MaterialMoveCreate,
    MaterialMoveRead,
    OrderDetail,
    ProductionOrderCreate,
    ProductionOrderRead,
    ProductionOrderUpdate,
    ProductionStats,
    ProductionStepCreate,
    ProductionStepRead,
    StatusCounts,
    TimeLogRead,
    WorkCenterQueue,
    WorkCenterQueueItem,
)
from src.services.base import BaseService, ensure_transition, next_document_number, plant_timezone, utcnow
from src.services.inventory import MESInventoryService
from src.services.realtime import publish_kpis

logger = logging.getLogger(__name__)

STEP_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("in_progress", "complete", "skipped"),
    "in_progress": ("complete", "skipped", "pending"),
}

MOVE_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "requested": ("in_transit", "cancelled"),
    "in_transit": ("delivered", "cancelled"),
}

OPEN_STEP_STATUSES = ("pending", "in_progress")
QUEUE_EXCLUDED_ORDER_STATUSES = ("complete", "hold")


# PUBLIC_INTERFACE
def current_step(steps: Sequence[ProductionStep]) -> Optional[ProductionStep]:
    """Lowest-numbered step that is pending or in progress."""
    open_steps = [s for s in steps if s.status in OPEN_STEP_STATUSES]
    if not open_steps:
        return None
    return min(open_steps, key=lambda s: s.step_number)


# PUBLIC_INTERFACE
def build_work_center_queue(
    rows: Sequence[Tuple[ProductionStep, ProductionOrder]],
    work_center_id: Optional[UUID] = None,
) -> WorkCenterQueue:
    """
    Build the queue of active orders with an open step at a work center.

    `rows` are open steps joined with their orders, grouped by order and sorted by
    step_number within an order. Orders that are complete or on hold are skipped. Each
    item reports the order's current step, which may sit at an earlier work center.
    Without a work center, every order with an open step at any work center is returned.
    """
    grouped: Dict[UUID, Tuple[ProductionOrder, List[ProductionStep]]] = {}
    for step, order in rows:
        if order.status in QUEUE_EXCLUDED_ORDER_STATUSES:
            continue
        grouped.setdefault(order.id, (order, []))[1].append(step)

    items: List[WorkCenterQueueItem] = []
    counts: Dict[str, int] = {}
    for order, steps in grouped.values():
        if work_center_id is not None:
            targeted = any(s.work_center_id == work_center_id for s in steps)
        else:
            targeted = any(s.work_center_id is not None for s in steps)
        head = current_step(steps)
        if not targeted or head is None:
            continue
        items.append(
            WorkCenterQueueItem(
                order_id=order.id,
                order_number=order.order_number,
                title=order.title,
                status=order.status,
                priority=order.priority,
                scheduled_start=order.scheduled_start,
                step_id=head.id,
                step_number=head.step_number,
                step_name=head.name,
                step_status=head.status,
                work_center_id=head.work_center_id,
            )
        )
        counts[order.status] = counts.get(order.status, 0) + 1
    return WorkCenterQueue(work_center_id=work_center_id, items=items, counts=counts)


class ManufacturingService(BaseService):
    """
    Production order execution: orders, routing steps, BOM lines, technician time and
    material moves.
    """

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        super().__init__(session, tenant_id)
        self.orders = ProductionOrderRepository(session)
        self.time_logs = TimeLogRepository(session)
        self.moves = MaterialMoveRepository(session)
        self.work_centers = WorkCenterRepository(session)
        self.parts = PartRepository(session)
        self.inventory = MESInventoryService(session, tenant_id)

    async def _get_order(self, order_id: UUID) -> ProductionOrder:
        order = await self.orders.get_order(order_id)
        if order is None:
            raise NotFoundError("Production order not found")
        return order

    async def _get_step(self, step_id: UUID) -> ProductionStep:
        step = await self.orders.get_step(step_id)
        if step is None:
            raise NotFoundError("Production step not found")
        return step

    async def _get_move(self, move_id: UUID) -> MaterialMoveRequest:
        move = await self.moves.get_move(move_id)
        if move is None:
            raise NotFoundError("Material move request not found")
        return move

    # Orders

    # PUBLIC_INTERFACE
    async def get_dashboard(self, filters: DashboardFilters, limit: int = 200, offset: int = 0) -> List[DashboardOrder]:
        """Orders by priority then scheduled start, each with step progress and current work center."""
        orders = await self.orders.list_orders(
            status=filters.status,
            priority=filters.priority,
            customer_id=filters.customer_id,
            assigned_to=filters.assigned_to,
            search=filters.search,
            limit=limit,
            offset=offset,
        )
        steps = await self.orders.list_steps_for_orders([o.id for o in orders])
        by_order: Dict[UUID, List[ProductionStep]] = {}
        for step in steps:
            by_order.setdefault(step.production_order_id, []).append(step)

        current = {o.id: current_step(by_order.get(o.id, [])) for o in orders}
        wc_ids = {s.work_center_id for s in current.values() if s is not None and s.work_center_id}
        wc_names = {wc.id: wc.name for wc in await self.work_centers.list_by_ids(list(wc_ids))}

        out: List[DashboardOrder] = []
        for order in orders:
            order_steps = by_order.get(order.id, [])
            step = current[order.id]
            item = DashboardOrder.model_validate(order)
            item.total_steps = len(order_steps)
            item.completed_steps = sum(1 for s in order_steps if s.status == "complete")
            if step is not None and step.work_center_id:
                item.current_work_center_id = step.work_center_id
                item.current_work_center_name = wc_names.get(step.work_center_id)
            out.append(item)
        return out

    # PUBLIC_INTERFACE
    async def get_stats(self) -> ProductionStats:
        by_status = await self.orders.count_by_status()
        tz = plant_timezone()
        midnight = datetime.combine(utcnow().astimezone(tz).date(), time.min, tzinfo=tz)
        avg_seconds = await self.orders.avg_cycle_time_seconds()
        return ProductionStats(
            total=sum(by_status.values()),
            by_status=StatusCounts(**{k: v for k, v in by_status.items() if k in StatusCounts.model_fields}),
            today_completed=await self.orders.count_completed_since(midnight),
            avg_cycle_time_hours=round(avg_seconds / 3600.0, 1) if avg_seconds is not None else None,
        )

    # PUBLIC_INTERFACE
    async def get_order_detail(self, order_id: UUID) -> OrderDetail:
        order = await self._get_order(order_id)
        return OrderDetail(
            order=ProductionOrderRead.model_validate(order),
            steps=[ProductionStepRead.model_validate(s) for s in await self.orders.list_steps(order_id)],
            bom=[BomItemRead.model_validate(b) for b in await self.orders.list_bom(order_id)],
            time_logs=[TimeLogRead.model_validate(t) for t in await self.time_logs.list_for_order(order_id)],
            material_moves=[MaterialMoveRead.model_validate(m) for m in await self.moves.list_for_order(order_id)],
        )

    # PUBLIC_INTERFACE
    async def create_order(self, payload: ProductionOrderCreate, created_by: Optional[UUID]) -> ProductionOrder:
        """Create an order numbered PO-YY-NNNNN (next in sequence for the current year)."""
        year = utcnow().year
        prefix = f"PO-{year % 100:02d}-"
        order_number = next_document_number("PO", year, await self.orders.latest_order_number(prefix))
        order = await self.orders.create_order(order_number=order_number, created_by=created_by, **payload.model_dump())
        await self.commit()
        logger.info("Production order %s created", order_number)
        await publish_kpis(self.session, self.tenant_id)
        return order

    # PUBLIC_INTERFACE
    async def update_order(self, order_id: UUID, payload: ProductionOrderUpdate) -> ProductionOrder:
        await self._get_order(order_id)
        order = await self.orders.update_order(order_id, payload.model_dump(exclude_unset=True))
        await self.commit()
        return order  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def put_on_hold(self, order_id: UUID, reason: str) -> ProductionOrder:
        if not reason or not reason.strip():
            raise ValidationFailedError("A hold reason is required")
        order = await self._get_order(order_id)
        if order.status == "complete":
            raise ConflictError("Cannot put a completed order on hold", details={"current": order.status})
        updated = await self.orders.update_order(order_id, {"status": "hold", "hold_reason": reason})
        await self.commit()
        logger.info("Production order %s put on hold: %s", order.order_number, reason)
        await publish_kpis(self.session, self.tenant_id)
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def resume_order(self, order_id: UUID) -> ProductionOrder:
        order = await self._get_order(order_id)
        if order.status != "hold":
            raise ConflictError("Only orders on hold can be resumed", details={"current": order.status})
        updated = await self.orders.update_order(order_id, {"status": "in_progress", "hold_reason": None})
        await self.commit()
        await publish_kpis(self.session, self.tenant_id)
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def complete_order(
        self, order_id: UUID, user_id: Optional[UUID], quantity_completed: Optional[float] = None
    ) -> CompleteOrderResult:
        """
        Backflush the order's BOM, then mark it complete.

        When every outstanding BOM line fails (nothing consumed), the order stays open and
        a ValidationFailedError carries the per-line errors. Partial failures complete the
        order and are reported in the result.
        """
        order = await self._get_order(order_id)
        if order.status == "complete":
            raise ConflictError("Production order is already complete")

        consumption = await self.inventory.backflush_order(order_id, user_id)
        if consumption.errors and not consumption.consumed_items:
            await self.session.rollback()
            raise ValidationFailedError(
                "Material consumption failed; order not completed",
                details={"errors": [e.model_dump(mode="json") for e in consumption.errors]},
            )

        values: dict = {"status": "complete", "actual_end": utcnow()}
        if quantity_completed is not None:
            values["quantity_completed"] = quantity_completed
        updated = await self.orders.update_order(order_id, values)
        await self.commit()
        logger.info(
            "Production order %s completed; %d BOM line(s) consumed, %d error(s)",
            order.order_number,
            len(consumption.consumed_items),
            len(consumption.errors),
        )
        await publish_kpis(self.session, self.tenant_id)
        return CompleteOrderResult(order=ProductionOrderRead.model_validate(updated), consumption=consumption)

    # Steps

    # PUBLIC_INTERFACE
    async def add_step(self, order_id: UUID, payload: ProductionStepCreate) -> ProductionStep:
        await self._get_order(order_id)
        if payload.work_center_id and await self.work_centers.get_work_center(payload.work_center_id) is None:
            raise NotFoundError("Work center not found")
        step_number = await self.orders.max_step_number(order_id) + 1
        step = await self.orders.create_step(
            production_order_id=order_id, step_number=step_number, **payload.model_dump()
        )
        await self.commit()
        return step

    # PUBLIC_INTERFACE
    async def update_step_status(self, step_id: UUID, status: str, user_id: Optional[UUID]) -> ProductionStep:
        """
        Move a step through pending -> in_progress -> complete/skipped.

        Starting the first step of a queued order moves the order to in_progress.
        """
        step = await self._get_step(step_id)
        ensure_transition("step", step.status, status, STEP_TRANSITIONS)

        now = utcnow()
        values: dict = {"status": status}
        order_changed = False
        if status == "in_progress":
            values["started_at"] = now
            order = await self.orders.get_order(step.production_order_id)
            if order is not None and order.status == "queued":
                await self.orders.update_order(order.id, {"status": "in_progress", "actual_start": now})
                order_changed = True
        elif status in ("complete", "skipped"):
            values["completed_at"] = now
            values["completed_by"] = user_id
            if step.started_at is not None:
                values["actual_minutes"] = round((now - step.started_at).total_seconds() / 60.0)
        else:
            values["started_at"] = None

        updated = await self.orders.update_step(step_id, values)
        await self.commit()
        if order_changed:
            await publish_kpis(self.session, self.tenant_id)
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def delete_step(self, step_id: UUID) -> None:
        step = await self._get_step(step_id)
        await self.orders.delete(step)
        await self.commit()

    # BOM

    # PUBLIC_INTERFACE
    async def add_bom_item(self, order_id: UUID, payload: BomItemCreate) -> BomItem:
        await self._get_order(order_id)
        if await self.parts.get_part(payload.part_id) is None:
            raise NotFoundError("Part not found")
        if any(b.part_id == payload.part_id for b in await self.orders.list_bom(order_id)):
            raise ConflictError("Part is already on the BOM for this order")
        item = await self.orders.create_bom_item(production_order_id=order_id, **payload.model_dump())
        await self.commit()
        return item

    # PUBLIC_INTERFACE
    async def remove_bom_item(self, item_id: UUID) -> None:
        item = await self.orders.get_bom_item(item_id)
        if item is None:
            raise NotFoundError("BOM item not found")
        await self.orders.delete(item)
        await self.commit()

    # PUBLIC_INTERFACE
    async def allocate_bom_item(self, item_id: UUID, location_id: UUID, quantity: float) -> BomItem:
        item = await self.orders.get_bom_item(item_id)
        if item is None:
            raise NotFoundError("BOM item not found")
        if await self.parts.get_location(location_id) is None:
            raise NotFoundError("Stock location not found")
        updated = await self.orders.update_bom_item(
            item_id,
            {"source_location_id": location_id, "quantity_allocated": quantity, "is_allocated": True},
        )
        await self.commit()
        return updated  # type: ignore[return-value]

    # Time tracking

    # PUBLIC_INTERFACE
    async def clock_in(
        self,
        order_id: UUID,
        technician_id: UUID,
        step_id: Optional[UUID] = None,
        work_center_id: Optional[UUID] = None,
    ) -> TimeLog:
        await self._get_order(order_id)
        if await self.time_logs.get_open_log(order_id, technician_id) is not None:
            raise ConflictError("Technician is already clocked in on this order")
        log = await self.time_logs.create_time_log(
            production_order_id=order_id,
            production_step_id=step_id,
            work_center_id=work_center_id,
            technician_id=technician_id,
            clock_in=utcnow(),
        )
        await self.commit()
        return log

    # PUBLIC_INTERFACE
    async def clock_out(self, time_log_id: UUID, notes: Optional[str] = None) -> TimeLog:
        log = await self.time_logs.get_time_log(time_log_id)
        if log is None:
            raise NotFoundError("Time log not found")
        if log.clock_out is not None:
            raise ConflictError("Time log is already clocked out")
        values: dict = {"clock_out": utcnow()}
        if notes is not None:
            values["notes"] = notes
        updated = await self.time_logs.update_time_log(time_log_id, values)
        await self.commit()
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def get_active_time_log(self, order_id: UUID, technician_id: UUID) -> Optional[TimeLog]:
        return await self.time_logs.get_open_log(order_id, technician_id)

    # Material moves

    # PUBLIC_INTERFACE
    async def get_move_queue(
        self,
        status: Optional[str] = None,
        assigned_to: Optional[UUID] = None,
        work_center_id: Optional[UUID] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[MaterialMoveRequest]:
        return await self.moves.list_moves(
            status=status, assigned_to=assigned_to, work_center_id=work_center_id, limit=limit, offset=offset
        )

    # PUBLIC_INTERFACE
    async def request_material_move(self, payload: MaterialMoveCreate, requested_by: Optional[UUID]) -> MaterialMoveRequest:
        move = await self.moves.create_move(requested_by=requested_by, **payload.model_dump())
        await self.commit()
        return move

    # PUBLIC_INTERFACE
    async def assign_move(self, move_id: UUID, assignee_id: UUID) -> MaterialMoveRequest:
        move = await self._get_move(move_id)
        if move.status not in MOVE_TRANSITIONS:
            raise ConflictError(f"Cannot assign a {move.status} move request")
        updated = await self.moves.update_move(move_id, {"assigned_to": assignee_id})
        await self.commit()
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def start_move(self, move_id: UUID, user_id: UUID) -> MaterialMoveRequest:
        move = await self._get_move(move_id)
        ensure_transition("move", move.status, "in_transit", MOVE_TRANSITIONS)
        updated = await self.moves.update_move(
            move_id, {"status": "in_transit", "started_at": utcnow(), "assigned_to": user_id}
        )
        await self.commit()
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def claim_move(self, move_id: UUID, user_id: UUID) -> MaterialMoveRequest:
        """Claim an unassigned request; same effect as starting it."""
        return await self.start_move(move_id, user_id)

    # PUBLIC_INTERFACE
    async def complete_move(self, move_id: UUID) -> MaterialMoveRequest:
        move = await self._get_move(move_id)
        ensure_transition("move", move.status, "delivered", MOVE_TRANSITIONS)
        updated = await self.moves.update_move(move_id, {"status": "delivered", "completed_at": utcnow()})
        await self.commit()
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def cancel_move(self, move_id: UUID, reason: Optional[str] = None) -> MaterialMoveRequest:
        move = await self._get_move(move_id)
        ensure_transition("move", move.status, "cancelled", MOVE_TRANSITIONS)
        values: dict = {"status": "cancelled"}
        if reason:
            values["notes"] = reason
        updated = await self.moves.update_move(move_id, values)
        await self.commit()
        return updated  # type: ignore[return-value]

    # Work-center queue

    # PUBLIC_INTERFACE
    async def get_work_center_queue(self, work_center_id: Optional[UUID] = None) -> WorkCenterQueue:
        if work_center_id and await self.work_centers.get_work_center(work_center_id) is None:
            raise NotFoundError("Work center not found")
        return build_work_center_queue(await self.orders.list_open_steps(), work_center_id)
