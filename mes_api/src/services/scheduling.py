from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConflictError, NotFoundError
from src.db.models.master_data import WorkCenter
from src.db.models.scheduling import OperationRun
from src.repositories.master_data import WorkCenterRepository
from src.repositories.production import ProductionOrderRepository
from src.repositories.scheduling import OperationRunRepository
from src.schemas.realtime import SchedulerEvent
from src.schemas.scheduling import (
    ScheduleConflict,
    ScheduleCreate,
    ScheduleListItem,
    ScheduleUpdate,
    ScheduleValidationResult,
    WorkCenterCapacity,
)
from src.services.base import BaseService, ensure_transition, plant_timezone, utcnow
from src.services.realtime import publish_scheduler

logger = logging.getLogger(__name__)

RUN_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "NOT_STARTED": ("RUNNING",),
    "RUNNING": ("PAUSED", "COMPLETED"),
    "PAUSED": ("RUNNING", "COMPLETED"),
}


def effective_end(start: datetime, end: Optional[datetime], default_minutes: int) -> datetime:
    """Scheduled end, or start + the default duration when the run has none."""
    return end if end is not None else start + timedelta(minutes=default_minutes)


# PUBLIC_INTERFACE
def detect_overlaps(
    start: datetime,
    end: datetime,
    existing: Iterable[Tuple[OperationRun, Optional[str]]],
    default_minutes: int,
) -> List[ScheduleConflict]:
    """
    Return an overlap conflict for each existing run intersecting [start, end).

    Intervals are half-open, so back-to-back runs do not conflict.
    """
    conflicts: List[ScheduleConflict] = []
    for run, order_number in existing:
        if run.scheduled_start_ts is None:
            continue
        run_start = run.scheduled_start_ts
        run_end = effective_end(run_start, run.scheduled_end_ts, default_minutes)
        if start < run_end and end > run_start:
            conflicts.append(
                ScheduleConflict(
                    type="overlap",
                    message=f"Overlaps with order {order_number or 'Unknown'}",
                    conflicting_schedule_id=run.id,
                    conflicting_order_number=order_number,
                    start_ts=run_start,
                    end_ts=run_end,
                )
            )
    return conflicts


def overlap_minutes(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> float:
    latest_start = max(a_start, b_start)
    earliest_end = min(a_end, b_end)
    return max(0.0, (earliest_end - latest_start).total_seconds() / 60.0)


# PUBLIC_INTERFACE
def daily_capacity(
    work_center: WorkCenter,
    day: date,
    runs: Sequence[OperationRun],
    *,
    tz: tzinfo,
    daily_hours: float,
    default_minutes: int,
) -> WorkCenterCapacity:
    """Capacity of one work center for one plant-local calendar day."""
    day_start = datetime.combine(day, time.min, tzinfo=tz)
    day_end = day_start + timedelta(days=1)
    total = daily_hours * 60.0
    scheduled = 0.0
    for run in runs:
        if run.work_center_id != work_center.id or run.status == "COMPLETED" or run.scheduled_start_ts is None:
            continue
        run_end = effective_end(run.scheduled_start_ts, run.scheduled_end_ts, default_minutes)
        scheduled += overlap_minutes(run.scheduled_start_ts, run_end, day_start, day_end)
    utilization = round(scheduled / total * 100) if total > 0 else 0
    return WorkCenterCapacity(
        work_center_id=work_center.id,
        work_center_name=work_center.name,
        work_center_code=work_center.code,
        date=day,
        total_capacity_minutes=round(total),
        scheduled_minutes=round(scheduled),
        available_minutes=round(total - scheduled),
        utilization_percent=utilization,
    )


class ProductionSchedulingService(BaseService):
    """
    Work-center scheduling of production orders.

    Every mutation commits and then publishes a scheduler event so planner boards refresh.
    """

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        super().__init__(session, tenant_id)
        self.runs = OperationRunRepository(session)
        self.orders = ProductionOrderRepository(session)
        self.work_centers = WorkCenterRepository(session)

    @property
    def default_minutes(self) -> int:
        return int(self.settings.DEFAULT_SCHEDULE_DURATION_MINUTES)

    async def _get_run(self, run_id: UUID) -> OperationRun:
        run = await self.runs.get_run(run_id)
        if run is None:
            raise NotFoundError("Schedule not found")
        return run

    async def _publish(self, event: str, run: OperationRun, user_id: Optional[UUID] = None) -> None:
        await publish_scheduler(
            self.tenant_id,
            SchedulerEvent(
                event=event,
                operation_id=run.id,
                user_id=user_id,
                details={
                    "work_center_id": str(run.work_center_id),
                    "production_order_id": str(run.production_order_id),
                    "status": run.status,
                },
            ),
        )

    # PUBLIC_INTERFACE
    async def detect_conflicts(
        self,
        work_center_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> List[ScheduleConflict]:
        existing = await self.runs.list_active_with_orders(work_center_id, exclude_id=exclude_id)
        return detect_overlaps(start, end, existing, self.default_minutes)

    # PUBLIC_INTERFACE
    async def validate_schedule(self, payload: ScheduleCreate) -> ScheduleValidationResult:
        """Check order, work center, times and overlaps; state problems that don't block are warnings."""
        result = ScheduleValidationResult()
        start = payload.scheduled_start_ts
        end = effective_end(start, payload.scheduled_end_ts, self.default_minutes)

        order = await self.orders.get_order(payload.production_order_id)
        if order is None:
            result.conflicts.append(ScheduleConflict(type="resource", message="Production order not found"))
        elif order.status == "complete":
            result.warnings.append("Production order is already complete")
        elif order.status == "hold":
            result.warnings.append("Production order is on hold")

        work_center = await self.work_centers.get_work_center(payload.work_center_id)
        if work_center is None:
            result.conflicts.append(ScheduleConflict(type="resource", message="Work center not found"))
        elif not work_center.is_active:
            result.warnings.append(f'Work center "{work_center.name}" is inactive')

        if end < start:
            result.conflicts.append(
                ScheduleConflict(
                    type="resource", message="Scheduled end must be after scheduled start", start_ts=start, end_ts=end
                )
            )
        elif work_center is not None:
            result.conflicts.extend(await self.detect_conflicts(payload.work_center_id, start, end))

        result.valid = not result.conflicts
        return result

    # PUBLIC_INTERFACE
    async def schedule_order(self, payload: ScheduleCreate, user_id: Optional[UUID]) -> OperationRun:
        validation = await self.validate_schedule(payload)
        if not validation.valid:
            raise ConflictError(
                "Schedule conflicts detected",
                details={
                    "conflicts": [c.model_dump(mode="json") for c in validation.conflicts],
                    "warnings": validation.warnings,
                },
            )
        sequence = payload.sequence_number or (await self.runs.max_sequence(payload.work_center_id) + 1)
        run = await self.runs.create_run(
            production_order_id=payload.production_order_id,
            production_step_id=payload.production_step_id,
            work_center_id=payload.work_center_id,
            equipment_asset_id=payload.equipment_asset_id,
            status="NOT_STARTED",
            scheduled_start_ts=payload.scheduled_start_ts,
            scheduled_end_ts=effective_end(payload.scheduled_start_ts, payload.scheduled_end_ts, self.default_minutes),
            sequence_number=sequence,
            notes=payload.notes,
        )
        await self.commit()
        logger.info("Scheduled order %s on work center %s", payload.production_order_id, payload.work_center_id)
        await self._publish("schedule.created", run, user_id)
        return run

    # PUBLIC_INTERFACE
    async def update_schedule(self, run_id: UUID, payload: ScheduleUpdate, user_id: Optional[UUID] = None) -> OperationRun:
        run = await self._get_run(run_id)
        values = payload.model_dump(exclude_unset=True)
        moved = any(k in values for k in ("work_center_id", "scheduled_start_ts", "scheduled_end_ts"))
        if moved:
            work_center_id = values.get("work_center_id") or run.work_center_id
            start = values.get("scheduled_start_ts") or run.scheduled_start_ts
            if start is not None:
                end = effective_end(start, values.get("scheduled_end_ts") or run.scheduled_end_ts, self.default_minutes)
                if end < start:
                    conflict = ScheduleConflict(
                        type="resource", message="Scheduled end must be after scheduled start", start_ts=start, end_ts=end
                    )
                    raise ConflictError(
                        "Schedule conflicts detected",
                        details={"conflicts": [conflict.model_dump(mode="json")]},
                    )
                conflicts = await self.detect_conflicts(work_center_id, start, end, exclude_id=run_id)
                if conflicts:
                    raise ConflictError(
                        "Schedule conflicts detected",
                        details={"conflicts": [c.model_dump(mode="json") for c in conflicts]},
                    )
        updated = await self.runs.update_run(run_id, values)
        await self.commit()
        await self._publish("schedule.updated", updated, user_id)  # type: ignore[arg-type]
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def reorder_schedules(self, work_center_id: UUID, ordered_ids: Sequence[UUID]) -> List[OperationRun]:
        """Set sequence_number = position + 1 for the listed runs that belong to the work center."""
        in_center = {r.id for r in await self.runs.list_for_work_center(work_center_id)}
        updated: List[OperationRun] = []
        for position, run_id in enumerate(ordered_ids):
            if run_id not in in_center:
                continue
            run = await self.runs.update_run(run_id, {"sequence_number": position + 1})
            if run is not None:
                updated.append(run)
        await self.commit()
        await publish_scheduler(
            self.tenant_id,
            SchedulerEvent(
                event="schedule.reordered",
                details={"work_center_id": str(work_center_id), "ordered_ids": [str(r.id) for r in updated]},
            ),
        )
        return updated

    # PUBLIC_INTERFACE
    async def list_schedules(
        self,
        *,
        work_center_id: Optional[UUID] = None,
        status: Optional[str] = None,
        production_order_id: Optional[UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        limit: int = 500,
        offset: int = 0,
    ) -> List[ScheduleListItem]:
        """Schedule rows; date bounds are inclusive plant-local calendar dates of scheduled_start."""
        tz = plant_timezone()
        start_from = datetime.combine(from_date, time.min, tzinfo=tz) if from_date else None
        start_before = datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=tz) if to_date else None
        rows = await self.runs.list_schedules(
            work_center_id=work_center_id,
            status=status,
            production_order_id=production_order_id,
            start_from=start_from,
            start_before=start_before,
            limit=limit,
            offset=offset,
        )
        out: List[ScheduleListItem] = []
        for run, order, work_center in rows:
            item = ScheduleListItem.model_validate(run)
            item.order_number = order.order_number
            item.order_title = order.title
            item.order_priority = order.priority
            item.work_center_name = work_center.name
            item.work_center_code = work_center.code
            out.append(item)
        return out

    # PUBLIC_INTERFACE
    async def get_work_center_timeline(self, work_center_id: UUID, from_ts: datetime, to_ts: datetime) -> List[OperationRun]:
        return await self.runs.list_timeline(work_center_id, from_ts, to_ts)

    # PUBLIC_INTERFACE
    async def get_work_center_capacity(
        self, work_center_ids: Optional[Sequence[UUID]], from_date: date, to_date: date
    ) -> List[WorkCenterCapacity]:
        """One row per work center per day between from_date and to_date inclusive."""
        if work_center_ids:
            centers = await self.work_centers.list_by_ids(list(work_center_ids))
        else:
            centers = await self.work_centers.list_work_centers(active_only=True)
        tz = plant_timezone()
        window_start = datetime.combine(from_date, time.min, tzinfo=tz)
        window_end = datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=tz)
        runs = await self.runs.list_overlapping([c.id for c in centers], window_start, window_end)

        out: List[WorkCenterCapacity] = []
        for center in centers:
            day = from_date
            while day <= to_date:
                out.append(
                    daily_capacity(
                        center,
                        day,
                        runs,
                        tz=tz,
                        daily_hours=float(self.settings.DAILY_CAPACITY_HOURS),
                        default_minutes=self.default_minutes,
                    )
                )
                day += timedelta(days=1)
        return out

    # PUBLIC_INTERFACE
    async def start_operation(self, run_id: UUID, user_id: Optional[UUID]) -> OperationRun:
        run = await self._get_run(run_id)
        ensure_transition("operation", run.status, "RUNNING", RUN_TRANSITIONS)
        updated = await self.runs.update_run(
            run_id, {"status": "RUNNING", "start_ts": run.start_ts or utcnow(), "started_by": user_id}
        )
        await self.commit()
        await self._publish("operation.started", updated, user_id)  # type: ignore[arg-type]
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def pause_operation(self, run_id: UUID, user_id: Optional[UUID] = None) -> OperationRun:
        run = await self._get_run(run_id)
        ensure_transition("operation", run.status, "PAUSED", RUN_TRANSITIONS)
        updated = await self.runs.update_run(run_id, {"status": "PAUSED"})
        await self.commit()
        await self._publish("operation.paused", updated, user_id)  # type: ignore[arg-type]
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def complete_operation(self, run_id: UUID, user_id: Optional[UUID]) -> OperationRun:
        run = await self._get_run(run_id)
        ensure_transition("operation", run.status, "COMPLETED", RUN_TRANSITIONS)
        updated = await self.runs.update_run(
            run_id, {"status": "COMPLETED", "end_ts": utcnow(), "completed_by": user_id}
        )
        await self.commit()
        await self._publish("operation.completed", updated, user_id)  # type: ignore[arg-type]
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def delete_schedule(self, run_id: UUID, user_id: Optional[UUID] = None) -> None:
        run = await self._get_run(run_id)
        if run.status != "NOT_STARTED":
            raise ConflictError("Can only delete schedules that have not started", details={"current": run.status})
        await self.runs.delete(run)
        await self.commit()
        await self._publish("schedule.deleted", run, user_id)
