from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import NotFoundError, ValidationFailedError
from src.db.models.oee import OEESnapshot, ProductionCount
from src.repositories.master_data import EquipmentRepository, WorkCenterRepository
from src.repositories.oee import OEERepository
from src.repositories.scheduling import OperationRunRepository
from src.schemas.oee import CycleTimeInfo, OEEMetrics, OEETrendPoint, ProductionCountCreate, SetCycleTimeRequest
from src.services.base import BaseService, plant_timezone, utcnow
from src.services.realtime import publish_kpis

logger = logging.getLogger(__name__)

COUNT_TOLERANCE = 0.0001

# name -> (start hour, end hour); end <= start wraps to the next day
SHIFT_WINDOWS = {
    "1st Shift": (6, 14),
    "2nd Shift": (14, 22),
    "3rd Shift": (22, 6),
}


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# PUBLIC_INTERFACE
def planned_production_seconds(from_ts: datetime, to_ts: datetime, shift_hours: float) -> float:
    """Planned time for a window: whole days (rounded up) x shift hours."""
    days = math.ceil((to_ts - from_ts).total_seconds() / 86400.0)
    return max(days, 0) * shift_hours * 3600.0


# PUBLIC_INTERFACE
def compute_oee_metrics(
    *,
    planned_seconds: float,
    planned_downtime_seconds: float,
    unplanned_downtime_seconds: float,
    total_count: float,
    good_count: float,
    scrap_count: float = 0.0,
    rework_count: float = 0.0,
    ideal_cycle_time_seconds: float,
) -> OEEMetrics:
    """
    Compute availability, performance, quality and OEE.

    A = (planned - downtime) / planned
    P = ideal_cycle x total / run_time
    Q = good / total
    Each factor is clamped to [0, 1]; a zero denominator yields 0 for that factor.
    """
    downtime = planned_downtime_seconds + unplanned_downtime_seconds
    run_time = max(0.0, planned_seconds - downtime)

    availability = _clamp((planned_seconds - downtime) / planned_seconds) if planned_seconds > 0 else 0.0
    performance = _clamp(ideal_cycle_time_seconds * total_count / run_time) if run_time > 0 else 0.0
    quality = _clamp(good_count / total_count) if total_count > 0 else 0.0
    oee = availability * performance * quality

    actual_cycle = run_time / total_count if run_time > 0 and total_count > 0 else None

    return OEEMetrics(
        planned_production_time_seconds=planned_seconds,
        actual_run_time_seconds=run_time,
        downtime_seconds=downtime,
        planned_downtime_seconds=planned_downtime_seconds,
        unplanned_downtime_seconds=unplanned_downtime_seconds,
        total_count=total_count,
        good_count=good_count,
        scrap_count=scrap_count,
        rework_count=rework_count,
        ideal_cycle_time_seconds=ideal_cycle_time_seconds,
        actual_cycle_time_seconds=actual_cycle,
        availability=availability,
        performance=performance,
        quality=quality,
        oee=oee,
        availability_pct=round(availability * 100, 2),
        performance_pct=round(performance * 100, 2),
        quality_pct=round(quality * 100, 2),
        oee_pct=round(oee * 100, 2),
    )


# PUBLIC_INTERFACE
def shift_window(day: date, shift_name: Optional[str], tz: tzinfo) -> Tuple[datetime, datetime]:
    """
    Return the [start, end] window of a named shift on a plant-local day.

    Unknown or missing shift names cover the whole day (00:00 to 23:59:59.999).
    """
    hours = SHIFT_WINDOWS.get(shift_name or "")
    if hours is None:
        start = datetime.combine(day, time.min, tzinfo=tz)
        return start, start + timedelta(days=1) - timedelta(milliseconds=1)
    start_hour, end_hour = hours
    start = datetime.combine(day, time(start_hour), tzinfo=tz)
    end_day = day + timedelta(days=1) if end_hour <= start_hour else day
    end = datetime.combine(end_day, time(end_hour), tzinfo=tz)
    return start, end


class OEEService(BaseService):
    """OEE calculation, production count capture and snapshot storage."""

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        super().__init__(session, tenant_id)
        self.repo = OEERepository(session)
        self.work_centers = WorkCenterRepository(session)
        self.equipment = EquipmentRepository(session)
        self.runs = OperationRunRepository(session)

    # PUBLIC_INTERFACE
    async def get_ideal_cycle_time(
        self, work_center_id: Optional[UUID], equipment_asset_id: Optional[UUID] = None
    ) -> CycleTimeInfo:
        """Resolve the ideal cycle time: equipment first, then work center, then the system default."""
        if equipment_asset_id:
            asset = await self.equipment.get_equipment(equipment_asset_id)
            if asset is not None and asset.ideal_cycle_time_seconds:
                return CycleTimeInfo(
                    cycle_time_seconds=float(asset.ideal_cycle_time_seconds),
                    source="equipment",
                    source_id=asset.id,
                    source_name=asset.name,
                )
        if work_center_id:
            wc = await self.work_centers.get_work_center(work_center_id)
            if wc is not None and wc.ideal_cycle_time_seconds:
                return CycleTimeInfo(
                    cycle_time_seconds=float(wc.ideal_cycle_time_seconds),
                    source="work_center",
                    source_id=wc.id,
                    source_name=wc.name,
                )
        return CycleTimeInfo(
            cycle_time_seconds=float(self.settings.DEFAULT_CYCLE_TIME_SECONDS),
            source="default",
            source_name="System Default",
        )

    # PUBLIC_INTERFACE
    async def set_ideal_cycle_time(self, payload: SetCycleTimeRequest) -> CycleTimeInfo:
        if payload.cycle_time_seconds is None or payload.cycle_time_seconds <= 0:
            raise ValidationFailedError("cycle_time_seconds must be greater than zero")
        if payload.equipment_asset_id:
            asset = await self.equipment.update_equipment(
                payload.equipment_asset_id, {"ideal_cycle_time_seconds": payload.cycle_time_seconds}
            )
            if asset is None:
                raise NotFoundError("Equipment asset not found")
            await self.commit()
            return CycleTimeInfo(
                cycle_time_seconds=payload.cycle_time_seconds, source="equipment", source_id=asset.id, source_name=asset.name
            )
        if payload.work_center_id:
            wc = await self.work_centers.update_work_center(
                payload.work_center_id, {"ideal_cycle_time_seconds": payload.cycle_time_seconds}
            )
            if wc is None:
                raise NotFoundError("Work center not found")
            await self.commit()
            return CycleTimeInfo(
                cycle_time_seconds=payload.cycle_time_seconds, source="work_center", source_id=wc.id, source_name=wc.name
            )
        raise ValidationFailedError("Must specify equipment_asset_id or work_center_id")

    # PUBLIC_INTERFACE
    async def calculate_oee(self, work_center_id: UUID, from_ts: datetime, to_ts: datetime) -> OEEMetrics:
        wc = await self.work_centers.get_work_center(work_center_id)
        if wc is None:
            raise NotFoundError("Work center not found")

        planned = planned_production_seconds(from_ts, to_ts, float(self.settings.DEFAULT_SHIFT_HOURS))
        planned_dt, unplanned_dt = await self.repo.sum_downtime(work_center_id, from_ts, to_ts)
        total, good, scrap, rework = await self.repo.sum_counts(work_center_id, from_ts, to_ts)
        cycle = await self.get_ideal_cycle_time(work_center_id)

        metrics = compute_oee_metrics(
            planned_seconds=planned,
            planned_downtime_seconds=planned_dt,
            unplanned_downtime_seconds=unplanned_dt,
            total_count=total,
            good_count=good,
            scrap_count=scrap,
            rework_count=rework,
            ideal_cycle_time_seconds=cycle.cycle_time_seconds,
        )
        metrics.period_start = from_ts
        metrics.period_end = to_ts
        metrics.scope_type = "work_center"
        metrics.scope_id = wc.id
        metrics.scope_name = wc.name
        return metrics

    # PUBLIC_INTERFACE
    async def calculate_shift_oee(self, work_center_id: UUID, day: date, shift_name: Optional[str] = None) -> OEEMetrics:
        start, end = shift_window(day, shift_name, plant_timezone())
        return await self.calculate_oee(work_center_id, start, end)

    # PUBLIC_INTERFACE
    async def get_oee_trend(
        self, work_center_id: UUID, from_ts: datetime, to_ts: datetime, granularity: str = "daily"
    ) -> List[OEETrendPoint]:
        """
        Stored snapshots for the window, or daily values computed on the fly when none are
        stored and granularity is daily.
        """
        snapshots = await self.repo.list_snapshots(
            grain=granularity,
            scope_type="work_center",
            scope_id=work_center_id,
            from_ts=from_ts,
            to_ts=to_ts,
            ascending=True,
        )
        if snapshots:
            return [
                OEETrendPoint(
                    period_start=s.period_start,
                    period_end=s.period_end,
                    shift_name=s.shift_name,
                    availability_pct=s.availability_pct,
                    performance_pct=s.performance_pct,
                    quality_pct=s.quality_pct,
                    oee_pct=s.oee_pct,
                    total_count=s.total_count,
                    good_count=s.good_count,
                    downtime_minutes=round(float(s.downtime_seconds) / 60.0, 2),
                )
                for s in snapshots
            ]
        if granularity != "daily":
            return []

        tz = plant_timezone()
        points: List[OEETrendPoint] = []
        day = from_ts.astimezone(tz).date()
        last = to_ts.astimezone(tz).date()
        while day <= last:
            start, end = shift_window(day, None, tz)
            m = await self.calculate_oee(work_center_id, start, end)
            points.append(
                OEETrendPoint(
                    period_start=start,
                    period_end=end,
                    availability_pct=m.availability_pct,
                    performance_pct=m.performance_pct,
                    quality_pct=m.quality_pct,
                    oee_pct=m.oee_pct,
                    total_count=m.total_count,
                    good_count=m.good_count,
                    downtime_minutes=round(m.downtime_seconds / 60.0, 2),
                )
            )
            day += timedelta(days=1)
        return points

    # PUBLIC_INTERFACE
    async def record_production_count(self, payload: ProductionCountCreate, user_id: Optional[UUID]) -> ProductionCount:
        """Record a count; good + scrap + rework must equal total."""
        for name in ("total_qty", "good_qty", "scrap_qty", "rework_qty"):
            if getattr(payload, name) < 0:
                raise ValidationFailedError(f"{name} must not be negative")
        parts = payload.good_qty + payload.scrap_qty + payload.rework_qty
        if abs(parts - payload.total_qty) > COUNT_TOLERANCE:
            raise ValidationFailedError(
                f"Total quantity ({payload.total_qty:g}) must equal good ({payload.good_qty:g}) + "
                f"scrap ({payload.scrap_qty:g}) + rework ({payload.rework_qty:g})"
            )

        values = payload.model_dump()
        if payload.operation_run_id:
            run = await self.runs.get_run(payload.operation_run_id)
            if run is None:
                raise NotFoundError("Operation run not found")
            values["work_center_id"] = payload.work_center_id or run.work_center_id
            values["production_order_id"] = payload.production_order_id or run.production_order_id
            values["equipment_asset_id"] = payload.equipment_asset_id or run.equipment_asset_id
        if not values.get("work_center_id"):
            raise ValidationFailedError("work_center_id is required when no operation run is given")
        values["count_timestamp"] = payload.count_timestamp or utcnow()

        count = await self.repo.create_count(recorded_by=user_id, **values)
        await self.commit()
        return count

    # PUBLIC_INTERFACE
    async def get_production_counts(self, work_center_id: UUID, from_ts: datetime, to_ts: datetime) -> List[ProductionCount]:
        return await self.repo.list_counts(work_center_id, from_ts, to_ts)

    # PUBLIC_INTERFACE
    async def get_counts_by_operation_run(self, run_id: UUID) -> List[ProductionCount]:
        return await self.repo.list_counts_by_run(run_id)

    # PUBLIC_INTERFACE
    async def get_oee_snapshots(
        self,
        *,
        grain: Optional[str] = None,
        scope_type: Optional[str] = None,
        scope_id: Optional[UUID] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[OEESnapshot]:
        return await self.repo.list_snapshots(
            grain=grain, scope_type=scope_type, scope_id=scope_id, from_ts=from_ts, to_ts=to_ts, limit=limit
        )

    # PUBLIC_INTERFACE
    async def save_oee_snapshot(
        self,
        work_center_id: UUID,
        grain: str,
        from_ts: datetime,
        to_ts: datetime,
        shift_name: Optional[str] = None,
    ) -> OEESnapshot:
        """Compute OEE for the window and upsert it as a work-center snapshot."""
        m = await self.calculate_oee(work_center_id, from_ts, to_ts)
        snapshot = await self.repo.upsert_snapshot(
            grain=grain,
            scope_type="work_center",
            scope_id=work_center_id,
            period_start=from_ts,
            values={
                "period_end": to_ts,
                "shift_name": shift_name,
                "planned_production_time_seconds": m.planned_production_time_seconds,
                "actual_run_time_seconds": m.actual_run_time_seconds,
                "downtime_seconds": m.downtime_seconds,
                "total_count": m.total_count,
                "good_count": m.good_count,
                "scrap_count": m.scrap_count,
                "rework_count": m.rework_count,
                "ideal_cycle_time_seconds": m.ideal_cycle_time_seconds,
                "availability_pct": m.availability_pct,
                "performance_pct": m.performance_pct,
                "quality_pct": m.quality_pct,
                "oee_pct": m.oee_pct,
            },
        )
        await self.commit()
        logger.info("Saved %s OEE snapshot for work center %s: %.2f%%", grain, work_center_id, m.oee_pct)
        await publish_kpis(self.session, self.tenant_id)
        return snapshot
