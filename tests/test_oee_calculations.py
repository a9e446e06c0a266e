from __future__ import annotations

from datetime import date, datetime, timezone
from types import SimpleNamespace
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from src.core.errors import NotFoundError, ValidationFailedError
from src.schemas.oee import ProductionCountCreate
from src.services.oee import OEEService, compute_oee_metrics, planned_production_seconds, shift_window


def test_oee_factors_multiply():
    metrics = compute_oee_metrics(
        planned_seconds=28800,
        planned_downtime_seconds=1800,
        unplanned_downtime_seconds=1800,
        total_count=400,
        good_count=380,
        ideal_cycle_time_seconds=60,
    )
    assert metrics.actual_run_time_seconds == 25200
    assert metrics.availability == pytest.approx(0.875)
    assert metrics.performance == pytest.approx(400 * 60 / 25200)
    assert metrics.quality == pytest.approx(0.95)
    assert metrics.oee == pytest.approx(metrics.availability * metrics.performance * metrics.quality)
    assert metrics.availability_pct == 87.5
    assert metrics.actual_cycle_time_seconds == pytest.approx(63.0)


def test_performance_is_clamped_to_one():
    metrics = compute_oee_metrics(
        planned_seconds=3600,
        planned_downtime_seconds=0,
        unplanned_downtime_seconds=0,
        total_count=1000,
        good_count=1000,
        ideal_cycle_time_seconds=60,
    )
    assert metrics.performance == 1.0
    assert metrics.oee_pct == 100.0


def test_zero_denominators_yield_zero():
    metrics = compute_oee_metrics(
        planned_seconds=0,
        planned_downtime_seconds=0,
        unplanned_downtime_seconds=0,
        total_count=0,
        good_count=0,
        ideal_cycle_time_seconds=60,
    )
    assert metrics.availability == 0
    assert metrics.performance == 0
    assert metrics.quality == 0
    assert metrics.oee == 0
    assert metrics.actual_cycle_time_seconds is None


def test_downtime_longer_than_plan_floors_run_time():
    metrics = compute_oee_metrics(
        planned_seconds=3600,
        planned_downtime_seconds=0,
        unplanned_downtime_seconds=7200,
        total_count=10,
        good_count=10,
        ideal_cycle_time_seconds=60,
    )
    assert metrics.actual_run_time_seconds == 0
    assert metrics.availability == 0
    assert metrics.performance == 0


def test_planned_seconds_rounds_days_up():
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert planned_production_seconds(start, start.replace(hour=12), 8) == 8 * 3600
    assert planned_production_seconds(start, datetime(2026, 3, 3, 1, tzinfo=timezone.utc), 8) == 3 * 8 * 3600
    assert planned_production_seconds(start, start, 8) == 0


def test_night_shift_wraps_to_next_day():
    tz = ZoneInfo("UTC")
    start, end = shift_window(date(2026, 3, 2), "3rd Shift", tz)
    assert start == datetime(2026, 3, 2, 22, tzinfo=tz)
    assert end == datetime(2026, 3, 3, 6, tzinfo=tz)


def test_unknown_shift_covers_whole_day():
    tz = ZoneInfo("UTC")
    start, end = shift_window(date(2026, 3, 2), None, tz)
    assert start == datetime(2026, 3, 2, tzinfo=tz)
    assert end.date() == date(2026, 3, 2)
    assert (end.hour, end.minute, end.second) == (23, 59, 59)


class FakeCounts:
    def __init__(self):
        self.created = []

    async def create_count(self, **values):
        row = SimpleNamespace(id=uuid4(), **values)
        self.created.append(row)
        return row


class FakeRuns:
    def __init__(self, *runs):
        self.rows = {r.id: r for r in runs}

    async def get_run(self, run_id):
        return self.rows.get(run_id)


def count_service(session, *runs):
    service = OEEService(session)
    service.repo = FakeCounts()
    service.runs = FakeRuns(*runs)
    return service


async def test_count_parts_must_add_up_to_total(session):
    service = count_service(session)
    payload = ProductionCountCreate(work_center_id=uuid4(), total_qty=100, good_qty=90, scrap_qty=5, rework_qty=4)
    with pytest.raises(ValidationFailedError) as exc:
        await service.record_production_count(payload, user_id=None)
    assert "Total quantity (100)" in exc.value.message
    assert service.repo.created == []
    assert session.commits == 0


async def test_count_defaults_from_operation_run(session):
    run = SimpleNamespace(
        id=uuid4(), work_center_id=uuid4(), production_order_id=uuid4(), equipment_asset_id=uuid4()
    )
    service = count_service(session, run)
    operator = uuid4()
    payload = ProductionCountCreate(operation_run_id=run.id, total_qty=50, good_qty=48, scrap_qty=2)

    count = await service.record_production_count(payload, user_id=operator)

    assert count.work_center_id == run.work_center_id
    assert count.production_order_id == run.production_order_id
    assert count.equipment_asset_id == run.equipment_asset_id
    assert count.recorded_by == operator
    assert count.count_timestamp is not None
    assert session.commits == 1


async def test_explicit_work_center_wins_over_run(session):
    run = SimpleNamespace(id=uuid4(), work_center_id=uuid4(), production_order_id=None, equipment_asset_id=None)
    service = count_service(session, run)
    wc = uuid4()
    count = await service.record_production_count(
        ProductionCountCreate(operation_run_id=run.id, work_center_id=wc, total_qty=1, good_qty=1), user_id=None
    )
    assert count.work_center_id == wc


async def test_count_needs_a_run_or_work_center(session):
    service = count_service(session)
    with pytest.raises(ValidationFailedError):
        await service.record_production_count(ProductionCountCreate(total_qty=1, good_qty=1), user_id=None)
    with pytest.raises(NotFoundError):
        await service.record_production_count(
            ProductionCountCreate(operation_run_id=uuid4(), total_qty=1, good_qty=1), user_id=None
        )
