from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.errors import ConflictError
from src.schemas.scheduling import ScheduleUpdate
from src.services.scheduling import (
    RUN_TRANSITIONS,
    ProductionSchedulingService,
    daily_capacity,
    detect_overlaps,
    effective_end,
)
from src.services.base import ensure_transition

T0 = datetime(2026, 3, 2, 8, tzinfo=timezone.utc)


def run(start, end=None, *, work_center_id=None, status="NOT_STARTED"):
    return SimpleNamespace(
        id=uuid4(),
        production_order_id=uuid4(),
        scheduled_start_ts=start,
        scheduled_end_ts=end,
        work_center_id=work_center_id,
        status=status,
    )


def test_effective_end_defaults_duration():
    assert effective_end(T0, None, 60) == T0 + timedelta(hours=1)
    assert effective_end(T0, T0 + timedelta(minutes=5), 60) == T0 + timedelta(minutes=5)


def test_overlapping_runs_reported_with_order_number():
    existing = [(run(T0, T0 + timedelta(hours=2)), "PO-26-00001")]
    conflicts = detect_overlaps(T0 + timedelta(hours=1), T0 + timedelta(hours=3), existing, 60)
    assert len(conflicts) == 1
    assert conflicts[0].type == "overlap"
    assert conflicts[0].conflicting_order_number == "PO-26-00001"
    assert "PO-26-00001" in conflicts[0].message


def test_back_to_back_runs_do_not_conflict():
    existing = [(run(T0, T0 + timedelta(hours=1)), "PO-26-00001")]
    assert detect_overlaps(T0 + timedelta(hours=1), T0 + timedelta(hours=2), existing, 60) == []


def test_open_ended_run_uses_default_duration():
    existing = [(run(T0), None), (run(None), "PO-26-00009")]
    conflicts = detect_overlaps(T0 + timedelta(minutes=30), T0 + timedelta(minutes=45), existing, 60)
    assert len(conflicts) == 1
    assert "Unknown" in conflicts[0].message


def test_daily_capacity_counts_only_the_day_and_open_runs():
    wc = SimpleNamespace(id=uuid4(), name="CNC Milling Center", code="WC-100")
    day_start = datetime(2026, 3, 2, tzinfo=timezone.utc)
    runs = [
        run(day_start + timedelta(hours=8), day_start + timedelta(hours=10), work_center_id=wc.id),
        # 1h before midnight, 1h after
        run(day_start + timedelta(hours=23), day_start + timedelta(hours=25), work_center_id=wc.id),
        run(day_start + timedelta(hours=12), day_start + timedelta(hours=14), work_center_id=wc.id, status="COMPLETED"),
        run(day_start + timedelta(hours=12), day_start + timedelta(hours=14), work_center_id=uuid4()),
    ]
    cap = daily_capacity(wc, date(2026, 3, 2), runs, tz=timezone.utc, daily_hours=8, default_minutes=60)
    assert cap.total_capacity_minutes == 480
    assert cap.scheduled_minutes == 180
    assert cap.available_minutes == 300
    assert cap.utilization_percent == round(180 / 480 * 100)
    assert cap.work_center_code == "WC-100"


def test_run_transitions():
    ensure_transition("operation run", "NOT_STARTED", "RUNNING", RUN_TRANSITIONS)
    ensure_transition("operation run", "PAUSED", "RUNNING", RUN_TRANSITIONS)
    with pytest.raises(ConflictError) as exc:
        ensure_transition("operation run", "COMPLETED", "RUNNING", RUN_TRANSITIONS)
    assert exc.value.details == {"current": "COMPLETED", "target": "RUNNING"}
    with pytest.raises(ConflictError):
        ensure_transition("operation run", "NOT_STARTED", "COMPLETED", RUN_TRANSITIONS)


class FakeRuns:
    def __init__(self, *runs):
        self.rows = {r.id: r for r in runs}

    async def get_run(self, run_id):
        return self.rows.get(run_id)

    async def list_active_with_orders(self, work_center_id, *, exclude_id=None):
        return [
            (r, None)
            for r in self.rows.values()
            if r.work_center_id == work_center_id and r.id != exclude_id and r.status != "COMPLETED"
        ]

    async def update_run(self, run_id, values):
        row = self.rows[run_id]
        for key, value in values.items():
            setattr(row, key, value)
        return row


def scheduling_service(session, *runs):
    service = ProductionSchedulingService(session)
    service.runs = FakeRuns(*runs)
    return service


async def test_moving_start_past_stored_end_is_rejected(session):
    wc = uuid4()
    stored = run(T0, T0 + timedelta(hours=1), work_center_id=wc)
    service = scheduling_service(session, stored)
    with pytest.raises(ConflictError) as exc:
        await service.update_schedule(stored.id, ScheduleUpdate(scheduled_start_ts=T0 + timedelta(hours=5)))
    assert exc.value.details["conflicts"][0]["type"] == "resource"
    assert stored.scheduled_start_ts == T0
    assert session.commits == 0


async def test_update_into_neighbour_is_an_overlap_conflict(session):
    wc = uuid4()
    first = run(T0, T0 + timedelta(hours=1), work_center_id=wc)
    second = run(T0 + timedelta(hours=2), T0 + timedelta(hours=3), work_center_id=wc)
    service = scheduling_service(session, first, second)
    with pytest.raises(ConflictError) as exc:
        await service.update_schedule(second.id, ScheduleUpdate(scheduled_start_ts=T0 + timedelta(minutes=30)))
    assert exc.value.details["conflicts"][0]["type"] == "overlap"


async def test_update_with_consistent_times_is_saved(session):
    wc = uuid4()
    stored = run(T0, T0 + timedelta(hours=1), work_center_id=wc)
    service = scheduling_service(session, stored)
    moved = await service.update_schedule(
        stored.id,
        ScheduleUpdate(scheduled_start_ts=T0 + timedelta(hours=4), scheduled_end_ts=T0 + timedelta(hours=5)),
    )
    assert moved.scheduled_end_ts > moved.scheduled_start_ts
    assert session.commits == 1
