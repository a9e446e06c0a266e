from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.errors import ConflictError, ValidationFailedError
from src.schemas.downtime import AutoDowntimeRequest, DowntimeLogEntry, StartDowntimeRequest
from src.services.downtime import DowntimeService, build_summary, pareto


def entry(duration, *, code=None, category=None, group=None, planned=False, classified=True):
    return DowntimeLogEntry(
        downtime_event_id=uuid4(),
        state_event_id=uuid4(),
        equipment_asset_id=uuid4(),
        state="STOP",
        start_ts=datetime(2026, 3, 2, 8, tzinfo=timezone.utc),
        duration_seconds=duration,
        is_classified=classified,
        is_planned=planned,
        reason_code=code,
        reason_name=code.title() if code else None,
        reason_category=category,
        reason_group=group,
    )


def test_pareto_by_reason_sorted_with_cumulative_percentages():
    entries = [
        entry(600, code="BRK", category="unplanned", group="mechanical"),
        entry(1800, code="MAT", category="unplanned", group="material"),
        entry(600, code="BRK", category="unplanned", group="mechanical"),
    ]
    items = pareto(entries)
    assert [i.code for i in items] == ["MAT", "BRK"]
    assert items[0].percentage_of_total == 60.0
    assert items[1].count == 2
    assert items[1].duration_minutes == 20
    assert items[-1].cumulative_percentage == pytest.approx(100.0)


def test_unclassified_events_share_one_bucket():
    items = pareto([entry(60, classified=False), entry(120, classified=False)])
    assert len(items) == 1
    assert items[0].code == "UNCLASSIFIED"
    assert items[0].reason_group == "other"


def test_pareto_by_category_and_group():
    entries = [
        entry(300, code="CO", category="planned", group="ops", planned=True),
        entry(900, code="ELEC", category="unplanned", group="electrical"),
    ]
    by_category = pareto(entries, by="category")
    assert [i.code for i in by_category] == ["UNPLANNED", "PLANNED"]
    by_group = pareto(entries, by="group")
    assert by_group[0].code == "ELECTRICAL"
    assert by_group[0].reason_group == "electrical"


def test_pareto_of_zero_durations_has_zero_percentages():
    items = pareto([entry(0, code="BRK"), entry(None, code="MAT")])
    assert all(i.percentage_of_total == 0 for i in items)


def test_summary_splits_planned_and_classified():
    summary = build_summary(
        [
            entry(300, code="PM", category="planned", group="mechanical", planned=True),
            entry(900, code="BRK", category="unplanned", group="mechanical"),
            entry(300, classified=False),
        ]
    )
    assert summary.total_events == 3
    assert summary.total_duration_seconds == 1500
    assert summary.planned_duration_seconds == 300
    assert summary.unplanned_duration_seconds == 1200
    assert summary.classified_events == 2
    assert summary.unclassified_events == 1
    assert summary.avg_duration_seconds == 500
    assert summary.by_group[0].key == "mechanical"
    assert {b.key for b in summary.by_category} == {"planned", "unplanned", "unclassified"}


def test_empty_summary():
    summary = build_summary([])
    assert summary.total_events == 0
    assert summary.avg_duration_seconds == 0


async def test_downtime_cannot_start_in_run_state(session):
    service = DowntimeService(session)
    with pytest.raises(ValidationFailedError):
        await service.start_downtime(StartDowntimeRequest(equipment_asset_id=uuid4(), state="RUN"), user_id=None)
    assert session.commits == 0


class InMemoryDowntime:
    def __init__(self):
        self.states = {}
        self.events = {}
        self.list_calls = []

    async def get_open_stop(self, asset_id):
        return next(
            (s for s in self.states.values() if s.equipment_asset_id == asset_id and s.end_ts is None), None
        )

    async def create_state_event(self, **values):
        data = {"end_ts": None, "duration_seconds": None, "external_event_id": None, "notes": None, "created_by": None}
        data.update(values)
        state = SimpleNamespace(id=uuid4(), **data)
        if state.end_ts is not None:
            state.duration_seconds = (state.end_ts - state.start_ts).total_seconds()
        self.states[state.id] = state
        return state

    async def create_downtime_event(self, **values):
        data = {"classification_notes": None, "classified_by": None, "classified_at": None, "reason_code_id": None}
        data.update(values)
        event = SimpleNamespace(id=uuid4(), **data)
        self.events[event.id] = event
        return event

    async def get_state_event_by_external_id(self, external_id):
        return next((s for s in self.states.values() if s.external_event_id == external_id), None)

    async def get_downtime_for_state_event(self, state_id):
        return next((e for e in self.events.values() if e.equipment_state_event_id == state_id), None)

    async def list_downtime(self, *, downtime_event_id=None, limit=1000, **filters):
        self.list_calls.append(dict(filters, limit=limit))
        rows = []
        for event in self.events.values():
            if downtime_event_id and event.id != downtime_event_id:
                continue
            rows.append((event, self.states[event.equipment_state_event_id], None, None, None))
        return rows if limit is None else rows[:limit]


class Equipment:
    def __init__(self, asset):
        self.asset = asset

    async def get_equipment(self, asset_id):
        return self.asset if asset_id == self.asset.id else None


@pytest.fixture
def press():
    return SimpleNamespace(id=uuid4(), work_center_id=uuid4(), asset_code="CNC-01")


def downtime_service(session, asset):
    service = DowntimeService(session)
    service.repo = InMemoryDowntime()
    service.equipment = Equipment(asset)
    return service


async def test_second_open_stop_on_same_equipment_conflicts(session, press):
    service = downtime_service(session, press)
    first = await service.start_downtime(StartDowntimeRequest(equipment_asset_id=press.id), user_id=None)
    assert first.state == "STOP"
    assert first.is_classified is False
    assert first.end_ts is None

    with pytest.raises(ConflictError) as exc:
        await service.start_downtime(StartDowntimeRequest(equipment_asset_id=press.id, state="IDLE"), user_id=None)
    assert exc.value.details["existing_event"]["id"] == str(first.state_event_id)
    assert session.commits == 1


async def test_planned_stop_is_flagged_planned(session, press):
    service = downtime_service(session, press)
    entry_ = await service.start_downtime(
        StartDowntimeRequest(equipment_asset_id=press.id, state="PLANNED_STOP"), user_id=None
    )
    assert entry_.is_planned is True


async def test_auto_downtime_is_idempotent_on_external_event_id(session, press):
    service = downtime_service(session, press)
    payload = AutoDowntimeRequest(
        equipment_asset_id=press.id,
        start_ts=datetime(2026, 3, 2, 8, tzinfo=timezone.utc),
        end_ts=datetime(2026, 3, 2, 8, 15, tzinfo=timezone.utc),
        external_event_id="plc-77",
    )
    first = await service.auto_create_downtime(payload)
    again = await service.auto_create_downtime(payload)

    assert again.downtime_event_id == first.downtime_event_id
    assert first.source == "auto"
    assert first.duration_seconds == 900
    assert len(service.repo.events) == 1
    assert session.commits == 1


async def test_auto_downtime_rejects_inverted_interval(session, press):
    service = downtime_service(session, press)
    payload = AutoDowntimeRequest(
        equipment_asset_id=press.id,
        start_ts=datetime(2026, 3, 2, 9, tzinfo=timezone.utc),
        end_ts=datetime(2026, 3, 2, 8, tzinfo=timezone.utc),
    )
    with pytest.raises(ValidationFailedError):
        await service.auto_create_downtime(payload)


async def test_pareto_reads_the_whole_window(session, press):
    service = downtime_service(session, press)
    for minute in range(3):
        await service.auto_create_downtime(
            AutoDowntimeRequest(
                equipment_asset_id=press.id,
                start_ts=datetime(2026, 3, 2, 8, minute, tzinfo=timezone.utc),
                end_ts=datetime(2026, 3, 2, 8, minute, 30, tzinfo=timezone.utc),
            )
        )
    service.repo.list_calls.clear()

    items = await service.get_pareto_by_reason(None, None, None)

    assert service.repo.list_calls[0]["limit"] is None
    assert items[0].code == "UNCLASSIFIED"
    assert items[0].count == 3
