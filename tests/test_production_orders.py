from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.schemas.inventory import BomConsumptionResult, ConsumedItem, ConsumptionItemError
from src.services.manufacturing import ManufacturingService, build_work_center_queue, current_step

from conftest import InMemoryOrders


def make_service(session):
    service = ManufacturingService(session)
    service.orders = InMemoryOrders()
    return service


def step(number, status, work_center_id=None):
    return SimpleNamespace(id=uuid4(), step_number=number, status=status, name=f"Op {number}", work_center_id=work_center_id)


def order(number, status="queued", priority=3):
    return SimpleNamespace(
        id=uuid4(), order_number=number, title=f"Order {number}", status=status, priority=priority, scheduled_start=None
    )


def test_current_step_is_lowest_open_step():
    steps = [step(3, "pending"), step(1, "complete"), step(2, "in_progress")]
    assert current_step(steps).step_number == 2
    assert current_step([step(1, "complete"), step(2, "skipped")]) is None


def test_work_center_queue_includes_orders_with_any_open_step_at_center():
    wc_a, wc_b = uuid4(), uuid4()
    first, second = order("PO-26-00001", status="in_progress"), order("PO-26-00002")
    rows = [
        (step(1, "in_progress", wc_a), first),
        (step(2, "pending", wc_b), first),
        (step(1, "pending", wc_b), second),
    ]
    queue = build_work_center_queue(rows, wc_b)
    assert [i.order_number for i in queue.items] == ["PO-26-00001", "PO-26-00002"]
    # the current step is still reported even when it sits upstream
    assert queue.items[0].step_number == 1
    assert queue.items[0].work_center_id == wc_a
    assert queue.counts == {"in_progress": 1, "queued": 1}

    only_a = build_work_center_queue(rows, wc_a)
    assert [i.order_number for i in only_a.items] == ["PO-26-00001"]

    everything = build_work_center_queue(rows)
    assert [i.work_center_id for i in everything.items] == [wc_a, wc_b]


def test_work_center_queue_skips_held_and_complete_orders():
    wc = uuid4()
    held, done, running = order("PO-26-00001", "hold"), order("PO-26-00002", "complete"), order("PO-26-00003")
    rows = [(step(1, "pending", wc), held), (step(1, "pending", wc), done), (step(1, "pending", wc), running)]
    queue = build_work_center_queue(rows, wc)
    assert [i.order_number for i in queue.items] == ["PO-26-00003"]
    assert "hold" not in queue.counts


async def test_hold_requires_reason(session):
    service = make_service(session)
    po = service.orders.add_order(order_number="PO-26-00001", status="in_progress")
    with pytest.raises(ValidationFailedError):
        await service.put_on_hold(po.id, " ")


async def test_hold_and_resume(session):
    service = make_service(session)
    po = service.orders.add_order(order_number="PO-26-00001", status="in_progress")
    held = await service.put_on_hold(po.id, "Awaiting customer drawing revision")
    assert held.status == "hold"
    assert held.hold_reason == "Awaiting customer drawing revision"

    resumed = await service.resume_order(po.id)
    assert resumed.status == "in_progress"
    assert resumed.hold_reason is None
    assert session.commits == 2


async def test_completed_order_cannot_be_held_and_open_order_cannot_resume(session):
    service = make_service(session)
    done = service.orders.add_order(order_number="PO-26-00001", status="complete")
    queued = service.orders.add_order(order_number="PO-26-00002", status="queued")
    with pytest.raises(ConflictError):
        await service.put_on_hold(done.id, "late")
    with pytest.raises(ConflictError):
        await service.resume_order(queued.id)
    with pytest.raises(NotFoundError):
        await service.resume_order(uuid4())


async def test_starting_first_step_starts_queued_order(session):
    service = make_service(session)
    po = service.orders.add_order(order_number="PO-26-00001", status="queued")
    st = service.orders.add_step(production_order_id=po.id, step_number=1, status="pending")
    updated = await service.update_step_status(st.id, "in_progress", user_id=None)
    assert updated.status == "in_progress"
    assert updated.started_at is not None
    assert po.status == "in_progress"
    assert po.actual_start == updated.started_at


async def test_completing_step_records_actual_minutes(session):
    service = make_service(session)
    po = service.orders.add_order(order_number="PO-26-00001", status="in_progress")
    st = service.orders.add_step(
        production_order_id=po.id,
        step_number=1,
        status="in_progress",
        started_at=datetime.now(tz=timezone.utc) - timedelta(minutes=30),
    )
    operator = uuid4()
    updated = await service.update_step_status(st.id, "complete", user_id=operator)
    assert updated.completed_by == operator
    assert updated.actual_minutes == 30


async def test_finished_step_cannot_restart(session):
    service = make_service(session)
    po = service.orders.add_order(order_number="PO-26-00001", status="in_progress")
    st = service.orders.add_step(production_order_id=po.id, step_number=1, status="complete")
    with pytest.raises(ConflictError):
        await service.update_step_status(st.id, "in_progress", user_id=None)


class RecordingBackflush:
    def __init__(self, service, result):
        self.service = service
        self.result = result
        self.status_seen = None

    async def backflush_order(self, order_id, user_id):
        self.status_seen = self.service.orders.rows[order_id].status
        return self.result


def full_order(service, status="in_progress"):
    now = datetime(2026, 3, 2, 8, tzinfo=timezone.utc)
    return service.orders.add_order(
        order_number="PO-26-00001",
        title="Widget batch",
        description=None,
        status=status,
        priority=3,
        ticket_id=None,
        project_id=None,
        customer_id=None,
        scheduled_start=None,
        scheduled_end=None,
        actual_start=now,
        actual_end=None,
        quantity_ordered=10,
        quantity_completed=0,
        assigned_to=None,
        notes=None,
        created_by=None,
        created_at=now,
        updated_at=now,
    )


def consumed(bom_item_id):
    return ConsumedItem(bom_item_id=bom_item_id, part_id=uuid4(), qty_consumed=4, consumption_id=uuid4())


def failed(bom_item_id):
    return ConsumptionItemError(bom_item_id=bom_item_id, part_id=uuid4(), error="No source location specified")


async def test_complete_order_backflushes_before_completing(session):
    service = make_service(session)
    po = full_order(service)
    service.inventory = RecordingBackflush(
        service, BomConsumptionResult(success=False, consumed_items=[consumed(uuid4())], errors=[failed(uuid4())])
    )

    result = await service.complete_order(po.id, user_id=uuid4(), quantity_completed=10)

    assert service.inventory.status_seen == "in_progress"
    assert result.order.status == "complete"
    assert result.order.quantity_completed == 10
    assert result.order.actual_end is not None
    assert len(result.consumption.errors) == 1
    assert session.commits == 1


async def test_complete_order_rolls_back_when_every_line_fails(session):
    service = make_service(session)
    po = full_order(service)
    service.inventory = RecordingBackflush(
        service, BomConsumptionResult(success=False, errors=[failed(uuid4()), failed(uuid4())])
    )

    with pytest.raises(ValidationFailedError) as exc:
        await service.complete_order(po.id, user_id=None)

    assert len(exc.value.details["errors"]) == 2
    assert po.status == "in_progress"
    assert session.rollbacks == 1
    assert session.commits == 0


async def test_complete_order_without_bom_completes(session):
    service = make_service(session)
    po = full_order(service)
    service.inventory = RecordingBackflush(service, BomConsumptionResult())
    result = await service.complete_order(po.id, user_id=None)
    assert result.order.status == "complete"
    assert result.consumption.success is True


async def test_completed_order_cannot_complete_again(session):
    service = make_service(session)
    po = full_order(service, status="complete")
    service.inventory = RecordingBackflush(service, BomConsumptionResult())
    with pytest.raises(ConflictError):
        await service.complete_order(po.id, user_id=None)
    assert service.inventory.status_seen is None


class InMemoryMoves:
    def __init__(self):
        self.rows = {}

    def add(self, status="requested"):
        move = SimpleNamespace(
            id=uuid4(), status=status, assigned_to=None, started_at=None, completed_at=None, notes=None
        )
        self.rows[move.id] = move
        return move

    async def get_move(self, move_id):
        return self.rows.get(move_id)

    async def update_move(self, move_id, values):
        move = self.rows[move_id]
        for key, value in values.items():
            setattr(move, key, value)
        return move


def move_service(session):
    service = make_service(session)
    service.moves = InMemoryMoves()
    return service


async def test_move_is_claimed_then_delivered(session):
    service = move_service(session)
    move = service.moves.add()
    handler = uuid4()

    claimed = await service.claim_move(move.id, handler)
    assert claimed.status == "in_transit"
    assert claimed.assigned_to == handler
    assert claimed.started_at is not None

    delivered = await service.complete_move(move.id)
    assert delivered.status == "delivered"
    assert delivered.completed_at is not None
    assert session.commits == 2


async def test_requested_move_cannot_be_delivered_directly(session):
    service = move_service(session)
    move = service.moves.add()
    with pytest.raises(ConflictError):
        await service.complete_move(move.id)


@pytest.mark.parametrize("status", ["delivered", "cancelled"])
async def test_terminal_moves_are_locked(session, status):
    service = move_service(session)
    move = service.moves.add(status)
    with pytest.raises(ConflictError):
        await service.start_move(move.id, uuid4())
    with pytest.raises(ConflictError):
        await service.cancel_move(move.id, "no longer needed")
    with pytest.raises(ConflictError):
        await service.assign_move(move.id, uuid4())


async def test_cancel_records_reason(session):
    service = move_service(session)
    move = service.moves.add("in_transit")
    cancelled = await service.cancel_move(move.id, "Line changeover")
    assert cancelled.status == "cancelled"
    assert cancelled.notes == "Line changeover"
    with pytest.raises(NotFoundError):
        await service.cancel_move(uuid4())
