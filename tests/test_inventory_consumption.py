from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.errors import NotFoundError, ValidationFailedError
from src.schemas.inventory import ConsumeMaterialRequest
from src.services.inventory import (
    MESInventoryService,
    bom_idempotency_key,
    reserved_quantity,
    serial_idempotency_key,
    summarize_consumption,
)


class FakeInventoryRepo:
    def __init__(self, inventory=None):
        self.inventory = inventory
        self.by_key = {}
        self.created = []

    async def get_by_idempotency_key(self, key):
        return self.by_key.get(key)

    async def get_inventory(self, part_id, location_id, for_update=False):
        return self.inventory

    async def set_quantity(self, inventory_id, quantity):
        self.inventory.quantity = quantity

    async def create_consumption(self, **values):
        row = SimpleNamespace(id=uuid4(), **values)
        self.created.append(row)
        if values.get("idempotency_key"):
            self.by_key[values["idempotency_key"]] = row
        return row


class FakePartRepo:
    def __init__(self, part):
        self.part = part

    async def get_part(self, part_id):
        return self.part if self.part is not None and self.part.id == part_id else None


def make_service(session, *, on_hand=10.0, unit_cost=2.5):
    part = SimpleNamespace(id=uuid4(), name="Aluminum Rod 25mm", unit_cost=unit_cost)
    service = MESInventoryService(session)
    service.repo = FakeInventoryRepo(SimpleNamespace(id=uuid4(), quantity=on_hand))
    service.parts = FakePartRepo(part)
    return service, part


def request(part, qty, **extra):
    return ConsumeMaterialRequest(
        production_order_id=uuid4(), part_id=part.id, source_location_id=uuid4(), qty=qty, **extra
    )


async def test_consume_decrements_stock_and_falls_back_to_part_cost(session):
    service, part = make_service(session)
    row = await service.consume_material(request(part, 4), user_id=uuid4())
    assert service.repo.inventory.quantity == 6.0
    assert row.unit_cost == 2.5
    assert row.method == "manual"
    assert row.is_reversal is False
    assert session.commits == 1


async def test_insufficient_stock_reports_available_and_required(session):
    service, part = make_service(session, on_hand=3)
    with pytest.raises(ValidationFailedError) as exc:
        await service.consume_material(request(part, 5), user_id=None)
    assert exc.value.message == "Insufficient inventory. Available: 3, Required: 5"
    assert exc.value.details == {"available": 3.0, "required": 5}
    assert service.repo.inventory.quantity == 3
    assert session.commits == 0


async def test_idempotent_retry_returns_original_row(session):
    service, part = make_service(session)
    payload = request(part, 2, idempotency_key="scan-0001")
    first = await service.consume_material(payload, user_id=None)
    second = await service.consume_material(payload, user_id=None)
    assert second is first
    assert service.repo.inventory.quantity == 8.0
    assert len(service.repo.created) == 1


async def test_non_positive_quantity_rejected(session):
    service, part = make_service(session)
    with pytest.raises(ValidationFailedError):
        await service.consume_material(request(part, 0), user_id=None)


async def test_unknown_part_is_not_found(session):
    service, _part = make_service(session)
    stranger = SimpleNamespace(id=uuid4())
    with pytest.raises(NotFoundError):
        await service.consume_material(request(stranger, 1), user_id=None)


def test_idempotency_keys():
    order_id, item_id = uuid4(), uuid4()
    assert bom_idempotency_key(order_id, item_id) == f"BOM:{order_id}:{item_id}"
    assert serial_idempotency_key(item_id, order_id) == f"SERIAL:{item_id}:{order_id}"


def test_reserved_quantity_ignores_consumed_part():
    items = [
        SimpleNamespace(quantity_allocated=10, quantity_consumed=4),
        SimpleNamespace(quantity_allocated=None, quantity_consumed=None),
    ]
    assert reserved_quantity(items) == 6


def test_summary_nets_out_reversals():
    part_id = uuid4()
    t0 = datetime(2026, 3, 2, 8, tzinfo=timezone.utc)

    def row(qty, *, reversal=False, at=t0):
        return SimpleNamespace(part_id=part_id, qty=qty, unit_cost=1.5, is_reversal=reversal, consumed_at=at)

    rows = [
        (row(10), "RAW-AL-ROD", "Aluminum Rod 25mm", "WH-MAIN"),
        (row(4, at=t0 + timedelta(hours=1)), "RAW-AL-ROD", "Aluminum Rod 25mm", "WH-MAIN"),
        (row(-4, reversal=True, at=t0 + timedelta(hours=2)), "RAW-AL-ROD", "Aluminum Rod 25mm", "WH-MAIN"),
    ]
    [summary] = summarize_consumption(rows)
    assert summary.total_consumed == 14
    assert summary.total_reversed == 4
    assert summary.net_consumed == 10
    assert summary.total_cost == 15.0
    assert summary.consumption_count == 2
    assert summary.reversal_count == 1
    assert summary.last_consumption_at == t0 + timedelta(hours=1)
