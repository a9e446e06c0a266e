from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.errors import NotFoundError
from src.schemas.inventory import ConsumeSerialRequest
from src.services.inventory import MESInventoryService, bom_idempotency_key


class InMemoryStock:
    """Inventory repository over part/location stock, serials and the consumption log."""

    def __init__(self):
        self.stock = {}
        self.serials = {}
        self.log = {}

    def put(self, part_id, location_id, quantity):
        row = SimpleNamespace(id=uuid4(), part_id=part_id, location_id=location_id, quantity=quantity)
        self.stock[(part_id, location_id)] = row
        return row

    def qty(self, part_id, location_id):
        return self.stock[(part_id, location_id)].quantity

    async def get_by_idempotency_key(self, key):
        return next((r for r in self.log.values() if r.idempotency_key == key), None)

    async def get_inventory(self, part_id, location_id, for_update=False):
        return self.stock.get((part_id, location_id))

    async def create_inventory(self, part_id, location_id, quantity):
        return self.put(part_id, location_id, quantity)

    async def set_quantity(self, inventory_id, quantity):
        row = next(r for r in self.stock.values() if r.id == inventory_id)
        row.quantity = quantity
        return row

    async def get_serial(self, serial_id):
        return self.serials.get(serial_id)

    async def update_serial(self, serial_id, values):
        row = self.serials[serial_id]
        for key, value in values.items():
            setattr(row, key, value)
        return row

    async def get_consumption(self, consumption_id):
        return self.log.get(consumption_id)

    async def get_reversal_of(self, consumption_id):
        return next((r for r in self.log.values() if r.reversal_of_id == consumption_id), None)

    async def create_consumption(self, **values):
        data = {"reversal_of_id": None, "reversal_reason": None, "idempotency_key": None}
        data.update(values)
        row = SimpleNamespace(id=uuid4(), **data)
        self.log[row.id] = row
        return row


class InMemoryBom:
    def __init__(self):
        self.items = {}

    def add(self, order_id, part_id, location_id, required, consumed=0, **extra):
        item = SimpleNamespace(
            id=uuid4(),
            production_order_id=order_id,
            part_id=part_id,
            source_location_id=location_id,
            quantity_required=required,
            quantity_consumed=consumed,
            is_consumed=consumed >= required,
            unit_cost=extra.get("unit_cost"),
        )
        self.items[item.id] = item
        return item

    async def list_bom(self, order_id):
        return [i for i in self.items.values() if i.production_order_id == order_id]

    async def get_bom_item(self, item_id):
        return self.items.get(item_id)

    async def update_bom_item(self, item_id, values):
        item = self.items[item_id]
        for key, value in values.items():
            setattr(item, key, value)
        return item


class PartCatalog:
    def __init__(self, *parts):
        self.parts = {p.id: p for p in parts}

    async def get_part(self, part_id):
        return self.parts.get(part_id)


def part(name, unit_cost=1.0):
    return SimpleNamespace(id=uuid4(), name=name, unit_cost=unit_cost)


@pytest.fixture
def rod():
    return part("Aluminum Rod 25mm", 2.5)


@pytest.fixture
def screw():
    return part("M6 Fastener", 0.1)


@pytest.fixture
def service(session, rod, screw):
    svc = MESInventoryService(session)
    svc.repo = InMemoryStock()
    svc.orders = InMemoryBom()
    svc.parts = PartCatalog(rod, screw)
    return svc


async def test_backflush_isolates_failing_lines(service, session, rod, screw):
    order_id, wh = uuid4(), uuid4()
    service.repo.put(rod.id, wh, 10)
    service.repo.put(screw.id, wh, 1)
    good = service.orders.add(order_id, rod.id, wh, 4)
    short = service.orders.add(order_id, screw.id, wh, 3)
    nowhere = service.orders.add(order_id, screw.id, None, 2)
    done = service.orders.add(order_id, rod.id, wh, 1, consumed=1)

    result = await service.backflush_order(order_id, user_id=None)

    assert [c.bom_item_id for c in result.consumed_items] == [good.id]
    assert result.consumed_items[0].qty_consumed == 4
    errors = {e.bom_item_id: e.error for e in result.errors}
    assert errors == {
        short.id: "Insufficient inventory. Available: 1, Required: 3",
        nowhere.id: "No source location specified",
    }
    assert result.success is False
    assert done.id not in errors
    assert service.repo.qty(rod.id, wh) == 6
    assert service.repo.qty(screw.id, wh) == 1
    assert good.is_consumed is True
    # one savepoint per attempted line; the missing-location line never opens one
    assert session.savepoints == 2
    assert session.savepoint_rollbacks == 1
    assert session.commits == 0


async def test_backflush_is_idempotent_per_bom_line(service, rod):
    order_id, wh = uuid4(), uuid4()
    service.repo.put(rod.id, wh, 10)
    item = service.orders.add(order_id, rod.id, wh, 4)

    first = await service.backflush_order(order_id, user_id=None)
    item.is_consumed = False
    item.quantity_consumed = 0
    second = await service.backflush_order(order_id, user_id=None)

    assert second.consumed_items[0].consumption_id == first.consumed_items[0].consumption_id
    assert service.repo.qty(rod.id, wh) == 6
    row = service.repo.log[first.consumed_items[0].consumption_id]
    assert row.idempotency_key == bom_idempotency_key(order_id, item.id)
    assert row.method == "backflush"


async def test_reversal_restores_stock_and_bom_line(service, session, rod):
    order_id, wh = uuid4(), uuid4()
    service.repo.put(rod.id, wh, 10)
    item = service.orders.add(order_id, rod.id, wh, 4)
    result = await service.backflush_order(order_id, user_id=None)
    consumption_id = result.consumed_items[0].consumption_id

    reversal = await service.reverse_consumption(consumption_id, "Wrong lot issued", user_id=uuid4())

    assert reversal.is_reversal is True
    assert reversal.qty == -4
    assert reversal.reversal_of_id == consumption_id
    assert reversal.reversal_reason == "Wrong lot issued"
    assert service.repo.qty(rod.id, wh) == 10
    assert item.quantity_consumed == 0
    assert item.is_consumed is False
    assert session.commits == 1


async def test_reversing_twice_returns_first_reversal(service, rod):
    order_id, wh = uuid4(), uuid4()
    service.repo.put(rod.id, wh, 10)
    service.orders.add(order_id, rod.id, wh, 4)
    result = await service.backflush_order(order_id, user_id=None)
    consumption_id = result.consumed_items[0].consumption_id

    first = await service.reverse_consumption(consumption_id, "Scrapped", user_id=None)
    second = await service.reverse_consumption(consumption_id, "Scrapped again", user_id=None)

    assert second is first
    assert service.repo.qty(rod.id, wh) == 10
    assert sum(1 for r in service.repo.log.values() if r.is_reversal) == 1


async def test_reversal_row_cannot_be_reversed(service, rod):
    order_id, wh = uuid4(), uuid4()
    service.repo.put(rod.id, wh, 10)
    service.orders.add(order_id, rod.id, wh, 4)
    result = await service.backflush_order(order_id, user_id=None)
    reversal = await service.reverse_consumption(result.consumed_items[0].consumption_id, "Scrapped", user_id=None)

    with pytest.raises(NotFoundError):
        await service.reverse_consumption(reversal.id, "undo", user_id=None)
    with pytest.raises(NotFoundError):
        await service.reverse_consumption(uuid4(), "unknown", user_id=None)


async def test_reversal_returns_serial_to_stock(service, session):
    controller = part("Controller Board", 120.0)
    service.parts = PartCatalog(controller)
    wh = uuid4()
    service.repo.put(controller.id, wh, 3)
    serial = SimpleNamespace(
        id=uuid4(), part_id=controller.id, status="in_stock", current_location_id=wh, lot_number="LOT-7"
    )
    service.repo.serials[serial.id] = serial

    row = await service.consume_serialized_part(
        serial.id, ConsumeSerialRequest(production_order_id=uuid4(), source_location_id=wh), user_id=None
    )
    assert row.qty == 1
    assert row.lot_number == "LOT-7"
    assert serial.status == "consumed"
    assert serial.current_location_id is None

    await service.reverse_consumption(row.id, "Board returned", user_id=None)
    assert serial.status == "in_stock"
    assert serial.current_location_id == wh
    assert service.repo.qty(controller.id, wh) == 3


async def test_reversal_recreates_missing_inventory_row(service, rod):
    wh = uuid4()
    original = await service.repo.create_consumption(
        production_order_id=uuid4(),
        production_step_id=None,
        operation_run_id=None,
        part_id=rod.id,
        bom_item_id=None,
        source_location_id=wh,
        qty=5,
        unit_cost=2.5,
        method="manual",
        is_reversal=False,
        serialized_part_id=None,
        lot_number=None,
    )

    await service.reverse_consumption(original.id, "Returned to stores", user_id=None)
    assert service.repo.qty(rod.id, wh) == 5
