from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import DomainError, NotFoundError, ValidationFailedError
from src.db.models.inventory import MaterialConsumption, PartInventory, SerializedPart
from src.db.models.production import BomItem
from src.repositories.inventory import InventoryRepository
from src.repositories.master_data import PartRepository
from src.repositories.production import ProductionOrderRepository
from src.schemas.inventory import (
    AvailableInventory,
    BomConsumptionResult,
    ConsumedItem,
    ConsumeMaterialRequest,
    ConsumeSerialRequest,
    ConsumptionItemError,
    ConsumptionLogEntry,
    ConsumptionSummary,
    ReversalError,
    ReversalResult,
    SerializedPartCreate,
)
from src.services.base import BaseService

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def bom_idempotency_key(order_id: UUID, bom_item_id: UUID) -> str:
    """Idempotency key used when backflushing one BOM line of an order."""
    return f"BOM:{order_id}:{bom_item_id}"


# PUBLIC_INTERFACE
def serial_idempotency_key(serial_id: UUID, order_id: UUID) -> str:
    """Idempotency key used when consuming one serialized unit into an order."""
    return f"SERIAL:{serial_id}:{order_id}"


def remaining_quantity(item: BomItem) -> float:
    return float(item.quantity_required or 0) - float(item.quantity_consumed or 0)


def _fmt(value: float) -> str:
    return f"{value:g}"


# PUBLIC_INTERFACE
def reserved_quantity(items: Iterable[BomItem]) -> float:
    """Sum of allocated-but-unconsumed quantity over BOM lines."""
    return sum(float(i.quantity_allocated or 0) - float(i.quantity_consumed or 0) for i in items)


# PUBLIC_INTERFACE
def summarize_consumption(
    rows: Sequence[Tuple[MaterialConsumption, Optional[str], Optional[str], Optional[str]]],
) -> List[ConsumptionSummary]:
    """
    Aggregate consumption log rows per part.

    Reversal rows carry negative qty; total_reversed is reported as a positive amount
    and total_cost nets reversals out.
    """
    by_part: "OrderedDict[UUID, ConsumptionSummary]" = OrderedDict()
    for row, part_number, part_name, _location in rows:
        summary = by_part.get(row.part_id)
        if summary is None:
            summary = ConsumptionSummary(part_id=row.part_id, part_number=part_number, part_name=part_name)
            by_part[row.part_id] = summary
        qty = float(row.qty)
        summary.total_cost += qty * float(row.unit_cost or 0)
        if row.is_reversal:
            summary.total_reversed += abs(qty)
            summary.reversal_count += 1
        else:
            summary.total_consumed += qty
            summary.consumption_count += 1
            if summary.last_consumption_at is None or row.consumed_at > summary.last_consumption_at:
                summary.last_consumption_at = row.consumed_at
    for summary in by_part.values():
        summary.net_consumed = summary.total_consumed - summary.total_reversed
        summary.total_cost = round(summary.total_cost, 2)
    return list(by_part.values())


class MESInventoryService(BaseService):
    """
    Material consumption against production orders.

    part_inventory.quantity is the single source of truth for on-hand stock; every
    consumption or reversal adjusts it in the same transaction as the log row.
    """

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        super().__init__(session, tenant_id)
        self.repo = InventoryRepository(session)
        self.orders = ProductionOrderRepository(session)
        self.parts = PartRepository(session)

    async def _consume(
        self,
        *,
        order_id: UUID,
        part_id: UUID,
        location_id: UUID,
        qty: float,
        user_id: Optional[UUID],
        method: str = "manual",
        step_id: Optional[UUID] = None,
        operation_run_id: Optional[UUID] = None,
        bom_item_id: Optional[UUID] = None,
        serial_id: Optional[UUID] = None,
        lot_number: Optional[str] = None,
        unit_cost: Optional[float] = None,
        idempotency_key: Optional[str] = None,
    ) -> MaterialConsumption:
        if idempotency_key:
            existing = await self.repo.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                return existing

        if qty is None or qty <= 0:
            raise ValidationFailedError("Quantity must be greater than zero")

        part = await self.parts.get_part(part_id)
        if part is None:
            raise NotFoundError("Part not found")

        serial: Optional[SerializedPart] = None
        if serial_id:
            serial = await self.repo.get_serial(serial_id)
            if serial is None:
                raise NotFoundError("Serialized part not found")
            if serial.status != "in_stock":
                raise ValidationFailedError("Serialized part is not in stock")
            if serial.current_location_id != location_id:
                raise ValidationFailedError("Serialized part is not at the specified location")
            qty = 1
            lot_number = lot_number or serial.lot_number

        inventory = await self.repo.get_inventory(part_id, location_id, for_update=True)
        on_hand = float(inventory.quantity) if inventory is not None else 0.0
        if inventory is None or on_hand < qty:
            raise ValidationFailedError(
                f"Insufficient inventory. Available: {_fmt(on_hand)}, Required: {_fmt(qty)}",
                details={"available": on_hand, "required": qty},
            )

        cost = unit_cost if unit_cost is not None else part.unit_cost
        await self.repo.set_quantity(inventory.id, on_hand - qty)

        if bom_item_id:
            item = await self.orders.get_bom_item(bom_item_id)
            if item is not None:
                consumed = float(item.quantity_consumed or 0) + qty
                await self.orders.update_bom_item(
                    item.id,
                    {"quantity_consumed": consumed, "is_consumed": consumed >= float(item.quantity_required)},
                )

        if serial is not None:
            await self.repo.update_serial(serial.id, {"status": "consumed", "current_location_id": None})

        row = await self.repo.create_consumption(
            production_order_id=order_id,
            production_step_id=step_id,
            operation_run_id=operation_run_id,
            part_id=part_id,
            bom_item_id=bom_item_id,
            source_location_id=location_id,
            qty=qty,
            unit_cost=cost,
            method=method,
            is_reversal=False,
            serialized_part_id=serial_id,
            lot_number=lot_number,
            idempotency_key=idempotency_key,
            consumed_by=user_id,
        )
        logger.info("Consumed %s of part %s for order %s (%s)", _fmt(qty), part_id, order_id, method)
        return row

    # PUBLIC_INTERFACE
    async def consume_material(self, payload: ConsumeMaterialRequest, user_id: Optional[UUID]) -> MaterialConsumption:
        """Issue material to an order. A repeated idempotency_key returns the original row unchanged."""
        row = await self._consume(
            order_id=payload.production_order_id,
            part_id=payload.part_id,
            location_id=payload.source_location_id,
            qty=payload.qty,
            user_id=user_id,
            method=payload.method,
            step_id=payload.production_step_id,
            operation_run_id=payload.operation_run_id,
            bom_item_id=payload.bom_item_id,
            serial_id=payload.serialized_part_id,
            lot_number=payload.lot_number,
            unit_cost=payload.unit_cost,
            idempotency_key=payload.idempotency_key,
        )
        await self.commit()
        return row

    # PUBLIC_INTERFACE
    async def consume_serialized_part(
        self, serial_id: UUID, payload: ConsumeSerialRequest, user_id: Optional[UUID]
    ) -> MaterialConsumption:
        """Consume one serialized unit into an order (qty 1, lot taken from the serial)."""
        serial = await self.repo.get_serial(serial_id)
        if serial is None:
            raise NotFoundError("Serialized part not found")
        row = await self._consume(
            order_id=payload.production_order_id,
            part_id=serial.part_id,
            location_id=payload.source_location_id,
            qty=1,
            user_id=user_id,
            method=payload.method,
            step_id=payload.production_step_id,
            operation_run_id=payload.operation_run_id,
            bom_item_id=payload.bom_item_id,
            serial_id=serial.id,
            lot_number=serial.lot_number,
            idempotency_key=serial_idempotency_key(serial.id, payload.production_order_id),
        )
        await self.commit()
        return row

    async def backflush_order(self, order_id: UUID, user_id: Optional[UUID]) -> BomConsumptionResult:
        """
        Consume every outstanding BOM line of an order without committing.

        Each line runs in its own savepoint so one failing line does not undo the others.
        """
        result = BomConsumptionResult()
        items = await self.orders.list_bom(order_id)
        for item in items:
            remaining = remaining_quantity(item)
            if item.is_consumed or remaining <= 0:
                continue
            part = await self.parts.get_part(item.part_id)
            part_name = part.name if part is not None else None
            if not item.source_location_id:
                result.errors.append(
                    ConsumptionItemError(
                        bom_item_id=item.id, part_id=item.part_id, part_name=part_name, error="No source location specified"
                    )
                )
                continue
            try:
                async with self.session.begin_nested():
                    row = await self._consume(
                        order_id=order_id,
                        part_id=item.part_id,
                        location_id=item.source_location_id,
                        qty=remaining,
                        user_id=user_id,
                        method="backflush",
                        bom_item_id=item.id,
                        unit_cost=item.unit_cost,
                        idempotency_key=bom_idempotency_key(order_id, item.id),
                    )
            except DomainError as exc:
                result.errors.append(
                    ConsumptionItemError(bom_item_id=item.id, part_id=item.part_id, part_name=part_name, error=exc.message)
                )
                continue
            result.consumed_items.append(
                ConsumedItem(
                    bom_item_id=item.id,
                    part_id=item.part_id,
                    part_name=part_name,
                    qty_consumed=float(row.qty),
                    consumption_id=row.id,
                )
            )
        result.success = not result.errors
        if result.errors:
            logger.warning("Backflush for order %s finished with %d error(s)", order_id, len(result.errors))
        return result

    # PUBLIC_INTERFACE
    async def consume_bom_for_order(self, order_id: UUID, user_id: Optional[UUID]) -> BomConsumptionResult:
        """Backflush all unconsumed BOM lines of an order, reporting per-line errors."""
        if await self.orders.get_order(order_id) is None:
            raise NotFoundError("Production order not found")
        result = await self.backflush_order(order_id, user_id)
        await self.commit()
        return result

    async def _reverse(self, consumption_id: UUID, reason: str, user_id: Optional[UUID]) -> MaterialConsumption:
        existing = await self.repo.get_reversal_of(consumption_id)
        if existing is not None:
            return existing

        original = await self.repo.get_consumption(consumption_id)
        if original is None or original.is_reversal:
            raise NotFoundError("Consumption log entry not found or already a reversal")

        qty = float(original.qty)
        if original.source_location_id:
            inventory = await self.repo.get_inventory(original.part_id, original.source_location_id, for_update=True)
            if inventory is None:
                await self.repo.create_inventory(original.part_id, original.source_location_id, qty)
            else:
                await self.repo.set_quantity(inventory.id, float(inventory.quantity) + qty)

        if original.bom_item_id:
            item = await self.orders.get_bom_item(original.bom_item_id)
            if item is not None:
                consumed = max(0.0, float(item.quantity_consumed or 0) - qty)
                await self.orders.update_bom_item(
                    item.id,
                    {"quantity_consumed": consumed, "is_consumed": consumed >= float(item.quantity_required)},
                )

        if original.serialized_part_id:
            await self.repo.update_serial(
                original.serialized_part_id,
                {"status": "in_stock", "current_location_id": original.source_location_id},
            )

        row = await self.repo.create_consumption(
            production_order_id=original.production_order_id,
            production_step_id=original.production_step_id,
            operation_run_id=original.operation_run_id,
            part_id=original.part_id,
            bom_item_id=original.bom_item_id,
            source_location_id=original.source_location_id,
            qty=-qty,
            unit_cost=original.unit_cost,
            method=original.method,
            is_reversal=True,
            reversal_of_id=original.id,
            reversal_reason=reason,
            serialized_part_id=original.serialized_part_id,
            lot_number=original.lot_number,
            consumed_by=user_id,
        )
        logger.info("Reversed consumption %s (%s)", original.id, reason)
        return row

    # PUBLIC_INTERFACE
    async def reverse_consumption(self, consumption_id: UUID, reason: str, user_id: Optional[UUID]) -> MaterialConsumption:
        """Reverse a consumption row; reversing twice returns the first reversal."""
        row = await self._reverse(consumption_id, reason, user_id)
        await self.commit()
        return row

    # PUBLIC_INTERFACE
    async def reverse_order_consumptions(self, order_id: UUID, reason: str, user_id: Optional[UUID]) -> ReversalResult:
        """Reverse every unreversed consumption of an order, collecting per-row errors."""
        result = ReversalResult()
        for row in await self.repo.list_unreversed_for_order(order_id):
            try:
                async with self.session.begin_nested():
                    await self._reverse(row.id, reason, user_id)
            except DomainError as exc:
                result.errors.append(ReversalError(consumption_id=row.id, error=exc.message))
                continue
            result.reversed_count += 1
        result.success = not result.errors
        await self.commit()
        return result

    # PUBLIC_INTERFACE
    async def get_consumption_log(self, order_id: UUID) -> List[ConsumptionLogEntry]:
        rows = await self.repo.list_log_with_names(order_id)
        out: List[ConsumptionLogEntry] = []
        for row, part_number, part_name, location_name in rows:
            entry = ConsumptionLogEntry.model_validate(row)
            entry.part_number = part_number
            entry.part_name = part_name
            entry.location_name = location_name
            out.append(entry)
        return out

    # PUBLIC_INTERFACE
    async def get_consumption_summary(self, order_id: UUID) -> List[ConsumptionSummary]:
        return summarize_consumption(await self.repo.list_log_with_names(order_id))

    # PUBLIC_INTERFACE
    async def get_available_inventory(self, part_id: UUID, location_id: UUID) -> AvailableInventory:
        """On-hand minus the quantity reserved by allocated, unconsumed BOM lines."""
        inventory = await self.repo.get_inventory(part_id, location_id)
        on_hand = float(inventory.quantity) if inventory is not None else 0.0
        reserved = reserved_quantity(await self.orders.list_reserving_bom_items(part_id, location_id))
        return AvailableInventory(
            part_id=part_id,
            location_id=location_id,
            on_hand=on_hand,
            reserved=reserved,
            available=on_hand - reserved,
        )

    # PUBLIC_INTERFACE
    async def get_serialized_parts_for_consumption(self, part_id: UUID, location_id: UUID) -> List[SerializedPart]:
        return await self.repo.list_serials(part_id=part_id, location_id=location_id, status="in_stock")

    # PUBLIC_INTERFACE
    async def list_serialized_parts(
        self, part_id: Optional[UUID], location_id: Optional[UUID], status: Optional[str]
    ) -> List[SerializedPart]:
        return await self.repo.list_serials(part_id=part_id, location_id=location_id, status=status)

    # PUBLIC_INTERFACE
    async def create_serialized_part(self, payload: SerializedPartCreate) -> SerializedPart:
        if await self.parts.get_part(payload.part_id) is None:
            raise NotFoundError("Part not found")
        serial = await self.repo.create_serial(**payload.model_dump())
        await self.commit()
        return serial

    # PUBLIC_INTERFACE
    async def list_part_inventory(self, part_id: Optional[UUID], location_id: Optional[UUID]) -> List[PartInventory]:
        return await self.repo.list_inventory(part_id=part_id, location_id=location_id)

    # PUBLIC_INTERFACE
    async def adjust_inventory(
        self, part_id: UUID, location_id: UUID, delta: float, reason: Optional[str] = None
    ) -> PartInventory:
        """Apply a signed stock adjustment, creating the inventory row on first use."""
        if await self.parts.get_part(part_id) is None:
            raise NotFoundError("Part not found")
        if await self.parts.get_location(location_id) is None:
            raise NotFoundError("Stock location not found")
        inventory = await self.repo.get_inventory(part_id, location_id, for_update=True)
        current = float(inventory.quantity) if inventory is not None else 0.0
        new_qty = current + delta
        if new_qty < 0:
            raise ValidationFailedError(
                f"Adjustment would make inventory negative. Available: {_fmt(current)}, Delta: {_fmt(delta)}",
                details={"available": current, "delta": delta},
            )
        if inventory is None:
            inventory = await self.repo.create_inventory(part_id, location_id, new_qty)
        else:
            inventory = await self.repo.set_quantity(inventory.id, new_qty)
        logger.info("Inventory adjusted part=%s location=%s delta=%s reason=%s", part_id, location_id, _fmt(delta), reason)
        await self.commit()
        return inventory  # type: ignore[return-value]
