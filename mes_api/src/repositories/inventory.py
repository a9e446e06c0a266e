from __future__ import annotations

from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select

from src.db.models.inventory import MaterialConsumption, PartInventory, SerializedPart
from src.db.models.master_data import Part, StockLocation
from .base import BaseRepository


class InventoryRepository(BaseRepository):
    """Repository for on-hand inventory, serialized parts and the consumption log."""

    async def get_inventory(self, part_id: UUID, location_id: UUID, *, for_update: bool = False) -> Optional[PartInventory]:
        stmt = select(PartInventory).where(
            PartInventory.part_id == part_id,
            PartInventory.stock_location_id == location_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return await self.scalar_one_or_none(stmt)

    async def list_inventory(self, *, part_id: Optional[UUID], location_id: Optional[UUID]) -> List[PartInventory]:
        stmt = select(PartInventory)
        if part_id:
            stmt = stmt.where(PartInventory.part_id == part_id)
        if location_id:
            stmt = stmt.where(PartInventory.stock_location_id == location_id)
        stmt = stmt.order_by(PartInventory.part_id, PartInventory.stock_location_id)
        res = await self.scalars(stmt)
        return list(res)

    async def create_inventory(self, part_id: UUID, location_id: UUID, quantity: float) -> PartInventory:
        return await self.add(PartInventory(part_id=part_id, stock_location_id=location_id, quantity=quantity))

    async def set_quantity(self, inventory_id: UUID, quantity: float) -> Optional[PartInventory]:
        return await self.update_values(PartInventory, inventory_id, {"quantity": quantity})

    # Serialized parts

    async def get_serial(self, serial_id: UUID) -> Optional[SerializedPart]:
        return await self.get_by_id(SerializedPart, serial_id)

    async def list_serials(
        self,
        *,
        part_id: Optional[UUID],
        location_id: Optional[UUID] = None,
        status: Optional[str] = None,
    ) -> List[SerializedPart]:
        stmt = select(SerializedPart)
        if part_id:
            stmt = stmt.where(SerializedPart.part_id == part_id)
        if location_id:
            stmt = stmt.where(SerializedPart.current_location_id == location_id)
        if status:
            stmt = stmt.where(SerializedPart.status == status)
        stmt = stmt.order_by(SerializedPart.serial_number)
        res = await self.scalars(stmt)
        return list(res)

    async def create_serial(self, **values) -> SerializedPart:
        return await self.add(SerializedPart(**values))

    async def update_serial(self, serial_id: UUID, values: dict) -> Optional[SerializedPart]:
        return await self.update_values(SerializedPart, serial_id, values)

    # Consumption log

    async def get_consumption(self, consumption_id: UUID) -> Optional[MaterialConsumption]:
        return await self.get_by_id(MaterialConsumption, consumption_id)

    async def get_by_idempotency_key(self, key: str) -> Optional[MaterialConsumption]:
        stmt = select(MaterialConsumption).where(MaterialConsumption.idempotency_key == key)
        return await self.scalar_one_or_none(stmt)

    async def get_reversal_of(self, consumption_id: UUID) -> Optional[MaterialConsumption]:
        stmt = (
            select(MaterialConsumption)
            .where(
                MaterialConsumption.reversal_of_id == consumption_id,
                MaterialConsumption.is_reversal.is_(True),
            )
            .limit(1)
        )
        return await self.scalar_one_or_none(stmt)

    async def create_consumption(self, **values) -> MaterialConsumption:
        return await self.add(MaterialConsumption(**values))

    async def list_for_order(self, order_id: UUID) -> List[MaterialConsumption]:
        stmt = (
            select(MaterialConsumption)
            .where(MaterialConsumption.production_order_id == order_id)
            .order_by(MaterialConsumption.consumed_at.desc())
        )
        res = await self.scalars(stmt)
        return list(res)

    async def list_log_with_names(
        self, order_id: Optional[UUID]
    ) -> List[Tuple[MaterialConsumption, Optional[str], Optional[str], Optional[str]]]:
        """Consumption rows (newest first) with part number, part name and location name."""
        stmt = (
            select(MaterialConsumption, Part.part_number, Part.name, StockLocation.name)
            .outerjoin(Part, Part.id == MaterialConsumption.part_id)
            .outerjoin(StockLocation, StockLocation.id == MaterialConsumption.source_location_id)
        )
        if order_id:
            stmt = stmt.where(MaterialConsumption.production_order_id == order_id)
        stmt = stmt.order_by(MaterialConsumption.consumed_at.desc())
        res = await self.execute(stmt)
        return [(row[0], row[1], row[2], row[3]) for row in res.all()]

    async def list_unreversed_for_order(self, order_id: UUID) -> List[MaterialConsumption]:
        """Non-reversal rows of an order that have no reversal yet, oldest first."""
        reversed_ids = (
            select(MaterialConsumption.reversal_of_id)
            .where(MaterialConsumption.is_reversal.is_(True), MaterialConsumption.reversal_of_id.is_not(None))
            .scalar_subquery()
        )
        stmt = (
            select(MaterialConsumption)
            .where(
                MaterialConsumption.production_order_id == order_id,
                MaterialConsumption.is_reversal.is_(False),
                MaterialConsumption.id.not_in(reversed_ids),
            )
            .order_by(MaterialConsumption.consumed_at.asc())
        )
        res = await self.scalars(stmt)
        return list(res)
