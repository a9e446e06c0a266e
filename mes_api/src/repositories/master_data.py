from __future__ import annotations

from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import or_, select

from src.db.models.master_data import EquipmentAsset, Part, StockLocation, WorkCenter
from .base import BaseRepository


class WorkCenterRepository(BaseRepository):
    """Repository for work centers."""

    async def list_work_centers(self, *, active_only: bool = True) -> List[WorkCenter]:
        stmt = select(WorkCenter)
        if active_only:
            stmt = stmt.where(WorkCenter.is_active.is_(True))
        stmt = stmt.order_by(WorkCenter.code)
        res = await self.scalars(stmt)
        return list(res)

    async def list_by_ids(self, ids: Sequence[UUID]) -> List[WorkCenter]:
        if not ids:
            return []
        stmt = select(WorkCenter).where(WorkCenter.id.in_(list(ids))).order_by(WorkCenter.code)
        res = await self.scalars(stmt)
        return list(res)

    async def get_work_center(self, wc_id: UUID) -> Optional[WorkCenter]:
        return await self.get_by_id(WorkCenter, wc_id)

    async def create_work_center(self, **values) -> WorkCenter:
        return await self.add(WorkCenter(**values))

    async def update_work_center(self, wc_id: UUID, values: dict) -> Optional[WorkCenter]:
        return await self.update_values(WorkCenter, wc_id, values)


class EquipmentRepository(BaseRepository):
    """Repository for equipment assets."""

    async def list_equipment(self, *, work_center_id: Optional[UUID], active_only: bool = True) -> List[EquipmentAsset]:
        stmt = select(EquipmentAsset)
        if work_center_id:
            stmt = stmt.where(EquipmentAsset.work_center_id == work_center_id)
        if active_only:
            stmt = stmt.where(EquipmentAsset.is_active.is_(True))
        stmt = stmt.order_by(EquipmentAsset.asset_code)
        res = await self.scalars(stmt)
        return list(res)

    async def get_equipment(self, asset_id: UUID) -> Optional[EquipmentAsset]:
        return await self.get_by_id(EquipmentAsset, asset_id)

    async def create_equipment(self, **values) -> EquipmentAsset:
        return await self.add(EquipmentAsset(**values))

    async def update_equipment(self, asset_id: UUID, values: dict) -> Optional[EquipmentAsset]:
        return await self.update_values(EquipmentAsset, asset_id, values)


class PartRepository(BaseRepository):
    """Repository for parts and stock locations."""

    async def list_parts(self, *, search: Optional[str], active_only: bool, limit: int, offset: int) -> List[Part]:
        stmt = select(Part)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(Part.part_number.ilike(like), Part.name.ilike(like)))
        if active_only:
            stmt = stmt.where(Part.is_active.is_(True))
        stmt = stmt.order_by(Part.part_number).offset(offset).limit(limit)
        res = await self.scalars(stmt)
        return list(res)

    async def get_part(self, part_id: UUID) -> Optional[Part]:
        return await self.get_by_id(Part, part_id)

    async def create_part(self, **values) -> Part:
        return await self.add(Part(**values))

    async def update_part(self, part_id: UUID, values: dict) -> Optional[Part]:
        return await self.update_values(Part, part_id, values)

    async def list_locations(self, *, active_only: bool = True) -> List[StockLocation]:
        stmt = select(StockLocation)
        if active_only:
            stmt = stmt.where(StockLocation.is_active.is_(True))
        stmt = stmt.order_by(StockLocation.code)
        res = await self.scalars(stmt)
        return list(res)

    async def get_location(self, location_id: UUID) -> Optional[StockLocation]:
        return await self.get_by_id(StockLocation, location_id)

    async def create_location(self, **values) -> StockLocation:
        return await self.add(StockLocation(**values))
