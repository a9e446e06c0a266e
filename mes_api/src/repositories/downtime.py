from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select

from src.db.models.downtime import DowntimeEvent, DowntimeReasonCode, EquipmentStateEvent
from src.db.models.master_data import EquipmentAsset, WorkCenter
from .base import BaseRepository

DowntimeRow = Tuple[DowntimeEvent, EquipmentStateEvent, Optional[EquipmentAsset], Optional[WorkCenter], Optional[DowntimeReasonCode]]


class DowntimeRepository(BaseRepository):
    """Repository for reason codes, equipment state events and downtime events."""

    # Reason codes

    async def list_reasons(self, *, active_only: bool = True) -> List[DowntimeReasonCode]:
        stmt = select(DowntimeReasonCode)
        if active_only:
            stmt = stmt.where(DowntimeReasonCode.is_active.is_(True))
        stmt = stmt.order_by(DowntimeReasonCode.display_order, DowntimeReasonCode.name)
        res = await self.scalars(stmt)
        return list(res)

    async def get_reason(self, reason_id: UUID) -> Optional[DowntimeReasonCode]:
        return await self.get_by_id(DowntimeReasonCode, reason_id)

    async def get_reason_by_code(self, code: str) -> Optional[DowntimeReasonCode]:
        stmt = select(DowntimeReasonCode).where(DowntimeReasonCode.code == code)
        return await self.scalar_one_or_none(stmt)

    async def create_reason(self, **values) -> DowntimeReasonCode:
        return await self.add(DowntimeReasonCode(**values))

    async def update_reason(self, reason_id: UUID, values: dict) -> Optional[DowntimeReasonCode]:
        return await self.update_values(DowntimeReasonCode, reason_id, values)

    # State and downtime events

    async def get_state_event(self, event_id: UUID) -> Optional[EquipmentStateEvent]:
        return await self.get_by_id(EquipmentStateEvent, event_id)

    async def get_open_stop(self, equipment_asset_id: UUID) -> Optional[EquipmentStateEvent]:
        stmt = (
            select(EquipmentStateEvent)
            .where(
                EquipmentStateEvent.equipment_asset_id == equipment_asset_id,
                EquipmentStateEvent.end_ts.is_(None),
                EquipmentStateEvent.state != "RUN",
            )
            .order_by(EquipmentStateEvent.start_ts.desc())
            .limit(1)
        )
        return await self.scalar_one_or_none(stmt)

    async def get_state_event_by_external_id(self, external_event_id: str) -> Optional[EquipmentStateEvent]:
        stmt = select(EquipmentStateEvent).where(EquipmentStateEvent.external_event_id == external_event_id)
        return await self.scalar_one_or_none(stmt)

    async def create_state_event(self, **values) -> EquipmentStateEvent:
        return await self.add(EquipmentStateEvent(**values))

    async def update_state_event(self, event_id: UUID, values: dict) -> Optional[EquipmentStateEvent]:
        return await self.update_values(EquipmentStateEvent, event_id, values)

    async def get_downtime_event(self, event_id: UUID) -> Optional[DowntimeEvent]:
        return await self.get_by_id(DowntimeEvent, event_id)

    async def get_downtime_for_state_event(self, state_event_id: UUID) -> Optional[DowntimeEvent]:
        stmt = select(DowntimeEvent).where(DowntimeEvent.equipment_state_event_id == state_event_id)
        return await self.scalar_one_or_none(stmt)

    async def create_downtime_event(self, **values) -> DowntimeEvent:
        return await self.add(DowntimeEvent(**values))

    async def update_downtime_event(self, event_id: UUID, values: dict) -> Optional[DowntimeEvent]:
        return await self.update_values(DowntimeEvent, event_id, values)

    async def list_downtime(
        self,
        *,
        work_center_id: Optional[UUID] = None,
        equipment_asset_id: Optional[UUID] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        is_classified: Optional[bool] = None,
        category: Optional[str] = None,
        reason_group: Optional[str] = None,
        open_only: bool = False,
        downtime_event_id: Optional[UUID] = None,
        limit: Optional[int] = 1000,
        offset: int = 0,
    ) -> List[DowntimeRow]:
        """
        Downtime events joined with state event, equipment, work center and reason, newest first.

        `limit=None` returns every match.
        """
        stmt = (
            select(DowntimeEvent, EquipmentStateEvent, EquipmentAsset, WorkCenter, DowntimeReasonCode)
            .join(EquipmentStateEvent, EquipmentStateEvent.id == DowntimeEvent.equipment_state_event_id)
            .outerjoin(EquipmentAsset, EquipmentAsset.id == EquipmentStateEvent.equipment_asset_id)
            .outerjoin(WorkCenter, WorkCenter.id == EquipmentStateEvent.work_center_id)
            .outerjoin(DowntimeReasonCode, DowntimeReasonCode.id == DowntimeEvent.reason_code_id)
        )
        conditions: List[Any] = []
        if downtime_event_id:
            conditions.append(DowntimeEvent.id == downtime_event_id)
        if work_center_id:
            conditions.append(EquipmentStateEvent.work_center_id == work_center_id)
        if equipment_asset_id:
            conditions.append(EquipmentStateEvent.equipment_asset_id == equipment_asset_id)
        if from_ts:
            conditions.append(EquipmentStateEvent.start_ts >= from_ts)
        if to_ts:
            conditions.append(EquipmentStateEvent.start_ts <= to_ts)
        if is_classified is not None:
            conditions.append(DowntimeEvent.is_classified.is_(is_classified))
        if category:
            conditions.append(DowntimeReasonCode.category == category)
        if reason_group:
            conditions.append(DowntimeReasonCode.reason_group == reason_group)
        if open_only:
            conditions.append(EquipmentStateEvent.end_ts.is_(None))
        if conditions:
            stmt = stmt.where(*conditions)
        stmt = stmt.order_by(EquipmentStateEvent.start_ts.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        res = await self.execute(stmt)
        return [(row[0], row[1], row[2], row[3], row[4]) for row in res.all()]
