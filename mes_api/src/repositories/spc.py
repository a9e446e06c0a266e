from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import desc, func, select

from src.db.models.spc import SPCPoint, SPCRuleViolation, SPCSubgroup
from .base import BaseRepository


class SPCRepository(BaseRepository):
    """Repository for SPC subgroups, points and rule violations."""

    async def list_subgroups(
        self,
        characteristic_id: UUID,
        *,
        work_center_id: Optional[UUID] = None,
        product_id: Optional[UUID] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        limit: Optional[int] = None,
        latest: bool = False,
    ) -> List[SPCSubgroup]:
        """
        Subgroups of a characteristic in ascending time order.

        With latest=True and a limit, the newest `limit` subgroups are selected
        and still returned oldest first.
        """
        stmt = select(SPCSubgroup).where(SPCSubgroup.characteristic_id == characteristic_id)
        if work_center_id:
            stmt = stmt.where(SPCSubgroup.work_center_id == work_center_id)
        if product_id:
            stmt = stmt.where(SPCSubgroup.product_id == product_id)
        if from_ts:
            stmt = stmt.where(SPCSubgroup.subgroup_ts >= from_ts)
        if to_ts:
            stmt = stmt.where(SPCSubgroup.subgroup_ts <= to_ts)
        if latest:
            stmt = stmt.order_by(desc(SPCSubgroup.subgroup_ts), desc(SPCSubgroup.created_at))
        else:
            stmt = stmt.order_by(SPCSubgroup.subgroup_ts, SPCSubgroup.created_at)
        if limit:
            stmt = stmt.limit(limit)
        rows = list(await self.scalars(stmt))
        if latest:
            rows.reverse()
        return rows

    async def list_points(self, subgroup_ids: Sequence[UUID]) -> Dict[UUID, List[SPCPoint]]:
        """Points grouped by subgroup id, each list ordered by sequence."""
        if not subgroup_ids:
            return {}
        stmt = (
            select(SPCPoint)
            .where(SPCPoint.subgroup_id.in_(list(subgroup_ids)))
            .order_by(SPCPoint.subgroup_id, SPCPoint.sequence)
        )
        grouped: Dict[UUID, List[SPCPoint]] = {}
        for point in await self.scalars(stmt):
            grouped.setdefault(point.subgroup_id, []).append(point)
        return grouped

    async def get_subgroup(self, subgroup_id: UUID) -> Optional[SPCSubgroup]:
        return await self.get_by_id(SPCSubgroup, subgroup_id)

    async def create_subgroup(self, **values) -> SPCSubgroup:
        return await self.add(SPCSubgroup(**values))

    async def update_subgroup(self, subgroup_id: UUID, values: dict) -> Optional[SPCSubgroup]:
        return await self.update_values(SPCSubgroup, subgroup_id, values)

    async def max_point_sequence(self, subgroup_id: UUID) -> int:
        stmt = select(func.max(SPCPoint.sequence)).where(SPCPoint.subgroup_id == subgroup_id)
        return int(await self.scalar_one_or_none(stmt) or 0)

    async def create_point(self, **values) -> SPCPoint:
        return await self.add(SPCPoint(**values))

    async def list_violations(
        self,
        *,
        characteristic_id: Optional[UUID] = None,
        acknowledged: Optional[bool] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> List[SPCRuleViolation]:
        stmt = select(SPCRuleViolation)
        conditions: List[Any] = []
        if characteristic_id:
            conditions.append(SPCRuleViolation.characteristic_id == characteristic_id)
        if acknowledged is True:
            conditions.append(SPCRuleViolation.acknowledged_at.is_not(None))
        elif acknowledged is False:
            conditions.append(SPCRuleViolation.acknowledged_at.is_(None))
        if from_ts:
            conditions.append(SPCRuleViolation.detected_at >= from_ts)
        if to_ts:
            conditions.append(SPCRuleViolation.detected_at <= to_ts)
        if conditions:
            stmt = stmt.where(*conditions)
        res = await self.scalars(stmt.order_by(desc(SPCRuleViolation.detected_at)))
        return list(res)

    async def get_violation(self, violation_id: UUID) -> Optional[SPCRuleViolation]:
        return await self.get_by_id(SPCRuleViolation, violation_id)

    async def create_violation(self, **values) -> SPCRuleViolation:
        return await self.add(SPCRuleViolation(**values))

    async def update_violation(self, violation_id: UUID, values: dict) -> Optional[SPCRuleViolation]:
        return await self.update_values(SPCRuleViolation, violation_id, values)
