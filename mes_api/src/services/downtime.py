from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.db.models.downtime import DowntimeReasonCode
from src.repositories.downtime import DowntimeRepository, DowntimeRow
from src.repositories.master_data import EquipmentRepository
from src.schemas.downtime import (
    AutoDowntimeRequest,
    ClassifyRequest,
    DowntimeLogEntry,
    DowntimeSummary,
    ParetoItem,
    ReasonCodeCreate,
    ReasonCodeUpdate,
    StartDowntimeRequest,
    StateEventRead,
    SummaryBucket,
)
from src.services.base import BaseService, utcnow
from src.services.realtime import publish_kpis

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def to_log_entry(row: DowntimeRow) -> DowntimeLogEntry:
    """Flatten a joined downtime row into a DowntimeLogEntry."""
    downtime, state, asset, work_center, reason = row
    return DowntimeLogEntry(
        downtime_event_id=downtime.id,
        state_event_id=state.id,
        equipment_asset_id=state.equipment_asset_id,
        equipment_code=asset.asset_code if asset is not None else None,
        equipment_name=asset.name if asset is not None else None,
        work_center_id=state.work_center_id,
        work_center_name=work_center.name if work_center is not None else None,
        state=state.state,
        start_ts=state.start_ts,
        end_ts=state.end_ts,
        duration_seconds=state.duration_seconds,
        source=state.source,
        external_event_id=state.external_event_id,
        notes=state.notes,
        is_classified=downtime.is_classified,
        is_planned=downtime.is_planned,
        classification_notes=downtime.classification_notes,
        classified_by=downtime.classified_by,
        classified_at=downtime.classified_at,
        reason_code_id=downtime.reason_code_id,
        reason_code=reason.code if reason is not None else None,
        reason_name=reason.name if reason is not None else None,
        reason_category=reason.category if reason is not None else None,
        reason_group=reason.reason_group if reason is not None else None,
    )


def _duration(entry: DowntimeLogEntry) -> float:
    return float(entry.duration_seconds or 0)


def _buckets(entries: Sequence[DowntimeLogEntry], key: Callable[[DowntimeLogEntry], str]) -> List[SummaryBucket]:
    buckets: Dict[str, SummaryBucket] = {}
    for entry in entries:
        k = key(entry)
        bucket = buckets.setdefault(k, SummaryBucket(key=k))
        bucket.count += 1
        bucket.duration_seconds += _duration(entry)
    return sorted(buckets.values(), key=lambda b: b.duration_seconds, reverse=True)


# PUBLIC_INTERFACE
def build_summary(entries: Sequence[DowntimeLogEntry]) -> DowntimeSummary:
    """Totals, classification counts and category/group breakdowns; unclassified reasons bucket as 'unclassified'."""
    total = sum(_duration(e) for e in entries)
    classified = sum(1 for e in entries if e.is_classified)
    return DowntimeSummary(
        total_events=len(entries),
        total_duration_seconds=total,
        classified_events=classified,
        unclassified_events=len(entries) - classified,
        planned_duration_seconds=sum(_duration(e) for e in entries if e.is_planned),
        unplanned_duration_seconds=sum(_duration(e) for e in entries if not e.is_planned),
        avg_duration_seconds=round(total / len(entries), 2) if entries else 0,
        by_category=_buckets(entries, lambda e: e.reason_category or "unclassified"),
        by_group=_buckets(entries, lambda e: e.reason_group or "unclassified"),
    )


def _pareto_key(entry: DowntimeLogEntry, by: str) -> Tuple[str, str, str, str]:
    """Return (code, name, category, reason_group) for the Pareto dimension."""
    if by == "category":
        key = entry.reason_category or "unplanned"
        return key.upper(), key.capitalize(), key, "all"
    if by == "group":
        key = entry.reason_group or "other"
        return key.upper(), key.capitalize(), "unplanned", key
    return (
        entry.reason_code or "UNCLASSIFIED",
        entry.reason_name or "Unclassified",
        entry.reason_category or "unplanned",
        entry.reason_group or "other",
    )


# PUBLIC_INTERFACE
def pareto(entries: Sequence[DowntimeLogEntry], by: str = "reason") -> List[ParetoItem]:
    """
    Pareto of downtime duration by reason, category or group.

    Sorted by duration descending; percentages are of the total duration (0 when total is 0)
    and cumulative_percentage is the running sum.
    """
    items: Dict[str, ParetoItem] = {}
    for entry in entries:
        code, name, category, group = _pareto_key(entry, by)
        item = items.get(code)
        if item is None:
            item = ParetoItem(code=code, name=name, category=category, reason_group=group)
            items[code] = item
        item.count += 1
        item.duration_seconds += _duration(entry)

    ordered = sorted(items.values(), key=lambda i: i.duration_seconds, reverse=True)
    total = sum(i.duration_seconds for i in ordered)
    running = 0.0
    for item in ordered:
        item.duration_minutes = round(item.duration_seconds / 60.0)
        pct = (item.duration_seconds / total * 100.0) if total > 0 else 0.0
        running += pct
        item.percentage_of_total = round(pct, 2)
        item.cumulative_percentage = round(running, 2)
    return ordered


class DowntimeService(BaseService):
    """Equipment downtime capture, classification and analysis."""

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        super().__init__(session, tenant_id)
        self.repo = DowntimeRepository(session)
        self.equipment = EquipmentRepository(session)

    async def _entry(self, downtime_event_id: UUID) -> DowntimeLogEntry:
        rows = await self.repo.list_downtime(downtime_event_id=downtime_event_id, limit=1)
        if not rows:
            raise NotFoundError("Downtime event not found")
        return to_log_entry(rows[0])

    # Reason codes

    # PUBLIC_INTERFACE
    async def get_reasons(self, active_only: bool = True) -> List[DowntimeReasonCode]:
        return await self.repo.list_reasons(active_only=active_only)

    # PUBLIC_INTERFACE
    async def create_reason(self, payload: ReasonCodeCreate) -> DowntimeReasonCode:
        if await self.repo.get_reason_by_code(payload.code) is not None:
            raise ConflictError(f"Reason code {payload.code} already exists")
        reason = await self.repo.create_reason(**payload.model_dump())
        await self.commit()
        return reason

    # PUBLIC_INTERFACE
    async def update_reason(self, reason_id: UUID, payload: ReasonCodeUpdate) -> DowntimeReasonCode:
        if await self.repo.get_reason(reason_id) is None:
            raise NotFoundError("Reason code not found")
        reason = await self.repo.update_reason(reason_id, payload.model_dump(exclude_unset=True))
        await self.commit()
        return reason  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def deactivate_reason(self, reason_id: UUID) -> DowntimeReasonCode:
        if await self.repo.get_reason(reason_id) is None:
            raise NotFoundError("Reason code not found")
        reason = await self.repo.update_reason(reason_id, {"is_active": False})
        await self.commit()
        return reason  # type: ignore[return-value]

    # Events

    async def _classify_values(
        self, reason_id: UUID, notes: Optional[str], is_planned: Optional[bool], user_id: Optional[UUID]
    ) -> dict:
        reason = await self.repo.get_reason(reason_id)
        if reason is None:
            raise NotFoundError("Reason code not found")
        return {
            "reason_code_id": reason.id,
            "is_classified": True,
            "classification_notes": notes,
            "classified_by": user_id,
            "classified_at": utcnow(),
            "is_planned": is_planned if is_planned is not None else reason.category == "planned",
        }

    # PUBLIC_INTERFACE
    async def start_downtime(self, payload: StartDowntimeRequest, user_id: Optional[UUID]) -> DowntimeLogEntry:
        """Open a stop on a piece of equipment; only one open stop per equipment is allowed."""
        if payload.state == "RUN":
            raise ValidationFailedError("Downtime cannot be started in the RUN state")
        asset = await self.equipment.get_equipment(payload.equipment_asset_id)
        if asset is None:
            raise NotFoundError("Equipment asset not found")

        existing = await self.repo.get_open_stop(asset.id)
        if existing is not None:
            raise ConflictError(
                "Equipment already has an active downtime event. End the current event before starting a new one.",
                details={"existing_event": StateEventRead.model_validate(existing).model_dump(mode="json")},
            )

        state = await self.repo.create_state_event(
            equipment_asset_id=asset.id,
            work_center_id=asset.work_center_id,
            state=payload.state,
            start_ts=payload.start_ts or utcnow(),
            source=payload.source or "manual",
            notes=payload.notes,
            created_by=user_id,
        )
        values: dict = {
            "equipment_state_event_id": state.id,
            "is_classified": False,
            "is_planned": payload.state == "PLANNED_STOP",
        }
        if payload.reason_code_id:
            values.update(await self._classify_values(payload.reason_code_id, None, None, user_id))
        downtime = await self.repo.create_downtime_event(**values)
        await self.commit()
        logger.info("Downtime started on equipment %s (%s)", asset.asset_code, payload.state)
        await publish_kpis(self.session, self.tenant_id)
        return await self._entry(downtime.id)

    # PUBLIC_INTERFACE
    async def end_downtime(self, state_event_id: UUID, end_ts: Optional[datetime] = None) -> DowntimeLogEntry:
        state = await self.repo.get_state_event(state_event_id)
        if state is None:
            raise NotFoundError("Equipment state event not found")
        if state.end_ts is not None:
            raise ConflictError("Downtime event has already ended")
        end = end_ts or utcnow()
        if end < state.start_ts:
            raise ValidationFailedError("End time cannot be before start time")
        await self.repo.update_state_event(state_event_id, {"end_ts": end})
        downtime = await self.repo.get_downtime_for_state_event(state_event_id)
        await self.commit()
        await publish_kpis(self.session, self.tenant_id)
        if downtime is None:
            raise NotFoundError("Downtime event not found")
        return await self._entry(downtime.id)

    # PUBLIC_INTERFACE
    async def classify_downtime(
        self, downtime_event_id: UUID, payload: ClassifyRequest, user_id: Optional[UUID]
    ) -> DowntimeLogEntry:
        if await self.repo.get_downtime_event(downtime_event_id) is None:
            raise NotFoundError("Downtime event not found")
        values = await self._classify_values(
            payload.reason_code_id, payload.classification_notes, payload.is_planned, user_id
        )
        await self.repo.update_downtime_event(downtime_event_id, values)
        await self.commit()
        return await self._entry(downtime_event_id)

    # PUBLIC_INTERFACE
    async def auto_create_downtime(self, payload: AutoDowntimeRequest) -> DowntimeLogEntry:
        """Ingest a closed stop from equipment signals; repeated external_event_id returns the existing entry."""
        if payload.external_event_id:
            existing = await self.repo.get_state_event_by_external_id(payload.external_event_id)
            if existing is not None:
                downtime = await self.repo.get_downtime_for_state_event(existing.id)
                if downtime is not None:
                    return await self._entry(downtime.id)

        asset = await self.equipment.get_equipment(payload.equipment_asset_id)
        if asset is None:
            raise NotFoundError("Equipment asset not found")
        if payload.end_ts < payload.start_ts:
            raise ValidationFailedError("End time cannot be before start time")

        state = await self.repo.create_state_event(
            equipment_asset_id=asset.id,
            work_center_id=asset.work_center_id,
            state="STOP",
            start_ts=payload.start_ts,
            end_ts=payload.end_ts,
            external_event_id=payload.external_event_id,
            source="auto",
        )
        downtime = await self.repo.create_downtime_event(
            equipment_state_event_id=state.id, is_classified=False, is_planned=False
        )
        await self.commit()
        return await self._entry(downtime.id)

    # PUBLIC_INTERFACE
    async def get_downtime_events(
        self,
        *,
        work_center_id: Optional[UUID] = None,
        equipment_asset_id: Optional[UUID] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        is_classified: Optional[bool] = None,
        category: Optional[str] = None,
        reason_group: Optional[str] = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> List[DowntimeLogEntry]:
        rows = await self.repo.list_downtime(
            work_center_id=work_center_id,
            equipment_asset_id=equipment_asset_id,
            from_ts=from_ts,
            to_ts=to_ts,
            is_classified=is_classified,
            category=category,
            reason_group=reason_group,
            limit=limit,
            offset=offset,
        )
        return [to_log_entry(r) for r in rows]

    # PUBLIC_INTERFACE
    async def get_active_downtime_events(self, work_center_id: Optional[UUID] = None) -> List[DowntimeLogEntry]:
        rows = await self.repo.list_downtime(work_center_id=work_center_id, open_only=True)
        return [to_log_entry(r) for r in rows]

    async def _window(self, work_center_id: Optional[UUID], from_ts: Optional[datetime], to_ts: Optional[datetime]):
        rows = await self.repo.list_downtime(work_center_id=work_center_id, from_ts=from_ts, to_ts=to_ts, limit=None)
        return [to_log_entry(r) for r in rows]

    # PUBLIC_INTERFACE
    async def get_downtime_summary(
        self, work_center_id: Optional[UUID], from_ts: Optional[datetime], to_ts: Optional[datetime]
    ) -> DowntimeSummary:
        return build_summary(await self._window(work_center_id, from_ts, to_ts))

    # PUBLIC_INTERFACE
    async def get_pareto_by_reason(
        self, work_center_id: Optional[UUID], from_ts: Optional[datetime], to_ts: Optional[datetime]
    ) -> List[ParetoItem]:
        return pareto(await self._window(work_center_id, from_ts, to_ts), by="reason")

    # PUBLIC_INTERFACE
    async def get_pareto_by_category(
        self, work_center_id: Optional[UUID], from_ts: Optional[datetime], to_ts: Optional[datetime]
    ) -> List[ParetoItem]:
        return pareto(await self._window(work_center_id, from_ts, to_ts), by="category")

    # PUBLIC_INTERFACE
    async def get_pareto_by_group(
        self, work_center_id: Optional[UUID], from_ts: Optional[datetime], to_ts: Optional[datetime]
    ) -> List[ParetoItem]:
        return pareto(await self._window(work_center_id, from_ts, to_ts), by="group")
