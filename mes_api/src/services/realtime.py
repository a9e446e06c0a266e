from __future__ import annotations

import asyncio

import logging
from datetime import datetime, time
from typing import Dict, Optional, Set
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocket, WebSocketState

from src.db.models.downtime import EquipmentStateEvent
from src.db.models.oee import OEESnapshot
from src.db.models.production import ProductionOrder
from src.db.models.quality import Nonconformance
from src.schemas.realtime import KpiSnapshot, SchedulerEvent, WsEnvelope
from src.services.base import plant_timezone, utcnow

logger = logging.getLogger(__name__)


class BroadcastManager:
    """
    Simple in-process pub-sub manager for WebSocket topics.

    Topics:
      - dashboard:{tenant_id}
      - scheduler:{tenant_id} or scheduler:{tenant_id}:{board}
    """

    def __init__(self) -> None:
        self._topics: Dict[str, Set[WebSocket]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()

    def _topic_lock(self, topic: str) -> asyncio.Lock:
        if topic not in self._locks:
            self._locks[topic] = asyncio.Lock()
        return self._locks[topic]

    # PUBLIC_INTERFACE
    def dashboard_topic(self, tenant_id: UUID | str) -> str:
        """Return dashboard topic name for tenant."""
        return f"dashboard:{tenant_id}"

    # PUBLIC_INTERFACE
    def scheduler_topic(self, tenant_id: UUID | str, board: Optional[str] = None) -> str:
        """Return scheduler topic name for tenant and optional board channel."""
        base = f"scheduler:{tenant_id}"
        if board:
            return f"{base}:{board}"
        return base

    async def _ensure_topic(self, topic: str) -> None:
        async with self._global_lock:
            if topic not in self._topics:
                self._topics[topic] = set()

    # PUBLIC_INTERFACE
    async def connect(self, topic: str, websocket: WebSocket) -> None:
        """
        Accept the connection and add websocket to topic subscribers.
        """
        await self._ensure_topic(topic)
        async with self._topic_lock(topic):
            self._topics[topic].add(websocket)
            logger.info("WebSocket connected to topic=%s; subscribers=%d", topic, len(self._topics[topic]))

    # PUBLIC_INTERFACE
    async def disconnect(self, topic: str, websocket: WebSocket) -> None:
        """Remove websocket from topic subscribers."""
        if topic not in self._topics:
            return
        async with self._topic_lock(topic):
            self._topics[topic].discard(websocket)
            logger.info("WebSocket disconnected from topic=%s; subscribers=%d", topic, len(self._topics[topic]))

    # PUBLIC_INTERFACE
    async def broadcast(self, topic: str, message: dict, exclude: Optional[WebSocket] = None) -> None:
        """
        Broadcast a dict message to all subscribers in the topic.
        """
        await self._ensure_topic(topic)
        payload = message
        async with self._topic_lock(topic):
            to_drop: list[WebSocket] = []
            for ws in list(self._topics[topic]):
                if exclude is not None and ws is exclude:
                    continue
                try:
                    if ws.application_state == WebSocketState.DISCONNECTED or ws.client_state == WebSocketState.DISCONNECTED:
                        to_drop.append(ws)
                        continue
                    await ws.send_json(payload)
                except Exception:
                    logger.exception("Failed to send message to websocket; scheduling drop")
                    to_drop.append(ws)
            for ws in to_drop:
                self._topics[topic].discard(ws)

    # PUBLIC_INTERFACE
    async def publish_kpi_snapshot(self, tenant_id: UUID | str, snapshot: KpiSnapshot) -> None:
        """Publish KPI snapshot to dashboard topic for tenant."""
        env = WsEnvelope(type="kpi.snapshot", payload=snapshot.model_dump(mode="json"), channel=None)
        await self.broadcast(self.dashboard_topic(tenant_id), env.model_dump(mode="json"))

    # PUBLIC_INTERFACE
    async def publish_scheduler_event(self, tenant_id: UUID | str, event: SchedulerEvent) -> None:
        """Publish scheduler collaboration event to scheduler topic for tenant (and optional board)."""
        topic = self.scheduler_topic(tenant_id, event.board)
        env = WsEnvelope(type=f"scheduler.{event.event}", payload=event.model_dump(mode="json"), channel=event.board)
        await self.broadcast(topic, env.model_dump(mode="json"))


# Singleton instance
broadcast_manager = BroadcastManager()


# PUBLIC_INTERFACE
async def compute_kpi_snapshot(session: AsyncSession, *, now: Optional[datetime] = None) -> KpiSnapshot:
    """
    Compute dashboard KPIs for the tenant bound to `session`.

    Counts:
      - active_orders / on_hold: production orders by status
      - completed_today: orders whose actual_end falls after local (plant) midnight
      - active_downtime: open non-RUN equipment state events
      - open_ncrs: nonconformances not CLOSED
      - oee_pct: average oee_pct of snapshots starting today, None when there are none
    """
    now = now or utcnow()
    tz = plant_timezone()
    midnight = datetime.combine(now.astimezone(tz).date(), time.min, tzinfo=tz)

    status_res = await session.execute(
        select(ProductionOrder.status, func.count()).group_by(ProductionOrder.status)
    )
    by_status = {row[0]: int(row[1]) for row in status_res.all()}

    completed_today = await session.scalar(
        select(func.count())
        .select_from(ProductionOrder)
        .where(ProductionOrder.status == "complete", ProductionOrder.actual_end >= midnight)
    )
    active_downtime = await session.scalar(
        select(func.count())
        .select_from(EquipmentStateEvent)
        .where(EquipmentStateEvent.end_ts.is_(None), EquipmentStateEvent.state != "RUN")
    )
    open_ncrs = await session.scalar(
        select(func.count()).select_from(Nonconformance).where(Nonconformance.status != "CLOSED")
    )
    oee_avg = await session.scalar(
        select(func.avg(OEESnapshot.oee_pct)).where(OEESnapshot.period_start >= midnight)
    )

    return KpiSnapshot(
        active_orders=by_status.get("in_progress", 0),
        on_hold=by_status.get("hold", 0),
        completed_today=int(completed_today or 0),
        active_downtime=int(active_downtime or 0),
        open_ncrs=int(open_ncrs or 0),
        oee_pct=round(float(oee_avg), 2) if oee_avg is not None else None,
    )


# PUBLIC_INTERFACE
async def publish_kpis(session: AsyncSession, tenant_id: Optional[UUID]) -> None:
    """Recompute and push a KPI snapshot to dashboard subscribers; failures are logged only."""
    if tenant_id is None:
        return
    try:
        snapshot = await compute_kpi_snapshot(session)
        await broadcast_manager.publish_kpi_snapshot(tenant_id, snapshot)
    except Exception:
        logger.exception("Failed to publish KPI snapshot")


# PUBLIC_INTERFACE
async def publish_scheduler(tenant_id: Optional[UUID], event: SchedulerEvent) -> None:
    """Push a scheduler event to collaborators; failures are logged only."""
    if tenant_id is None:
        return
    try:
        await broadcast_manager.publish_scheduler_event(tenant_id, event)
    except Exception:
        logger.exception("Failed to publish scheduler event %s", event.event)
