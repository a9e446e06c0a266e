from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConflictError
from src.core.settings import get_app_settings


class BaseService:
    """
    Base class for services. Holds a session for use across multiple repositories.

    Services keep business logic and orchestration, delegate data access to
    repositories, and commit once per public operation. `tenant_id` is only used
    to address real-time broadcasts; data isolation comes from the session's RLS context.
    """

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        self.session = session
        self.tenant_id = tenant_id
        self.settings = get_app_settings()

    async def commit(self) -> None:
        await self.session.commit()


# PUBLIC_INTERFACE
def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(tz=timezone.utc)


# PUBLIC_INTERFACE
def plant_timezone(name: Optional[str] = None) -> ZoneInfo:
    """Return the configured plant timezone (PLANT_TIMEZONE setting) as a ZoneInfo."""
    return ZoneInfo(name or get_app_settings().PLANT_TIMEZONE)


# PUBLIC_INTERFACE
def next_document_number(prefix: str, year: int, latest: Optional[str]) -> str:
    """
    Compute the next sequential document number for the given year.

    Format is PREFIX-YY-NNNNN, e.g. PO-26-00001. `latest` is the highest existing
    number for the same prefix and year, or None when there is none.
    """
    yy = f"{year % 100:02d}"
    seq = 1
    if latest:
        try:
            seq = int(latest.rsplit("-", 1)[-1]) + 1
        except ValueError:
            seq = 1
    return f"{prefix}-{yy}-{seq:05d}"


# PUBLIC_INTERFACE
def ensure_transition(
    entity: str,
    current: str,
    target: str,
    allowed: Mapping[str, Sequence[str]],
) -> None:
    """Raise ConflictError unless `target` is reachable from `current`."""
    if target not in allowed.get(current, ()):
        raise ConflictError(
            f"Cannot change {entity} status from {current} to {target}",
            details={"current": current, "target": target},
        )
