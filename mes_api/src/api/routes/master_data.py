from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_tenant_session, require_roles
from src.core.errors import NotFoundError
from src.repositories.master_data import EquipmentRepository, PartRepository, WorkCenterRepository
from src.schemas.master_data import (
    EquipmentAssetCreate,
    EquipmentAssetRead,
    EquipmentAssetUpdate,
    PartCreate,
    PartRead,
    PartUpdate,
    StockLocationCreate,
    StockLocationRead,
    WorkCenterCreate,
    WorkCenterRead,
    WorkCenterUpdate,
)

router = APIRouter(prefix="/master-data", tags=["Master Data"])

VIEW = require_roles("admin", "master_data:manage", "production:view", "scheduling:view", "inventory:view")
MANAGE = require_roles("admin", "master_data:manage")


# Work centers

# PUBLIC_INTERFACE
@router.get(
    "/work-centers",
    response_model=List[WorkCenterRead],
    summary="List work centers",
    description="List work centers ordered by code; active only unless include_inactive is set.",
    dependencies=[Depends(VIEW)],
)
async def list_work_centers(
    session: AsyncSession = Depends(get_tenant_session),
    include_inactive: bool = Query(False),
) -> List[WorkCenterRead]:
    repo = WorkCenterRepository(session)
    items = await repo.list_work_centers(active_only=not include_inactive)
    return [WorkCenterRead.model_validate(x) for x in items]


# PUBLIC_INTERFACE
@router.get(
    "/work-centers/{wc_id}",
    response_model=WorkCenterRead,
    summary="Get work center",
    dependencies=[Depends(VIEW)],
)
async def get_work_center(
    wc_id: UUID = Path(...),
    session: AsyncSession = Depends(get_tenant_session),
) -> WorkCenterRead:
    wc = await WorkCenterRepository(session).get_work_center(wc_id)
    if not wc:
        raise NotFoundError("Work center not found")
    return WorkCenterRead.model_validate(wc)


# PUBLIC_INTERFACE
@router.post(
    "/work-centers",
    response_model=WorkCenterRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create work center",
    dependencies=[Depends(MANAGE)],
)
async def create_work_center(
    payload: WorkCenterCreate,
    session: AsyncSession = Depends(get_tenant_session),
) -> WorkCenterRead:
    created = await WorkCenterRepository(session).create_work_center(**payload.model_dump())
    await session.commit()
    return WorkCenterRead.model_validate(created)


# PUBLIC_INTERFACE
@router.patch(
    "/work-centers/{wc_id}",
    response_model=WorkCenterRead,
    summary="Update work center",
    dependencies=[Depends(MANAGE)],
)
async def update_work_center(
    payload: WorkCenterUpdate,
    wc_id: UUID = Path(...),
    session: AsyncSession = Depends(get_tenant_session),
) -> WorkCenterRead:
    repo = WorkCenterRepository(session)
    if await repo.get_work_center(wc_id) is None:
        raise NotFoundError("Work center not found")
    updated = await repo.update_work_center(wc_id, payload.model_dump(exclude_unset=True))
    await session.commit()
    return WorkCenterRead.model_validate(updated)


# Equipment

# PUBLIC_INTERFACE
@router.get(
    "/equipment",
    response_model=List[EquipmentAssetRead],
    summary="List equipment assets",
    dependencies=[Depends(VIEW)],
)
async def list_equipment(
    session: AsyncSession = Depends(get_tenant_session),
    work_center_id: Optional[UUID] = Query(None, description="Filter by work center"),
    include_inactive: bool = Query(False),
) -> List[EquipmentAssetRead]:
    items = await EquipmentRepository(session).list_equipment(
        work_center_id=work_center_id, active_only=not include_inactive
    )
    return [EquipmentAssetRead.model_validate(x) for x in items]


# PUBLIC_INTERFACE
@router.post(
    "/equipment",
    response_model=EquipmentAssetRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create equipment asset",
    dependencies=[Depends(MANAGE)],
)
async def create_equipment(
    payload: EquipmentAssetCreate,
    session: AsyncSession = Depends(get_tenant_session),
) -> EquipmentAssetRead:
    if payload.work_center_id and await WorkCenterRepository(session).get_work_center(payload.work_center_id) is None:
        raise NotFoundError("Work center not found")
    created = await EquipmentRepository(session).create_equipment(**payload.model_dump())
    await session.commit()
    return EquipmentAssetRead.model_validate(created)


# PUBLIC_INTERFACE
@router.patch(
    "/equipment/{asset_id}",
    response_model=EquipmentAssetRead,
    summary="Update equipment asset",
    dependencies=[Depends(MANAGE)],
)
async def update_equipment(
    payload: EquipmentAssetUpdate,
    asset_id: UUID = Path(...),
    session: AsyncSession = Depends(get_tenant_session),
) -> EquipmentAssetRead:
    repo = EquipmentRepository(session)
    if await repo.get_equipment(asset_id) is None:
        raise NotFoundError("Equipment asset not found")
    updated = await repo.update_equipment(asset_id, payload.model_dump(exclude_unset=True))
    await session.commit()
    return EquipmentAssetRead.model_validate(updated)


# Parts and locations

# PUBLIC_INTERFACE
@router.get(
    "/parts",
    response_model=List[PartRead],
    summary="List parts",
    description="List parts ordered by part number.",
    dependencies=[Depends(VIEW)],
)
async def list_parts(
    session: AsyncSession = Depends(get_tenant_session),
    search: Optional[str] = Query(None, description="Filter by part number or name (substring)"),
    include_inactive: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[PartRead]:
    items = await PartRepository(session).list_parts(
        search=search, active_only=not include_inactive, limit=limit, offset=offset
    )
    return [PartRead.model_validate(x) for x in items]


# PUBLIC_INTERFACE
@router.post(
    "/parts",
    response_model=PartRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create part",
    dependencies=[Depends(require_roles("admin", "master_data:manage", "inventory:manage"))],
)
async def create_part(
    payload: PartCreate,
    session: AsyncSession = Depends(get_tenant_session),
) -> PartRead:
    created = await PartRepository(session).create_part(**payload.model_dump())
    await session.commit()
    return PartRead.model_validate(created)


# PUBLIC_INTERFACE
@router.patch(
    "/parts/{part_id}",
    response_model=PartRead,
    summary="Update part",
    dependencies=[Depends(require_roles("admin", "master_data:manage", "inventory:manage"))],
)
async def update_part(
    payload: PartUpdate,
    part_id: UUID = Path(...),
    session: AsyncSession = Depends(get_tenant_session),
) -> PartRead:
    repo = PartRepository(session)
    if await repo.get_part(part_id) is None:
        raise NotFoundError("Part not found")
    updated = await repo.update_part(part_id, payload.model_dump(exclude_unset=True))
    await session.commit()
    return PartRead.model_validate(updated)


# PUBLIC_INTERFACE
@router.get(
    "/locations",
    response_model=List[StockLocationRead],
    summary="List stock locations",
    dependencies=[Depends(VIEW)],
)
async def list_locations(
    session: AsyncSession = Depends(get_tenant_session),
    include_inactive: bool = Query(False),
) -> List[StockLocationRead]:
    items = await PartRepository(session).list_locations(active_only=not include_inactive)
    return [StockLocationRead.model_validate(x) for x in items]


# PUBLIC_INTERFACE
@router.post(
    "/locations",
    response_model=StockLocationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create stock location",
    dependencies=[Depends(require_roles("admin", "master_data:manage", "inventory:manage"))],
)
async def create_location(
    payload: StockLocationCreate,
    session: AsyncSession = Depends(get_tenant_session),
) -> StockLocationRead:
    created = await PartRepository(session).create_location(**payload.model_dump())
    await session.commit()
    return StockLocationRead.model_validate(created)
