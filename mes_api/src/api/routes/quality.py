from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_user_id, get_tenant_id, get_tenant_session, require_roles
from src.schemas.common import MessageResponse
from src.schemas.quality import (
    AppliesTo,
    CAPACreate,
    CAPARead,
    CAPAStatus,
    CAPAUpdate,
    CharacteristicCreate,
    CharacteristicRead,
    CharacteristicUpdate,
    CreateInspectionsForOrder,
    DefectCodeCreate,
    DefectCodeRead,
    DefectCodeUpdate,
    DefectParetoRow,
    DispositionCreate,
    DispositionRead,
    ExecuteDispositionRequest,
    InspectionPlanCreate,
    InspectionPlanDetail,
    InspectionPlanRead,
    InspectionPlanUpdate,
    InspectionRunCreate,
    InspectionRunDetail,
    InspectionRunRead,
    MeasurementInput,
    MeasurementRead,
    NCDefectCreate,
    NCDefectRead,
    NCRSummaryRow,
    NCSource,
    NCStatus,
    NonconformanceCreate,
    NonconformanceDetail,
    NonconformanceRead,
    NonconformanceUpdate,
    PlanType,
    SamplingPlanCreate,
    SamplingPlanRead,
    Severity,
    VerifyCAPARequest,
    WaiveRequest,
)
from src.services.quality import QualityExecutionService

router = APIRouter(prefix="/quality", tags=["Quality"])

VIEW = require_roles("admin", "quality:view", "quality:manage", "production:view")
MANAGE = require_roles("admin", "quality:manage")
INSPECT = require_roles("admin", "quality:manage", "quality", "operator")


# PUBLIC_INTERFACE
async def get_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
) -> QualityExecutionService:
    """Build the quality execution service for the request's tenant session."""
    return QualityExecutionService(session, tenant_id)


# Sampling and inspection plans

# PUBLIC_INTERFACE
@router.get(
    "/sampling-plans",
    response_model=List[SamplingPlanRead],
    summary="List sampling plans",
    dependencies=[Depends(VIEW)],
)
async def list_sampling_plans(
    service: QualityExecutionService = Depends(get_service),
    include_inactive: bool = Query(False),
) -> List[SamplingPlanRead]:
    plans = await service.list_sampling_plans(active_only=not include_inactive)
    return [SamplingPlanRead.model_validate(p) for p in plans]


# PUBLIC_INTERFACE
@router.post(
    "/sampling-plans",
    response_model=SamplingPlanRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create sampling plan",
    dependencies=[Depends(MANAGE)],
)
async def create_sampling_plan(
    payload: SamplingPlanCreate,
    service: QualityExecutionService = Depends(get_service),
) -> SamplingPlanRead:
    return SamplingPlanRead.model_validate(await service.create_sampling_plan(payload))


# PUBLIC_INTERFACE
@router.get(
    "/plans",
    response_model=List[InspectionPlanDetail],
    summary="List inspection plans",
    description="Inspection plans ordered by name, each with its active characteristics.",
    dependencies=[Depends(VIEW)],
)
async def list_inspection_plans(
    service: QualityExecutionService = Depends(get_service),
    plan_type: Optional[PlanType] = Query(None),
    applies_to: Optional[AppliesTo] = Query(None),
    product_id: Optional[UUID] = Query(None),
    work_center_id: Optional[UUID] = Query(None),
    include_inactive: bool = Query(False),
) -> List[InspectionPlanDetail]:
    return await service.list_inspection_plans(
        plan_type=plan_type,
        applies_to=applies_to,
        product_id=product_id,
        work_center_id=work_center_id,
        active_only=not include_inactive,
    )


# PUBLIC_INTERFACE
@router.get(
    "/plans/{plan_id}",
    response_model=InspectionPlanDetail,
    summary="Get inspection plan",
    dependencies=[Depends(VIEW)],
)
async def get_inspection_plan(
    plan_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> InspectionPlanDetail:
    return await service.get_inspection_plan(plan_id)


# PUBLIC_INTERFACE
@router.post(
    "/plans",
    response_model=InspectionPlanRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create inspection plan",
    dependencies=[Depends(MANAGE)],
)
async def create_inspection_plan(
    payload: InspectionPlanCreate,
    service: QualityExecutionService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> InspectionPlanRead:
    return InspectionPlanRead.model_validate(await service.create_inspection_plan(payload, user_id))


# PUBLIC_INTERFACE
@router.patch(
    "/plans/{plan_id}",
    response_model=InspectionPlanRead,
    summary="Update inspection plan",
    dependencies=[Depends(MANAGE)],
)
async def update_inspection_plan(
    payload: InspectionPlanUpdate,
    plan_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> InspectionPlanRead:
    return InspectionPlanRead.model_validate(await service.update_inspection_plan(plan_id, payload))


# PUBLIC_INTERFACE
@router.get(
    "/plans/{plan_id}/characteristics",
    response_model=List[CharacteristicRead],
    summary="List characteristics",
    dependencies=[Depends(VIEW)],
)
async def list_characteristics(
    plan_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> List[CharacteristicRead]:
    return [CharacteristicRead.model_validate(c) for c in await service.list_characteristics(plan_id)]


# PUBLIC_INTERFACE
@router.post(
    "/plans/{plan_id}/characteristics",
    response_model=CharacteristicRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add characteristic",
    dependencies=[Depends(MANAGE)],
)
async def create_characteristic(
    payload: CharacteristicCreate,
    plan_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> CharacteristicRead:
    return CharacteristicRead.model_validate(await service.create_characteristic(plan_id, payload))


# PUBLIC_INTERFACE
@router.patch(
    "/characteristics/{characteristic_id}",
    response_model=CharacteristicRead,
    summary="Update characteristic",
    dependencies=[Depends(MANAGE)],
)
async def update_characteristic(
    payload: CharacteristicUpdate,
    characteristic_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> CharacteristicRead:
    return CharacteristicRead.model_validate(await service.update_characteristic(characteristic_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/characteristics/{characteristic_id}",
    response_model=MessageResponse,
    summary="Remove characteristic",
    description="Deactivates the characteristic; recorded measurements are kept.",
    dependencies=[Depends(MANAGE)],
)
async def delete_characteristic(
    characteristic_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> MessageResponse:
    await service.delete_characteristic(characteristic_id)
    return MessageResponse(message="Characteristic deactivated")


# Inspection runs

# PUBLIC_INTERFACE
@router.get(
    "/inspections",
    response_model=List[InspectionRunRead],
    summary="List inspection runs",
    dependencies=[Depends(VIEW)],
)
async def list_inspection_runs(
    service: QualityExecutionService = Depends(get_service),
    status_filter: Optional[str] = Query(None, alias="status"),
    production_order_id: Optional[UUID] = Query(None),
    operation_run_id: Optional[UUID] = Query(None),
    work_center_id: Optional[UUID] = Query(None),
    inspector_id: Optional[UUID] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[InspectionRunRead]:
    runs = await service.list_inspection_runs(
        status=status_filter,
        production_order_id=production_order_id,
        operation_run_id=operation_run_id,
        work_center_id=work_center_id,
        inspector_id=inspector_id,
        limit=limit,
        offset=offset,
    )
    return [InspectionRunRead.model_validate(r) for r in runs]


# PUBLIC_INTERFACE
@router.get(
    "/inspections/queue",
    response_model=List[InspectionRunRead],
    summary="Inspection queue",
    description="Pending and in-progress runs, oldest first.",
    dependencies=[Depends(VIEW)],
)
async def get_inspection_queue(
    service: QualityExecutionService = Depends(get_service),
    work_center_id: Optional[UUID] = Query(None),
) -> List[InspectionRunRead]:
    return [InspectionRunRead.model_validate(r) for r in await service.get_inspection_queue(work_center_id)]


# PUBLIC_INTERFACE
@router.get(
    "/inspections/{run_id}",
    response_model=InspectionRunDetail,
    summary="Get inspection run",
    dependencies=[Depends(VIEW)],
)
async def get_inspection_run(
    run_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> InspectionRunDetail:
    return await service.get_inspection_run(run_id)


# PUBLIC_INTERFACE
@router.post(
    "/inspections",
    response_model=InspectionRunRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create inspection run",
    dependencies=[Depends(INSPECT)],
)
async def create_inspection_run(
    payload: InspectionRunCreate,
    service: QualityExecutionService = Depends(get_service),
) -> InspectionRunRead:
    return InspectionRunRead.model_validate(await service.create_inspection_run(payload))


# PUBLIC_INTERFACE
@router.post(
    "/inspections/for-order",
    response_model=List[InspectionRunRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create in-process inspections for an order",
    description="One PENDING run per active in-process plan for the work center.",
    dependencies=[Depends(INSPECT)],
)
async def create_inspections_for_order(
    payload: CreateInspectionsForOrder,
    service: QualityExecutionService = Depends(get_service),
) -> List[InspectionRunRead]:
    runs = await service.create_inspections_for_work_order(payload)
    return [InspectionRunRead.model_validate(r) for r in runs]


# PUBLIC_INTERFACE
@router.post(
    "/inspections/{run_id}/start",
    response_model=InspectionRunRead,
    summary="Start inspection",
    dependencies=[Depends(INSPECT)],
)
async def start_inspection(
    run_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> InspectionRunRead:
    return InspectionRunRead.model_validate(await service.start_inspection(run_id, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/inspections/{run_id}/measurements",
    response_model=List[MeasurementRead],
    summary="Record measurements",
    description="Record one or more characteristic results; re-recording a characteristic keeps a revision.",
    dependencies=[Depends(INSPECT)],
)
async def record_measurements(
    payload: List[MeasurementInput],
    run_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> List[MeasurementRead]:
    measurements = await service.record_measurements(run_id, payload, user_id)
    return [MeasurementRead.model_validate(m) for m in measurements]


# PUBLIC_INTERFACE
@router.post(
    "/inspections/{run_id}/complete",
    response_model=InspectionRunRead,
    summary="Complete inspection",
    description="Close the run as PASSED or FAILED; a failed run raises a nonconformance.",
    dependencies=[Depends(INSPECT)],
)
async def complete_inspection(
    run_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> InspectionRunRead:
    return InspectionRunRead.model_validate(await service.complete_inspection(run_id))


# PUBLIC_INTERFACE
@router.post(
    "/inspections/{run_id}/waive",
    response_model=InspectionRunRead,
    summary="Waive inspection",
    dependencies=[Depends(MANAGE)],
)
async def waive_inspection(
    payload: WaiveRequest,
    run_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> InspectionRunRead:
    return InspectionRunRead.model_validate(await service.waive_inspection(run_id, payload.reason))


# Defect codes

# PUBLIC_INTERFACE
@router.get(
    "/defect-codes",
    response_model=List[DefectCodeRead],
    summary="List defect codes",
    dependencies=[Depends(VIEW)],
)
async def list_defect_codes(
    service: QualityExecutionService = Depends(get_service),
    include_inactive: bool = Query(False),
) -> List[DefectCodeRead]:
    return [DefectCodeRead.model_validate(c) for c in await service.list_defect_codes(not include_inactive)]


# PUBLIC_INTERFACE
@router.post(
    "/defect-codes",
    response_model=DefectCodeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create defect code",
    dependencies=[Depends(MANAGE)],
)
async def create_defect_code(
    payload: DefectCodeCreate,
    service: QualityExecutionService = Depends(get_service),
) -> DefectCodeRead:
    return DefectCodeRead.model_validate(await service.create_defect_code(payload))


# PUBLIC_INTERFACE
@router.patch(
    "/defect-codes/{defect_code_id}",
    response_model=DefectCodeRead,
    summary="Update defect code",
    dependencies=[Depends(MANAGE)],
)
async def update_defect_code(
    payload: DefectCodeUpdate,
    defect_code_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> DefectCodeRead:
    return DefectCodeRead.model_validate(await service.update_defect_code(defect_code_id, payload))


# PUBLIC_INTERFACE
@router.delete(
    "/defect-codes/{defect_code_id}",
    response_model=DefectCodeRead,
    summary="Deactivate defect code",
    dependencies=[Depends(MANAGE)],
)
async def deactivate_defect_code(
    defect_code_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> DefectCodeRead:
    return DefectCodeRead.model_validate(await service.deactivate_defect_code(defect_code_id))


# Nonconformances

# PUBLIC_INTERFACE
@router.get(
    "/nonconformances",
    response_model=List[NonconformanceRead],
    summary="List nonconformances",
    description="Nonconformances ordered by reported_at desc.",
    dependencies=[Depends(VIEW)],
)
async def list_nonconformances(
    service: QualityExecutionService = Depends(get_service),
    status_filter: Optional[NCStatus] = Query(None, alias="status"),
    severity: Optional[Severity] = Query(None),
    source: Optional[NCSource] = Query(None),
    production_order_id: Optional[UUID] = Query(None),
    part_id: Optional[UUID] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[NonconformanceRead]:
    rows = await service.list_nonconformances(
        status=status_filter,
        severity=severity,
        source=source,
        production_order_id=production_order_id,
        part_id=part_id,
        limit=limit,
        offset=offset,
    )
    return [NonconformanceRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.get(
    "/nonconformances/{nc_id}",
    response_model=NonconformanceDetail,
    summary="Get nonconformance",
    description="Nonconformance with its defects, dispositions and CAPAs.",
    dependencies=[Depends(VIEW)],
)
async def get_nonconformance(
    nc_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> NonconformanceDetail:
    return await service.get_nonconformance(nc_id)


# PUBLIC_INTERFACE
@router.post(
    "/nonconformances",
    response_model=NonconformanceRead,
    status_code=status.HTTP_201_CREATED,
    summary="Report nonconformance",
    dependencies=[Depends(INSPECT)],
)
async def create_nonconformance(
    payload: NonconformanceCreate,
    service: QualityExecutionService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> NonconformanceRead:
    return NonconformanceRead.model_validate(await service.create_nonconformance(payload, user_id))


# PUBLIC_INTERFACE
@router.patch(
    "/nonconformances/{nc_id}",
    response_model=NonconformanceRead,
    summary="Update nonconformance",
    dependencies=[Depends(MANAGE)],
)
async def update_nonconformance(
    payload: NonconformanceUpdate,
    nc_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> NonconformanceRead:
    return NonconformanceRead.model_validate(await service.update_nonconformance(nc_id, payload))


# PUBLIC_INTERFACE
@router.post(
    "/nonconformances/{nc_id}/defects",
    response_model=NCDefectRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add defect",
    dependencies=[Depends(INSPECT)],
)
async def add_defect(
    payload: NCDefectCreate,
    nc_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> NCDefectRead:
    return NCDefectRead.model_validate(await service.add_defect(nc_id, payload))


# Dispositions

# PUBLIC_INTERFACE
@router.post(
    "/nonconformances/{nc_id}/dispositions",
    response_model=DispositionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create disposition",
    dependencies=[Depends(MANAGE)],
)
async def create_disposition(
    payload: DispositionCreate,
    nc_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> DispositionRead:
    return DispositionRead.model_validate(await service.create_disposition(nc_id, payload))


# PUBLIC_INTERFACE
@router.post(
    "/dispositions/{disposition_id}/approve",
    response_model=DispositionRead,
    summary="Approve disposition",
    dependencies=[Depends(MANAGE)],
)
async def approve_disposition(
    disposition_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> DispositionRead:
    return DispositionRead.model_validate(await service.approve_disposition(disposition_id, user_id))


# PUBLIC_INTERFACE
@router.post(
    "/dispositions/{disposition_id}/execute",
    response_model=DispositionRead,
    summary="Execute disposition",
    description="Only approved dispositions can be executed.",
    dependencies=[Depends(MANAGE)],
)
async def execute_disposition(
    payload: ExecuteDispositionRequest,
    disposition_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> DispositionRead:
    disposition = await service.execute_disposition(disposition_id, user_id, payload.execution_notes)
    return DispositionRead.model_validate(disposition)


# CAPA

# PUBLIC_INTERFACE
@router.get(
    "/capas",
    response_model=List[CAPARead],
    summary="List CAPAs",
    dependencies=[Depends(VIEW)],
)
async def list_capas(
    service: QualityExecutionService = Depends(get_service),
    status_filter: Optional[CAPAStatus] = Query(None, alias="status"),
    owner_id: Optional[UUID] = Query(None),
    nonconformance_id: Optional[UUID] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[CAPARead]:
    capas = await service.list_capas(
        status=status_filter, owner_id=owner_id, nonconformance_id=nonconformance_id, limit=limit, offset=offset
    )
    return [CAPARead.model_validate(c) for c in capas]


# PUBLIC_INTERFACE
@router.get(
    "/capas/{capa_id}",
    response_model=CAPARead,
    summary="Get CAPA",
    dependencies=[Depends(VIEW)],
)
async def get_capa(
    capa_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> CAPARead:
    return CAPARead.model_validate(await service.get_capa(capa_id))


# PUBLIC_INTERFACE
@router.post(
    "/capas",
    response_model=CAPARead,
    status_code=status.HTTP_201_CREATED,
    summary="Open CAPA",
    dependencies=[Depends(MANAGE)],
)
async def create_capa(
    payload: CAPACreate,
    service: QualityExecutionService = Depends(get_service),
) -> CAPARead:
    return CAPARead.model_validate(await service.create_capa(payload))


# PUBLIC_INTERFACE
@router.patch(
    "/capas/{capa_id}",
    response_model=CAPARead,
    summary="Update CAPA",
    dependencies=[Depends(MANAGE)],
)
async def update_capa(
    payload: CAPAUpdate,
    capa_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> CAPARead:
    return CAPARead.model_validate(await service.update_capa(capa_id, payload))


# PUBLIC_INTERFACE
@router.post(
    "/capas/{capa_id}/verify",
    response_model=CAPARead,
    summary="Verify CAPA",
    dependencies=[Depends(MANAGE)],
)
async def verify_capa(
    payload: VerifyCAPARequest,
    capa_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
    user_id: UUID = Depends(get_current_user_id),
) -> CAPARead:
    return CAPARead.model_validate(await service.verify_capa(capa_id, user_id, payload.verification_notes))


# PUBLIC_INTERFACE
@router.post(
    "/capas/{capa_id}/close",
    response_model=CAPARead,
    summary="Close CAPA",
    description="Only verified CAPAs can be closed.",
    dependencies=[Depends(MANAGE)],
)
async def close_capa(
    capa_id: UUID = Path(...),
    service: QualityExecutionService = Depends(get_service),
) -> CAPARead:
    return CAPARead.model_validate(await service.close_capa(capa_id))


# Reports

# PUBLIC_INTERFACE
@router.get(
    "/reports/ncr-summary",
    response_model=List[NCRSummaryRow],
    summary="NCR summary",
    dependencies=[Depends(VIEW)],
)
async def get_ncr_summary(
    service: QualityExecutionService = Depends(get_service),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
    status_filter: Optional[NCStatus] = Query(None, alias="status"),
) -> List[NCRSummaryRow]:
    return await service.get_ncr_summary(from_ts=from_ts, to_ts=to_ts, status=status_filter)


# PUBLIC_INTERFACE
@router.get(
    "/reports/defect-pareto",
    response_model=List[DefectParetoRow],
    summary="Defect Pareto",
    description="Defect occurrences per code, most frequent first.",
    dependencies=[Depends(VIEW)],
)
async def get_defect_pareto(
    service: QualityExecutionService = Depends(get_service),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
) -> List[DefectParetoRow]:
    return await service.get_defect_pareto(from_ts=from_ts, to_ts=to_ts)
