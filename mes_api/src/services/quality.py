from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.db.models.quality import (
    CAPA,
    Characteristic,
    DefectCode,
    Disposition,
    InspectionPlan,
    InspectionRun,
    Measurement,
    NCDefect,
    Nonconformance,
    SamplingPlan,
)
from src.repositories.production import ProductionOrderRepository
from src.repositories.quality import InspectionRepository, NonconformanceRepository
from src.schemas.quality import (
    CAPACreate,
    CAPARead,
    CAPAUpdate,
    CharacteristicCreate,
    CharacteristicRead,
    CharacteristicUpdate,
    CreateInspectionsForOrder,
    DefectCodeCreate,
    DefectCodeUpdate,
    DefectParetoRow,
    DispositionCreate,
    DispositionRead,
    InspectionPlanCreate,
    InspectionPlanDetail,
    InspectionPlanUpdate,
    InspectionRunCreate,
    InspectionRunDetail,
    MeasurementInput,
    MeasurementRead,
    NCDefectCreate,
    NCDefectRead,
    NCRSummaryRow,
    NonconformanceCreate,
    NonconformanceDetail,
    NonconformanceUpdate,
    SamplingPlanCreate,
)
from src.services.base import BaseService, next_document_number, utcnow
from src.services.realtime import publish_kpis

logger = logging.getLogger(__name__)

OPEN_RUN_STATUSES = ("PENDING", "IN_PROGRESS")
DEFAULT_CHANGE_REASON = "No reason provided"


# PUBLIC_INTERFACE
def is_within_spec(
    char_type: str,
    measured_value: Optional[float],
    pass_fail: Optional[bool],
    lsl: Optional[float],
    usl: Optional[float],
) -> Optional[bool]:
    """
    Decide whether a recorded result conforms.

    VARIABLE characteristics with a value are checked against whichever limits
    exist (no limits means conforming). ATTRIBUTE characteristics use pass_fail.
    Anything else is unknown (None).
    """
    if char_type == "VARIABLE" and measured_value is not None:
        if lsl is not None and measured_value < lsl:
            return False
        if usl is not None and measured_value > usl:
            return False
        return True
    if char_type == "ATTRIBUTE" and pass_fail is not None:
        return bool(pass_fail)
    return None


def _plan_detail(plan: InspectionPlan, characteristics: List[Characteristic]) -> InspectionPlanDetail:
    detail = InspectionPlanDetail.model_validate(plan)
    detail.characteristics = [
        CharacteristicRead.model_validate(c) for c in characteristics if c.inspection_plan_id == plan.id
    ]
    return detail


class QualityExecutionService(BaseService):
    """Inspection execution, nonconformance handling and CAPA tracking."""

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        super().__init__(session, tenant_id)
        self.inspections = InspectionRepository(session)
        self.ncs = NonconformanceRepository(session)
        self.orders = ProductionOrderRepository(session)

    # Sampling plans

    # PUBLIC_INTERFACE
    async def list_sampling_plans(self, active_only: bool = True) -> List[SamplingPlan]:
        return await self.inspections.list_sampling_plans(active_only=active_only)

    # PUBLIC_INTERFACE
    async def create_sampling_plan(self, payload: SamplingPlanCreate) -> SamplingPlan:
        plan = await self.inspections.create_sampling_plan(**payload.model_dump())
        await self.commit()
        return plan

    # Inspection plans

    # PUBLIC_INTERFACE
    async def list_inspection_plans(
        self,
        *,
        plan_type: Optional[str] = None,
        applies_to: Optional[str] = None,
        product_id: Optional[UUID] = None,
        work_center_id: Optional[UUID] = None,
        active_only: bool = True,
    ) -> List[InspectionPlanDetail]:
        """Plans ordered by name, each with its active characteristics."""
        plans = await self.inspections.list_plans(
            plan_type=plan_type,
            applies_to=applies_to,
            product_id=product_id,
            work_center_id=work_center_id,
            active_only=active_only,
        )
        characteristics = await self.inspections.list_characteristics([p.id for p in plans])
        return [_plan_detail(p, characteristics) for p in plans]

    async def _get_plan(self, plan_id: UUID) -> InspectionPlan:
        plan = await self.inspections.get_plan(plan_id)
        if plan is None:
            raise NotFoundError("Inspection plan not found")
        return plan

    # PUBLIC_INTERFACE
    async def get_inspection_plan(self, plan_id: UUID) -> InspectionPlanDetail:
        plan = await self._get_plan(plan_id)
        characteristics = await self.inspections.list_characteristics([plan.id])
        return _plan_detail(plan, characteristics)

    # PUBLIC_INTERFACE
    async def create_inspection_plan(self, payload: InspectionPlanCreate, created_by: Optional[UUID]) -> InspectionPlan:
        plan = await self.inspections.create_plan(created_by=created_by, **payload.model_dump())
        await self.commit()
        logger.info("Inspection plan %s (rev %s) created", plan.name, plan.revision)
        return plan

    # PUBLIC_INTERFACE
    async def update_inspection_plan(self, plan_id: UUID, payload: InspectionPlanUpdate) -> InspectionPlan:
        await self._get_plan(plan_id)
        plan = await self.inspections.update_plan(plan_id, payload.model_dump(exclude_unset=True))
        await self.commit()
        return plan  # type: ignore[return-value]

    # Characteristics

    # PUBLIC_INTERFACE
    async def list_characteristics(self, plan_id: UUID) -> List[Characteristic]:
        await self._get_plan(plan_id)
        return await self.inspections.list_characteristics([plan_id])

    # PUBLIC_INTERFACE
    async def create_characteristic(self, plan_id: UUID, payload: CharacteristicCreate) -> Characteristic:
        await self._get_plan(plan_id)
        if payload.lsl is not None and payload.usl is not None and payload.lsl > payload.usl:
            raise ValidationFailedError("Lower spec limit cannot exceed upper spec limit")
        characteristic = await self.inspections.create_characteristic(inspection_plan_id=plan_id, **payload.model_dump())
        await self.commit()
        return characteristic

    async def _get_characteristic(self, characteristic_id: UUID) -> Characteristic:
        characteristic = await self.inspections.get_characteristic(characteristic_id)
        if characteristic is None:
            raise NotFoundError("Characteristic not found")
        return characteristic

    # PUBLIC_INTERFACE
    async def update_characteristic(self, characteristic_id: UUID, payload: CharacteristicUpdate) -> Characteristic:
        await self._get_characteristic(characteristic_id)
        characteristic = await self.inspections.update_characteristic(
            characteristic_id, payload.model_dump(exclude_unset=True)
        )
        await self.commit()
        return characteristic  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def delete_characteristic(self, characteristic_id: UUID) -> None:
        """Soft delete: the characteristic stays referenced by past measurements."""
        await self._get_characteristic(characteristic_id)
        await self.inspections.update_characteristic(characteristic_id, {"is_active": False})
        await self.commit()

    # Runs

    # PUBLIC_INTERFACE
    async def list_inspection_runs(
        self,
        *,
        status: Optional[str] = None,
        production_order_id: Optional[UUID] = None,
        operation_run_id: Optional[UUID] = None,
        work_center_id: Optional[UUID] = None,
        inspector_id: Optional[UUID] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[InspectionRun]:
        return await self.inspections.list_runs(
            status=[status] if status else None,
            production_order_id=production_order_id,
            operation_run_id=operation_run_id,
            work_center_id=work_center_id,
            inspector_id=inspector_id,
            limit=limit,
            offset=offset,
        )

    async def _get_run(self, run_id: UUID) -> InspectionRun:
        run = await self.inspections.get_run(run_id)
        if run is None:
            raise NotFoundError("Inspection run not found")
        return run

    # PUBLIC_INTERFACE
    async def get_inspection_run(self, run_id: UUID) -> InspectionRunDetail:
        run = await self._get_run(run_id)
        detail = InspectionRunDetail.model_validate(run)
        detail.measurements = [MeasurementRead.model_validate(m) for m in await self.inspections.list_measurements(run_id)]
        return detail

    async def _create_run(self, plan_id: UUID, **values) -> InspectionRun:
        total = await self.inspections.count_required_characteristics(plan_id)
        return await self.inspections.create_run(
            inspection_plan_id=plan_id,
            status="PENDING",
            total_characteristics=total,
            passed_characteristics=0,
            failed_characteristics=0,
            **values,
        )

    # PUBLIC_INTERFACE
    async def create_inspection_run(self, payload: InspectionRunCreate) -> InspectionRun:
        await self._get_plan(payload.inspection_plan_id)
        values = payload.model_dump(exclude={"inspection_plan_id"})
        run = await self._create_run(payload.inspection_plan_id, **values)
        await self.commit()
        return run

    # PUBLIC_INTERFACE
    async def start_inspection(self, run_id: UUID, inspector_id: Optional[UUID]) -> InspectionRun:
        run = await self._get_run(run_id)
        if run.status != "PENDING":
            raise ConflictError(
                f"Cannot change inspection run status from {run.status} to IN_PROGRESS",
                details={"current": run.status, "target": "IN_PROGRESS"},
            )
        values = {"status": "IN_PROGRESS", "started_at": utcnow()}
        if inspector_id is not None:
            values["inspector_id"] = inspector_id
        updated = await self.inspections.update_run(run_id, values)
        await self.commit()
        return updated  # type: ignore[return-value]

    async def _record(self, run: InspectionRun, data: MeasurementInput, user_id: Optional[UUID]) -> Measurement:
        characteristic = await self._get_characteristic(data.characteristic_id)
        if characteristic.inspection_plan_id != run.inspection_plan_id:
            raise ValidationFailedError(
                "Characteristic does not belong to this inspection plan",
                details={"characteristic_id": str(characteristic.id), "inspection_plan_id": str(run.inspection_plan_id)},
            )
        within = is_within_spec(
            characteristic.char_type, data.measured_value, data.pass_fail, characteristic.lsl, characteristic.usl
        )
        values = {
            "measured_value": data.measured_value,
            "pass_fail": data.pass_fail,
            "defect_count": data.defect_count,
            "notes": data.notes,
            "attachment_url": data.attachment_url,
            "is_within_spec": within,
        }

        existing = await self.inspections.get_measurement_for(run.id, characteristic.id)
        if existing is None:
            return await self.inspections.create_measurement(
                inspection_run_id=run.id,
                characteristic_id=characteristic.id,
                revision_number=1,
                recorded_by=user_id,
                recorded_at=utcnow(),
                **values,
            )

        reason = data.change_reason or DEFAULT_CHANGE_REASON
        revision_number = existing.revision_number + 1
        await self.inspections.create_revision(
            measurement_id=existing.id,
            revision_number=revision_number,
            before_value=existing.measured_value,
            after_value=data.measured_value,
            before_pass_fail=existing.pass_fail,
            after_pass_fail=data.pass_fail,
            before_defect_count=existing.defect_count,
            after_defect_count=data.defect_count,
            before_is_within_spec=existing.is_within_spec,
            after_is_within_spec=within,
            changed_by=user_id,
            change_reason=reason,
        )
        logger.info("Measurement %s revised to revision %d: %s", existing.id, revision_number, reason)
        return await self.inspections.update_measurement(  # type: ignore[return-value]
            existing.id,
            {
                **values,
                "revision_number": revision_number,
                "revised_by": user_id,
                "revised_at": utcnow(),
                "revision_reason": reason,
            },
        )

    async def _recount(self, run_id: UUID) -> None:
        passed, failed = await self.inspections.count_results(run_id)
        await self.inspections.update_run(run_id, {"passed_characteristics": passed, "failed_characteristics": failed})

    async def _get_open_run(self, run_id: UUID) -> InspectionRun:
        run = await self._get_run(run_id)
        if run.status not in OPEN_RUN_STATUSES:
            raise ConflictError(
                f"Cannot record measurements on a {run.status} inspection run",
                details={"current": run.status},
            )
        return run

    # PUBLIC_INTERFACE
    async def record_measurement(self, run_id: UUID, data: MeasurementInput, user_id: Optional[UUID]) -> Measurement:
        """Record (or revise) one characteristic result and refresh the run's pass/fail counts."""
        run = await self._get_open_run(run_id)
        measurement = await self._record(run, data, user_id)
        await self._recount(run_id)
        await self.commit()
        return measurement

    # PUBLIC_INTERFACE
    async def record_measurements(
        self, run_id: UUID, items: List[MeasurementInput], user_id: Optional[UUID]
    ) -> List[Measurement]:
        """Record several results in order within one transaction."""
        run = await self._get_open_run(run_id)
        measurements = [await self._record(run, item, user_id) for item in items]
        await self._recount(run_id)
        await self.commit()
        return measurements

    async def _create_nc(self, **values) -> Nonconformance:
        year = utcnow().year
        prefix = f"NCR-{year % 100:02d}-"
        nc_number = next_document_number("NCR", year, await self.ncs.latest_nc_number(prefix))
        return await self.ncs.create_nc(nc_number=nc_number, **values)

    # PUBLIC_INTERFACE
    async def complete_inspection(self, run_id: UUID) -> InspectionRun:
        """
        Close a run as PASSED or FAILED based on its failed characteristic count.

        A FAILED run raises a MAJOR nonconformance linked to the run, its order
        and its operation run.
        """
        run = await self._get_run(run_id)
        if run.status not in OPEN_RUN_STATUSES:
            raise ConflictError(
                f"Cannot change inspection run status from {run.status} to completed",
                details={"current": run.status},
            )
        await self._recount(run_id)
        run = await self._get_run(run_id)
        status = "FAILED" if run.failed_characteristics > 0 else "PASSED"
        updated = await self.inspections.update_run(run_id, {"status": status, "completed_at": utcnow()})

        nc: Optional[Nonconformance] = None
        if status == "FAILED":
            plan = await self._get_plan(run.inspection_plan_id)
            nc = await self._create_nc(
                source="INSPECTION",
                severity="MAJOR",
                status="OPEN",
                title=f"Failed Inspection: {plan.name}",
                description=f"Inspection failed with {run.failed_characteristics} characteristic(s) out of spec.",
                inspection_run_id=run.id,
                production_order_id=run.production_order_id,
                operation_run_id=run.operation_run_id,
                lot_id=run.lot_id,
                serial_id=run.serial_id,
                product_id=plan.product_id,
                part_id=plan.part_id,
                reported_by=run.inspector_id,
                qty_affected=1,
            )
        await self.commit()
        if nc is not None:
            logger.warning("Inspection run %s failed; nonconformance %s raised", run_id, nc.nc_number)
            await publish_kpis(self.session, self.tenant_id)
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def waive_inspection(self, run_id: UUID, reason: str) -> InspectionRun:
        if not reason or not reason.strip():
            raise ValidationFailedError("A waiver reason is required")
        run = await self._get_run(run_id)
        if run.status in ("PASSED", "FAILED", "WAIVED"):
            raise ConflictError(
                f"Cannot change inspection run status from {run.status} to WAIVED",
                details={"current": run.status, "target": "WAIVED"},
            )
        updated = await self.inspections.update_run(run_id, {"status": "WAIVED", "notes": reason, "completed_at": utcnow()})
        await self.commit()
        logger.info("Inspection run %s waived: %s", run_id, reason)
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def create_inspections_for_work_order(self, payload: CreateInspectionsForOrder) -> List[InspectionRun]:
        """One PENDING run per active in-process plan applicable to the work center."""
        if await self.orders.get_order(payload.production_order_id) is None:
            raise NotFoundError("Production order not found")
        plans = await self.inspections.list_in_process_plans_for(payload.work_center_id)
        runs = [
            await self._create_run(
                plan.id,
                production_order_id=payload.production_order_id,
                work_center_id=payload.work_center_id,
                operation_run_id=payload.operation_run_id,
            )
            for plan in plans
        ]
        await self.commit()
        return runs

    # PUBLIC_INTERFACE
    async def get_inspection_queue(self, work_center_id: Optional[UUID] = None) -> List[InspectionRun]:
        """Pending and in-progress runs, oldest first."""
        return await self.inspections.list_runs(
            status=OPEN_RUN_STATUSES, work_center_id=work_center_id, oldest_first=True, limit=500
        )

    # Defect codes

    # PUBLIC_INTERFACE
    async def list_defect_codes(self, active_only: bool = True) -> List[DefectCode]:
        return await self.ncs.list_defect_codes(active_only=active_only)

    # PUBLIC_INTERFACE
    async def create_defect_code(self, payload: DefectCodeCreate) -> DefectCode:
        if await self.ncs.get_defect_code_by_code(payload.code) is not None:
            raise ConflictError(f"Defect code {payload.code} already exists")
        code = await self.ncs.create_defect_code(**payload.model_dump())
        await self.commit()
        return code

    # PUBLIC_INTERFACE
    async def update_defect_code(self, defect_code_id: UUID, payload: DefectCodeUpdate) -> DefectCode:
        if await self.ncs.get_defect_code(defect_code_id) is None:
            raise NotFoundError("Defect code not found")
        code = await self.ncs.update_defect_code(defect_code_id, payload.model_dump(exclude_unset=True))
        await self.commit()
        return code  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def deactivate_defect_code(self, defect_code_id: UUID) -> DefectCode:
        if await self.ncs.get_defect_code(defect_code_id) is None:
            raise NotFoundError("Defect code not found")
        code = await self.ncs.update_defect_code(defect_code_id, {"is_active": False})
        await self.commit()
        return code  # type: ignore[return-value]

    # Nonconformances

    # PUBLIC_INTERFACE
    async def list_nonconformances(
        self,
        *,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        source: Optional[str] = None,
        production_order_id: Optional[UUID] = None,
        part_id: Optional[UUID] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[Nonconformance]:
        return await self.ncs.list_ncs(
            status=status,
            severity=severity,
            source=source,
            production_order_id=production_order_id,
            part_id=part_id,
            limit=limit,
            offset=offset,
        )

    async def _get_nc(self, nc_id: UUID) -> Nonconformance:
        nc = await self.ncs.get_nc(nc_id)
        if nc is None:
            raise NotFoundError("Nonconformance not found")
        return nc

    # PUBLIC_INTERFACE
    async def get_nonconformance(self, nc_id: UUID) -> NonconformanceDetail:
        nc = await self._get_nc(nc_id)
        detail = NonconformanceDetail.model_validate(nc)
        detail.defects = [NCDefectRead.model_validate(d) for d in await self.ncs.list_nc_defects(nc_id)]
        detail.dispositions = [DispositionRead.model_validate(d) for d in await self.ncs.list_dispositions(nc_id)]
        detail.capas = [CAPARead.model_validate(c) for c in await self.ncs.list_capas(nonconformance_id=nc_id)]
        return detail

    async def _add_defect(self, nc_id: UUID, payload: NCDefectCreate) -> NCDefect:
        if await self.ncs.get_defect_code(payload.defect_code_id) is None:
            raise NotFoundError("Defect code not found")
        return await self.ncs.create_nc_defect(nonconformance_id=nc_id, **payload.model_dump())

    # PUBLIC_INTERFACE
    async def create_nonconformance(self, payload: NonconformanceCreate, reported_by: Optional[UUID]) -> Nonconformance:
        nc = await self._create_nc(reported_by=reported_by, status="OPEN", **payload.model_dump(exclude={"defects"}))
        for defect in payload.defects:
            await self._add_defect(nc.id, defect)
        await self.commit()
        logger.info("Nonconformance %s created (%s)", nc.nc_number, nc.severity)
        await publish_kpis(self.session, self.tenant_id)
        return nc

    # PUBLIC_INTERFACE
    async def update_nonconformance(self, nc_id: UUID, payload: NonconformanceUpdate) -> Nonconformance:
        nc = await self._get_nc(nc_id)
        values = payload.model_dump(exclude_unset=True)
        if values.get("status") == "CLOSED" and nc.status != "CLOSED":
            values["closed_at"] = utcnow()
        updated = await self.ncs.update_nc(nc_id, values)
        await self.commit()
        if "status" in values:
            await publish_kpis(self.session, self.tenant_id)
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def add_defect(self, nc_id: UUID, payload: NCDefectCreate) -> NCDefect:
        await self._get_nc(nc_id)
        defect = await self._add_defect(nc_id, payload)
        await self.commit()
        return defect

    # Dispositions

    # PUBLIC_INTERFACE
    async def create_disposition(self, nc_id: UUID, payload: DispositionCreate) -> Disposition:
        nc = await self._get_nc(nc_id)
        if nc.status == "CLOSED":
            raise ConflictError("Cannot disposition a closed nonconformance", details={"current": nc.status})
        disposition = await self.ncs.create_disposition(nonconformance_id=nc_id, **payload.model_dump())
        await self.ncs.update_nc(nc_id, {"status": "DISPOSITIONED"})
        await self.commit()
        logger.info("Nonconformance %s dispositioned as %s", nc.nc_number, payload.disposition)
        return disposition

    async def _get_disposition(self, disposition_id: UUID) -> Disposition:
        disposition = await self.ncs.get_disposition(disposition_id)
        if disposition is None:
            raise NotFoundError("Disposition not found")
        return disposition

    # PUBLIC_INTERFACE
    async def approve_disposition(self, disposition_id: UUID, approved_by: Optional[UUID]) -> Disposition:
        await self._get_disposition(disposition_id)
        disposition = await self.ncs.update_disposition(
            disposition_id, {"approved_by": approved_by, "approved_at": utcnow()}
        )
        await self.commit()
        return disposition  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def execute_disposition(
        self, disposition_id: UUID, executed_by: Optional[UUID], execution_notes: Optional[str] = None
    ) -> Disposition:
        current = await self._get_disposition(disposition_id)
        if current.approved_at is None:
            raise ConflictError("Disposition must be approved before execution")
        disposition = await self.ncs.update_disposition(
            disposition_id,
            {"executed_by": executed_by, "executed_at": utcnow(), "execution_notes": execution_notes},
        )
        await self.commit()
        return disposition  # type: ignore[return-value]

    # CAPA

    # PUBLIC_INTERFACE
    async def list_capas(
        self,
        *,
        status: Optional[str] = None,
        owner_id: Optional[UUID] = None,
        nonconformance_id: Optional[UUID] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[CAPA]:
        return await self.ncs.list_capas(
            status=status, owner_id=owner_id, nonconformance_id=nonconformance_id, limit=limit, offset=offset
        )

    async def _get_capa(self, capa_id: UUID) -> CAPA:
        capa = await self.ncs.get_capa(capa_id)
        if capa is None:
            raise NotFoundError("CAPA not found")
        return capa

    # PUBLIC_INTERFACE
    async def get_capa(self, capa_id: UUID) -> CAPA:
        return await self._get_capa(capa_id)

    # PUBLIC_INTERFACE
    async def create_capa(self, payload: CAPACreate) -> CAPA:
        if payload.nonconformance_id is not None:
            await self._get_nc(payload.nonconformance_id)
        year = utcnow().year
        prefix = f"CAPA-{year % 100:02d}-"
        capa_number = next_document_number("CAPA", year, await self.ncs.latest_capa_number(prefix))
        capa = await self.ncs.create_capa(capa_number=capa_number, status="OPEN", **payload.model_dump())
        await self.commit()
        logger.info("CAPA %s created", capa_number)
        return capa

    # PUBLIC_INTERFACE
    async def update_capa(self, capa_id: UUID, payload: CAPAUpdate) -> CAPA:
        current = await self._get_capa(capa_id)
        values = payload.model_dump(exclude_unset=True)
        if "status" in values and current.status in ("VERIFIED", "CLOSED"):
            raise ConflictError(
                f"Cannot change CAPA status from {current.status} to {values['status']}",
                details={"current": current.status, "target": values["status"]},
            )
        capa = await self.ncs.update_capa(capa_id, values)
        await self.commit()
        return capa  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def verify_capa(self, capa_id: UUID, verified_by: Optional[UUID], notes: Optional[str] = None) -> CAPA:
        current = await self._get_capa(capa_id)
        if current.status == "CLOSED":
            raise ConflictError("Cannot change CAPA status from CLOSED to VERIFIED", details={"current": current.status})
        capa = await self.ncs.update_capa(
            capa_id,
            {"status": "VERIFIED", "verified_by": verified_by, "verified_at": utcnow(), "verification_notes": notes},
        )
        await self.commit()
        return capa  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def close_capa(self, capa_id: UUID) -> CAPA:
        current = await self._get_capa(capa_id)
        if current.status != "VERIFIED":
            raise ConflictError(
                "CAPA must be verified before closing",
                details={"current": current.status, "target": "CLOSED"},
            )
        capa = await self.ncs.update_capa(capa_id, {"status": "CLOSED"})
        await self.commit()
        return capa  # type: ignore[return-value]

    # Reports

    # PUBLIC_INTERFACE
    async def get_ncr_summary(self, *, from_ts=None, to_ts=None, status: Optional[str] = None) -> List[NCRSummaryRow]:
        rows = await self.ncs.ncr_summary_rows(from_ts=from_ts, to_ts=to_ts, status=status)
        latest = await self.ncs.latest_dispositions([nc.id for nc, *_ in rows])
        return [
            NCRSummaryRow(
                nc_id=nc.id,
                nc_number=nc.nc_number,
                title=nc.title,
                severity=nc.severity,
                status=nc.status,
                source=nc.source,
                reported_at=nc.reported_at,
                order_number=order_number,
                part_number=part_number,
                part_name=part_name,
                defect_count=defect_count,
                latest_disposition=latest.get(nc.id),
            )
            for nc, order_number, part_number, part_name, defect_count in rows
        ]

    # PUBLIC_INTERFACE
    async def get_defect_pareto(self, *, from_ts=None, to_ts=None) -> List[DefectParetoRow]:
        rows = await self.ncs.defect_pareto_rows(from_ts=from_ts, to_ts=to_ts)
        return [
            DefectParetoRow(
                defect_code_id=code.id,
                code=code.code,
                name=code.name,
                category=code.category,
                occurrence_count=count,
                total_qty_affected=qty,
            )
            for code, count, qty in rows
        ]
