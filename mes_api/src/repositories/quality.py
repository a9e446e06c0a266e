from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import desc, func, or_, select

from src.db.models.master_data import Part
from src.db.models.production import ProductionOrder
from src.db.models.quality import (
    CAPA,
    Characteristic,
    DefectCode,
    Disposition,
    InspectionPlan,
    InspectionRun,
    Measurement,
    MeasurementRevision,
    NCDefect,
    Nonconformance,
    SamplingPlan,
)
from .base import BaseRepository


class InspectionRepository(BaseRepository):
    """Repository for sampling plans, inspection plans, characteristics, runs and measurements."""

    # Sampling plans

    async def list_sampling_plans(self, *, active_only: bool = True) -> List[SamplingPlan]:
        stmt = select(SamplingPlan)
        if active_only:
            stmt = stmt.where(SamplingPlan.is_active.is_(True))
        res = await self.scalars(stmt.order_by(SamplingPlan.name))
        return list(res)

    async def create_sampling_plan(self, **values) -> SamplingPlan:
        return await self.add(SamplingPlan(**values))

    # Plans

    async def list_plans(
        self,
        *,
        plan_type: Optional[str] = None,
        applies_to: Optional[str] = None,
        product_id: Optional[UUID] = None,
        work_center_id: Optional[UUID] = None,
        active_only: bool = True,
    ) -> List[InspectionPlan]:
        stmt = select(InspectionPlan)
        conditions: List[Any] = []
        if plan_type:
            conditions.append(InspectionPlan.plan_type == plan_type)
        if applies_to:
            conditions.append(InspectionPlan.applies_to == applies_to)
        if product_id:
            conditions.append(InspectionPlan.product_id == product_id)
        if work_center_id:
            conditions.append(InspectionPlan.work_center_id == work_center_id)
        if active_only:
            conditions.append(InspectionPlan.is_active.is_(True))
        if conditions:
            stmt = stmt.where(*conditions)
        res = await self.scalars(stmt.order_by(InspectionPlan.name))
        return list(res)

    async def list_in_process_plans_for(self, work_center_id: Optional[UUID]) -> List[InspectionPlan]:
        """Active IN_PROCESS plans that apply to any work center or to the given one."""
        stmt = select(InspectionPlan).where(
            InspectionPlan.is_active.is_(True),
            InspectionPlan.plan_type == "IN_PROCESS",
        )
        if work_center_id:
            stmt = stmt.where(
                or_(InspectionPlan.work_center_id.is_(None), InspectionPlan.work_center_id == work_center_id)
            )
        else:
            stmt = stmt.where(InspectionPlan.work_center_id.is_(None))
        res = await self.scalars(stmt.order_by(InspectionPlan.name))
        return list(res)

    async def get_plan(self, plan_id: UUID) -> Optional[InspectionPlan]:
        return await self.get_by_id(InspectionPlan, plan_id)

    async def create_plan(self, **values) -> InspectionPlan:
        return await self.add(InspectionPlan(**values))

    async def update_plan(self, plan_id: UUID, values: dict) -> Optional[InspectionPlan]:
        return await self.update_values(InspectionPlan, plan_id, values)

    # Characteristics

    async def list_characteristics(self, plan_ids: Sequence[UUID], *, active_only: bool = True) -> List[Characteristic]:
        if not plan_ids:
            return []
        stmt = select(Characteristic).where(Characteristic.inspection_plan_id.in_(list(plan_ids)))
        if active_only:
            stmt = stmt.where(Characteristic.is_active.is_(True))
        res = await self.scalars(stmt.order_by(Characteristic.sequence, Characteristic.name))
        return list(res)

    async def count_required_characteristics(self, plan_id: UUID) -> int:
        stmt = select(func.count(Characteristic.id)).where(
            Characteristic.inspection_plan_id == plan_id,
            Characteristic.is_active.is_(True),
            Characteristic.required.is_(True),
        )
        return int(await self.scalar_one_or_none(stmt) or 0)

    async def get_characteristic(self, characteristic_id: UUID) -> Optional[Characteristic]:
        return await self.get_by_id(Characteristic, characteristic_id)

    async def create_characteristic(self, **values) -> Characteristic:
        return await self.add(Characteristic(**values))

    async def update_characteristic(self, characteristic_id: UUID, values: dict) -> Optional[Characteristic]:
        return await self.update_values(Characteristic, characteristic_id, values)

    # Runs

    async def list_runs(
        self,
        *,
        status: Optional[Sequence[str]] = None,
        production_order_id: Optional[UUID] = None,
        operation_run_id: Optional[UUID] = None,
        work_center_id: Optional[UUID] = None,
        inspector_id: Optional[UUID] = None,
        oldest_first: bool = False,
        limit: int = 200,
        offset: int = 0,
    ) -> List[InspectionRun]:
        stmt = select(InspectionRun)
        conditions: List[Any] = []
        if status:
            conditions.append(InspectionRun.status.in_(list(status)))
        if production_order_id:
            conditions.append(InspectionRun.production_order_id == production_order_id)
        if operation_run_id:
            conditions.append(InspectionRun.operation_run_id == operation_run_id)
        if work_center_id:
            conditions.append(InspectionRun.work_center_id == work_center_id)
        if inspector_id:
            conditions.append(InspectionRun.inspector_id == inspector_id)
        if conditions:
            stmt = stmt.where(*conditions)
        order = InspectionRun.created_at if oldest_first else desc(InspectionRun.created_at)
        res = await self.scalars(stmt.order_by(order).offset(offset).limit(limit))
        return list(res)

    async def get_run(self, run_id: UUID) -> Optional[InspectionRun]:
        return await self.get_by_id(InspectionRun, run_id)

    async def create_run(self, **values) -> InspectionRun:
        return await self.add(InspectionRun(**values))

    async def update_run(self, run_id: UUID, values: dict) -> Optional[InspectionRun]:
        return await self.update_values(InspectionRun, run_id, values)

    # Measurements

    async def list_measurements(self, run_id: UUID) -> List[Measurement]:
        stmt = select(Measurement).where(Measurement.inspection_run_id == run_id).order_by(Measurement.recorded_at)
        res = await self.scalars(stmt)
        return list(res)

    async def get_measurement_for(self, run_id: UUID, characteristic_id: UUID) -> Optional[Measurement]:
        stmt = select(Measurement).where(
            Measurement.inspection_run_id == run_id,
            Measurement.characteristic_id == characteristic_id,
        )
        return await self.scalar_one_or_none(stmt)

    async def create_measurement(self, **values) -> Measurement:
        return await self.add(Measurement(**values))

    async def update_measurement(self, measurement_id: UUID, values: dict) -> Optional[Measurement]:
        return await self.update_values(Measurement, measurement_id, values)

    async def create_revision(self, **values) -> MeasurementRevision:
        return await self.add(MeasurementRevision(**values))

    async def count_results(self, run_id: UUID) -> Tuple[int, int]:
        """(passed, failed) measurements of a run; measurements with unknown spec status are not counted."""
        stmt = select(
            func.count(Measurement.id).filter(Measurement.is_within_spec.is_(True)),
            func.count(Measurement.id).filter(Measurement.is_within_spec.is_(False)),
        ).where(Measurement.inspection_run_id == run_id)
        res = await self.execute(stmt)
        passed, failed = res.one()
        return int(passed or 0), int(failed or 0)


class NonconformanceRepository(BaseRepository):
    """Repository for defect codes, nonconformances, dispositions and CAPAs."""

    # Defect codes

    async def list_defect_codes(self, *, active_only: bool = True) -> List[DefectCode]:
        stmt = select(DefectCode)
        if active_only:
            stmt = stmt.where(DefectCode.is_active.is_(True))
        res = await self.scalars(stmt.order_by(DefectCode.category.nullslast(), DefectCode.code))
        return list(res)

    async def get_defect_code(self, defect_code_id: UUID) -> Optional[DefectCode]:
        return await self.get_by_id(DefectCode, defect_code_id)

    async def get_defect_code_by_code(self, code: str) -> Optional[DefectCode]:
        return await self.scalar_one_or_none(select(DefectCode).where(DefectCode.code == code))

    async def create_defect_code(self, **values) -> DefectCode:
        return await self.add(DefectCode(**values))

    async def update_defect_code(self, defect_code_id: UUID, values: dict) -> Optional[DefectCode]:
        return await self.update_values(DefectCode, defect_code_id, values)

    # Nonconformances

    async def latest_nc_number(self, prefix: str) -> Optional[str]:
        stmt = select(func.max(Nonconformance.nc_number)).where(Nonconformance.nc_number.like(f"{prefix}%"))
        return await self.scalar_one_or_none(stmt)

    async def list_ncs(
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
        stmt = select(Nonconformance)
        conditions: List[Any] = []
        if status:
            conditions.append(Nonconformance.status == status)
        if severity:
            conditions.append(Nonconformance.severity == severity)
        if source:
            conditions.append(Nonconformance.source == source)
        if production_order_id:
            conditions.append(Nonconformance.production_order_id == production_order_id)
        if part_id:
            conditions.append(Nonconformance.part_id == part_id)
        if conditions:
            stmt = stmt.where(*conditions)
        res = await self.scalars(stmt.order_by(desc(Nonconformance.reported_at)).offset(offset).limit(limit))
        return list(res)

    async def get_nc(self, nc_id: UUID) -> Optional[Nonconformance]:
        return await self.get_by_id(Nonconformance, nc_id)

    async def create_nc(self, **values) -> Nonconformance:
        return await self.add(Nonconformance(**values))

    async def update_nc(self, nc_id: UUID, values: dict) -> Optional[Nonconformance]:
        return await self.update_values(Nonconformance, nc_id, values)

    async def list_nc_defects(self, nc_id: UUID) -> List[NCDefect]:
        res = await self.scalars(select(NCDefect).where(NCDefect.nonconformance_id == nc_id).order_by(NCDefect.created_at))
        return list(res)

    async def create_nc_defect(self, **values) -> NCDefect:
        return await self.add(NCDefect(**values))

    # Dispositions

    async def list_dispositions(self, nc_id: UUID) -> List[Disposition]:
        stmt = select(Disposition).where(Disposition.nonconformance_id == nc_id).order_by(Disposition.created_at)
        res = await self.scalars(stmt)
        return list(res)

    async def get_disposition(self, disposition_id: UUID) -> Optional[Disposition]:
        return await self.get_by_id(Disposition, disposition_id)

    async def create_disposition(self, **values) -> Disposition:
        return await self.add(Disposition(**values))

    async def update_disposition(self, disposition_id: UUID, values: dict) -> Optional[Disposition]:
        return await self.update_values(Disposition, disposition_id, values)

    # CAPA

    async def latest_capa_number(self, prefix: str) -> Optional[str]:
        stmt = select(func.max(CAPA.capa_number)).where(CAPA.capa_number.like(f"{prefix}%"))
        return await self.scalar_one_or_none(stmt)

    async def list_capas(
        self,
        *,
        status: Optional[str] = None,
        owner_id: Optional[UUID] = None,
        nonconformance_id: Optional[UUID] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[CAPA]:
        stmt = select(CAPA)
        conditions: List[Any] = []
        if status:
            conditions.append(CAPA.status == status)
        if owner_id:
            conditions.append(CAPA.owner_id == owner_id)
        if nonconformance_id:
            conditions.append(CAPA.nonconformance_id == nonconformance_id)
        if conditions:
            stmt = stmt.where(*conditions)
        res = await self.scalars(stmt.order_by(desc(CAPA.created_at)).offset(offset).limit(limit))
        return list(res)

    async def get_capa(self, capa_id: UUID) -> Optional[CAPA]:
        return await self.get_by_id(CAPA, capa_id)

    async def create_capa(self, **values) -> CAPA:
        return await self.add(CAPA(**values))

    async def update_capa(self, capa_id: UUID, values: dict) -> Optional[CAPA]:
        return await self.update_values(CAPA, capa_id, values)

    # Reports

    async def ncr_summary_rows(
        self, *, from_ts: Optional[datetime] = None, to_ts: Optional[datetime] = None, status: Optional[str] = None
    ) -> List[Tuple[Nonconformance, Optional[str], Optional[str], Optional[str], int]]:
        """(nc, order_number, part_number, part_name, defect_count) newest first."""
        defect_counts = (
            select(NCDefect.nonconformance_id.label("nc_id"), func.count(NCDefect.id).label("cnt"))
            .group_by(NCDefect.nonconformance_id)
            .subquery()
        )
        stmt = (
            select(
                Nonconformance,
                ProductionOrder.order_number,
                Part.part_number,
                Part.name,
                func.coalesce(defect_counts.c.cnt, 0),
            )
            .outerjoin(ProductionOrder, ProductionOrder.id == Nonconformance.production_order_id)
            .outerjoin(Part, Part.id == Nonconformance.part_id)
            .outerjoin(defect_counts, defect_counts.c.nc_id == Nonconformance.id)
        )
        conditions: List[Any] = []
        if from_ts:
            conditions.append(Nonconformance.reported_at >= from_ts)
        if to_ts:
            conditions.append(Nonconformance.reported_at <= to_ts)
        if status:
            conditions.append(Nonconformance.status == status)
        if conditions:
            stmt = stmt.where(*conditions)
        res = await self.execute(stmt.order_by(desc(Nonconformance.reported_at)))
        return [(row[0], row[1], row[2], row[3], int(row[4])) for row in res.all()]

    async def latest_dispositions(self, nc_ids: Sequence[UUID]) -> dict:
        """Map nc_id -> most recent disposition value."""
        if not nc_ids:
            return {}
        stmt = (
            select(Disposition.nonconformance_id, Disposition.disposition)
            .where(Disposition.nonconformance_id.in_(list(nc_ids)))
            .order_by(Disposition.nonconformance_id, desc(Disposition.created_at))
            .distinct(Disposition.nonconformance_id)
        )
        res = await self.execute(stmt)
        return {row[0]: row[1] for row in res.all()}

    async def defect_pareto_rows(
        self, *, from_ts: Optional[datetime] = None, to_ts: Optional[datetime] = None
    ) -> List[Tuple[DefectCode, int, float]]:
        """(defect_code, occurrence_count, total_qty_affected) sorted by occurrences desc."""
        occurrences = func.count(NCDefect.id)
        stmt = (
            select(DefectCode, occurrences, func.coalesce(func.sum(NCDefect.qty_affected), 0))
            .join(NCDefect, NCDefect.defect_code_id == DefectCode.id)
            .join(Nonconformance, Nonconformance.id == NCDefect.nonconformance_id)
        )
        conditions: List[Any] = []
        if from_ts:
            conditions.append(Nonconformance.reported_at >= from_ts)
        if to_ts:
            conditions.append(Nonconformance.reported_at <= to_ts)
        if conditions:
            stmt = stmt.where(*conditions)
        stmt = stmt.group_by(DefectCode.id).order_by(desc(occurrences), DefectCode.code)
        res = await self.execute(stmt)
        return [(row[0], int(row[1]), float(row[2] or 0)) for row in res.all()]
