from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.db.models.spc import SPCPoint, SPCRuleViolation, SPCSubgroup
from src.repositories.quality import InspectionRepository
from src.repositories.spc import SPCRepository
from src.schemas.spc import (
    ControlChartData,
    ControlLimits,
    ProcessCapability,
    SigmaLevelResult,
    SPCMeasurementRequest,
    SPCPointRead,
    SPCSubgroupRead,
    SubgroupCreate,
    ViolationRead,
)
from src.services.base import BaseService, utcnow

logger = logging.getLogger(__name__)

# X-bar chart factor by subgroup size
A2_FACTORS: Dict[int, float] = {
    2: 1.880,
    3: 1.023,
    4: 0.729,
    5: 0.577,
    6: 0.483,
    7: 0.419,
    8: 0.373,
    9: 0.337,
    10: 0.308,
}

MIN_RULE_SUBGROUPS = 8
RULE_LOOKBACK = 9


# PUBLIC_INTERFACE
def subgroup_statistics(values: Sequence[float]) -> Dict[str, Any]:
    """n, mean, range, sample standard deviation (0 for a single value), min and max."""
    if not values:
        raise ValidationFailedError("A subgroup needs at least one value")
    n = len(values)
    mean = sum(values) / n
    stddev = math.sqrt(sum((v - mean) ** 2 for v in values) / (n - 1)) if n > 1 else 0.0
    return {
        "n": n,
        "mean": mean,
        "range_value": max(values) - min(values),
        "stddev": stddev,
        "min_value": min(values),
        "max_value": max(values),
    }


# PUBLIC_INTERFACE
def normal_cdf(z: float) -> float:
    """Standard normal CDF using the Abramowitz-Stegun erf approximation (7.1.26)."""
    a1, a2, a3, a4, a5 = 0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429
    p = 0.3275911
    sign = -1.0 if z < 0 else 1.0
    x = abs(z) / math.sqrt(2.0)
    t = 1.0 / (1.0 + p * x)
    y = 1.0 - (((((a5 * t + a4) * t) + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


# PUBLIC_INTERFACE
def calculate_control_limits(
    subgroups: Sequence[Any],
    *,
    usl: Optional[float] = None,
    lsl: Optional[float] = None,
    target: Optional[float] = None,
) -> ControlLimits:
    """
    X-bar chart limits from subgroup means and ranges.

    Subgroups need `mean`, `range_value` and `n`. The A2 factor is picked from the
    rounded average subgroup size clamped to 2..10. Limits are all zero without data.
    """
    if not subgroups:
        return ControlLimits(usl=usl, lsl=lsl, target=target)
    x_bar = sum(float(s.mean) for s in subgroups) / len(subgroups)
    r_bar = sum(float(s.range_value or 0) for s in subgroups) / len(subgroups)
    avg_n = int(round(sum(s.n for s in subgroups) / len(subgroups)))
    a2 = A2_FACTORS[min(max(avg_n, 2), 10)]
    return ControlLimits(
        ucl=x_bar + a2 * r_bar,
        lcl=x_bar - a2 * r_bar,
        center_line=x_bar,
        usl=usl,
        lsl=lsl,
        target=target,
    )


# PUBLIC_INTERFACE
def calculate_process_capability(
    values: Sequence[float],
    *,
    usl: Optional[float] = None,
    lsl: Optional[float] = None,
    min_samples: int = 30,
) -> Optional[ProcessCapability]:
    """
    Cp/Cpk (and Pp/Ppk, equal here) from individual values using the sample standard deviation.

    Returns None without spec limits, with fewer than `min_samples` values, or
    when the values have no spread. A limit of 0 counts as present.
    """
    if usl is None and lsl is None:
        return None
    n = len(values)
    if n < max(min_samples, 2):
        return None
    mean = sum(values) / n
    stddev = math.sqrt(sum((v - mean) ** 2 for v in values) / (n - 1))
    if stddev == 0:
        return None

    cp = (usl - lsl) / (6 * stddev) if usl is not None and lsl is not None else None
    cpu = (usl - mean) / (3 * stddev) if usl is not None else None
    cpl = (mean - lsl) / (3 * stddev) if lsl is not None else None
    cpk = min(c for c in (cpu, cpl) if c is not None)

    p_upper = normal_cdf(-(usl - mean) / stddev) if usl is not None else 0.0
    p_lower = normal_cdf(-(mean - lsl) / stddev) if lsl is not None else 0.0
    dpmo = (p_upper + p_lower) * 1_000_000

    return ProcessCapability(
        cp=cp,
        cpk=cpk,
        pp=cp,
        ppk=cpk,
        cpu=cpu,
        cpl=cpl,
        sigma_level=cpk * 3,
        dpmo=dpmo,
        ppm=dpmo,
        mean=mean,
        stddev=stddev,
        n=n,
    )


# PUBLIC_INTERFACE
def detect_violations(means: Sequence[float], limits: ControlLimits) -> List[Tuple[str, Dict[str, Any]]]:
    """
    Western Electric rules 1-4 evaluated at the last mean of `means`.

    `means` is the recent window ending at the subgroup being checked. Returns
    (violation_type, details) pairs.
    """
    if not means:
        return []
    current = means[-1]
    center = limits.center_line
    sigma = (limits.ucl - center) / 3
    found: List[Tuple[str, Dict[str, Any]]] = []

    if current > limits.ucl or current < limits.lcl:
        found.append(("WESTERN_ELECTRIC_1", {"value": current, "ucl": limits.ucl, "lcl": limits.lcl}))

    if len(means) >= 3:
        last3 = list(means[-3:])
        above = sum(1 for m in last3 if m > center + 2 * sigma)
        below = sum(1 for m in last3 if m < center - 2 * sigma)
        if above >= 2 or below >= 2:
            found.append(("WESTERN_ELECTRIC_2", {"points": last3, "limit": 2 * sigma}))

    if len(means) >= 5:
        last5 = list(means[-5:])
        above = sum(1 for m in last5 if m > center + sigma)
        below = sum(1 for m in last5 if m < center - sigma)
        if above >= 4 or below >= 4:
            found.append(("WESTERN_ELECTRIC_3", {"points": last5, "limit": sigma}))

    if len(means) >= 8:
        last8 = list(means[-8:])
        if all(m > center for m in last8):
            found.append(("WESTERN_ELECTRIC_4", {"points": last8, "side": "above"}))
        elif all(m < center for m in last8):
            found.append(("WESTERN_ELECTRIC_4", {"points": last8, "side": "below"}))

    return found


# PUBLIC_INTERFACE
def calculate_sigma_level(defects: float, opportunities: float, units: float) -> SigmaLevelResult:
    """DPMO, DPU and the approximate short-term sigma level (0..6)."""
    if opportunities <= 0 or units <= 0:
        raise ValidationFailedError("Opportunities and units must be greater than zero")
    dpmo = defects / (opportunities * units) * 1_000_000
    dpu = defects / units
    if dpmo <= 3.4:
        sigma = 6.0
    elif dpmo >= 933200:
        sigma = 0.0
    else:
        # radicand goes negative above ~550k DPMO
        sigma = 0.8406 + math.sqrt(max(0.0, 29.37 - 2.221 * math.log(dpmo)))
    return SigmaLevelResult(dpmo=dpmo, dpu=dpu, sigma_level=max(0.0, min(6.0, sigma)))


def _subgroup_read(subgroup: SPCSubgroup, points: List[SPCPoint]) -> SPCSubgroupRead:
    read = SPCSubgroupRead.model_validate(subgroup)
    read.points = [SPCPointRead.model_validate(p) for p in points]
    return read


class SPCService(BaseService):
    """Statistical process control: subgroups, control charts, capability and rule violations."""

    def __init__(self, session: AsyncSession, tenant_id: Optional[UUID] = None) -> None:
        super().__init__(session, tenant_id)
        self.repo = SPCRepository(session)
        self.inspections = InspectionRepository(session)

    async def _get_characteristic(self, characteristic_id: UUID):
        characteristic = await self.inspections.get_characteristic(characteristic_id)
        if characteristic is None:
            raise NotFoundError("Characteristic not found")
        return characteristic

    async def _with_points(self, subgroups: List[SPCSubgroup]) -> List[SPCSubgroupRead]:
        points = await self.repo.list_points([s.id for s in subgroups])
        return [_subgroup_read(s, points.get(s.id, [])) for s in subgroups]

    # PUBLIC_INTERFACE
    async def get_subgroups(
        self,
        characteristic_id: UUID,
        *,
        work_center_id: Optional[UUID] = None,
        product_id: Optional[UUID] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[SPCSubgroupRead]:
        subgroups = await self.repo.list_subgroups(
            characteristic_id,
            work_center_id=work_center_id,
            product_id=product_id,
            from_ts=from_ts,
            to_ts=to_ts,
            limit=limit,
        )
        return await self._with_points(subgroups)

    # PUBLIC_INTERFACE
    async def create_subgroup(self, payload: SubgroupCreate) -> SPCSubgroupRead:
        """Store a subgroup with its statistics and points, then run rule detection."""
        stats = subgroup_statistics(payload.values)
        await self._get_characteristic(payload.characteristic_id)
        measurement_ids = payload.measurement_ids or []
        subgroup = await self.repo.create_subgroup(
            characteristic_id=payload.characteristic_id,
            work_center_id=payload.work_center_id,
            equipment_asset_id=payload.equipment_asset_id,
            product_id=payload.product_id,
            production_step_id=payload.production_step_id,
            subgroup_ts=payload.subgroup_ts or utcnow(),
            **stats,
        )
        points = []
        for index, value in enumerate(payload.values):
            points.append(
                await self.repo.create_point(
                    subgroup_id=subgroup.id,
                    measured_value=value,
                    sequence=index + 1,
                    measurement_id=measurement_ids[index] if index < len(measurement_ids) else None,
                )
            )
        await self._detect(subgroup)
        await self.commit()
        return _subgroup_read(subgroup, points)

    # PUBLIC_INTERFACE
    async def add_point_to_subgroup(
        self, subgroup_id: UUID, value: float, measurement_id: Optional[UUID] = None
    ) -> SPCPoint:
        """Append a point and refresh the subgroup's cached statistics."""
        if await self.repo.get_subgroup(subgroup_id) is None:
            raise NotFoundError("Subgroup not found")
        sequence = await self.repo.max_point_sequence(subgroup_id) + 1
        point = await self.repo.create_point(
            subgroup_id=subgroup_id, measured_value=value, sequence=sequence, measurement_id=measurement_id
        )
        points = (await self.repo.list_points([subgroup_id])).get(subgroup_id, [])
        await self.repo.update_subgroup(subgroup_id, subgroup_statistics([float(p.measured_value) for p in points]))
        await self.commit()
        return point

    # PUBLIC_INTERFACE
    async def get_control_chart_data(
        self,
        characteristic_id: UUID,
        *,
        work_center_id: Optional[UUID] = None,
        product_id: Optional[UUID] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        min_subgroups: Optional[int] = None,
    ) -> ControlChartData:
        """
        X-bar/R chart data for a characteristic.

        Below the minimum subgroup count, limits are zero and capability and
        violations are omitted.
        """
        characteristic = await self._get_characteristic(characteristic_id)
        subgroups = await self.get_subgroups(
            characteristic_id, work_center_id=work_center_id, product_id=product_id, from_ts=from_ts, to_ts=to_ts
        )
        spec = {"usl": characteristic.usl, "lsl": characteristic.lsl, "target": characteristic.target_value}
        required = min_subgroups or self.settings.SPC_MIN_SUBGROUPS
        if len(subgroups) < required:
            return ControlChartData(
                characteristic_id=characteristic.id,
                characteristic_name=characteristic.name,
                subgroups=subgroups,
                control_limits=ControlLimits(**spec),
            )

        values = [p.measured_value for s in subgroups for p in s.points]
        capability = calculate_process_capability(
            values,
            usl=characteristic.usl,
            lsl=characteristic.lsl,
            min_samples=self.settings.SPC_MIN_CAPABILITY_SAMPLES,
        )
        violations = await self.repo.list_violations(characteristic_id=characteristic_id)
        return ControlChartData(
            characteristic_id=characteristic.id,
            characteristic_name=characteristic.name,
            subgroups=subgroups,
            control_limits=calculate_control_limits(subgroups, **spec),
            capability=capability,
            violations=[ViolationRead.model_validate(v) for v in violations],
        )

    async def _detect(self, subgroup: SPCSubgroup) -> List[SPCRuleViolation]:
        window = await self.repo.list_subgroups(
            subgroup.characteristic_id, limit=self.settings.SPC_RULE_WINDOW, latest=True
        )
        if len(window) < MIN_RULE_SUBGROUPS:
            return []
        index = next((i for i, s in enumerate(window) if s.id == subgroup.id), None)
        if index is None:
            return []
        limits = calculate_control_limits(window)
        means = [float(s.mean) for s in window[max(0, index - RULE_LOOKBACK + 1): index + 1]]

        created = []
        for violation_type, details in detect_violations(means, limits):
            violation = await self.repo.create_violation(
                characteristic_id=subgroup.characteristic_id,
                subgroup_id=subgroup.id,
                violation_type=violation_type,
                detected_at=utcnow(),
                details=details,
            )
            logger.warning(
                "SPC violation %s on characteristic %s (subgroup %s): %s",
                violation_type,
                subgroup.characteristic_id,
                subgroup.id,
                details,
            )
            created.append(violation)
        return created

    # PUBLIC_INTERFACE
    async def detect_violations_for_subgroup(self, subgroup_id: UUID) -> List[SPCRuleViolation]:
        subgroup = await self.repo.get_subgroup(subgroup_id)
        if subgroup is None:
            raise NotFoundError("Subgroup not found")
        violations = await self._detect(subgroup)
        await self.commit()
        return violations

    # PUBLIC_INTERFACE
    async def get_violations(
        self,
        *,
        characteristic_id: Optional[UUID] = None,
        acknowledged: Optional[bool] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> List[SPCRuleViolation]:
        return await self.repo.list_violations(
            characteristic_id=characteristic_id, acknowledged=acknowledged, from_ts=from_ts, to_ts=to_ts
        )

    # PUBLIC_INTERFACE
    async def acknowledge_violation(
        self, violation_id: UUID, user_id: Optional[UUID], notes: Optional[str] = None
    ) -> SPCRuleViolation:
        violation = await self.repo.get_violation(violation_id)
        if violation is None:
            raise NotFoundError("Violation not found")
        if violation.acknowledged_at is not None:
            raise ConflictError(
                "Violation already acknowledged",
                details={"acknowledged_at": violation.acknowledged_at.isoformat()},
            )
        updated = await self.repo.update_violation(
            violation_id,
            {"acknowledged_by": user_id, "acknowledged_at": utcnow(), "acknowledgment_notes": notes},
        )
        await self.commit()
        return updated  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    async def record_measurement_for_spc(self, payload: SPCMeasurementRequest) -> SPCSubgroupRead:
        """Each individual measurement becomes an n=1 subgroup."""
        return await self.create_subgroup(
            SubgroupCreate(
                characteristic_id=payload.characteristic_id,
                values=[payload.value],
                measurement_ids=[payload.measurement_id],
                work_center_id=payload.work_center_id,
                product_id=payload.product_id,
                production_step_id=payload.production_step_id,
            )
        )
