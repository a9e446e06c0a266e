from __future__ import annotations

import math
from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.errors import ValidationFailedError
from src.schemas.spc import ControlLimits
from src.services.spc import (
    SPCService,
    calculate_control_limits,
    calculate_process_capability,
    calculate_sigma_level,
    detect_violations,
    normal_cdf,
    subgroup_statistics,
)

LIMITS = ControlLimits(ucl=13.0, lcl=7.0, center_line=10.0)


def test_subgroup_statistics_uses_sample_stddev():
    stats = subgroup_statistics([1.0, 2.0, 3.0])
    assert stats["n"] == 3
    assert stats["mean"] == 2.0
    assert stats["range_value"] == 2.0
    assert stats["stddev"] == pytest.approx(1.0)
    assert (stats["min_value"], stats["max_value"]) == (1.0, 3.0)


def test_single_value_subgroup_has_zero_spread():
    stats = subgroup_statistics([4.2])
    assert stats["stddev"] == 0.0
    assert stats["range_value"] == 0.0


def test_empty_subgroup_rejected():
    with pytest.raises(ValidationFailedError):
        subgroup_statistics([])


def test_control_limits_from_means_and_ranges():
    subgroups = [SimpleNamespace(mean=10.0, range_value=2.0, n=5), SimpleNamespace(mean=12.0, range_value=2.0, n=5)]
    limits = calculate_control_limits(subgroups, usl=15.0, lsl=5.0)
    assert limits.center_line == pytest.approx(11.0)
    assert limits.ucl == pytest.approx(11.0 + 0.577 * 2.0)
    assert limits.lcl == pytest.approx(11.0 - 0.577 * 2.0)
    assert limits.usl == 15.0


def test_control_limits_clamp_subgroup_size():
    subgroups = [SimpleNamespace(mean=1.0, range_value=1.0, n=1)]
    assert calculate_control_limits(subgroups).ucl == pytest.approx(1.0 + 1.880)


def test_control_limits_without_data_are_zero():
    limits = calculate_control_limits([], target=10.0)
    assert (limits.ucl, limits.lcl, limits.center_line) == (0, 0, 0)
    assert limits.target == 10.0


def test_capability_indices():
    values = [9.9, 10.1] * 15
    cap = calculate_process_capability(values, usl=10.5, lsl=9.5)
    stddev = math.sqrt(30 * 0.01 / 29)
    assert cap is not None
    assert cap.n == 30
    assert cap.mean == pytest.approx(10.0)
    assert cap.stddev == pytest.approx(stddev)
    assert cap.cp == pytest.approx(1.0 / (6 * stddev))
    assert cap.cpk == pytest.approx(0.5 / (3 * stddev))
    assert cap.sigma_level == pytest.approx(cap.cpk * 3)


def test_one_sided_capability_has_no_cp():
    cap = calculate_process_capability([9.9, 10.1] * 15, usl=10.5)
    assert cap is not None
    assert cap.cp is None
    assert cap.cpl is None
    assert cap.cpk == cap.cpu


def test_zero_limit_counts_as_present():
    cap = calculate_process_capability([0.4, 0.6] * 15, lsl=0.0)
    assert cap is not None
    assert cap.cpl is not None


@pytest.mark.parametrize(
    "values, kwargs",
    [
        ([10.0, 10.2] * 15, {}),
        ([10.0, 10.2] * 5, {"usl": 11.0, "lsl": 9.0}),
        ([10.0] * 30, {"usl": 11.0, "lsl": 9.0}),
    ],
)
def test_capability_unavailable(values, kwargs):
    assert calculate_process_capability(values, **kwargs) is None


def test_normal_cdf_reference_points():
    assert normal_cdf(0) == pytest.approx(0.5, abs=1e-6)
    assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-3)
    assert normal_cdf(-3) == pytest.approx(0.00135, abs=1e-4)


def test_rule_one_beyond_limits():
    found = detect_violations([10.0, 14.0], LIMITS)
    assert [v for v, _ in found] == ["WESTERN_ELECTRIC_1"]


def test_rule_two_two_of_three_beyond_two_sigma():
    found = dict(detect_violations([10.0, 12.5, 12.2], LIMITS))
    assert "WESTERN_ELECTRIC_2" in found
    assert "WESTERN_ELECTRIC_1" not in found


def test_rule_three_four_of_five_beyond_one_sigma():
    found = dict(detect_violations([11.5, 11.2, 11.1, 11.3, 10.0], LIMITS))
    assert set(found) == {"WESTERN_ELECTRIC_3"}


def test_rule_four_eight_on_one_side():
    found = detect_violations([10.5] * 8, LIMITS)
    assert found == [("WESTERN_ELECTRIC_4", {"points": [10.5] * 8, "side": "above"})]


def test_in_control_series_has_no_violations():
    assert detect_violations([10.2, 9.8, 10.1, 9.9, 10.3, 9.7, 10.0, 9.6], LIMITS) == []
    assert detect_violations([], LIMITS) == []


def test_sigma_level_bounds_and_reference():
    assert calculate_sigma_level(0, 1, 100).sigma_level == 6.0
    assert calculate_sigma_level(950_000, 1, 1_000_000).sigma_level == 0.0
    result = calculate_sigma_level(66_807, 1, 1_000_000)
    assert result.dpmo == pytest.approx(66_807)
    assert result.dpu == pytest.approx(0.066807)
    assert result.sigma_level == pytest.approx(3.0, abs=0.05)


def test_sigma_level_high_defect_rate_stays_in_range():
    result = calculate_sigma_level(700_000, 1, 1_000_000)
    assert 0.0 <= result.sigma_level <= 1.0


def test_sigma_level_requires_positive_denominators():
    with pytest.raises(ValidationFailedError):
        calculate_sigma_level(1, 0, 10)
    with pytest.raises(ValidationFailedError):
        calculate_sigma_level(1, 5, 0)


class SubgroupHistory:
    """Subgroups of one characteristic, oldest first, as the repository returns them."""

    def __init__(self, means):
        self.characteristic_id = uuid4()
        self.subgroups = [
            SimpleNamespace(id=uuid4(), characteristic_id=self.characteristic_id, mean=m, range_value=1.0, n=5)
            for m in means
        ]
        self.calls = []
        self.violations = []

    async def get_subgroup(self, subgroup_id):
        return next((s for s in self.subgroups if s.id == subgroup_id), None)

    async def list_subgroups(self, characteristic_id, *, limit=None, latest=False, **filters):
        self.calls.append({"limit": limit, "latest": latest})
        rows = list(self.subgroups)
        return rows[-limit:] if latest and limit else rows

    async def create_violation(self, **values):
        row = SimpleNamespace(id=uuid4(), **values)
        self.violations.append(row)
        return row


def rule_service(session, means, window):
    service = SPCService(session)
    service.settings = service.settings.model_copy(update={"SPC_RULE_WINDOW": window})
    service.repo = SubgroupHistory(means)
    return service


STABLE = [10.0, 10.1] * 5


async def test_rules_use_only_the_newest_window(session):
    # an old regime far above the current one would put every new point below LCL
    service = rule_service(session, [100.0] * 50 + STABLE, window=10)
    newest = service.repo.subgroups[-1]

    assert await service.detect_violations_for_subgroup(newest.id) == []
    assert service.repo.calls == [{"limit": 10, "latest": True}]


async def test_rules_flag_excursion_inside_window(session):
    service = rule_service(session, [100.0] * 50 + STABLE[:-1] + [12.0], window=10)
    newest = service.repo.subgroups[-1]

    found = await service.detect_violations_for_subgroup(newest.id)

    assert "WESTERN_ELECTRIC_1" in [v.violation_type for v in found]
    assert found[0].subgroup_id == newest.id


async def test_subgroup_outside_window_is_not_evaluated(session):
    service = rule_service(session, [10.0] * 5 + STABLE, window=10)
    assert await service.detect_violations_for_subgroup(service.repo.subgroups[0].id) == []


async def test_rules_need_enough_subgroups(session):
    service = rule_service(session, [10.0, 10.1, 30.0], window=50)
    assert await service.detect_violations_for_subgroup(service.repo.subgroups[-1].id) == []
