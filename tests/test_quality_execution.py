from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from src.core.errors import ConflictError, ValidationFailedError
from src.schemas.quality import MeasurementInput
from src.services.base import next_document_number
from src.services.quality import QualityExecutionService, is_within_spec


@pytest.mark.parametrize(
    "char_type, value, pass_fail, lsl, usl, expected",
    [
        ("VARIABLE", 10.0, None, 9.95, 10.05, True),
        ("VARIABLE", 10.06, None, 9.95, 10.05, False),
        ("VARIABLE", 9.9, None, 9.95, None, False),
        ("VARIABLE", 0.0, None, 0.0, None, True),
        ("VARIABLE", 123.0, None, None, None, True),
        ("VARIABLE", None, True, 9.95, 10.05, None),
        ("ATTRIBUTE", None, False, None, None, False),
        ("ATTRIBUTE", None, True, None, None, True),
        ("ATTRIBUTE", None, None, None, None, None),
    ],
)
def test_is_within_spec(char_type, value, pass_fail, lsl, usl, expected):
    assert is_within_spec(char_type, value, pass_fail, lsl, usl) == expected


def test_document_numbers_roll_per_year():
    assert next_document_number("NCR", 2026, None) == "NCR-26-00001"
    assert next_document_number("NCR", 2026, "NCR-26-00041") == "NCR-26-00042"
    assert next_document_number("CAPA", 2031, "CAPA-31-garbage") == "CAPA-31-00001"


class FakeInspections:
    def __init__(self, run, plan, passed, failed):
        self.run = run
        self.plan = plan
        self.counts = (passed, failed)

    async def get_run(self, run_id):
        return self.run if run_id == self.run.id else None

    async def get_plan(self, plan_id):
        return self.plan

    async def count_results(self, run_id):
        return self.counts

    async def update_run(self, run_id, values):
        for key, value in values.items():
            setattr(self.run, key, value)
        return self.run


class FakeNonconformances:
    def __init__(self, capa=None):
        self.created = []
        self.capa = capa

    async def latest_nc_number(self, prefix):
        return None

    async def create_nc(self, **values):
        nc = SimpleNamespace(id=uuid4(), **values)
        self.created.append(nc)
        return nc

    async def get_capa(self, capa_id):
        return self.capa

    async def update_capa(self, capa_id, values):
        for key, value in values.items():
            setattr(self.capa, key, value)
        return self.capa


def make_run(status="IN_PROGRESS"):
    return SimpleNamespace(
        id=uuid4(),
        status=status,
        inspection_plan_id=uuid4(),
        production_order_id=uuid4(),
        operation_run_id=uuid4(),
        lot_id=None,
        serial_id="SN-0001",
        inspector_id=uuid4(),
        passed_characteristics=0,
        failed_characteristics=0,
    )


def make_service(session, run, *, passed, failed, capa=None):
    plan = SimpleNamespace(id=run.inspection_plan_id, name="Milled widget in-process check", product_id=uuid4(), part_id=None)
    service = QualityExecutionService(session)
    service.inspections = FakeInspections(run, plan, passed, failed)
    service.ncs = FakeNonconformances(capa)
    return service, plan


async def test_failed_inspection_raises_linked_nonconformance(session):
    run = make_run()
    service, plan = make_service(session, run, passed=1, failed=2)
    updated = await service.complete_inspection(run.id)
    assert updated.status == "FAILED"
    assert updated.completed_at is not None
    [nc] = service.ncs.created
    assert nc.nc_number.startswith("NCR-")
    assert nc.severity == "MAJOR"
    assert nc.source == "INSPECTION"
    assert nc.title == f"Failed Inspection: {plan.name}"
    assert nc.inspection_run_id == run.id
    assert nc.production_order_id == run.production_order_id
    assert nc.serial_id == "SN-0001"
    assert nc.product_id == plan.product_id
    assert session.commits == 1


async def test_passing_inspection_creates_no_nonconformance(session):
    run = make_run(status="PENDING")
    service, _plan = make_service(session, run, passed=3, failed=0)
    updated = await service.complete_inspection(run.id)
    assert updated.status == "PASSED"
    assert updated.passed_characteristics == 3
    assert service.ncs.created == []


async def test_completed_run_cannot_be_completed_again(session):
    run = make_run(status="PASSED")
    service, _plan = make_service(session, run, passed=3, failed=0)
    with pytest.raises(ConflictError):
        await service.complete_inspection(run.id)


async def test_waive_requires_reason_and_open_run(session):
    run = make_run(status="PENDING")
    service, _plan = make_service(session, run, passed=0, failed=0)
    with pytest.raises(ValidationFailedError):
        await service.waive_inspection(run.id, "   ")
    waived = await service.waive_inspection(run.id, "Customer deviation approved")
    assert waived.status == "WAIVED"
    assert waived.notes == "Customer deviation approved"
    with pytest.raises(ConflictError):
        await service.waive_inspection(run.id, "again")


async def test_capa_must_be_verified_before_close(session):
    capa = SimpleNamespace(id=uuid4(), status="IN_PROGRESS")
    service, _plan = make_service(session, make_run(), passed=0, failed=0, capa=capa)
    with pytest.raises(ConflictError):
        await service.close_capa(capa.id)

    verifier = uuid4()
    await service.verify_capa(capa.id, verifier, "Effective over 30 days")
    assert capa.status == "VERIFIED"
    assert capa.verified_by == verifier

    await service.close_capa(capa.id)
    assert capa.status == "CLOSED"
    with pytest.raises(ConflictError):
        await service.verify_capa(capa.id, verifier)


class MeasuredInspections(FakeInspections):
    """Keeps measurements and revisions so pass/fail counts follow the recorded results."""

    def __init__(self, run, plan, characteristic):
        super().__init__(run, plan, 0, 0)
        self.characteristic = characteristic
        self.measurements = {}
        self.revisions = []

    async def get_characteristic(self, characteristic_id):
        return self.characteristic if characteristic_id == self.characteristic.id else None

    async def get_measurement_for(self, run_id, characteristic_id):
        return self.measurements.get((run_id, characteristic_id))

    async def create_measurement(self, **values):
        row = SimpleNamespace(id=uuid4(), **values)
        self.measurements[(values["inspection_run_id"], values["characteristic_id"])] = row
        return row

    async def update_measurement(self, measurement_id, values):
        row = next(m for m in self.measurements.values() if m.id == measurement_id)
        for key, value in values.items():
            setattr(row, key, value)
        return row

    async def create_revision(self, **values):
        row = SimpleNamespace(id=uuid4(), **values)
        self.revisions.append(row)
        return row

    async def count_results(self, run_id):
        results = [m.is_within_spec for (rid, _), m in self.measurements.items() if rid == run_id]
        return results.count(True), results.count(False)


def measured_service(session, run):
    bore = SimpleNamespace(
        id=uuid4(), inspection_plan_id=run.inspection_plan_id, char_type="VARIABLE", lsl=9.95, usl=10.05
    )
    service, plan = make_service(session, run, passed=0, failed=0)
    service.inspections = MeasuredInspections(run, plan, bore)
    return service, bore


async def test_first_measurement_is_revision_one(session):
    run = make_run()
    service, bore = measured_service(session, run)
    operator = uuid4()
    m = await service.record_measurement(run.id, MeasurementInput(characteristic_id=bore.id, measured_value=10.01), operator)
    assert m.revision_number == 1
    assert m.is_within_spec is True
    assert m.recorded_by == operator
    assert run.passed_characteristics == 1
    assert run.failed_characteristics == 0
    assert service.inspections.revisions == []
    assert session.commits == 1


async def test_re_recording_creates_revision_with_before_and_after(session):
    run = make_run()
    service, bore = measured_service(session, run)
    first = await service.record_measurement(
        run.id, MeasurementInput(characteristic_id=bore.id, measured_value=10.01), uuid4()
    )
    reviser = uuid4()
    revised = await service.record_measurement(
        run.id, MeasurementInput(characteristic_id=bore.id, measured_value=10.2), reviser
    )

    assert revised is first
    assert revised.revision_number == 2
    assert revised.measured_value == 10.2
    assert revised.is_within_spec is False
    assert revised.revised_by == reviser
    assert revised.revision_reason == "No reason provided"
    [revision] = service.inspections.revisions
    assert revision.measurement_id == first.id
    assert revision.revision_number == 2
    assert (revision.before_value, revision.after_value) == (10.01, 10.2)
    assert (revision.before_is_within_spec, revision.after_is_within_spec) == (True, False)
    assert revision.change_reason == "No reason provided"
    assert run.passed_characteristics == 0
    assert run.failed_characteristics == 1


async def test_revision_keeps_given_reason(session):
    run = make_run()
    service, bore = measured_service(session, run)
    payload = MeasurementInput(characteristic_id=bore.id, measured_value=10.0)
    await service.record_measurement(run.id, payload, None)
    await service.record_measurement(run.id, payload.model_copy(update={"change_reason": "Gauge recalibrated"}), None)
    m = await service.record_measurement(run.id, payload.model_copy(update={"change_reason": "Re-measured"}), None)
    assert m.revision_number == 3
    assert [r.change_reason for r in service.inspections.revisions] == ["Gauge recalibrated", "Re-measured"]


async def test_measurement_rejected_on_closed_run_or_foreign_characteristic(session):
    run = make_run()
    service, bore = measured_service(session, run)
    foreign = SimpleNamespace(id=bore.id, inspection_plan_id=uuid4(), char_type="VARIABLE", lsl=None, usl=None)
    service.inspections.characteristic = foreign
    with pytest.raises(ValidationFailedError):
        await service.record_measurement(run.id, MeasurementInput(characteristic_id=bore.id, measured_value=1.0), None)

    run.status = "PASSED"
    with pytest.raises(ConflictError):
        await service.record_measurement(run.id, MeasurementInput(characteristic_id=bore.id, measured_value=1.0), None)
