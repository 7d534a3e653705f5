from datetime import date, timedelta

from kpi_portal.models.cycle import Cycle
from kpi_portal.models.kpi import KpiDefinition
from kpi_portal.models.kpi_actual import KpiActual
from kpi_portal.services import validation


def _kpi(**overrides):
    fields = dict(title="Revenue", type="QUANT_HIGHER_BETTER", target=100, unit="USD", weight=50)
    fields.update(overrides)
    return KpiDefinition(**fields)


def _cycle(**overrides):
    today = date.today()
    fields = dict(name="FY", status="ACTIVE", period_start=today - timedelta(days=10),
                  period_end=today + timedelta(days=10))
    fields.update(overrides)
    return Cycle(**fields)


def test_kpi_fields_valid():
    assert validation.validate_kpi_fields(_kpi()) == []


def test_kpi_fields_collects_every_violation():
    errors = validation.validate_kpi_fields(_kpi(title=" ", unit=None, weight=0, target=-1))
    assert errors == [
        "Title is required",
        "Unit of measurement is required",
        "Weight must be greater than 0",
        "Target must be greater than 0",
    ]


def test_boolean_kpi_needs_no_target():
    assert validation.validate_kpi_fields(_kpi(type="BOOLEAN", target=None)) == []


def test_kpi_set_weight_must_sum_to_total():
    cycle = _cycle()
    assert validation.validate_kpi_set([_kpi(weight=60), _kpi(title="Quality", weight=40)], cycle) == []
    errors = validation.validate_kpi_set([_kpi(weight=60)], cycle)
    assert errors == ["Total weight must equal 100% (currently 60%)"]


def test_kpi_set_weight_tolerance():
    cycle = _cycle()
    kpis = [_kpi(weight=33.33), _kpi(title="B", weight=33.33), _kpi(title="C", weight=33.34)]
    assert validation.validate_kpi_set(kpis, cycle) == []


def test_kpi_set_count_and_titles():
    cycle = _cycle(settings={"min_kpis_per_user": 3})
    errors = validation.validate_kpi_set([_kpi(weight=50), _kpi(title=" revenue ", weight=50)], cycle)
    assert "You must have at least 3 KPIs in this cycle (currently 2)" in errors
    assert "KPI titles must be unique within a cycle" in errors


def test_cycle_must_be_open():
    assert validation.validate_cycle_open_for_submission(None) == ["KPI cycle not found"]
    closed = _cycle(status="CLOSED")
    assert validation.validate_cycle_open_for_submission(closed)


def test_cycle_past_end_blocks_unless_late_allowed():
    ended = _cycle(period_end=date.today() - timedelta(days=1))
    assert validation.validate_cycle_open_for_submission(ended)
    lenient = _cycle(period_end=date.today() - timedelta(days=1), settings={"allow_late_submission": True})
    assert validation.validate_cycle_open_for_submission(lenient) == []


def test_actual_submission_rules():
    kpi = _kpi(status="LOCKED_GOALS")
    actual = KpiActual(kpi=kpi, actual_value=None)
    cycle = _cycle(settings={"require_evidence": True})
    errors = validation.validate_actual_submission(actual, cycle)
    assert "Actual value is required" in errors
    assert "Evidence is required for this cycle" in errors

    actual.actual_value = 90
    actual.evidence_note = "Dashboard export"
    assert validation.validate_actual_submission(actual, cycle) == []


def test_actual_needs_locked_goals():
    actual = KpiActual(kpi=_kpi(status="APPROVED"), actual_value=5)
    assert validation.validate_actual_submission(actual, _cycle()) == [
        "Actuals can only be submitted once the KPI goals are locked"
    ]


def test_change_validation():
    assert validation.validate_changes([]) == ["At least one change is required"]
    assert validation.validate_changes([{"field": "target", "new_value": 120}]) == []
    errors = validation.validate_changes([{"field": "weight", "new_value": 10},
                                          {"field": "target", "new_value": 0}])
    assert errors[0].startswith("Field 'weight' cannot be changed")
    assert errors[1] == "Target must be greater than 0"
