"""
Submission rules for KPIs, actuals and change requests.

Every check returns a list of human-readable violations so callers can
report all of them at once.
"""
from datetime import date
from typing import Iterable, List, Optional

from kpi_portal.models.cycle import Cycle, CycleStatus
from kpi_portal.models.kpi import KpiDefinition, KpiStatus, KpiType, QUANTITATIVE_TYPES
from kpi_portal.models.kpi_actual import KpiActual
from kpi_portal.models.change_request import ChangeRequest, CHANGEABLE_FIELDS
from kpi_portal.services.scoring import validate_milestone_scale

WEIGHT_TOLERANCE = 0.01
_KPI_TYPES = {t.value for t in KpiType}


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_kpi_fields(kpi: KpiDefinition) -> List[str]:
    errors = []
    if _blank(kpi.title):
        errors.append("Title is required")
    if _blank(kpi.unit):
        errors.append("Unit of measurement is required")
    if kpi.type not in _KPI_TYPES:
        errors.append(f"Invalid KPI type: {kpi.type}")
    if kpi.weight is None or kpi.weight <= 0:
        errors.append("Weight must be greater than 0")
    if kpi.type in QUANTITATIVE_TYPES and (kpi.target is None or kpi.target <= 0):
        errors.append("Target must be greater than 0")
    if kpi.type == KpiType.MILESTONE.value and kpi.scoring_scale:
        errors.extend(validate_milestone_scale(kpi.scoring_scale))
    return errors


def validate_cycle_open_for_submission(cycle: Optional[Cycle], today: Optional[date] = None) -> List[str]:
    if cycle is None:
        return ["KPI cycle not found"]
    if cycle.status in (CycleStatus.CLOSED.value, CycleStatus.ARCHIVED.value):
        return [f"Cycle '{cycle.name}' is {cycle.status} and no longer accepts submissions"]
    today = today or date.today()
    if (
        cycle.period_end
        and cycle.period_end < today
        and not cycle.effective_settings.get("allow_late_submission")
    ):
        return [f"Cycle '{cycle.name}' ended on {cycle.period_end.isoformat()}"]
    return []


def validate_kpi_set(kpis: Iterable[KpiDefinition], cycle: Cycle) -> List[str]:
    """Weight-sum, count and unique-title rules over one owner's KPIs in a cycle."""
    kpis = list(kpis)
    rules = cycle.effective_settings
    errors = []

    minimum, maximum = rules["min_kpis_per_user"], rules["max_kpis_per_user"]
    if len(kpis) < minimum:
        errors.append(f"You must have at least {minimum} KPIs in this cycle (currently {len(kpis)})")
    if len(kpis) > maximum:
        errors.append(f"You cannot have more than {maximum} KPIs in this cycle (currently {len(kpis)})")

    required = float(rules["total_weight_must_equal"])
    total = sum(float(k.weight or 0) for k in kpis)
    if abs(total - required) > WEIGHT_TOLERANCE:
        errors.append(f"Total weight must equal {required:g}% (currently {total:g}%)")

    titles = [k.title.strip().lower() for k in kpis if not _blank(k.title)]
    if len(titles) != len(set(titles)):
        errors.append("KPI titles must be unique within a cycle")
    return errors


def validate_actual_submission(actual: KpiActual, cycle: Optional[Cycle]) -> List[str]:
    errors = []
    kpi = actual.kpi
    if kpi is None:
        return ["Parent KPI not found"]
    if kpi.status != KpiStatus.LOCKED_GOALS.value:
        errors.append("Actuals can only be submitted once the KPI goals are locked")
    if actual.actual_value is None:
        errors.append("Actual value is required")
    if cycle is not None and cycle.effective_settings.get("require_evidence") and _blank(actual.evidence_note):
        errors.append("Evidence is required for this cycle")
    errors.extend(validate_cycle_open_for_submission(cycle))
    return errors


def validate_changes(changes) -> List[str]:
    if not changes:
        return ["At least one change is required"]
    errors = []
    for change in changes:
        field = change.get("field") if isinstance(change, dict) else None
        if field not in CHANGEABLE_FIELDS:
            errors.append(f"Field '{field}' cannot be changed (allowed: {', '.join(CHANGEABLE_FIELDS)})")
        elif field == "target" and change.get("new_value") is not None:
            try:
                if float(change["new_value"]) <= 0:
                    errors.append("Target must be greater than 0")
            except (TypeError, ValueError):
                errors.append("Target must be a number")
    return errors


def validate_change_request_submission(change_request: ChangeRequest) -> List[str]:
    errors = []
    if _blank(change_request.reason):
        errors.append("Reason is required")
    errors.extend(validate_changes(change_request.changes))
    kpi = change_request.kpi
    if kpi is None:
        errors.append("KPI not found")
    elif kpi.status != KpiStatus.LOCKED_GOALS.value:
        errors.append("Change requests apply to KPIs with locked goals only")
    return errors
