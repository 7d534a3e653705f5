"""
Scoring for KPI actuals.

Percentage is achievement against target, capped for over-achievement.
Score (1-5) and band follow from the percentage; BOOLEAN and MILESTONE
KPIs have their own rules.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from kpi_portal.core.config import settings
from kpi_portal.models.kpi import KpiType

# (threshold, score, band), highest first
SCORE_BANDS = (
    (120, 5, "Outstanding"),
    (100, 4, "Excellent"),
    (80, 3, "Good"),
    (60, 2, "Fair"),
)
FLOOR_SCORE, FLOOR_BAND = 1, "Needs Improvement"


class ScoreResult(BaseModel):
    percentage: float
    score: int
    band: str
    explanation: str


def score_from_percentage(percentage: float) -> int:
    for threshold, score, _ in SCORE_BANDS:
        if percentage >= threshold:
            return score
    return FLOOR_SCORE


def band_from_percentage(percentage: float) -> str:
    for threshold, _, band in SCORE_BANDS:
        if percentage >= threshold:
            return band
    return FLOOR_BAND


def _banded(percentage: float, explanation: str) -> ScoreResult:
    return ScoreResult(
        percentage=round(percentage, 1),
        score=score_from_percentage(percentage),
        band=band_from_percentage(percentage),
        explanation=explanation,
    )


def _invalid_target() -> ScoreResult:
    return ScoreResult(percentage=0, score=0, band="Invalid", explanation="Target must be greater than 0")


def score_higher_better(actual: float, target: float, cap: float) -> ScoreResult:
    if target is None or target <= 0:
        return _invalid_target()
    percentage = min(actual / target * 100, cap)
    return _banded(percentage, f"Achieved {actual} out of {target} target ({percentage:.1f}%)")


def score_lower_better(actual: float, target: float, cap: float) -> ScoreResult:
    if target is None or target <= 0:
        return _invalid_target()
    if actual == 0:
        return _banded(cap, f"Perfect achievement: {actual} (target was {target})")
    percentage = min(target / actual * 100, cap)
    return _banded(percentage, f"Achieved {actual} vs {target} target ({percentage:.1f}%)")


def score_boolean(actual: float) -> ScoreResult:
    if actual:
        return ScoreResult(percentage=100, score=4, band="Achieved", explanation="Task completed")
    return ScoreResult(percentage=0, score=0, band="Not Achieved", explanation="Task not completed")


def score_milestone(actual: float, scale: List[Dict[str, Any]]) -> ScoreResult:
    """Pick the highest ``score_level`` among the ranges containing ``actual``."""
    matched = None
    for entry in scale:
        low, high = sorted((float(entry["from"]), float(entry["to"])))
        if low <= actual <= high and (matched is None or entry["score_level"] > matched["score_level"]):
            matched = entry
    if matched is None:
        return ScoreResult(
            percentage=0, score=0, band="Not Achieved",
            explanation=f"Actual {actual} falls outside all defined ranges."
        )
    return _banded(
        float(matched["score_level"]),
        f"Matched range [{matched['from']} - {matched['to']}] -> {matched['score_level']} points"
    )


def calculate_score(
    kpi_type: str,
    actual: float,
    target: Optional[float],
    scoring_scale: Optional[List[Dict[str, Any]]] = None,
    cap: Optional[float] = None
) -> ScoreResult:
    cap = settings.workflow.max_overachieve_cap if cap is None else cap
    if kpi_type == KpiType.QUANT_LOWER_BETTER.value:
        return score_lower_better(actual, target, cap)
    if kpi_type == KpiType.BOOLEAN.value:
        return score_boolean(actual)
    if kpi_type == KpiType.MILESTONE.value and scoring_scale:
        return score_milestone(actual, scoring_scale)
    return score_higher_better(actual, target, cap)


def validate_milestone_scale(scale: List[Dict[str, Any]]) -> List[str]:
    errors = []
    if not scale:
        return ["Scale must have at least 1 entry"]
    if len(scale) > 10:
        errors.append("Scale cannot have more than 10 entries")
    for index, entry in enumerate(scale, start=1):
        try:
            float(entry["from"])
            float(entry["to"])
        except (KeyError, TypeError, ValueError):
            errors.append(f"Scale entry {index}: from/to must be numbers")
            continue
        level = entry.get("score_level")
        if not isinstance(level, (int, float)) or level < 0:
            errors.append(f"Scale entry {index}: score_level must be a non-negative number")
    return errors
