from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

from kpi_portal.models.kpi import KpiType


class ScaleEntry(BaseModel):
    """One MILESTONE range: an actual within [from, to] earns ``score_level`` percent."""
    model_config = ConfigDict(populate_by_name=True)

    from_: float = Field(..., alias="from")
    to: float
    score_level: float = Field(..., ge=0)

    def to_json(self) -> dict:
        return {"from": self.from_, "to": self.to, "score_level": self.score_level}


class KpiCreate(BaseModel):
    cycle_id: int
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: KpiType = KpiType.QUANT_HIGHER_BETTER
    target: Optional[float] = None
    unit: Optional[str] = None
    weight: float = Field(..., ge=0, le=100)
    data_source: Optional[str] = None
    formula: Optional[str] = None
    scoring_scale: Optional[List[ScaleEntry]] = None
    org_unit_id: Optional[int] = None


class KpiUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[KpiType] = None
    target: Optional[float] = None
    unit: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0, le=100)
    data_source: Optional[str] = None
    formula: Optional[str] = None
    scoring_scale: Optional[List[ScaleEntry]] = None


class DecisionComment(BaseModel):
    comment: Optional[str] = None


class RejectComment(BaseModel):
    comment: str = Field(..., min_length=1)


class KpiResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cycle_id: int
    user_id: int
    org_unit_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    type: str
    target: Optional[float] = None
    unit: Optional[str] = None
    weight: float
    data_source: Optional[str] = None
    formula: Optional[str] = None
    scoring_scale: Optional[list] = None
    status: str
    created_from_template_id: Optional[int] = None
    rejection_reason: Optional[str] = None
    admin_note: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    approved_by_level1: Optional[int] = None
    approved_at_level1: Optional[datetime] = None
    approved_by_level2: Optional[int] = None
    approved_at_level2: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
