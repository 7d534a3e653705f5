from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import date, datetime

from kpi_portal.models.cycle import CycleType
from kpi_portal.models.user import UserRole


class CycleSettings(BaseModel):
    total_weight_must_equal: float = Field(100, gt=0)
    min_kpis_per_user: int = Field(1, ge=0)
    max_kpis_per_user: int = Field(10, ge=1)
    require_evidence: bool = False
    allow_late_submission: bool = False
    closing_soon_days: int = Field(7, ge=0)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min_kpis_per_user > self.max_kpis_per_user:
            raise ValueError("min_kpis_per_user cannot exceed max_kpis_per_user")
        return self


class TargetAudience(BaseModel):
    roles: List[UserRole] = []
    org_unit_ids: List[int] = []
    user_ids: List[int] = []


class CycleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: CycleType = CycleType.YEARLY
    period_start: date
    period_end: date
    template_id: Optional[int] = None
    target_audience: Optional[TargetAudience] = None
    settings: Optional[CycleSettings] = None

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end <= self.period_start:
            raise ValueError("Period end must be after period start")
        return self


class CycleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[CycleType] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    template_id: Optional[int] = None
    target_audience: Optional[TargetAudience] = None
    settings: Optional[CycleSettings] = None


class CycleAction(BaseModel):
    action: Literal["open", "close", "archive", "lock_goals"]


class CycleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    period_start: date
    period_end: date
    status: str
    created_by: Optional[int] = None
    template_id: Optional[int] = None
    target_audience: Optional[Dict[str, Any]] = None
    effective_settings: Dict[str, Any]
    created_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
