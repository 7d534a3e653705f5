from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class ActualCreate(BaseModel):
    kpi_definition_id: int
    actual_value: float
    self_comment: Optional[str] = None
    evidence_note: Optional[str] = None


class ActualUpdate(BaseModel):
    actual_value: Optional[float] = None
    self_comment: Optional[str] = None
    evidence_note: Optional[str] = None


class ActualResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kpi_definition_id: int
    user_id: Optional[int] = None
    actual_value: Optional[float] = None
    percentage: float
    score: int
    band: Optional[str] = None
    self_comment: Optional[str] = None
    evidence_note: Optional[str] = None
    status: str
    rejection_reason: Optional[str] = None
    admin_note: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
