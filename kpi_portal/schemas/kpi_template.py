from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

from kpi_portal.models.kpi import KpiType
from kpi_portal.models.kpi_template import TemplateStatus


class TemplateField(BaseModel):
    title: str = Field(..., min_length=1)
    type: KpiType = KpiType.QUANT_HIGHER_BETTER
    unit: Optional[str] = None
    description: Optional[str] = None
    target: Optional[float] = None
    weight: float = Field(0, ge=0, le=100)
    data_source: Optional[str] = None


class KpiTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    department: Optional[str] = None
    description: Optional[str] = None
    kpi_fields: List[TemplateField] = Field(..., min_length=1)
    is_active: bool = True


class KpiTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    department: Optional[str] = None
    description: Optional[str] = None
    kpi_fields: Optional[List[TemplateField]] = None
    is_active: Optional[bool] = None


class CloneTemplateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    department: Optional[str] = None
    description: Optional[str] = None


class TemplateReviewRequest(BaseModel):
    comment: Optional[str] = None


class TemplateRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ApplyTemplateRequest(BaseModel):
    cycle_id: Optional[int] = None
    user_id: Optional[int] = None


class KpiTemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    department: Optional[str] = None
    description: Optional[str] = None
    kpi_fields: List[TemplateField]
    is_active: bool
    status: TemplateStatus
    submitted_by: Optional[int] = None
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_comment: Optional[str] = None
    cloned_from: Optional[int] = None
    usage_count: int = 0
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class TemplateStatistics(BaseModel):
    total: int
    inactive: int
    draft: int
    pending: int
    approved: int
    rejected: int
    total_usage: int
