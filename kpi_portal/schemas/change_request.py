from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Any, Literal
from datetime import datetime


ChangeableField = Literal["title", "description", "target", "unit", "data_source"]


class ChangeItem(BaseModel):
    field: ChangeableField
    new_value: Any = None
    old_value: Any = None


class ChangeRequestCreate(BaseModel):
    kpi_definition_id: int
    reason: str = Field(..., min_length=1)
    changes: List[ChangeItem] = Field(..., min_length=1)


class ResolveRequest(BaseModel):
    resolution: Literal["COMPLETED", "DECLINED"]
    comment: Optional[str] = None


class ChangeRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kpi_definition_id: int
    requester_id: int
    target_entity_type: str
    target_entity_id: Optional[int] = None
    origin: str
    reason: str
    changes: List[dict]
    after_values: Optional[dict] = None
    status: str
    resolution: Optional[str] = None
    resolution_comment: Optional[str] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
