from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from kpi_portal.models.approval import ApprovalEntityType
from kpi_portal.schemas.change_request import ChangeItem


class ReturnToStaffRequest(BaseModel):
    entity_type: ApprovalEntityType
    entity_id: int
    reason: str = Field(..., min_length=1)
    comment: Optional[str] = None


class ProxyDecisionRequest(BaseModel):
    entity_type: ApprovalEntityType
    entity_id: int
    level: int = Field(..., ge=1, le=2)
    reason: str = Field(..., min_length=1)
    comment: Optional[str] = None


class ReassignApproverRequest(BaseModel):
    entity_type: ApprovalEntityType
    entity_id: int
    level: int = Field(..., ge=1, le=2)
    new_approver_id: int
    reason: str = Field(..., min_length=1)


class IssueChangeRequestRequest(BaseModel):
    entity_type: ApprovalEntityType
    entity_id: int
    reason: str = Field(..., min_length=1)
    changes: List[ChangeItem] = []
    comment: Optional[str] = None


class ProxyActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    action_type: str
    performed_by: int
    target_user_id: Optional[int] = None
    entity_type: str
    entity_id: int
    level: Optional[int] = None
    reason: str
    comment: Optional[str] = None
    previous_approver_id: Optional[int] = None
    new_approver_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="details")
    performed_at: Optional[datetime] = None


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    entity_type: str
    entity_id: Optional[int] = None
    user_id: Optional[int] = None
    user_role: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
