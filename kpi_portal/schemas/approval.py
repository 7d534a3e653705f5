from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from kpi_portal.models.approval import ApprovalDecision


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_type: str
    entity_id: int
    level: int
    approver_id: int
    status: str
    comment: Optional[str] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[int] = None
    delegated_from: Optional[int] = None
    delegated_to: Optional[int] = None
    delegated_at: Optional[datetime] = None
    reassigned_by: Optional[int] = None
    reassigned_at: Optional[datetime] = None
    reassign_reason: Optional[str] = None
    created_at: datetime


class ApprovalDecisionRequest(BaseModel):
    decision: ApprovalDecision
    comment: Optional[str] = None


class DelegateRequest(BaseModel):
    delegate_to_user_id: int
    reason: Optional[str] = None


class SubmitterInfo(BaseModel):
    id: int
    full_name: str
    email: str
    department: Optional[str] = None


class ApprovalQueueItem(BaseModel):
    approval: ApprovalResponse
    entity: Optional[Dict[str, Any]] = None
    submitter: Optional[SubmitterInfo] = None
    days_pending: Optional[int] = None


class ApprovalQueue(BaseModel):
    pending: List[ApprovalQueueItem] = []
    approved: List[ApprovalQueueItem] = []
    rejected: List[ApprovalQueueItem] = []


class WorkflowStep(BaseModel):
    level: int
    label: str
    status: str
    approver_id: Optional[int] = None
    approver_name: Optional[str] = None
    decided_at: Optional[datetime] = None
    comment: Optional[str] = None


class WorkflowState(BaseModel):
    entity_type: str
    entity_id: int
    entity_status: str
    current_level: Optional[int] = None
    overall_status: str
    steps: List[WorkflowStep] = Field(default_factory=list)
