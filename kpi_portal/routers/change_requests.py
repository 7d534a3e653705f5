from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.approval import ApprovalEntityType, ApprovalDecision
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user
from kpi_portal.routers.responses import respond, raise_for_result
from kpi_portal.routers.workflow_deps import get_engine, pending_level
from kpi_portal.schemas.approval import ApprovalResponse
from kpi_portal.schemas.change_request import ChangeRequestCreate, ChangeRequestResponse, ResolveRequest
from kpi_portal.schemas.kpi import DecisionComment, RejectComment
from kpi_portal.services.change_request_service import ChangeRequestService
from kpi_portal.services.workflow import WorkflowEngine

router = APIRouter(prefix="/change-requests", tags=["change-requests"])

CHANGE_REQUEST = ApprovalEntityType.CHANGE_REQUEST.value


@router.get("/")
def list_change_requests(
    status: Optional[str] = None,
    kpi_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    requests = ChangeRequestService(db).list_requests(current_user, status=status, kpi_id=kpi_id)
    return ApiResponse.ok([ChangeRequestResponse.model_validate(r) for r in requests])


@router.post("/", status_code=201)
def create_change_request(data: ChangeRequestCreate, db: Session = Depends(get_db),
                          current_user: User = Depends(get_current_user)):
    result = ChangeRequestService(db).create_request(data, current_user)
    return respond(result, ChangeRequestResponse.model_validate(result.data) if result else None)


@router.get("/{request_id}")
def get_change_request(request_id: int, db: Session = Depends(get_db), engine: WorkflowEngine = Depends(get_engine),
                       current_user: User = Depends(get_current_user)):
    change_request = raise_for_result(ChangeRequestService(db).get_visible(request_id, current_user)).data
    return ApiResponse.ok({
        "change_request": ChangeRequestResponse.model_validate(change_request),
        "approvals": [ApprovalResponse.model_validate(a)
                      for a in engine.approval_history(CHANGE_REQUEST, request_id)],
    })


@router.post("/{request_id}/submit")
def submit_change_request(request_id: int, engine: WorkflowEngine = Depends(get_engine),
                          current_user: User = Depends(get_current_user)):
    return respond(engine.submit_for_approval(CHANGE_REQUEST, request_id, current_user))


@router.post("/{request_id}/approve")
def approve_change_request(request_id: int, body: Optional[DecisionComment] = None,
                           engine: WorkflowEngine = Depends(get_engine),
                           current_user: User = Depends(get_current_user)):
    level = pending_level(engine, CHANGE_REQUEST, request_id)
    comment = body.comment if body else None
    return respond(engine.process_approval(CHANGE_REQUEST, request_id, level, ApprovalDecision.APPROVE, comment,
                                           current_user))


@router.post("/{request_id}/reject")
def reject_change_request(request_id: int, body: RejectComment, engine: WorkflowEngine = Depends(get_engine),
                          current_user: User = Depends(get_current_user)):
    level = pending_level(engine, CHANGE_REQUEST, request_id)
    return respond(engine.process_approval(CHANGE_REQUEST, request_id, level, ApprovalDecision.REJECT,
                                           body.comment, current_user))


@router.post("/{request_id}/resolve")
def resolve_change_request(request_id: int, body: ResolveRequest, db: Session = Depends(get_db),
                           current_user: User = Depends(get_current_user)):
    """Owner closes an admin-issued change request as COMPLETED or DECLINED."""
    result = ChangeRequestService(db).resolve(request_id, body, current_user)
    return respond(result, ChangeRequestResponse.model_validate(result.data) if result else None)
