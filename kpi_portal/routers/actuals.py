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
from kpi_portal.schemas.actual import ActualCreate, ActualUpdate, ActualResponse
from kpi_portal.schemas.approval import ApprovalResponse, WorkflowState
from kpi_portal.schemas.kpi import DecisionComment, RejectComment
from kpi_portal.services.actual_service import ActualService
from kpi_portal.services.workflow import WorkflowEngine

router = APIRouter(prefix="/actuals", tags=["actuals"])

ACTUAL = ApprovalEntityType.ACTUAL.value


@router.get("/")
def list_actuals(
    cycle_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    actuals = ActualService(db).list_actuals(current_user, cycle_id=cycle_id, status=status)
    return ApiResponse.ok([ActualResponse.model_validate(a) for a in actuals])


@router.get("/{actual_id}")
def get_actual(actual_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    actual = raise_for_result(ActualService(db).get_visible(actual_id, current_user)).data
    return ApiResponse.ok(ActualResponse.model_validate(actual))


@router.post("/", status_code=201)
def create_actual(data: ActualCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    result = ActualService(db).create_actual(data, current_user)
    return respond(result, ActualResponse.model_validate(result.data) if result else None)


@router.patch("/{actual_id}")
def update_actual(actual_id: int, data: ActualUpdate, db: Session = Depends(get_db),
                  current_user: User = Depends(get_current_user)):
    result = ActualService(db).update_actual(actual_id, data, current_user)
    return respond(result, ActualResponse.model_validate(result.data) if result else None)


@router.post("/{actual_id}/submit")
def submit_actual(actual_id: int, engine: WorkflowEngine = Depends(get_engine),
                  current_user: User = Depends(get_current_user)):
    return respond(engine.submit_for_approval(ACTUAL, actual_id, current_user))


@router.post("/{actual_id}/approve")
def approve_actual(actual_id: int, body: Optional[DecisionComment] = None,
                   engine: WorkflowEngine = Depends(get_engine), current_user: User = Depends(get_current_user)):
    level = pending_level(engine, ACTUAL, actual_id)
    comment = body.comment if body else None
    return respond(engine.process_approval(ACTUAL, actual_id, level, ApprovalDecision.APPROVE, comment, current_user))


@router.post("/{actual_id}/reject")
def reject_actual(actual_id: int, body: RejectComment,
                  engine: WorkflowEngine = Depends(get_engine), current_user: User = Depends(get_current_user)):
    level = pending_level(engine, ACTUAL, actual_id)
    return respond(engine.process_approval(ACTUAL, actual_id, level, ApprovalDecision.REJECT, body.comment,
                                           current_user))


@router.get("/{actual_id}/approvals")
def actual_approvals(actual_id: int, db: Session = Depends(get_db), engine: WorkflowEngine = Depends(get_engine),
                     current_user: User = Depends(get_current_user)):
    raise_for_result(ActualService(db).get_visible(actual_id, current_user))
    return ApiResponse.ok([ApprovalResponse.model_validate(a) for a in engine.approval_history(ACTUAL, actual_id)])


@router.get("/{actual_id}/workflow")
def actual_workflow(actual_id: int, db: Session = Depends(get_db), engine: WorkflowEngine = Depends(get_engine),
                    current_user: User = Depends(get_current_user)):
    raise_for_result(ActualService(db).get_visible(actual_id, current_user))
    return ApiResponse.ok(WorkflowState(**engine.workflow_state(ACTUAL, actual_id)))
