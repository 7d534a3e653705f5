from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.approval import ApprovalEntityType, ApprovalDecision
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user, require_admin
from kpi_portal.routers.responses import respond, raise_for_result
from kpi_portal.routers.workflow_deps import get_engine, pending_level
from kpi_portal.schemas.approval import ApprovalResponse, WorkflowState
from kpi_portal.schemas.kpi import KpiCreate, KpiUpdate, KpiResponse, DecisionComment, RejectComment
from kpi_portal.services.kpi_service import KpiService
from kpi_portal.services.workflow import WorkflowEngine

router = APIRouter(prefix="/kpi", tags=["kpi"])

KPI = ApprovalEntityType.KPI.value


def _visible(db: Session, kpi_id: int, user: User):
    return raise_for_result(KpiService(db).get_visible(kpi_id, user)).data


@router.get("/")
def list_kpis(
    cycle_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Staff see their own KPIs; approvers and admins can filter by owner."""
    kpis = KpiService(db).list_kpis(current_user, cycle_id=cycle_id, user_id=user_id, status=status)
    return ApiResponse.ok([KpiResponse.model_validate(k) for k in kpis])


@router.get("/{kpi_id}")
def get_kpi(kpi_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return ApiResponse.ok(KpiResponse.model_validate(_visible(db, kpi_id, current_user)))


@router.post("/", status_code=201)
def create_kpi(data: KpiCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    result = KpiService(db).create_kpi(data, current_user)
    return respond(result, KpiResponse.model_validate(result.data) if result else None)


@router.patch("/{kpi_id}")
def update_kpi(kpi_id: int, data: KpiUpdate, db: Session = Depends(get_db),
               current_user: User = Depends(get_current_user)):
    result = KpiService(db).update_kpi(kpi_id, data, current_user)
    return respond(result, KpiResponse.model_validate(result.data) if result else None)


@router.delete("/{kpi_id}")
def delete_kpi(kpi_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return respond(KpiService(db).delete_kpi(kpi_id, current_user))


@router.post("/{kpi_id}/archive")
def archive_kpi(kpi_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    result = KpiService(db).archive_kpi(kpi_id, current_user)
    return respond(result, KpiResponse.model_validate(result.data) if result else None)


@router.post("/{kpi_id}/submit")
def submit_kpi(kpi_id: int, engine: WorkflowEngine = Depends(get_engine),
               current_user: User = Depends(get_current_user)):
    return respond(engine.submit_for_approval(KPI, kpi_id, current_user))


@router.post("/{kpi_id}/approve")
def approve_kpi(kpi_id: int, body: Optional[DecisionComment] = None,
                engine: WorkflowEngine = Depends(get_engine), current_user: User = Depends(get_current_user)):
    level = pending_level(engine, KPI, kpi_id)
    comment = body.comment if body else None
    return respond(engine.process_approval(KPI, kpi_id, level, ApprovalDecision.APPROVE, comment, current_user))


@router.post("/{kpi_id}/reject")
def reject_kpi(kpi_id: int, body: RejectComment,
               engine: WorkflowEngine = Depends(get_engine), current_user: User = Depends(get_current_user)):
    level = pending_level(engine, KPI, kpi_id)
    return respond(engine.process_approval(KPI, kpi_id, level, ApprovalDecision.REJECT, body.comment, current_user))


@router.post("/{kpi_id}/lock")
def lock_kpi(kpi_id: int, engine: WorkflowEngine = Depends(get_engine), admin: User = Depends(require_admin())):
    return respond(engine.lock_goals(kpi_id))


@router.get("/{kpi_id}/approvals")
def kpi_approvals(kpi_id: int, db: Session = Depends(get_db), engine: WorkflowEngine = Depends(get_engine),
                  current_user: User = Depends(get_current_user)):
    _visible(db, kpi_id, current_user)
    history = engine.approval_history(KPI, kpi_id)
    return ApiResponse.ok([ApprovalResponse.model_validate(a) for a in history])


@router.get("/{kpi_id}/workflow")
def kpi_workflow(kpi_id: int, db: Session = Depends(get_db), engine: WorkflowEngine = Depends(get_engine),
                 current_user: User = Depends(get_current_user)):
    _visible(db, kpi_id, current_user)
    return ApiResponse.ok(WorkflowState(**engine.workflow_state(KPI, kpi_id)))
