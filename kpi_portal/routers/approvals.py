from fastapi import APIRouter, Depends

from kpi_portal.core.exceptions import NotFoundError, AccessDeniedError, ConflictError
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user, require_admin
from kpi_portal.routers.responses import respond
from kpi_portal.routers.workflow_deps import get_engine
from kpi_portal.schemas.approval import (
    ApprovalResponse, ApprovalDecisionRequest, DelegateRequest, ApprovalQueue, ApprovalQueueItem,
)
from kpi_portal.services.escalation import EscalationService
from kpi_portal.services.workflow import WorkflowEngine, entity_owner_id

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/queue")
def approval_queue(engine: WorkflowEngine = Depends(get_engine), current_user: User = Depends(get_current_user)):
    """Items waiting on the caller, plus what they already approved or rejected."""
    queue = engine.approval_queue(current_user)
    return ApiResponse.ok(ApprovalQueue(**{
        key: [
            ApprovalQueueItem(
                approval=ApprovalResponse.model_validate(item["approval"]),
                entity=item["entity"],
                submitter=item["submitter"],
                days_pending=item["days_pending"],
            )
            for item in items
        ]
        for key, items in queue.items()
    }))


@router.get("/{approval_id}")
def get_approval(approval_id: int, engine: WorkflowEngine = Depends(get_engine),
                 current_user: User = Depends(get_current_user)):
    approval = engine.store.get_approval(approval_id)
    if approval is None:
        raise NotFoundError("Approval not found")
    entity = engine.store.get_entity(approval.entity_type, approval.entity_id)
    owner_id = entity_owner_id(entity) if entity is not None else None
    if current_user.id not in (approval.approver_id, owner_id) and not current_user.is_admin:
        raise AccessDeniedError("You cannot view this approval")
    return ApiResponse.ok({
        "approval": ApprovalResponse.model_validate(approval),
        "entity": engine.entity_summary(approval.entity_type, entity),
    })


@router.post("/{approval_id}/decision")
def decide(approval_id: int, body: ApprovalDecisionRequest, engine: WorkflowEngine = Depends(get_engine),
           current_user: User = Depends(get_current_user)):
    approval = engine.store.get_approval(approval_id)
    if approval is None:
        raise NotFoundError("Approval not found")
    if not approval.is_pending:
        raise ConflictError("This approval has already been processed", error_code="ALREADY_PROCESSED")
    return respond(engine.process_approval(
        approval.entity_type, approval.entity_id, approval.level, body.decision, body.comment, current_user
    ))


@router.post("/{approval_id}/delegate")
def delegate(approval_id: int, body: DelegateRequest, engine: WorkflowEngine = Depends(get_engine),
             current_user: User = Depends(get_current_user)):
    return respond(engine.delegate_approval(approval_id, body.delegate_to_user_id, body.reason, current_user))


@router.post("/escalate")
def run_escalation(engine: WorkflowEngine = Depends(get_engine), admin: User = Depends(require_admin())):
    """Run the SLA sweep now instead of waiting for the periodic job."""
    summary = EscalationService(engine).run()
    return ApiResponse.ok(summary, message="Escalation sweep completed")
