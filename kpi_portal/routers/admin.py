from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kpi_portal.core.exceptions import NotFoundError
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.audit_log import AuditLog
from kpi_portal.models.user import User, UserRole
from kpi_portal.routers.auth_deps import require_role
from kpi_portal.routers.responses import respond
from kpi_portal.routers.workflow_deps import get_engine
from kpi_portal.schemas.admin import (
    ReturnToStaffRequest, ProxyDecisionRequest, ReassignApproverRequest, IssueChangeRequestRequest,
    ProxyActionResponse, AuditLogResponse,
)
from kpi_portal.services.admin_proxy import AdminProxyService
from kpi_portal.services.workflow import WorkflowEngine

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_role([UserRole.ADMIN]))]
)

admin_user = require_role([UserRole.ADMIN])


def get_proxy(engine: WorkflowEngine = Depends(get_engine)) -> AdminProxyService:
    return AdminProxyService(engine)


# ---- Proxy operations ----

@router.post("/proxy/return-to-staff")
def return_to_staff(body: ReturnToStaffRequest, proxy: AdminProxyService = Depends(get_proxy),
                    admin: User = Depends(admin_user)):
    return respond(proxy.return_to_staff(body.entity_type.value, body.entity_id, body.reason, body.comment, admin))


@router.post("/proxy/approve")
def approve_as_manager(body: ProxyDecisionRequest, proxy: AdminProxyService = Depends(get_proxy),
                       admin: User = Depends(admin_user)):
    return respond(proxy.approve_as_manager(body.entity_type.value, body.entity_id, body.level,
                                            body.reason, body.comment, admin))


@router.post("/proxy/reject")
def reject_as_manager(body: ProxyDecisionRequest, proxy: AdminProxyService = Depends(get_proxy),
                      admin: User = Depends(admin_user)):
    return respond(proxy.reject_as_manager(body.entity_type.value, body.entity_id, body.level,
                                           body.reason, body.comment, admin))


@router.post("/proxy/reassign")
def reassign_approver(body: ReassignApproverRequest, proxy: AdminProxyService = Depends(get_proxy),
                      admin: User = Depends(admin_user)):
    return respond(proxy.reassign_approver(body.entity_type.value, body.entity_id, body.level,
                                           body.new_approver_id, body.reason, admin))


@router.post("/proxy/change-request")
def issue_change_request(body: IssueChangeRequestRequest, proxy: AdminProxyService = Depends(get_proxy),
                         admin: User = Depends(admin_user)):
    changes = [c.model_dump(include={"field", "new_value"}) for c in body.changes]
    return respond(proxy.issue_change_request(body.entity_type.value, body.entity_id, body.reason, changes,
                                              body.comment, admin))


# ---- History ----

@router.get("/proxy/actions")
def proxy_actions(
    action_type: Optional[str] = None,
    performed_by: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    skip: int = Query(0, ge=0),
    proxy: AdminProxyService = Depends(get_proxy)
):
    actions = proxy.proxy_actions(action_type, performed_by, entity_type, entity_id, limit, skip)
    return ApiResponse.ok([ProxyActionResponse.model_validate(a) for a in actions])


@router.get("/proxy/statistics")
def proxy_statistics(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    proxy: AdminProxyService = Depends(get_proxy)
):
    return ApiResponse.ok(proxy.statistics(date_from, date_to))


@router.get("/audit-logs")
def get_audit_logs(
    db: Session = Depends(get_db),
    entity_type: Optional[str] = Query(None, description="Filter by entity type (e.g. 'KPI')"),
    entity_id: Optional[int] = None,
    action: Optional[str] = Query(None, description="Filter by action name"),
    user_id: Optional[int] = Query(None, description="Filter by user ID"),
    limit: int = 100,
    skip: int = 0
):
    """
    Get audit logs. READ-ONLY.
    """
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    logs = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(skip).limit(limit).all()
    return ApiResponse.ok([AuditLogResponse.model_validate(log) for log in logs])


@router.get("/audit-logs/{log_id}")
def get_audit_log(log_id: int, db: Session = Depends(get_db)):
    log = db.get(AuditLog, log_id)
    if log is None:
        raise NotFoundError("Audit log not found")
    return ApiResponse.ok(AuditLogResponse.model_validate(log))
