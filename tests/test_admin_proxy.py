from fastapi import status

from kpi_portal.models.approval import Approval
from kpi_portal.models.audit_log import AuditLog
from kpi_portal.models.kpi import KpiDefinition
from kpi_portal.models.proxy_action import ProxyAction
from kpi_portal.models.user import UserRole
from kpi_portal.services.admin_proxy import AdminProxyService

KPI = "KPI"


def _submitted(workflow, staff, make_kpi):
    kpi = make_kpi()
    assert workflow.submit_for_approval(KPI, kpi.id, staff)
    return kpi


def test_return_to_staff(db_session, workflow, admin_user, staff, make_kpi):
    kpi = _submitted(workflow, staff, make_kpi)
    proxy = AdminProxyService(workflow)

    result = proxy.return_to_staff(KPI, kpi.id, "Wrong cycle", "Please move it", admin_user)
    assert result.success
    assert result.data == {"status": "DRAFT", "cancelled_approvals": 1, "cancelled_change_requests": 0}

    db_session.expire_all()
    kpi = db_session.get(KpiDefinition, kpi.id)
    assert kpi.status == "DRAFT"
    assert kpi.admin_note == "Please move it"
    assert db_session.query(Approval).filter(Approval.status == "CANCELLED").count() == 1
    action = db_session.query(ProxyAction).one()
    assert action.action_type == "RETURN_TO_STAFF"
    assert action.target_user_id == staff.id

    again = proxy.return_to_staff(KPI, kpi.id, "Again", None, admin_user)
    assert again.code == "INVALID_STATE"


def test_proxy_requires_admin(workflow, line_manager, staff, make_kpi):
    kpi = _submitted(workflow, staff, make_kpi)
    result = AdminProxyService(workflow).return_to_staff(KPI, kpi.id, "No", None, line_manager)
    assert result.code == "FORBIDDEN"


def test_approve_as_manager(db_session, workflow, admin_user, staff, manager, make_kpi):
    kpi = _submitted(workflow, staff, make_kpi)
    result = AdminProxyService(workflow).approve_as_manager(KPI, kpi.id, 1, "Line manager on leave", None,
                                                            admin_user)
    assert result.success, result.errors
    assert result.data["next_approver_id"] == manager.id

    db_session.expire_all()
    decided = db_session.query(Approval).filter(Approval.level == 1).one()
    assert decided.status == "APPROVED"
    assert decided.decided_by == admin_user.id
    assert decided.reassign_reason == "Admin proxy: Line manager on leave"
    assert db_session.query(Approval).filter(Approval.level == 2, Approval.status == "PENDING").count() == 1
    assert db_session.query(ProxyAction).filter(ProxyAction.action_type == "APPROVE_AS_MANAGER").count() == 1
    assert db_session.query(AuditLog).filter(AuditLog.action == "proxy_kpi_approved_level_1").count() == 1


def test_reject_as_manager_needs_comment(db_session, workflow, admin_user, staff, make_kpi):
    kpi = _submitted(workflow, staff, make_kpi)
    proxy = AdminProxyService(workflow)

    assert proxy.reject_as_manager(KPI, kpi.id, 1, "Stuck", None, admin_user).code == "VALIDATION_ERROR"

    result = proxy.reject_as_manager(KPI, kpi.id, 1, "Stuck", "Weights are off", admin_user)
    assert result.data == {"status": "DRAFT", "level": 1}
    db_session.expire_all()
    assert db_session.get(KpiDefinition, kpi.id).rejection_reason == "Weights are off"


def test_proxy_decision_at_wrong_level(workflow, admin_user, staff, make_kpi):
    kpi = _submitted(workflow, staff, make_kpi)
    result = AdminProxyService(workflow).approve_as_manager(KPI, kpi.id, 2, "Skip", None, admin_user)
    assert result.code == "NOT_FOUND"


def test_reassign_approver(db_session, workflow, admin_user, staff, line_manager, make_user, make_kpi):
    kpi = _submitted(workflow, staff, make_kpi)
    proxy = AdminProxyService(workflow)
    backup = make_user("backup@alphacorp.com", UserRole.LINE_MANAGER)
    peer = make_user("peer@alphacorp.com", UserRole.STAFF)

    result = proxy.reassign_approver(KPI, kpi.id, 1, peer.id, "Cover", admin_user)
    assert result.code == "VALIDATION_ERROR"
    assert result.errors == ["New approver must be a LINE_MANAGER or MANAGER"]

    result = proxy.reassign_approver(KPI, kpi.id, 1, line_manager.id, "Cover", admin_user)
    assert result.errors == ["Approval is already assigned to this user"]

    assert proxy.reassign_approver(KPI, kpi.id, 1, 9999, "Cover", admin_user).code == "NOT_FOUND"

    result = proxy.reassign_approver(KPI, kpi.id, 1, backup.id, "Cover", admin_user)
    assert result.success
    db_session.expire_all()
    approval = db_session.query(Approval).one()
    assert approval.approver_id == backup.id
    assert approval.reassigned_by == admin_user.id
    assert approval.status == "PENDING"

    assert workflow.process_approval(KPI, kpi.id, 1, "APPROVE", None, backup).success


def test_statistics_cover_every_action_type(workflow, admin_user, staff, make_kpi):
    proxy = AdminProxyService(workflow)
    kpi = _submitted(workflow, staff, make_kpi)
    proxy.return_to_staff(KPI, kpi.id, "Redo", None, admin_user)

    stats = proxy.statistics()
    assert stats["total"] == 1
    assert stats["by_type"] == {
        "RETURN_TO_STAFF": 1,
        "APPROVE_AS_MANAGER": 0,
        "REJECT_AS_MANAGER": 0,
        "REASSIGN_APPROVER": 0,
        "ISSUE_CHANGE_REQUEST": 0,
    }
    assert stats["by_admin"] == {str(admin_user.id): 1}


def test_admin_routes_over_http(client, admin_user, staff, line_manager, make_kpi, auth_headers):
    kpi = make_kpi()
    client.post(f"/api/kpi/{kpi.id}/submit", headers=auth_headers(staff))

    response = client.post("/api/admin/proxy/return-to-staff",
                           json={"entity_type": "KPI", "entity_id": kpi.id, "reason": "Redo"},
                           headers=auth_headers(line_manager))
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.post("/api/admin/proxy/approve",
                           json={"entity_type": "KPI", "entity_id": kpi.id, "level": 1, "reason": "Cover"},
                           headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["status"] == "WAITING_MANAGER"

    actions = client.get("/api/admin/proxy/actions", headers=auth_headers(admin_user)).json()["data"]
    assert actions[0]["action_type"] == "APPROVE_AS_MANAGER"
    assert actions[0]["previous_approver_id"] == line_manager.id
    assert actions[0]["metadata"]["approval_id"]

    logs = client.get("/api/admin/audit-logs", params={"entity_type": "KPI", "entity_id": kpi.id},
                      headers=auth_headers(admin_user)).json()["data"]
    assert {"kpi_submitted", "proxy_kpi_approved_level_1"} <= {log["action"] for log in logs}


def test_issue_change_request_over_http(client, admin_user, staff, make_kpi, auth_headers):
    kpi = make_kpi()
    response = client.post("/api/admin/proxy/change-request", json={
        "entity_type": "KPI", "entity_id": kpi.id, "reason": "Target unrealistic",
        "changes": [{"field": "target", "new_value": 80}],
    }, headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_200_OK
    request_id = response.json()["data"]["change_request_id"]

    notifications = client.get("/api/notifications/", headers=auth_headers(staff)).json()["data"]["items"]
    assert notifications[0]["type"] == "CHANGE_REQUEST"
    assert notifications[0]["link"] == f"/change-requests/{request_id}"

    response = client.post(f"/api/change-requests/{request_id}/resolve", json={"resolution": "DECLINED",
                                                                               "comment": "Target stays"},
                           headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["resolution"] == "DECLINED"
