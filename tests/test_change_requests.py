from fastapi import status

from kpi_portal.models.change_request import ChangeRequest
from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.notification import Notification
from kpi_portal.services.admin_proxy import AdminProxyService
from kpi_portal.services.change_request_service import ChangeRequestService
from kpi_portal.schemas.change_request import ResolveRequest


def _draft(client, headers, kpi, changes=None, reason="Market shifted"):
    return client.post("/api/change-requests/", json={
        "kpi_definition_id": kpi.id,
        "reason": reason,
        "changes": changes or [{"field": "target", "new_value": 150}],
    }, headers=headers)


def test_staff_change_request_is_applied_on_final_approval(
        client, db_session, staff, line_manager, manager, make_kpi, auth_headers):
    kpi = make_kpi(target=100, status=KpiStatus.LOCKED_GOALS)

    response = _draft(client, auth_headers(staff), kpi)
    assert response.status_code == status.HTTP_201_CREATED
    created = response.json()["data"]
    assert created["status"] == "DRAFT"
    assert created["origin"] == "STAFF"
    assert created["changes"] == [{"field": "target", "old_value": 100.0, "new_value": 150}]

    request_id = created["id"]
    assert client.post(f"/api/change-requests/{request_id}/submit", headers=auth_headers(staff)).status_code == 200
    assert client.post(f"/api/change-requests/{request_id}/approve",
                       headers=auth_headers(line_manager)).status_code == 200
    response = client.post(f"/api/change-requests/{request_id}/approve", headers=auth_headers(manager))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["applied_changes"][0]["new_value"] == 150.0

    db_session.expire_all()
    kpi = db_session.get(KpiDefinition, kpi.id)
    assert kpi.target == 150
    assert kpi.status == "LOCKED_GOALS"
    change_request = db_session.get(ChangeRequest, request_id)
    assert change_request.status == "APPROVED"
    assert change_request.resolution == "APPLIED"

    detail = client.get(f"/api/change-requests/{request_id}", headers=auth_headers(staff)).json()["data"]
    assert [a["level"] for a in detail["approvals"]] == [1, 2]


def test_target_change_rescores_the_actual(db_session, workflow, staff, line_manager, manager, make_kpi):
    from kpi_portal.models.kpi_actual import KpiActual
    from kpi_portal.schemas.change_request import ChangeRequestCreate

    kpi = make_kpi(target=100, status=KpiStatus.LOCKED_GOALS)
    actual = KpiActual(kpi_definition_id=kpi.id, actual_value=90, percentage=90, score=3, band="Good")
    db_session.add(actual)
    db_session.commit()

    created = ChangeRequestService(db_session).create_request(
        ChangeRequestCreate(kpi_definition_id=kpi.id, reason="Scope cut",
                            changes=[{"field": "target", "new_value": 75}]),
        staff
    )
    assert created.success
    request_id = created.data.id
    assert workflow.submit_for_approval("CHANGE_REQUEST", request_id, staff)
    assert workflow.process_approval("CHANGE_REQUEST", request_id, 1, "APPROVE", None, line_manager)
    assert workflow.process_approval("CHANGE_REQUEST", request_id, 2, "APPROVE", None, manager)

    db_session.expire_all()
    actual = db_session.get(KpiActual, actual.id)
    assert actual.percentage == 120.0
    assert actual.band == "Outstanding"


def test_change_request_needs_locked_goals(client, staff, make_kpi, auth_headers):
    response = _draft(client, auth_headers(staff), make_kpi())
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["errors"][0]["code"] == "INVALID_STATE"


def test_unchangeable_field_is_rejected(client, staff, make_kpi, auth_headers):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    response = _draft(client, auth_headers(staff), kpi, changes=[{"field": "weight", "new_value": 10}])
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_non_positive_target_is_rejected(client, staff, make_kpi, auth_headers):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    response = _draft(client, auth_headers(staff), kpi, changes=[{"field": "target", "new_value": -5}])
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["errors"][0]["msg"] == "Target must be greater than 0"


def test_rejected_change_request_leaves_kpi_alone(db_session, client, staff, line_manager, make_kpi, auth_headers):
    kpi = make_kpi(target=100, status=KpiStatus.LOCKED_GOALS)
    request_id = _draft(client, auth_headers(staff), kpi).json()["data"]["id"]
    client.post(f"/api/change-requests/{request_id}/submit", headers=auth_headers(staff))
    response = client.post(f"/api/change-requests/{request_id}/reject", json={"comment": "Keep the target"},
                           headers=auth_headers(line_manager))
    assert response.status_code == status.HTTP_200_OK

    db_session.expire_all()
    assert db_session.get(KpiDefinition, kpi.id).target == 100
    assert db_session.get(ChangeRequest, request_id).status == "DRAFT"


def test_admin_change_request_is_resolved_by_owner(db_session, workflow, admin_user, staff, make_kpi):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    issued = AdminProxyService(workflow).issue_change_request(
        "KPI", kpi.id, "Unit is wrong", [{"field": "unit", "new_value": "EUR"}], None, admin_user
    )
    assert issued.success, issued.errors
    request_id = issued.data["change_request_id"]

    db_session.expire_all()
    change_request = db_session.get(ChangeRequest, request_id)
    assert change_request.origin == "ADMIN"
    assert change_request.status == "OPEN"
    assert change_request.changes == [{"field": "unit", "old_value": "USD", "new_value": "EUR"}]
    assert db_session.get(KpiDefinition, kpi.id).status == "DRAFT"

    # Admin-issued requests are not pushed through the approval chain
    assert workflow.submit_for_approval("CHANGE_REQUEST", request_id, staff).code == "INVALID_STATE"

    service = ChangeRequestService(db_session)
    assert service.resolve(request_id, ResolveRequest(resolution="COMPLETED"), admin_user).code == "FORBIDDEN"

    resolved = service.resolve(request_id, ResolveRequest(resolution="COMPLETED"), staff)
    assert resolved.success
    assert resolved.data.status == "RESOLVED"
    assert resolved.data.resolution_comment == "Changes have been made as requested"
    assert resolved.data.after_values["unit"] == "USD"

    again = service.resolve(request_id, ResolveRequest(resolution="DECLINED"), staff)
    assert again.code == "INVALID_STATE"

    notified = db_session.query(Notification).filter(
        Notification.user_id == admin_user.id, Notification.type == "CHANGE_REQUEST"
    ).count()
    assert notified == 1


def _submitted_change_request(workflow, db_session, staff, kpi, target=150):
    from kpi_portal.schemas.change_request import ChangeRequestCreate

    created = ChangeRequestService(db_session).create_request(
        ChangeRequestCreate(kpi_definition_id=kpi.id, reason="Market shifted",
                            changes=[{"field": "target", "new_value": target}]),
        staff
    )
    assert created.success, created.errors
    assert workflow.submit_for_approval("CHANGE_REQUEST", created.data.id, staff)
    return created.data.id


def test_return_to_staff_withdraws_open_change_requests(
        db_session, workflow, admin_user, staff, line_manager, manager, make_kpi):
    kpi = make_kpi(target=100, status=KpiStatus.LOCKED_GOALS)
    request_id = _submitted_change_request(workflow, db_session, staff, kpi)
    assert workflow.process_approval("CHANGE_REQUEST", request_id, 1, "APPROVE", None, line_manager)

    returned = AdminProxyService(workflow).return_to_staff("KPI", kpi.id, "Wrong cycle", None, admin_user)
    assert returned.success, returned.errors
    assert returned.data["cancelled_change_requests"] == 1

    db_session.expire_all()
    change_request = db_session.get(ChangeRequest, request_id)
    assert change_request.status == "CANCELLED"
    assert change_request.resolved_by == admin_user.id
    pending = workflow.store.pending_approval("CHANGE_REQUEST", request_id, 2)
    assert pending is None

    result = workflow.process_approval("CHANGE_REQUEST", request_id, 2, "APPROVE", None, manager)
    assert result.code == "NOT_FOUND"
    db_session.expire_all()
    kpi = db_session.get(KpiDefinition, kpi.id)
    assert kpi.target == 100
    assert kpi.status == "DRAFT"


def test_admin_issued_request_withdraws_staff_request(db_session, workflow, admin_user, staff, make_kpi):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    request_id = _submitted_change_request(workflow, db_session, staff, kpi)

    issued = AdminProxyService(workflow).issue_change_request(
        "KPI", kpi.id, "Unit is wrong", [{"field": "unit", "new_value": "EUR"}], None, admin_user
    )
    assert issued.success, issued.errors

    db_session.expire_all()
    assert db_session.get(ChangeRequest, request_id).status == "CANCELLED"
    assert db_session.get(ChangeRequest, issued.data["change_request_id"]).status == "OPEN"


def test_change_request_on_unlocked_kpi_is_not_applied(db_session, workflow, staff, line_manager, make_kpi):
    kpi = make_kpi(target=100, status=KpiStatus.LOCKED_GOALS)
    request_id = _submitted_change_request(workflow, db_session, staff, kpi)

    kpi.status = KpiStatus.DRAFT.value
    db_session.commit()

    result = workflow.process_approval("CHANGE_REQUEST", request_id, 1, "APPROVE", None, line_manager)
    assert result.code == "INVALID_STATE"
    db_session.expire_all()
    assert db_session.get(KpiDefinition, kpi.id).target == 100
    assert db_session.get(ChangeRequest, request_id).status == "WAITING_LINE_MGR"
