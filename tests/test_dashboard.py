from fastapi import status

from kpi_portal.models.kpi import KpiStatus
from kpi_portal.services.dashboard import DashboardService

KPI = "KPI"


def test_staff_dashboard(client, db_session, workflow, staff, make_kpi, auth_headers):
    kpi = make_kpi("Revenue", weight=60)
    make_kpi("Quality", weight=40)
    make_kpi("Retention", weight=0, status=KpiStatus.LOCKED_GOALS)
    assert workflow.submit_for_approval(KPI, kpi.id, staff)

    response = client.get("/api/dashboard/", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["user_role"] == "STAFF"
    assert data["kpis"]["total"] == 3
    assert data["kpis"]["pending"] == 1
    assert data["kpis"]["draft"] == 1
    assert data["kpis"]["locked"] == 1
    assert data["actuals"] == {"total": 0, "by_status": {}}
    assert data["notifications"]["unread"] == 1
    assert data["notifications"]["items"][0]["type"] == "KPI_SUBMITTED"
    assert data["active_cycle"]["name"] == "FY Goals"


def test_line_manager_dashboard(client, workflow, staff, line_manager, make_kpi, auth_headers):
    kpi = make_kpi()
    assert workflow.submit_for_approval(KPI, kpi.id, staff)

    data = client.get("/api/dashboard/", headers=auth_headers(line_manager)).json()["data"]
    assert data["team"] == {"total_members": 1, "active_members": 1}
    assert data["kpis"]["by_status"] == {"WAITING_LINE_MGR": 1}
    assert data["pending_approvals"]["count"] == 1
    item = data["pending_approvals"]["items"][0]
    assert item["entity"]["title"] == "Revenue"
    assert item["submitter"]["email"] == staff.email
    assert "notifications" not in data


def test_admin_dashboard(db_session, workflow, admin_user, staff, make_kpi, active_cycle):
    kpi = make_kpi()
    assert workflow.submit_for_approval(KPI, kpi.id, staff)

    data = DashboardService(db_session).for_user(admin_user)
    assert data["users"]["total"] == 4
    assert data["users"]["by_role"] == {"ADMIN": 1, "MANAGER": 1, "LINE_MANAGER": 1, "STAFF": 1}
    assert data["kpis"]["total"] == 1
    assert data["cycles"] == {"total": 1, "by_status": {"ACTIVE": 1}}
    assert data["pending_approvals"] == {"count": 1}
    assert data["open_change_requests"] == 0
    assert data["active_cycle"].id == active_cycle.id


def test_dashboard_cycle_filter(db_session, admin_user, make_kpi, active_cycle):
    make_kpi()
    assert DashboardService(db_session).for_user(admin_user, cycle_id=active_cycle.id + 1)["kpis"]["total"] == 0


def test_dashboard_requires_login(client):
    assert client.get("/api/dashboard/").status_code == status.HTTP_401_UNAUTHORIZED
