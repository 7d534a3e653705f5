from datetime import date, timedelta

from fastapi import status

from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.notification import Notification


def _payload(**overrides):
    today = date.today()
    payload = {
        "name": "H1 Goals",
        "type": "SEMI_ANNUAL",
        "period_start": today.isoformat(),
        "period_end": (today + timedelta(days=180)).isoformat(),
    }
    payload.update(overrides)
    return payload


def test_create_cycle_is_admin_only(client, staff, admin_user, auth_headers):
    assert client.post("/api/cycles/", json=_payload(), headers=auth_headers(staff)).status_code == 403

    response = client.post("/api/cycles/", json=_payload(settings={"require_evidence": True}),
                           headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()["data"]
    assert data["status"] == "DRAFT"
    assert data["effective_settings"]["require_evidence"] is True
    assert data["effective_settings"]["total_weight_must_equal"] == 100


def test_cycle_period_must_be_ordered(client, admin_user, auth_headers):
    today = date.today().isoformat()
    response = client.post("/api/cycles/", json=_payload(period_end=today, period_start=today),
                           headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_open_notifies_audience(client, db_session, admin_user, staff, line_manager, manager, auth_headers):
    cycle_id = client.post("/api/cycles/", json=_payload(target_audience={"roles": ["STAFF"]}),
                           headers=auth_headers(admin_user)).json()["data"]["id"]

    response = client.post(f"/api/cycles/{cycle_id}/actions", json={"action": "open"},
                           headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert data["cycle"]["status"] == "ACTIVE"
    assert data["notified"] == 1

    db_session.expire_all()
    opened = db_session.query(Notification).filter(Notification.type == "CYCLE_OPENED").one()
    assert opened.user_id == staff.id
    assert "H1 Goals" in opened.message

    current = client.get("/api/cycles/current", headers=auth_headers(staff)).json()
    assert current["data"]["id"] == cycle_id


def test_only_one_active_cycle(client, admin_user, active_cycle, auth_headers):
    cycle_id = client.post("/api/cycles/", json=_payload(), headers=auth_headers(admin_user)).json()["data"]["id"]
    response = client.post(f"/api/cycles/{cycle_id}/actions", json={"action": "open"},
                           headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["errors"][0]["code"] == "INVALID_STATE"


def test_lifecycle_order(client, admin_user, active_cycle, auth_headers):
    url = f"/api/cycles/{active_cycle.id}/actions"
    headers = auth_headers(admin_user)
    assert client.post(url, json={"action": "archive"}, headers=headers).status_code == 400
    assert client.post(url, json={"action": "close"}, headers=headers).json()["data"]["cycle"]["status"] == "CLOSED"
    assert client.post(url, json={"action": "archive"}, headers=headers).json()["data"]["cycle"]["status"] == "ARCHIVED"
    assert client.post(url, json={"action": "reopen"}, headers=headers).status_code == 422


def test_no_current_cycle(client, staff, auth_headers):
    body = client.get("/api/cycles/current", headers=auth_headers(staff)).json()
    assert body["data"] is None
    assert body["message"] == "No active cycle"


def test_closed_cycle_rejects_kpis(client, db_session, staff, active_cycle, make_kpi, auth_headers):
    kpi = make_kpi()
    active_cycle.status = "CLOSED"
    db_session.commit()

    response = client.post("/api/kpi/", json={"cycle_id": active_cycle.id, "title": "Late", "weight": 10},
                           headers=auth_headers(staff))
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = client.post(f"/api/kpi/{kpi.id}/submit", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "no longer accepts submissions" in response.json()["errors"][0]["msg"]


def test_lock_goals_for_cycle(client, db_session, admin_user, make_kpi, active_cycle, auth_headers):
    approved = make_kpi("Approved", status=KpiStatus.APPROVED)
    draft = make_kpi("Draft")

    response = client.post(f"/api/cycles/{active_cycle.id}/actions", json={"action": "lock_goals"},
                           headers=auth_headers(admin_user))
    assert response.json()["data"]["locked"] == 1

    db_session.expire_all()
    assert db_session.get(KpiDefinition, approved.id).status == "LOCKED_GOALS"
    assert db_session.get(KpiDefinition, draft.id).status == "DRAFT"


def test_only_draft_cycles_are_edited_or_deleted(client, admin_user, active_cycle, auth_headers):
    headers = auth_headers(admin_user)
    assert client.patch(f"/api/cycles/{active_cycle.id}", json={"name": "New"}, headers=headers).status_code == 400
    assert client.delete(f"/api/cycles/{active_cycle.id}", headers=headers).status_code == 400

    cycle_id = client.post("/api/cycles/", json=_payload(), headers=headers).json()["data"]["id"]
    response = client.patch(f"/api/cycles/{cycle_id}", json={"name": "Renamed"}, headers=headers)
    assert response.json()["data"]["name"] == "Renamed"
    assert client.delete(f"/api/cycles/{cycle_id}", headers=headers).status_code == 200
