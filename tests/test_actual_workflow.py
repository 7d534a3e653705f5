from fastapi import status

from kpi_portal.models.kpi import KpiStatus, KpiType


def _record(client, headers, kpi, value, **fields):
    payload = {"kpi_definition_id": kpi.id, "actual_value": value}
    payload.update(fields)
    return client.post("/api/actuals/", json=payload, headers=headers)


def test_record_actual_scores_it(client, staff, make_kpi, auth_headers):
    kpi = make_kpi(target=200, status=KpiStatus.LOCKED_GOALS)
    response = _record(client, auth_headers(staff), kpi, 220)
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()["data"]
    assert data["status"] == "DRAFT"
    assert data["percentage"] == 110.0
    assert data["score"] == 4
    assert data["band"] == "Excellent"


def test_update_recomputes_score(client, staff, make_kpi, auth_headers):
    kpi = make_kpi(target=10, type=KpiType.QUANT_LOWER_BETTER, status=KpiStatus.LOCKED_GOALS)
    actual_id = _record(client, auth_headers(staff), kpi, 20).json()["data"]["id"]

    response = client.patch(f"/api/actuals/{actual_id}", json={"actual_value": 8}, headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["percentage"] == 125.0
    assert response.json()["data"]["band"] == "Outstanding"


def test_actual_needs_locked_goals(client, staff, make_kpi, auth_headers):
    kpi = make_kpi(status=KpiStatus.APPROVED)
    response = _record(client, auth_headers(staff), kpi, 50)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["errors"][0]["code"] == "INVALID_STATE"


def test_one_actual_per_kpi(client, staff, make_kpi, auth_headers):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    assert _record(client, auth_headers(staff), kpi, 50).status_code == 201
    assert _record(client, auth_headers(staff), kpi, 60).status_code == 400


def test_only_owner_records(client, line_manager, make_kpi, auth_headers):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    response = _record(client, auth_headers(line_manager), kpi, 50)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_actual_two_level_approval(client, staff, line_manager, manager, make_kpi, auth_headers):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    actual_id = _record(client, auth_headers(staff), kpi, 95).json()["data"]["id"]

    response = client.post(f"/api/actuals/{actual_id}/submit", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["approver_id"] == line_manager.id

    queue = client.get("/api/approvals/queue", headers=auth_headers(line_manager)).json()["data"]
    assert queue["pending"][0]["approval"]["entity_type"] == "ACTUAL"
    assert queue["pending"][0]["entity"]["actual_value"] == 95

    assert client.post(f"/api/actuals/{actual_id}/approve", headers=auth_headers(line_manager)).status_code == 200
    response = client.post(f"/api/actuals/{actual_id}/approve", headers=auth_headers(manager))
    assert response.json()["data"]["status"] == "APPROVED"

    data = client.get(f"/api/actuals/{actual_id}", headers=auth_headers(staff)).json()["data"]
    assert data["status"] == "APPROVED"
    assert data["approved_by"] == manager.id

    response = client.patch(f"/api/actuals/{actual_id}", json={"actual_value": 1}, headers=auth_headers(staff))
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_evidence_required_by_cycle(client, db_session, staff, active_cycle, make_kpi, auth_headers):
    active_cycle.settings = {"require_evidence": True}
    db_session.commit()
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    actual_id = _record(client, auth_headers(staff), kpi, 95).json()["data"]["id"]

    response = client.post(f"/api/actuals/{actual_id}/submit", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert [e["msg"] for e in response.json()["errors"]] == ["Evidence is required for this cycle"]

    client.patch(f"/api/actuals/{actual_id}", json={"evidence_note": "CRM export"}, headers=auth_headers(staff))
    response = client.post(f"/api/actuals/{actual_id}/submit", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK


def test_actual_rejection(client, staff, line_manager, make_kpi, auth_headers):
    kpi = make_kpi(status=KpiStatus.LOCKED_GOALS)
    actual_id = _record(client, auth_headers(staff), kpi, 95).json()["data"]["id"]
    client.post(f"/api/actuals/{actual_id}/submit", headers=auth_headers(staff))

    response = client.post(f"/api/actuals/{actual_id}/reject", json={"comment": "Attach the report"},
                           headers=auth_headers(line_manager))
    assert response.json()["data"] == {"status": "DRAFT", "level": 1}

    workflow = client.get(f"/api/actuals/{actual_id}/workflow", headers=auth_headers(staff)).json()["data"]
    assert workflow["overall_status"] == "REJECTED"
    assert workflow["steps"][0]["comment"] == "Attach the report"
