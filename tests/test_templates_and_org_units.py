from fastapi import status

TEMPLATE = {
    "name": "Sales pack",
    "department": "Sales",
    "kpi_fields": [
        {"title": "Revenue", "unit": "USD", "target": 1000, "weight": 70},
        {"title": "New logos", "unit": "count", "target": 5, "weight": 30},
    ],
}


def test_apply_template_to_current_cycle(client, admin_user, staff, active_cycle, auth_headers):
    template_id = client.post("/api/kpi-templates/", json=TEMPLATE,
                              headers=auth_headers(admin_user)).json()["data"]["id"]

    response = client.post(f"/api/kpi-templates/{template_id}/apply", json={}, headers=auth_headers(staff))
    assert response.status_code == status.HTTP_201_CREATED
    created = response.json()["data"]
    assert [k["title"] for k in created] == ["Revenue", "New logos"]
    assert all(k["status"] == "DRAFT" and k["cycle_id"] == active_cycle.id for k in created)
    assert created[0]["created_from_template_id"] == template_id

    # The seeded set already sums to 100
    response = client.post(f"/api/kpi/{created[0]['id']}/submit", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK


def test_apply_template_for_someone_else_needs_admin(client, admin_user, staff, line_manager, active_cycle,
                                                     auth_headers):
    template_id = client.post("/api/kpi-templates/", json=TEMPLATE,
                              headers=auth_headers(admin_user)).json()["data"]["id"]
    response = client.post(f"/api/kpi-templates/{template_id}/apply", json={"user_id": staff.id},
                           headers=auth_headers(line_manager))
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.post(f"/api/kpi-templates/{template_id}/apply", json={"user_id": staff.id},
                           headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_201_CREATED
    assert {k["user_id"] for k in response.json()["data"]} == {staff.id}


def test_apply_without_active_cycle(client, admin_user, staff, auth_headers):
    template_id = client.post("/api/kpi-templates/", json=TEMPLATE,
                              headers=auth_headers(admin_user)).json()["data"]["id"]
    response = client.post(f"/api/kpi-templates/{template_id}/apply", json={}, headers=auth_headers(staff))
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_deleted_template_is_hidden(client, admin_user, staff, auth_headers):
    headers = auth_headers(admin_user)
    template_id = client.post("/api/kpi-templates/", json=TEMPLATE, headers=headers).json()["data"]["id"]
    assert client.delete(f"/api/kpi-templates/{template_id}", headers=headers).status_code == 200

    listed = client.get("/api/kpi-templates/", headers=auth_headers(staff)).json()["data"]
    assert listed == []
    listed = client.get("/api/kpi-templates/", params={"include_inactive": True}, headers=headers).json()["data"]
    assert listed[0]["is_active"] is False


def test_org_unit_hierarchy(client, admin_user, auth_headers):
    headers = auth_headers(admin_user)
    company = client.post("/api/org-units/", json={"name": "Alpha Corp", "type": "COMPANY"},
                          headers=headers).json()["data"]
    sales = client.post("/api/org-units/", json={"name": "Sales", "parent_id": company["id"]},
                        headers=headers).json()["data"]
    assert sales["full_path"] == "Alpha Corp > Sales"

    response = client.patch(f"/api/org-units/{company['id']}", json={"parent_id": sales["id"]}, headers=headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = client.delete(f"/api/org-units/{company['id']}", headers=headers)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["errors"][0]["code"] == "ORG_UNIT_IN_USE"

    assert client.delete(f"/api/org-units/{sales['id']}", headers=headers).status_code == 200


def test_manager_template_goes_through_review(client, db_session, admin_user, line_manager, staff, active_cycle,
                                              auth_headers):
    from kpi_portal.models.notification import Notification

    author = auth_headers(line_manager)
    created = client.post("/api/kpi-templates/", json=TEMPLATE, headers=author).json()["data"]
    assert created["status"] == "DRAFT"
    template_id = created["id"]

    # Unreviewed templates are invisible to others and cannot seed KPIs
    assert client.get("/api/kpi-templates/", headers=auth_headers(staff)).json()["data"] == []
    response = client.post(f"/api/kpi-templates/{template_id}/apply", json={}, headers=author)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["errors"][0]["code"] == "INVALID_STATE"

    response = client.post(f"/api/kpi-templates/{template_id}/submit", headers=author)
    assert response.json()["data"]["status"] == "PENDING_REVIEW"
    assert db_session.query(Notification).filter(Notification.user_id == admin_user.id).count() == 1
    assert client.patch(f"/api/kpi-templates/{template_id}", json={"name": "Renamed"},
                        headers=author).status_code == status.HTTP_400_BAD_REQUEST

    assert client.post(f"/api/kpi-templates/{template_id}/approve",
                       headers=author).status_code == status.HTTP_403_FORBIDDEN
    response = client.post(f"/api/kpi-templates/{template_id}/approve", json={"comment": "Good pack"},
                           headers=auth_headers(admin_user))
    assert response.status_code == status.HTTP_200_OK
    approved = response.json()["data"]
    assert approved["status"] == "APPROVED"
    assert approved["reviewed_by"] == admin_user.id
    assert approved["review_comment"] == "Good pack"

    response = client.post(f"/api/kpi-templates/{template_id}/apply", json={}, headers=auth_headers(staff))
    assert response.status_code == status.HTTP_201_CREATED
    assert client.get(f"/api/kpi-templates/{template_id}", headers=author).json()["data"]["usage_count"] == 1


def test_rejected_template_can_be_resubmitted(client, admin_user, line_manager, auth_headers):
    author = auth_headers(line_manager)
    template_id = client.post("/api/kpi-templates/", json=TEMPLATE, headers=author).json()["data"]["id"]
    client.post(f"/api/kpi-templates/{template_id}/submit", headers=author)

    admin = auth_headers(admin_user)
    response = client.post(f"/api/kpi-templates/{template_id}/reject", json={"reason": "  "}, headers=admin)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    response = client.post(f"/api/kpi-templates/{template_id}/reject", json={"reason": "Weights look off"},
                           headers=admin)
    assert response.json()["data"]["status"] == "REJECTED"
    assert response.json()["data"]["review_comment"] == "Weights look off"

    # Rejected templates are editable again and go back into review
    assert client.patch(f"/api/kpi-templates/{template_id}", json={"name": "Sales pack v2"},
                        headers=author).status_code == status.HTTP_200_OK
    response = client.post(f"/api/kpi-templates/{template_id}/submit", headers=author)
    assert response.json()["data"]["status"] == "PENDING_REVIEW"

    response = client.post(f"/api/kpi-templates/{template_id}/submit", headers=author)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_clone_template(client, admin_user, line_manager, auth_headers):
    source = client.post("/api/kpi-templates/", json=TEMPLATE, headers=auth_headers(admin_user)).json()["data"]

    response = client.post(f"/api/kpi-templates/{source['id']}/clone", headers=auth_headers(line_manager))
    assert response.status_code == status.HTTP_201_CREATED
    clone = response.json()["data"]
    assert clone["name"] == "Sales pack (Copy)"
    assert clone["cloned_from"] == source["id"]
    assert clone["status"] == "DRAFT"
    assert clone["created_by"] == line_manager.id
    assert [f["title"] for f in clone["kpi_fields"]] == ["Revenue", "New logos"]

    response = client.post(f"/api/kpi-templates/{source['id']}/clone", json={"name": "Ops pack", "department": "Ops"},
                           headers=auth_headers(admin_user))
    assert response.json()["data"]["name"] == "Ops pack"
    assert response.json()["data"]["status"] == "APPROVED"


def test_template_statistics(client, admin_user, line_manager, staff, active_cycle, auth_headers):
    admin = auth_headers(admin_user)
    published = client.post("/api/kpi-templates/", json=TEMPLATE, headers=admin).json()["data"]["id"]
    retired = client.post("/api/kpi-templates/", json=TEMPLATE, headers=admin).json()["data"]["id"]
    client.delete(f"/api/kpi-templates/{retired}", headers=admin)
    pending = client.post("/api/kpi-templates/", json=TEMPLATE,
                          headers=auth_headers(line_manager)).json()["data"]["id"]
    client.post(f"/api/kpi-templates/{pending}/submit", headers=auth_headers(line_manager))
    client.post(f"/api/kpi-templates/{published}/apply", json={}, headers=auth_headers(staff))

    response = client.get("/api/kpi-templates/statistics", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"] == {
        "total": 2, "inactive": 1, "draft": 0, "pending": 1, "approved": 1, "rejected": 0, "total_usage": 1,
    }
