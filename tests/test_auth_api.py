from fastapi import status

from kpi_portal.models.audit_log import AuditLog
from kpi_portal.models.user import UserStatus

PASSWORD = "Password123!"


def test_login_success(client, staff):
    """Test successful login with valid credentials."""
    response = client.post("/api/auth/login", json={"email": staff.email, "password": PASSWORD})
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"
    assert data["user"]["role"] == "STAFF"
    assert data["user"]["manager_id"] == staff.manager_id


def test_login_invalid_credentials(client, db_session):
    """Test login failure with wrong password."""
    response = client.post("/api/auth/login", json={"email": "nonexistent@alphacorp.com", "password": "wrong"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Incorrect email or password"

    db_session.expire_all()
    assert db_session.query(AuditLog).filter(AuditLog.action == "failed_login").count() == 1


def test_login_inactive_user(client, make_user):
    user = make_user("gone@alphacorp.com", status=UserStatus.INACTIVE)
    response = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_get_me(client, staff, auth_headers):
    """Test retrieving current user profile with a token."""
    response = client.get("/api/auth/me", headers=auth_headers(staff))
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["success"] is True
    assert body["data"]["email"] == staff.email
    assert body["data"]["role"] == "STAFF"


def test_unauthorized_access(client):
    """Test that protected routes fail without a token."""
    response = client.get("/api/auth/me")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["success"] is False


def test_garbage_token(client, db_session):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["message"] == "Could not validate credentials"


def test_change_password(client, staff, auth_headers):
    response = client.post(
        "/api/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "BrandNewPass1"},
        headers=auth_headers(staff)
    )
    assert response.status_code == status.HTTP_200_OK

    response = client.post("/api/auth/login", json={"email": staff.email, "password": "BrandNewPass1"})
    assert response.status_code == status.HTTP_200_OK


def test_change_password_wrong_current(client, staff, auth_headers):
    response = client.post(
        "/api/auth/change-password",
        json={"current_password": "nope", "new_password": "BrandNewPass1"},
        headers=auth_headers(staff)
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_staff_cannot_create_users(client, staff, auth_headers):
    response = client.post(
        "/api/users/",
        json={"email": "x@alphacorp.com", "password": "Password123!", "role": "STAFF"},
        headers=auth_headers(staff)
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_admin_creates_user_with_legacy_role(client, admin_user, auth_headers):
    response = client.post(
        "/api/users/",
        json={"email": "hod@alphacorp.com", "password": "Password123!", "role": "HEAD_OF_DEPT"},
        headers=auth_headers(admin_user)
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["data"]["role"] == "MANAGER"

    duplicate = client.post(
        "/api/users/",
        json={"email": "hod@alphacorp.com", "password": "Password123!"},
        headers=auth_headers(admin_user)
    )
    assert duplicate.status_code == status.HTTP_409_CONFLICT


def test_line_manager_sees_only_their_team(client, staff, line_manager, make_user, auth_headers):
    outsider = make_user("outsider@alphacorp.com")
    response = client.get("/api/users/", headers=auth_headers(line_manager))
    assert response.status_code == status.HTTP_200_OK
    emails = {u["email"] for u in response.json()["data"]}
    assert staff.email in emails
    assert outsider.email not in emails

    response = client.get(f"/api/users/{outsider.id}", headers=auth_headers(line_manager))
    assert response.status_code == status.HTTP_403_FORBIDDEN
