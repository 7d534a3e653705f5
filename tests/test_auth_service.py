from datetime import timedelta

import pytest

from kpi_portal.core import security
from kpi_portal.models.user import User, UserRole


def test_password_hashing():
    """Test that password hashing and verification works correctly."""
    password = "MySecurePassword123!"
    hashed = security.get_password_hash(password)
    assert hashed != password
    assert security.verify_password(password, hashed)
    assert not security.verify_password("WrongPassword", hashed)


def test_verify_password_rejects_unknown_hash():
    assert not security.verify_password("anything", "not-a-bcrypt-hash")
    assert not security.verify_password("anything", "")


def test_token_round_trip():
    token = security.create_access_token({"sub": "someone@alphacorp.com", "role": "STAFF", "user_id": 7})
    payload = security.decode_access_token(token)
    assert payload["sub"] == "someone@alphacorp.com"
    assert payload["user_id"] == 7
    assert payload["type"] == "access"


def test_expired_token_is_flagged():
    token = security.create_access_token({"sub": "someone@alphacorp.com"}, expires_delta=timedelta(seconds=-5))
    assert security.decode_access_token(token) == {"error": "TOKEN_EXPIRED"}


def test_tampered_token_is_rejected():
    token = security.create_access_token({"sub": "someone@alphacorp.com"})
    assert security.decode_access_token(token[:-2] + "xx") is None


def test_create_user(db_session):
    """Test creating a new user directly through the model."""
    email = "newuser@alphacorp.com"
    password = "Password123!"

    user = User(
        email=email,
        hashed_password=security.get_password_hash(password),
        role=UserRole.STAFF,
    )
    db_session.add(user)
    db_session.commit()

    saved_user = db_session.query(User).filter(User.email == email).first()
    assert saved_user is not None
    assert saved_user.is_active
    assert security.verify_password(password, saved_user.hashed_password)


@pytest.mark.parametrize("legacy, expected", [
    ("HR", UserRole.ADMIN),
    ("head_of_dept", UserRole.MANAGER),
    ("BOD", UserRole.MANAGER),
    ("line_manager", UserRole.LINE_MANAGER),
])
def test_legacy_roles_are_mapped(legacy, expected):
    assert UserRole.coerce(legacy) == expected


def test_unknown_role_is_rejected():
    with pytest.raises(ValueError):
        UserRole.coerce("CEO")


def test_user_cannot_manage_themselves(db_session, staff):
    with pytest.raises(ValueError):
        staff.manager_id = staff.id
