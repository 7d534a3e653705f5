import pytest
import os
from datetime import date, timedelta

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENABLE_ESCALATION_JOB"] = "false"
os.environ["BOOTSTRAP_ADMIN_EMAIL"] = ""
os.environ["BOOTSTRAP_ADMIN_PASSWORD"] = ""

import kpi_portal.models  # noqa: F401,E402
from kpi_portal.database import Base, engine, SessionLocal  # noqa: E402
from kpi_portal.main import app  # noqa: E402
from kpi_portal.core.security import get_password_hash, create_access_token  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

PASSWORD = "Password123!"
# bcrypt is slow; every fixture user shares one hash
HASHED_PASSWORD = get_password_hash(PASSWORD)


@pytest.fixture(scope="function")
def db_session():
    """
    Fresh schema for each test. The app and the fixtures share the in-memory
    database through the engine's single pooled connection.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def make_user(db_session):
    """Factory for users in the approval chain."""
    from kpi_portal.models.user import User, UserRole, UserStatus

    def _make_user(email, role=UserRole.STAFF, manager=None, full_name=None, status=UserStatus.ACTIVE):
        user = User(
            email=email,
            hashed_password=HASHED_PASSWORD,
            full_name=full_name or email.split("@")[0].title(),
            role=role,
            status=status.value,
            manager_id=manager.id if manager else None,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user


@pytest.fixture(scope="function")
def manager(make_user):
    from kpi_portal.models.user import UserRole
    return make_user("manager@alphacorp.com", UserRole.MANAGER, full_name="Mona Manager")


@pytest.fixture(scope="function")
def line_manager(make_user, manager):
    from kpi_portal.models.user import UserRole
    return make_user("linemanager@alphacorp.com", UserRole.LINE_MANAGER, manager=manager, full_name="Luis Line")


@pytest.fixture(scope="function")
def staff(make_user, line_manager):
    from kpi_portal.models.user import UserRole
    return make_user("staff@alphacorp.com", UserRole.STAFF, manager=line_manager, full_name="Sam Staff")


@pytest.fixture(scope="function")
def admin_user(make_user):
    from kpi_portal.models.user import UserRole
    return make_user("admin@alphacorp.com", UserRole.ADMIN, full_name="System Admin")


@pytest.fixture(scope="function")
def active_cycle(db_session):
    from kpi_portal.models.cycle import Cycle, CycleStatus
    today = date.today()
    cycle = Cycle(
        name="FY Goals",
        type="YEARLY",
        period_start=today - timedelta(days=30),
        period_end=today + timedelta(days=60),
        status=CycleStatus.ACTIVE.value,
    )
    db_session.add(cycle)
    db_session.commit()
    db_session.refresh(cycle)
    return cycle


@pytest.fixture(scope="function")
def make_kpi(db_session, staff, active_cycle):
    """Factory for KPIs; defaults to a DRAFT owned by ``staff`` in the active cycle."""
    from kpi_portal.models.kpi import KpiDefinition, KpiStatus, KpiType

    def _make_kpi(title="Revenue", weight=100, target=100, unit="USD", owner=None, cycle=None,
                  type=KpiType.QUANT_HIGHER_BETTER, status=KpiStatus.DRAFT, scoring_scale=None):
        kpi = KpiDefinition(
            cycle_id=(cycle or active_cycle).id,
            user_id=(owner or staff).id,
            title=title,
            type=type.value,
            target=target,
            unit=unit,
            weight=weight,
            scoring_scale=scoring_scale,
            status=status.value,
        )
        db_session.add(kpi)
        db_session.commit()
        db_session.refresh(kpi)
        return kpi
    return _make_kpi


@pytest.fixture(scope="function")
def workflow(db_session):
    """Workflow engine on the test session; follow-up tasks wait for ``run_pending``."""
    from kpi_portal.services.workflow import build_engine
    return build_engine(db_session)


@pytest.fixture(scope="function")
def get_token():
    """Helper fixture to create access tokens."""
    def _get_token(user):
        return create_access_token(data={
            "sub": user.email,
            "role": user.role.value,
            "user_id": user.id,
        })
    return _get_token


@pytest.fixture(scope="function")
def auth_headers(get_token):
    def _auth_headers(user):
        return {"Authorization": f"Bearer {get_token(user)}"}
    return _auth_headers


@pytest.fixture(scope="function")
def client(db_session):
    """TestClient on the app; requests open their own sessions on the shared test database."""
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
