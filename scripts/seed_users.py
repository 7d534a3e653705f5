"""
Seed a demo hierarchy: staff -> line manager -> manager, plus an admin.

    python scripts/seed_users.py
"""
from kpi_portal.core.security import get_password_hash
from kpi_portal.database import SessionLocal, init_db
from kpi_portal.models.org_unit import OrgUnit, OrgUnitType
from kpi_portal.models.user import User, UserRole, UserStatus

init_db()
db = SessionLocal()


def get_or_create_unit(name, unit_type, parent=None):
    unit = db.query(OrgUnit).filter(OrgUnit.name == name).first()
    if unit is None:
        unit = OrgUnit(name=name, type=unit_type.value, parent_id=parent.id if parent else None)
        db.add(unit)
        db.commit()
        db.refresh(unit)
    return unit


def create_user(email, password, role, full_name, manager=None, org_unit=None):
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        print(f"User {email} already exists. Skipping.")
        return existing_user

    user = User(
        email=email,
        full_name=full_name,
        hashed_password=get_password_hash(password),
        role=role,
        status=UserStatus.ACTIVE.value,
        manager_id=manager.id if manager else None,
        org_unit_id=org_unit.id if org_unit else None,
        department=org_unit.name if org_unit else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    print(f"Created {role.value} -> {email}")
    return user


company = get_or_create_unit("Alpha Corp", OrgUnitType.COMPANY)
sales = get_or_create_unit("Sales", OrgUnitType.DEPARTMENT, company)

create_user("admin@example.com", "Admin123!", UserRole.ADMIN, "System Administrator")
manager = create_user("manager@example.com", "Manager123!", UserRole.MANAGER, "Mai Manager", org_unit=sales)
line_manager = create_user("linemanager@example.com", "LineManager123!", UserRole.LINE_MANAGER, "Linh Lead",
                           manager=manager, org_unit=sales)
create_user("staff@example.com", "Staff123!", UserRole.STAFF, "Sam Staff", manager=line_manager, org_unit=sales)

db.close()
