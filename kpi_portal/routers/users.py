from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kpi_portal.core import security
from kpi_portal.core.exceptions import ConflictError, NotFoundError, ValidationFailed, AccessDeniedError
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.org_unit import OrgUnit
from kpi_portal.models.user import User, UserRole, UserStatus
from kpi_portal.routers.auth_deps import get_current_user, require_admin
from kpi_portal.schemas.user import UserCreate, UserUpdate, UserResponse
from kpi_portal.services.audit import AuditService
from kpi_portal.services.kpi_service import visible_user_ids

router = APIRouter(prefix="/users", tags=["users"])


def _check_references(db: Session, user_id: Optional[int], manager_id: Optional[int], org_unit_id: Optional[int]):
    errors = []
    if manager_id is not None:
        if user_id is not None and manager_id == user_id:
            errors.append("A user cannot be their own manager")
        elif db.get(User, manager_id) is None:
            errors.append(f"Manager {manager_id} not found")
    if org_unit_id is not None and db.get(OrgUnit, org_unit_id) is None:
        errors.append(f"Org unit {org_unit_id} not found")
    if errors:
        raise ValidationFailed("Validation failed", errors)


@router.get("/")
def list_users(
    role: Optional[str] = None,
    status: Optional[str] = None,
    org_unit_id: Optional[int] = None,
    manager_id: Optional[int] = None,
    search: Optional[str] = Query(None, description="Match on name or email"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Admins see everyone; others see themselves and the people reporting to them."""
    query = db.query(User)
    allowed = visible_user_ids(db, current_user)
    if allowed is not None:
        query = query.filter(User.id.in_(allowed))
    if role:
        try:
            query = query.filter(User.role == UserRole.coerce(role))
        except ValueError as e:
            raise ValidationFailed("Validation failed", [str(e)])
    if status:
        query = query.filter(User.status == status)
    if org_unit_id is not None:
        query = query.filter(User.org_unit_id == org_unit_id)
    if manager_id is not None:
        query = query.filter(User.manager_id == manager_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter((User.full_name.ilike(pattern)) | (User.email.ilike(pattern)))
    users = query.order_by(User.id).all()
    return ApiResponse.ok([UserResponse.model_validate(u) for u in users])


@router.get("/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    allowed = visible_user_ids(db, current_user)
    if allowed is not None and user.id not in allowed:
        raise AccessDeniedError("You cannot view this user")
    return ApiResponse.ok(UserResponse.model_validate(user))


@router.post("/", status_code=201)
def create_user(data: UserCreate, db: Session = Depends(get_db), admin: User = Depends(require_admin())):
    if db.query(User).filter(User.email == data.email).first():
        raise ConflictError("Email already registered", error_code="EMAIL_EXISTS")
    _check_references(db, None, data.manager_id, data.org_unit_id)

    user = User(
        email=data.email,
        full_name=data.full_name,
        hashed_password=security.get_password_hash(data.password),
        role=data.role,
        status=UserStatus.ACTIVE.value,
        department=data.department,
        employee_code=data.employee_code,
        org_unit_id=data.org_unit_id,
        manager_id=data.manager_id,
    )
    db.add(user)
    db.flush()
    AuditService.log(db, "user_created", "USER", user.id, admin.id, admin.role,
                     {"email": user.email, "role": user.role.value})
    db.commit()
    db.refresh(user)
    return ApiResponse.ok(UserResponse.model_validate(user), message="User created")


@router.patch("/{user_id}")
def update_user(user_id: int, data: UserUpdate, db: Session = Depends(get_db),
                admin: User = Depends(require_admin())):
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    changes = data.model_dump(exclude_unset=True)
    _check_references(db, user.id, changes.get("manager_id"), changes.get("org_unit_id"))

    before = {k: getattr(user, k) for k in changes}
    for field, value in changes.items():
        if field == "status" and value is not None:
            value = UserStatus(value).value
        setattr(user, field, value)
    AuditService.log(db, "user_updated", "USER", user.id, admin.id, admin.role, {"fields": sorted(changes)},
                     before_state=before, after_state=changes)
    db.commit()
    db.refresh(user)
    return ApiResponse.ok(UserResponse.model_validate(user), message="User updated")


@router.post("/{user_id}/deactivate")
def deactivate_user(user_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin())):
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.id == admin.id:
        raise ValidationFailed("Validation failed", ["You cannot deactivate your own account"])
    before = user.status
    user.status = UserStatus.INACTIVE.value
    AuditService.log(db, "user_deactivated", "USER", user.id, admin.id, admin.role, {},
                     before_state={"status": before}, after_state={"status": user.status})
    db.commit()
    db.refresh(user)
    return ApiResponse.ok(UserResponse.model_validate(user), message="User deactivated")
