from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kpi_portal.core.exceptions import NotFoundError, ValidationFailed, ConflictError
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.org_unit import OrgUnit
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user, require_admin
from kpi_portal.schemas.org_unit import OrgUnitCreate, OrgUnitUpdate, OrgUnitResponse
from kpi_portal.services.audit import AuditService

router = APIRouter(prefix="/org-units", tags=["org-units"])


def _creates_cycle(db: Session, unit_id: int, parent_id: int) -> bool:
    """True when making ``parent_id`` the parent of ``unit_id`` would loop the hierarchy."""
    current = db.get(OrgUnit, parent_id)
    while current is not None:
        if current.id == unit_id:
            return True
        current = current.parent
    return False


@router.get("/")
def list_org_units(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    units = db.query(OrgUnit).order_by(OrgUnit.name).all()
    return ApiResponse.ok([OrgUnitResponse.model_validate(u) for u in units])


@router.post("/", status_code=201)
def create_org_unit(data: OrgUnitCreate, db: Session = Depends(get_db), admin: User = Depends(require_admin())):
    if data.parent_id is not None and db.get(OrgUnit, data.parent_id) is None:
        raise ValidationFailed("Validation failed", [f"Parent unit {data.parent_id} not found"])
    unit = OrgUnit(
        name=data.name.strip(),
        type=data.type.value,
        description=data.description,
        parent_id=data.parent_id,
        manager_id=data.manager_id,
    )
    db.add(unit)
    db.flush()
    AuditService.log(db, "org_unit_created", "ORG_UNIT", unit.id, admin.id, admin.role, {"name": unit.name})
    db.commit()
    db.refresh(unit)
    return ApiResponse.ok(OrgUnitResponse.model_validate(unit), message="Org unit created")


@router.patch("/{unit_id}")
def update_org_unit(unit_id: int, data: OrgUnitUpdate, db: Session = Depends(get_db),
                    admin: User = Depends(require_admin())):
    unit = db.get(OrgUnit, unit_id)
    if unit is None:
        raise NotFoundError("Org unit not found")
    changes = data.model_dump(exclude_unset=True)
    parent_id = changes.get("parent_id")
    if parent_id is not None and (parent_id == unit.id or _creates_cycle(db, unit.id, parent_id)):
        raise ValidationFailed("Validation failed", ["An org unit cannot be nested under itself"])
    for field, value in changes.items():
        if field == "type" and value is not None:
            value = value.value
        setattr(unit, field, value)
    AuditService.log(db, "org_unit_updated", "ORG_UNIT", unit.id, admin.id, admin.role, {"fields": sorted(changes)})
    db.commit()
    db.refresh(unit)
    return ApiResponse.ok(OrgUnitResponse.model_validate(unit), message="Org unit updated")


@router.delete("/{unit_id}")
def delete_org_unit(unit_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin())):
    unit = db.get(OrgUnit, unit_id)
    if unit is None:
        raise NotFoundError("Org unit not found")
    if unit.children or unit.members:
        raise ConflictError("Org unit still has sub-units or members", error_code="ORG_UNIT_IN_USE")
    db.delete(unit)
    AuditService.log(db, "org_unit_deleted", "ORG_UNIT", unit_id, admin.id, admin.role, {"name": unit.name})
    db.commit()
    return ApiResponse.ok({"id": unit_id}, message="Org unit deleted")
