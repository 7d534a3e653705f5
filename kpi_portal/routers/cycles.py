from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kpi_portal.core.exceptions import NotFoundError
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user, require_admin
from kpi_portal.routers.responses import respond
from kpi_portal.schemas.cycle import CycleCreate, CycleUpdate, CycleAction, CycleResponse
from kpi_portal.services.cycle_service import CycleService

router = APIRouter(prefix="/cycles", tags=["cycles"])


@router.get("/")
def list_cycles(status: Optional[str] = None, db: Session = Depends(get_db),
                current_user: User = Depends(get_current_user)):
    cycles = CycleService(db).list_cycles(status)
    return ApiResponse.ok([CycleResponse.model_validate(c) for c in cycles])


@router.get("/current")
def current_cycle(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    cycle = CycleService(db).current_cycle()
    return ApiResponse.ok(
        CycleResponse.model_validate(cycle) if cycle else None,
        message="OK" if cycle else "No active cycle"
    )


@router.get("/{cycle_id}")
def get_cycle(cycle_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    cycle = CycleService(db).get(cycle_id)
    if cycle is None:
        raise NotFoundError("Cycle not found")
    return ApiResponse.ok(CycleResponse.model_validate(cycle))


@router.post("/", status_code=201)
def create_cycle(data: CycleCreate, db: Session = Depends(get_db), admin: User = Depends(require_admin())):
    result = CycleService(db).create_cycle(data, admin)
    return respond(result, CycleResponse.model_validate(result.data) if result else None)


@router.patch("/{cycle_id}")
def update_cycle(cycle_id: int, data: CycleUpdate, db: Session = Depends(get_db),
                 admin: User = Depends(require_admin())):
    result = CycleService(db).update_cycle(cycle_id, data, admin)
    return respond(result, CycleResponse.model_validate(result.data) if result else None)


@router.delete("/{cycle_id}")
def delete_cycle(cycle_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin())):
    return respond(CycleService(db).delete_cycle(cycle_id, admin))


@router.post("/{cycle_id}/actions")
def cycle_action(cycle_id: int, body: CycleAction, db: Session = Depends(get_db),
                 admin: User = Depends(require_admin())):
    """open | close | archive | lock_goals"""
    result = CycleService(db).perform_action(cycle_id, body.action, admin)
    if not result:
        return respond(result)
    data = dict(result.data)
    data["cycle"] = CycleResponse.model_validate(data["cycle"])
    return respond(result, data)
