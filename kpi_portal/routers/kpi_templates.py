from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kpi_portal.core.exceptions import NotFoundError, AccessDeniedError, ValidationFailed
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.kpi_template import TemplateStatus
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user, require_admin, require_approver
from kpi_portal.routers.responses import respond
from kpi_portal.schemas.kpi import KpiResponse
from kpi_portal.schemas.kpi_template import (
    KpiTemplateCreate, KpiTemplateUpdate, KpiTemplateResponse, ApplyTemplateRequest,
    CloneTemplateRequest, TemplateReviewRequest, TemplateRejectRequest, TemplateStatistics,
)
from kpi_portal.services.cycle_service import CycleService
from kpi_portal.services.kpi_service import KpiService
from kpi_portal.services.template_service import TemplateService

router = APIRouter(prefix="/kpi-templates", tags=["kpi-templates"])


def _template_response(result):
    return respond(result, KpiTemplateResponse.model_validate(result.data) if result else None)


@router.get("/")
def list_templates(
    department: Optional[str] = None,
    status: Optional[TemplateStatus] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    templates = TemplateService(db).list_templates(
        current_user, department, include_inactive, status.value if status else None
    )
    return ApiResponse.ok([KpiTemplateResponse.model_validate(t) for t in templates])


# Declared before /{template_id} so "statistics" is not parsed as an id
@router.get("/statistics")
def template_statistics(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return ApiResponse.ok(TemplateStatistics(**TemplateService(db).statistics()))


@router.get("/{template_id}")
def get_template(template_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return _template_response(TemplateService(db).get(template_id, current_user))


@router.post("/", status_code=201)
def create_template(data: KpiTemplateCreate, db: Session = Depends(get_db),
                    author: User = Depends(require_approver())):
    return _template_response(TemplateService(db).create_template(data, author))


@router.patch("/{template_id}")
def update_template(template_id: int, data: KpiTemplateUpdate, db: Session = Depends(get_db),
                    author: User = Depends(require_approver())):
    return _template_response(TemplateService(db).update_template(template_id, data, author))


@router.delete("/{template_id}")
def delete_template(template_id: int, db: Session = Depends(get_db), author: User = Depends(require_approver())):
    return respond(TemplateService(db).deactivate(template_id, author))


@router.post("/{template_id}/submit")
def submit_template(template_id: int, db: Session = Depends(get_db), author: User = Depends(require_approver())):
    return _template_response(TemplateService(db).submit_for_review(template_id, author))


@router.post("/{template_id}/approve")
def approve_template(template_id: int, body: Optional[TemplateReviewRequest] = None,
                     db: Session = Depends(get_db), admin: User = Depends(require_admin())):
    return _template_response(TemplateService(db).approve(template_id, body.comment if body else None, admin))


@router.post("/{template_id}/reject")
def reject_template(template_id: int, body: TemplateRejectRequest, db: Session = Depends(get_db),
                    admin: User = Depends(require_admin())):
    return _template_response(TemplateService(db).reject(template_id, body.reason, admin))


@router.post("/{template_id}/clone", status_code=201)
def clone_template(template_id: int, body: Optional[CloneTemplateRequest] = None,
                   db: Session = Depends(get_db), author: User = Depends(require_approver())):
    return _template_response(TemplateService(db).clone(template_id, body or CloneTemplateRequest(), author))


@router.post("/{template_id}/apply", status_code=201)
def apply_template(template_id: int, body: ApplyTemplateRequest, db: Session = Depends(get_db),
                   current_user: User = Depends(get_current_user)):
    """Create DRAFT KPIs from the template for a user (default: yourself) in a cycle (default: current)."""
    owner = current_user
    if body.user_id is not None and body.user_id != current_user.id:
        if not current_user.is_admin:
            raise AccessDeniedError("Only admins can apply templates for other users")
        owner = db.get(User, body.user_id)
        if owner is None:
            raise NotFoundError("User not found")

    cycle_id = body.cycle_id
    if cycle_id is None:
        cycle = CycleService(db).current_cycle()
        if cycle is None:
            raise ValidationFailed("Validation failed", ["No active cycle; pass cycle_id explicitly"])
        cycle_id = cycle.id

    result = KpiService(db).create_from_template(template_id, cycle_id, owner, current_user)
    return respond(result, [KpiResponse.model_validate(k) for k in result.data] if result else None)
