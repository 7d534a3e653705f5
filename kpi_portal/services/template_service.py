"""
KPI template library and its review lifecycle:

    DRAFT -> PENDING_REVIEW -> APPROVED
                            -> REJECTED -> PENDING_REVIEW ...

Admin-authored templates and admin clones are published as APPROVED
straight away; templates written by managers wait for an admin review
before they can seed KPIs.
"""
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from kpi_portal.core.clock import utcnow
from kpi_portal.models.kpi_template import KpiTemplate, TemplateStatus, EDITABLE_TEMPLATE_STATUSES
from kpi_portal.models.notification import NotificationType
from kpi_portal.models.user import User, UserRole, UserStatus
from kpi_portal.schemas.kpi_template import KpiTemplateCreate, KpiTemplateUpdate, CloneTemplateRequest
from kpi_portal.services.audit import AuditService
from kpi_portal.services.base import BaseService
from kpi_portal.services.notification import NotificationDispatcher
from kpi_portal.services.results import ServiceResult, ResultCode

ENTITY = "KPI_TEMPLATE"


class TemplateService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.notifier = NotificationDispatcher(db)
        self.audit = AuditService(db)

    # ---- Queries ----

    def list_templates(self, actor: User, department: Optional[str] = None, include_inactive: bool = False,
                       status: Optional[str] = None) -> List[KpiTemplate]:
        """Admins see the whole library; everyone else sees approved templates plus their own."""
        query = self.db.query(KpiTemplate)
        if not include_inactive:
            query = query.filter(KpiTemplate.is_active.is_(True))
        if not actor.is_admin:
            query = query.filter(or_(
                KpiTemplate.status == TemplateStatus.APPROVED.value,
                KpiTemplate.created_by == actor.id
            ))
        if department:
            query = query.filter(KpiTemplate.department == department)
        if status:
            query = query.filter(KpiTemplate.status == status)
        return query.order_by(KpiTemplate.name, KpiTemplate.id).all()

    def get(self, template_id: int, actor: User) -> ServiceResult:
        template = self.db.get(KpiTemplate, template_id)
        if template is None or not self._visible(template, actor):
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI template not found")
        return ServiceResult.ok("OK", template)

    def statistics(self) -> Dict[str, int]:
        rows = dict(
            self.db.query(KpiTemplate.status, func.count(KpiTemplate.id))
            .filter(KpiTemplate.is_active.is_(True))
            .group_by(KpiTemplate.status).all()
        )
        usage = self.db.query(func.coalesce(func.sum(KpiTemplate.usage_count), 0)).filter(
            KpiTemplate.is_active.is_(True)
        ).scalar()
        return {
            "total": sum(rows.values()),
            "inactive": self.db.query(KpiTemplate).filter(KpiTemplate.is_active.is_(False)).count(),
            "draft": rows.get(TemplateStatus.DRAFT.value, 0),
            "pending": rows.get(TemplateStatus.PENDING_REVIEW.value, 0),
            "approved": rows.get(TemplateStatus.APPROVED.value, 0),
            "rejected": rows.get(TemplateStatus.REJECTED.value, 0),
            "total_usage": int(usage or 0),
        }

    # ---- Authoring ----

    def create_template(self, data: KpiTemplateCreate, actor: User) -> ServiceResult:
        template = KpiTemplate(
            name=data.name.strip(),
            department=data.department,
            description=data.description,
            kpi_fields=[f.model_dump(mode="json") for f in data.kpi_fields],
            is_active=data.is_active,
            status=self._initial_status(actor),
            created_by=actor.id,
            usage_count=0,
        )
        self.db.add(template)
        self.db.flush()
        self.audit.log_action("kpi_template_created", ENTITY, template.id, actor.id, actor.role,
                              {"name": template.name, "fields": len(template.kpi_fields), "status": template.status})
        self.commit()
        self.db.refresh(template)
        return ServiceResult.ok("KPI template created", template)

    def update_template(self, template_id: int, data: KpiTemplateUpdate, actor: User) -> ServiceResult:
        template = self.db.get(KpiTemplate, template_id)
        if template is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI template not found")
        denied = self._edit_denied(template, actor)
        if denied is not None:
            return denied

        changes = data.model_dump(exclude_unset=True, mode="json")
        for field, value in changes.items():
            setattr(template, field, value)
        self.audit.log_action("kpi_template_updated", ENTITY, template.id, actor.id, actor.role,
                              {"fields": sorted(changes)})
        self.commit()
        self.db.refresh(template)
        return ServiceResult.ok("KPI template updated", template)

    def deactivate(self, template_id: int, actor: User) -> ServiceResult:
        """Soft delete: KPIs and cycles may still reference the template."""
        template = self.db.get(KpiTemplate, template_id)
        if template is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI template not found")
        denied = self._edit_denied(template, actor)
        if denied is not None:
            return denied
        template.is_active = False
        self.audit.log_action("kpi_template_deleted", ENTITY, template.id, actor.id, actor.role,
                              {"name": template.name})
        self.commit()
        return ServiceResult.ok("KPI template deactivated", {"id": template_id})

    def clone(self, template_id: int, overrides: CloneTemplateRequest, actor: User) -> ServiceResult:
        source = self.db.get(KpiTemplate, template_id)
        if source is None or not source.is_active or not self._visible(source, actor):
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI template not found")

        values = overrides.model_dump(exclude_unset=True)
        clone = KpiTemplate(
            name=(values.get("name") or f"{source.name} (Copy)").strip(),
            department=values.get("department", source.department),
            description=values.get("description", source.description),
            kpi_fields=[dict(f) for f in source.kpi_fields or []],
            is_active=True,
            status=self._initial_status(actor),
            cloned_from=source.id,
            created_by=actor.id,
            usage_count=0,
        )
        self.db.add(clone)
        self.db.flush()
        self.audit.log_action("kpi_template_cloned", ENTITY, clone.id, actor.id, actor.role,
                              {"cloned_from": source.id, "status": clone.status})
        self.commit()
        self.db.refresh(clone)
        return ServiceResult.ok("KPI template cloned", clone)

    # ---- Review ----

    def submit_for_review(self, template_id: int, actor: User) -> ServiceResult:
        template = self.db.get(KpiTemplate, template_id)
        if template is None or not template.is_active:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI template not found")
        if template.created_by != actor.id and not actor.is_admin:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the author can submit this template")
        if template.status not in EDITABLE_TEMPLATE_STATUSES:
            return ServiceResult.fail(
                ResultCode.INVALID_STATE, f"Template is {template.status}; only DRAFT or REJECTED can be submitted"
            )

        before = template.status
        template.status = TemplateStatus.PENDING_REVIEW.value
        template.submitted_by = actor.id
        template.submitted_at = utcnow()
        for admin in self._active_admins():
            self.notifier.create_notification(
                admin.id,
                NotificationType.SYSTEM,
                f"KPI template \"{template.name}\" from {actor.display_name} is waiting for review",
                {"template_id": template.id},
                f"/kpi-templates/{template.id}"
            )
        self.audit.log_action("kpi_template_submitted", ENTITY, template.id, actor.id, actor.role, {},
                              before_state={"status": before}, after_state={"status": template.status})
        self.commit()
        self.db.refresh(template)
        return ServiceResult.ok("Template submitted for review", template)

    def approve(self, template_id: int, comment: Optional[str], actor: User) -> ServiceResult:
        return self._review(template_id, TemplateStatus.APPROVED, comment, actor)

    def reject(self, template_id: int, reason: Optional[str], actor: User) -> ServiceResult:
        if not reason or not reason.strip():
            return ServiceResult.fail(
                ResultCode.VALIDATION_ERROR, "Rejection reason is required", ["Rejection reason is required"]
            )
        return self._review(template_id, TemplateStatus.REJECTED, reason.strip(), actor)

    def _review(self, template_id: int, outcome: TemplateStatus, comment: Optional[str],
                actor: User) -> ServiceResult:
        if not actor.is_admin:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only administrators review templates")
        template = self.db.get(KpiTemplate, template_id)
        if template is None or not template.is_active:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI template not found")
        if template.status != TemplateStatus.PENDING_REVIEW.value:
            return ServiceResult.fail(
                ResultCode.INVALID_STATE, f"Template is {template.status}; only PENDING_REVIEW can be reviewed"
            )

        template.status = outcome.value
        template.reviewed_by = actor.id
        template.reviewed_at = utcnow()
        template.review_comment = comment
        verb = "approved" if outcome == TemplateStatus.APPROVED else "rejected"
        if template.created_by and template.created_by != actor.id:
            message = f"Your KPI template \"{template.name}\" was {verb}"
            if comment:
                message = f"{message}: {comment}"
            self.notifier.create_notification(
                template.created_by, NotificationType.SYSTEM, message,
                {"template_id": template.id, "status": template.status}, f"/kpi-templates/{template.id}"
            )
        self.audit.log_action(f"kpi_template_{verb}", ENTITY, template.id, actor.id, actor.role,
                              {"comment": comment},
                              before_state={"status": TemplateStatus.PENDING_REVIEW.value},
                              after_state={"status": template.status})
        self.commit()
        self.db.refresh(template)
        return ServiceResult.ok(f"Template {verb}", template)

    # ---- Helpers ----

    @staticmethod
    def _initial_status(actor: User) -> str:
        return TemplateStatus.APPROVED.value if actor.is_admin else TemplateStatus.DRAFT.value

    @staticmethod
    def _visible(template: KpiTemplate, actor: User) -> bool:
        return actor.is_admin or template.status == TemplateStatus.APPROVED.value or template.created_by == actor.id

    @staticmethod
    def _edit_denied(template: KpiTemplate, actor: User) -> Optional[ServiceResult]:
        if actor.is_admin:
            return None
        if template.created_by != actor.id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the author or an administrator can change this template")
        if template.status not in EDITABLE_TEMPLATE_STATUSES:
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"Template is {template.status} and can no longer be edited")
        return None

    def _active_admins(self) -> List[User]:
        return self.db.query(User).filter(
            User.role == UserRole.ADMIN, User.status == UserStatus.ACTIVE.value
        ).order_by(User.id).all()
