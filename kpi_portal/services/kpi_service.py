from typing import List, Optional

from sqlalchemy.orm import Session

from kpi_portal.models.cycle import Cycle
from kpi_portal.models.kpi import KpiDefinition, KpiStatus, KpiType, EDITABLE_KPI_STATUSES
from kpi_portal.models.kpi_template import KpiTemplate
from kpi_portal.models.notification import NotificationType
from kpi_portal.models.user import User, UserRole
from kpi_portal.schemas.kpi import KpiCreate, KpiUpdate
from kpi_portal.services.audit import AuditService
from kpi_portal.services.base import BaseService
from kpi_portal.services.notification import NotificationDispatcher
from kpi_portal.services.results import ServiceResult, ResultCode
from kpi_portal.services.scoring import validate_milestone_scale


def _scale_json(scale) -> Optional[list]:
    return [entry.to_json() for entry in scale] if scale else None


def visible_user_ids(db: Session, user: User) -> Optional[List[int]]:
    """Whose KPIs ``user`` may read: None means everyone (admins)."""
    if user.role == UserRole.ADMIN:
        return None
    ids = {user.id}
    reports = db.query(User.id).filter(User.manager_id == user.id).all()
    direct = {r.id for r in reports}
    ids |= direct
    if user.role == UserRole.MANAGER and direct:
        ids |= {r.id for r in db.query(User.id).filter(User.manager_id.in_(direct)).all()}
    return sorted(ids)


class KpiService(BaseService):
    """Owner-side KPI management. Approval transitions live in the workflow engine."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.audit = AuditService(db)
        self.notifier = NotificationDispatcher(db)

    def list_kpis(self, viewer: User, cycle_id: Optional[int] = None, user_id: Optional[int] = None,
                  status: Optional[str] = None) -> List[KpiDefinition]:
        query = self.db.query(KpiDefinition)
        allowed = visible_user_ids(self.db, viewer)
        if allowed is not None:
            query = query.filter(KpiDefinition.user_id.in_(allowed))
        if user_id is not None:
            query = query.filter(KpiDefinition.user_id == user_id)
        elif viewer.role == UserRole.STAFF:
            query = query.filter(KpiDefinition.user_id == viewer.id)
        if cycle_id is not None:
            query = query.filter(KpiDefinition.cycle_id == cycle_id)
        if status:
            query = query.filter(KpiDefinition.status == status)
        return query.order_by(KpiDefinition.created_at.desc(), KpiDefinition.id.desc()).all()

    def get_visible(self, kpi_id: int, viewer: User) -> ServiceResult:
        kpi = self.db.get(KpiDefinition, kpi_id)
        if kpi is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI not found")
        allowed = visible_user_ids(self.db, viewer)
        if allowed is not None and kpi.user_id not in allowed:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "You cannot view this KPI")
        return ServiceResult.ok("OK", kpi)

    def create_kpi(self, data: KpiCreate, owner: User) -> ServiceResult:
        cycle = self.db.get(Cycle, data.cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if not cycle.accepts_changes:
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"Cycle is {cycle.status}; KPIs can no longer be added")

        scale = _scale_json(data.scoring_scale)
        if scale and data.type == KpiType.MILESTONE:
            errors = validate_milestone_scale(scale)
            if errors:
                return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Invalid scoring scale", errors)

        kpi = KpiDefinition(
            cycle_id=cycle.id,
            user_id=owner.id,
            org_unit_id=data.org_unit_id or owner.org_unit_id,
            title=data.title.strip(),
            description=data.description,
            type=data.type.value,
            target=data.target,
            unit=data.unit,
            weight=data.weight,
            data_source=data.data_source,
            formula=data.formula,
            scoring_scale=scale if data.type == KpiType.MILESTONE else None,
            status=KpiStatus.DRAFT.value,
        )
        self.db.add(kpi)
        self.db.flush()
        self.notifier.create_notification(
            owner.id, NotificationType.KPI_CREATED, f"KPI \"{kpi.title}\" was created as a draft",
            {"kpi_id": kpi.id, "cycle_id": cycle.id}, f"/kpis/{kpi.id}"
        )
        self.audit.log_action("kpi_created", "KPI", kpi.id, owner.id, owner.role,
                              {"cycle_id": cycle.id, "weight": kpi.weight})
        self.commit()
        self.db.refresh(kpi)
        return ServiceResult.ok("KPI created", kpi)

    def _owned_editable(self, kpi_id: int, owner: User) -> ServiceResult:
        kpi = self.db.get(KpiDefinition, kpi_id)
        if kpi is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI not found")
        if kpi.user_id != owner.id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the owner can modify this KPI")
        if kpi.status not in EDITABLE_KPI_STATUSES:
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"KPI in status {kpi.status} cannot be modified")
        return ServiceResult.ok("OK", kpi)

    def update_kpi(self, kpi_id: int, data: KpiUpdate, owner: User) -> ServiceResult:
        found = self._owned_editable(kpi_id, owner)
        if not found:
            return found
        kpi = found.data

        changes = data.model_dump(exclude_unset=True)
        if "type" in changes and changes["type"] is not None:
            changes["type"] = data.type.value
        if "scoring_scale" in changes:
            changes["scoring_scale"] = _scale_json(data.scoring_scale)
            errors = validate_milestone_scale(changes["scoring_scale"]) if changes["scoring_scale"] else []
            if errors:
                return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Invalid scoring scale", errors)
        before = {field: getattr(kpi, field) for field in changes}
        for field, value in changes.items():
            setattr(kpi, field, value)

        self.audit.log_action("kpi_updated", "KPI", kpi.id, owner.id, owner.role, {"fields": sorted(changes)},
                              before_state=before, after_state=changes)
        self.commit()
        self.db.refresh(kpi)
        return ServiceResult.ok("KPI updated", kpi)

    def delete_kpi(self, kpi_id: int, owner: User) -> ServiceResult:
        found = self._owned_editable(kpi_id, owner)
        if not found:
            return found
        kpi = found.data
        self.db.delete(kpi)
        self.audit.log_action("kpi_deleted", "KPI", kpi_id, owner.id, owner.role, {"title": kpi.title})
        self.commit()
        return ServiceResult.ok("KPI deleted", {"id": kpi_id})

    def archive_kpi(self, kpi_id: int, owner: User) -> ServiceResult:
        found = self._owned_editable(kpi_id, owner)
        if not found:
            return found
        kpi = found.data
        before = kpi.status
        kpi.status = KpiStatus.ARCHIVED.value
        self.audit.log_action("kpi_archived", "KPI", kpi.id, owner.id, owner.role, {},
                              before_state={"status": before}, after_state={"status": kpi.status})
        self.commit()
        self.db.refresh(kpi)
        return ServiceResult.ok("KPI archived", kpi)

    def create_from_template(self, template_id: int, cycle_id: int, owner: User, actor: User) -> ServiceResult:
        """Seed DRAFT KPIs for ``owner`` in ``cycle_id`` from a template's field list."""
        template = self.db.get(KpiTemplate, template_id)
        if template is None or not template.is_active:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI template not found")
        if not template.is_usable:
            return ServiceResult.fail(
                ResultCode.INVALID_STATE, f"Template is {template.status}; only APPROVED templates can be applied"
            )
        cycle = self.db.get(Cycle, cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if not cycle.accepts_changes:
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"Cycle is {cycle.status}; KPIs can no longer be added")

        created = []
        for field in template.kpi_fields or []:
            kpi = KpiDefinition(
                cycle_id=cycle.id,
                user_id=owner.id,
                org_unit_id=owner.org_unit_id,
                title=field["title"],
                description=field.get("description"),
                type=field.get("type") or KpiType.QUANT_HIGHER_BETTER.value,
                target=field.get("target"),
                unit=field.get("unit"),
                weight=field.get("weight") or 0,
                data_source=field.get("data_source"),
                status=KpiStatus.DRAFT.value,
                created_from_template_id=template.id,
            )
            self.db.add(kpi)
            created.append(kpi)
        template.usage_count = (template.usage_count or 0) + 1
        self.db.flush()
        self.notifier.create_notification(
            owner.id, NotificationType.KPI_CREATED,
            f"{len(created)} KPIs were created from template \"{template.name}\"",
            {"template_id": template.id, "cycle_id": cycle.id, "kpi_ids": [k.id for k in created]}, "/kpis"
        )
        self.audit.log_action("kpi_template_applied", "KPI_TEMPLATE", template.id, actor.id, actor.role,
                              {"owner_id": owner.id, "cycle_id": cycle.id, "created": len(created)})
        self.commit()
        for kpi in created:
            self.db.refresh(kpi)
        return ServiceResult.ok(f"Created {len(created)} KPIs from template", created)
