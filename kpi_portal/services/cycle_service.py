"""
Cycle lifecycle: DRAFT -> ACTIVE -> CLOSED -> ARCHIVED.

At most one cycle is ACTIVE at a time. Opening and closing fan out
notifications to the cycle's audience.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from kpi_portal.core.clock import utcnow
from kpi_portal.models.cycle import Cycle, CycleStatus
from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.kpi_template import KpiTemplate
from kpi_portal.models.notification import NotificationType
from kpi_portal.models.user import User, UserRole, UserStatus
from kpi_portal.schemas.cycle import CycleCreate, CycleUpdate
from kpi_portal.services.audit import AuditService
from kpi_portal.services.base import BaseService
from kpi_portal.services.notification import NotificationDispatcher
from kpi_portal.services.results import ServiceResult, ResultCode
from kpi_portal.services.workflow import lock_kpi_goals


def resolve_audience(db: Session, cycle: Cycle) -> List[User]:
    """
    Explicit ``user_ids`` win; otherwise every ACTIVE non-admin user,
    narrowed by ``roles`` and ``org_unit_ids`` when given.
    """
    audience = cycle.target_audience or {}
    query = db.query(User).filter(User.status == UserStatus.ACTIVE.value)
    if audience.get("user_ids"):
        return query.filter(User.id.in_(audience["user_ids"])).order_by(User.id).all()

    query = query.filter(User.role != UserRole.ADMIN)
    if audience.get("roles"):
        query = query.filter(User.role.in_([UserRole.coerce(r) for r in audience["roles"]]))
    if audience.get("org_unit_ids"):
        query = query.filter(User.org_unit_id.in_(audience["org_unit_ids"]))
    return query.order_by(User.id).all()


class CycleService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.notifier = NotificationDispatcher(db)
        self.audit = AuditService(db)

    # ---- Queries ----

    def current_cycle(self) -> Optional[Cycle]:
        return self.db.query(Cycle).filter(Cycle.status == CycleStatus.ACTIVE.value).first()

    def list_cycles(self, status: Optional[str] = None) -> List[Cycle]:
        query = self.db.query(Cycle)
        if status:
            query = query.filter(Cycle.status == status)
        return query.order_by(Cycle.period_start.desc(), Cycle.id.desc()).all()

    def get(self, cycle_id: int) -> Optional[Cycle]:
        return self.db.get(Cycle, cycle_id)

    # ---- CRUD ----

    def create_cycle(self, data: CycleCreate, actor: User) -> ServiceResult:
        if data.template_id is not None and self.db.get(KpiTemplate, data.template_id) is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"KPI template {data.template_id} not found")
        cycle = Cycle(
            name=data.name.strip(),
            type=data.type.value,
            period_start=data.period_start,
            period_end=data.period_end,
            status=CycleStatus.DRAFT.value,
            created_by=actor.id,
            template_id=data.template_id,
            target_audience=data.target_audience.model_dump(mode="json") if data.target_audience else None,
            settings=data.settings.model_dump() if data.settings else None,
        )
        self.db.add(cycle)
        self.db.flush()
        self.audit.log_action("cycle_created", "CYCLE", cycle.id, actor.id, actor.role, {"name": cycle.name})
        self.commit()
        self.db.refresh(cycle)
        return ServiceResult.ok("Cycle created", cycle)

    def update_cycle(self, cycle_id: int, data: CycleUpdate, actor: User) -> ServiceResult:
        cycle = self.get(cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if cycle.status != CycleStatus.DRAFT.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Only DRAFT cycles can be edited")

        changes = data.model_dump(exclude_unset=True, mode="json")
        start = data.period_start or cycle.period_start
        end = data.period_end or cycle.period_end
        if end <= start:
            return ServiceResult.fail(
                ResultCode.VALIDATION_ERROR, "Validation failed", ["Period end must be after period start"]
            )
        for field, value in changes.items():
            if field in ("period_start", "period_end"):
                value = getattr(data, field)
            setattr(cycle, field, value)
        self.audit.log_action("cycle_updated", "CYCLE", cycle.id, actor.id, actor.role, {"fields": sorted(changes)})
        self.commit()
        self.db.refresh(cycle)
        return ServiceResult.ok("Cycle updated", cycle)

    def delete_cycle(self, cycle_id: int, actor: User) -> ServiceResult:
        cycle = self.get(cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if cycle.status != CycleStatus.DRAFT.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Only DRAFT cycles can be deleted")
        if self.db.query(KpiDefinition).filter(KpiDefinition.cycle_id == cycle.id).count():
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Cycle still has KPIs")
        self.db.delete(cycle)
        self.audit.log_action("cycle_deleted", "CYCLE", cycle_id, actor.id, actor.role, {"name": cycle.name})
        self.commit()
        return ServiceResult.ok("Cycle deleted", {"id": cycle_id})

    # ---- Lifecycle ----

    def open_cycle(self, cycle_id: int, actor: User) -> ServiceResult:
        cycle = self.get(cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if cycle.status != CycleStatus.DRAFT.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Can only open cycles in DRAFT status")
        active = self.current_cycle()
        if active is not None:
            return ServiceResult.fail(
                ResultCode.INVALID_STATE, f"Cycle '{active.name}' is already active; close it first"
            )

        cycle.status = CycleStatus.ACTIVE.value
        cycle.opened_at = utcnow()
        recipients = resolve_audience(self.db, cycle)
        meta = {"cycle_id": cycle.id, "cycle_name": cycle.name, "deadline": cycle.period_end.isoformat()}
        if cycle.template_id:
            meta["template_id"] = cycle.template_id
        for user in recipients:
            self.notifier.create_notification(
                user.id, NotificationType.CYCLE_OPENED, "", meta,
                f"/kpis/create?cycle={cycle.id}" + (f"&template={cycle.template_id}" if cycle.template_id else "")
            )
        self.audit.log_action(
            "cycle_opened", "CYCLE", cycle.id, actor.id, actor.role,
            {"notified": len(recipients)},
            before_state={"status": CycleStatus.DRAFT.value}, after_state={"status": cycle.status}
        )
        self.commit()
        self.log_info(f"Cycle {cycle.id} opened; {len(recipients)} users notified")
        return ServiceResult.ok(
            "Cycle opened successfully. Users can now create KPIs.",
            {"cycle": cycle, "notified": len(recipients)}
        )

    def close_cycle(self, cycle_id: int, actor: User) -> ServiceResult:
        cycle = self.get(cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if cycle.status != CycleStatus.ACTIVE.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Only ACTIVE cycles can be closed")

        cycle.status = CycleStatus.CLOSED.value
        cycle.closed_at = utcnow()
        recipients = resolve_audience(self.db, cycle)
        for user in recipients:
            self.notifier.create_notification(
                user.id, NotificationType.CYCLE_CLOSED, "",
                {"cycle_id": cycle.id, "cycle_name": cycle.name}, f"/cycles/{cycle.id}"
            )
        self.audit.log_action(
            "cycle_closed", "CYCLE", cycle.id, actor.id, actor.role, {"notified": len(recipients)},
            before_state={"status": CycleStatus.ACTIVE.value}, after_state={"status": cycle.status}
        )
        self.commit()
        return ServiceResult.ok("Cycle closed successfully. No more changes allowed.",
                                {"cycle": cycle, "notified": len(recipients)})

    def archive_cycle(self, cycle_id: int, actor: User) -> ServiceResult:
        cycle = self.get(cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if cycle.status != CycleStatus.CLOSED.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Only CLOSED cycles can be archived")
        cycle.status = CycleStatus.ARCHIVED.value
        self.audit.log_action(
            "cycle_archived", "CYCLE", cycle.id, actor.id, actor.role, {},
            before_state={"status": CycleStatus.CLOSED.value}, after_state={"status": cycle.status}
        )
        self.commit()
        return ServiceResult.ok("Cycle archived", {"cycle": cycle})

    def lock_cycle_goals(self, cycle_id: int, actor: User) -> ServiceResult:
        cycle = self.get(cycle_id)
        if cycle is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Cycle not found")
        if cycle.status != CycleStatus.ACTIVE.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Can only lock goals for active cycles")

        approved = self.db.query(KpiDefinition).filter(
            KpiDefinition.cycle_id == cycle.id,
            KpiDefinition.status == KpiStatus.APPROVED.value
        ).all()
        for kpi in approved:
            lock_kpi_goals(self.db, {"kpi_id": kpi.id, "trigger": "cycle_lock"})
        self.audit.log_action("cycle_goals_locked", "CYCLE", cycle.id, actor.id, actor.role, {"locked": len(approved)})
        self.commit()
        return ServiceResult.ok(f"Locked {len(approved)} KPIs", {"cycle": cycle, "locked": len(approved)})

    def perform_action(self, cycle_id: int, action: str, actor: User) -> ServiceResult:
        handlers = {
            "open": self.open_cycle,
            "close": self.close_cycle,
            "archive": self.archive_cycle,
            "lock_goals": self.lock_cycle_goals,
        }
        return handlers[action](cycle_id, actor)
