"""
Periodic SLA sweep over pending approvals and cycle deadlines.

Advisory only: approvals are never reassigned or auto-decided here.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from kpi_portal.core.clock import utcnow
from kpi_portal.core.config import settings
from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.notification import Notification, NotificationType
from kpi_portal.services.workflow import WorkflowEngine, PROFILES, days_between, entity_title
from kpi_portal.services.cycle_service import resolve_audience

logger = logging.getLogger(__name__)


class EscalationService:
    def __init__(self, engine: WorkflowEngine, sla_days: Optional[int] = None):
        self.engine = engine
        self.store = engine.store
        self.notifier = engine.notifier
        self.sla_days = settings.workflow.approval_sla_days if sla_days is None else sla_days

    def escalate_overdue_approvals(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Whole days pending > SLA: reminder to the approver.
        Whole days pending > 2 x SLA: also a system escalation to the approver's manager.
        At most one of each per approval per whole day pending.
        """
        now = now or utcnow()
        reminders, escalations = 0, 0
        for approval in self.store.all_pending_approvals():
            days = days_between(approval.created_at, now)
            if days <= self.sla_days:
                continue

            profile = PROFILES.get(approval.entity_type)
            entity = self.store.get_entity(approval.entity_type, approval.entity_id)
            title = entity_title(entity) if entity is not None else ""
            link = profile.link.format(id=approval.entity_id) if profile else None
            meta = {"approval_id": approval.id, "entity_type": approval.entity_type,
                    "entity_id": approval.entity_id, "level": approval.level, "days_pending": days}

            if not self._already_sent(approval.approver_id, NotificationType.REMINDER, approval.id, days):
                self.notifier.create_notification(
                    approval.approver_id,
                    NotificationType.REMINDER,
                    f"You have a pending {approval.entity_type} approval \"{title}\" waiting for {days} days",
                    meta,
                    link
                )
                reminders += 1

            if days > 2 * self.sla_days:
                approver = self.store.get_user(approval.approver_id)
                supervisor = self.store.get_user(approver.manager_id) if approver else None
                if supervisor is not None and supervisor.is_active:
                    if self._already_sent(supervisor.id, NotificationType.SYSTEM, approval.id, days):
                        continue
                    self.notifier.create_notification(
                        supervisor.id,
                        NotificationType.SYSTEM,
                        f"Escalation: {approver.display_name} has not decided {approval.entity_type} "
                        f"\"{title}\" for {days} days",
                        {**meta, "approver_id": approver.id, "escalation": True},
                        link
                    )
                    escalations += 1
                else:
                    logger.warning(f"No active manager to escalate approval {approval.id} to")

        self.engine.audit.log_operational_event(
            "approval_escalation", "completed", {"reminders": reminders, "escalations": escalations}
        )
        self.store.commit()
        logger.info(f"Escalation sweep: {reminders} reminders, {escalations} escalations")
        return {"reminders": reminders, "escalations": escalations}

    def _already_sent(self, user_id: int, kind: NotificationType, approval_id: int, days: int) -> bool:
        return self.store.db.query(Notification.id).filter(
            Notification.user_id == user_id,
            Notification.type == kind.value,
            Notification.payload["approval_id"].as_integer() == approval_id,
            Notification.payload["days_pending"].as_integer() == days
        ).first() is not None

    def send_cycle_reminders(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """CYCLE_CLOSING_SOON to the audience of ACTIVE cycles ending within ``closing_soon_days``."""
        now = now or utcnow()
        today = now.date()
        sent = 0
        for cycle in self.store.active_cycles():
            days_remaining = (cycle.period_end - today).days
            window = cycle.effective_settings.get("closing_soon_days", 7)
            if days_remaining < 0 or days_remaining > window:
                continue
            for user in resolve_audience(self.store.db, cycle):
                if self._reminded_today(user.id, now):
                    continue
                drafts = self.store.db.query(KpiDefinition).filter(
                    KpiDefinition.user_id == user.id,
                    KpiDefinition.cycle_id == cycle.id,
                    KpiDefinition.status == KpiStatus.DRAFT.value
                ).count()
                self.notifier.create_notification(
                    user.id,
                    NotificationType.CYCLE_CLOSING_SOON,
                    "",
                    {"cycle_id": cycle.id, "cycle_name": cycle.name, "days_remaining": days_remaining,
                     "draft_kpis": drafts},
                    f"/kpis?cycle={cycle.id}"
                )
                sent += 1
        self.store.commit()
        return {"notified": sent}

    def _reminded_today(self, user_id: int, now: datetime) -> bool:
        # One closing-soon reminder per user per day, however often the sweep runs
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.store.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == NotificationType.CYCLE_CLOSING_SOON.value,
            Notification.created_at >= start_of_day
        ).first() is not None

    def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        from kpi_portal.services.task_service import TaskService
        result = self.escalate_overdue_approvals(now)
        result.update(self.send_cycle_reminders(now))
        result["tasks_run"] = TaskService(self.store.db).run_pending()
        return result
