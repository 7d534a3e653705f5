import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from kpi_portal.core.clock import utcnow
from kpi_portal.models.notification import Notification, NotificationType, NotificationPriority

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    body: str
    priority: NotificationPriority
    action_required: bool


TEMPLATES: Dict[NotificationType, NotificationTemplate] = {
    NotificationType.KPI_CREATED: NotificationTemplate(
        "KPI Created", "{{message}}", NotificationPriority.LOW, False),
    NotificationType.KPI_SUBMITTED: NotificationTemplate(
        "KPI Submitted for Approval", 'Your KPI "{{kpi_title}}" has been submitted for approval.',
        NotificationPriority.MEDIUM, False),
    NotificationType.KPI_APPROVED: NotificationTemplate(
        "KPI Approved", "Your KPI has been approved{{level}}.", NotificationPriority.HIGH, False),
    NotificationType.KPI_REJECTED: NotificationTemplate(
        "KPI Rejected", "Your KPI has been rejected. Reason: {{reason}}", NotificationPriority.HIGH, True),
    NotificationType.APPROVAL_REQUIRED: NotificationTemplate(
        "Approval Required", "{{message}}", NotificationPriority.HIGH, True),
    NotificationType.ACTUAL_SUBMITTED: NotificationTemplate(
        "Actual Results Submitted", 'Actual results for "{{kpi_title}}" have been submitted.',
        NotificationPriority.MEDIUM, False),
    NotificationType.ACTUAL_APPROVED: NotificationTemplate(
        "Actual Results Approved", "Your actual results have been approved{{level}}.",
        NotificationPriority.HIGH, False),
    NotificationType.ACTUAL_REJECTED: NotificationTemplate(
        "Actual Results Rejected", "Your actual results have been rejected. Reason: {{reason}}",
        NotificationPriority.HIGH, True),
    NotificationType.ACTUAL_APPROVAL_REQUIRED: NotificationTemplate(
        "Actual Results Approval Required", "{{message}}", NotificationPriority.HIGH, True),
    NotificationType.CYCLE_OPENED: NotificationTemplate(
        "New KPI Cycle Opened",
        'A new KPI cycle "{{cycle_name}}" has been opened. Please submit your KPIs by {{deadline}}.',
        NotificationPriority.HIGH, True),
    NotificationType.CYCLE_CLOSING_SOON: NotificationTemplate(
        "KPI Cycle Closing Soon", 'The KPI cycle "{{cycle_name}}" will close in {{days_remaining}} days.',
        NotificationPriority.HIGH, True),
    NotificationType.CYCLE_CLOSED: NotificationTemplate(
        "KPI Cycle Closed", 'The KPI cycle "{{cycle_name}}" has been closed.', NotificationPriority.MEDIUM, False),
    NotificationType.CHANGE_REQUEST: NotificationTemplate(
        "KPI Change Request", 'A change request has been {{action}} for KPI "{{kpi_title}}".',
        NotificationPriority.MEDIUM, False),
    NotificationType.REMINDER: NotificationTemplate(
        "Reminder", "{{message}}", NotificationPriority.MEDIUM, False),
    NotificationType.SYSTEM: NotificationTemplate(
        "System Notification", "{{message}}", NotificationPriority.LOW, False),
}


def render_template(body: str, variables: Dict[str, Any]) -> str:
    """Fill ``{{key}}`` placeholders; unknown keys are left in place."""
    def _sub(match):
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)
    return _PLACEHOLDER.sub(_sub, body)


def _coerce_type(type_) -> NotificationType:
    try:
        return NotificationType(type_)
    except ValueError:
        logger.warning(f"Unknown notification type {type_!r}; sending as SYSTEM")
        return NotificationType.SYSTEM


class NotificationDispatcher:
    """
    Writes in-app notifications from the static template table.
    Rows are added to the caller's transaction; the read API commits its own changes.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_notification(
        self,
        user_id: int,
        type: Any,
        message: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        action_url: Optional[str] = None
    ) -> Notification:
        notification_type = _coerce_type(type)
        template = TEMPLATES[notification_type]
        body = render_template(template.body, {**(metadata or {}), "message": message})

        notification = Notification(
            user_id=user_id,
            type=notification_type.value,
            title=template.title,
            message=body,
            priority=template.priority.value,
            action_required=template.action_required,
            link=action_url,
            payload=metadata,
            is_read=False,
            created_at=utcnow()
        )
        self.db.add(notification)
        logger.info(
            "Notification queued",
            extra={"user_id": user_id, "type": notification_type.value, "priority": template.priority.value}
        )
        return notification

    # ---- Read API ----

    def list_for_user(self, user_id: int, page: int = 1, page_size: int = 20, unread_only: bool = False) -> Dict[str, Any]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)  # noqa: E712
        total = query.count()
        items = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
            "has_more": page * page_size < total,
        }

    def unread_count(self, user_id: int) -> int:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).count()

    def _owned(self, user_id: int, notification_id: int) -> Optional[Notification]:
        return self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()

    def mark_read(self, user_id: int, notification_id: int) -> Optional[Notification]:
        notification = self._owned(user_id, notification_id)
        if notification is None:
            return None
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            self._commit()
            self.db.refresh(notification)
        return notification

    def mark_all_read(self, user_id: int) -> int:
        updated = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).update({Notification.is_read: True, Notification.read_at: utcnow()}, synchronize_session=False)
        self._commit()
        return updated

    def delete(self, user_id: int, notification_id: int) -> bool:
        notification = self._owned(user_id, notification_id)
        if notification is None:
            return False
        self.db.delete(notification)
        self._commit()
        return True

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
