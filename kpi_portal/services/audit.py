from datetime import date, datetime
from typing import Any, Optional

from kpi_portal.services.base import BaseService
from kpi_portal.models.audit_log import AuditLog


def _sanitize(obj: Any):
    """Make nested pydantic models, enums and timestamps JSON-friendly."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(i) for i in obj]
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "value") and not isinstance(obj, (int, float, str)):
        return obj.value
    return obj


class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int],
        user_role: Optional[str],
        details: Optional[dict] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None
    ) -> AuditLog:
        """
        Append an audit entry to the caller's transaction.
        Not committed here: the entry lands or rolls back with the workflow change it records.
        """
        if user_role is not None and hasattr(user_role, "value"):
            user_role = user_role.value
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            user_role=user_role,
            details=_sanitize(details or {}),
            before_state=_sanitize(before_state),
            after_state=_sanitize(after_state)
        )
        self.db.add(entry)
        return entry

    def log_operational_event(self, event_type: str, status: str, details: dict) -> AuditLog:
        return self.log_action(
            action=f"ops_{event_type}",
            entity_type="system",
            entity_id=None,
            user_id=None,
            user_role="system",
            details={**details, "ops_status": status}
        )

    # Static wrapper for call sites without a service instance
    @staticmethod
    def log(db, *args, **kwargs):
        return AuditService(db).log_action(*args, **kwargs)
