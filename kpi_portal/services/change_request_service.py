"""
Change requests against KPIs with locked goals.

STAFF requests are drafted by the KPI owner and go through the two-level
approval chain (see ``WorkflowEngine``); ADMIN requests are issued through
the admin proxy and closed by the owner with ``resolve``.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from kpi_portal.core.clock import utcnow
from kpi_portal.models.change_request import (
    ChangeRequest, ChangeRequestOrigin, ChangeRequestStatus, CHANGEABLE_FIELDS,
)
from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.kpi_actual import KpiActual
from kpi_portal.models.notification import NotificationType
from kpi_portal.models.user import User
from kpi_portal.schemas.change_request import ChangeRequestCreate, ResolveRequest
from kpi_portal.services.audit import AuditService
from kpi_portal.services.base import BaseService
from kpi_portal.services.kpi_service import visible_user_ids
from kpi_portal.services.notification import NotificationDispatcher
from kpi_portal.services.results import ServiceResult, ResultCode
from kpi_portal.services.validation import validate_changes


def field_snapshot(kpi: KpiDefinition) -> dict:
    return {field: getattr(kpi, field) for field in CHANGEABLE_FIELDS}


class ChangeRequestService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.audit = AuditService(db)
        self.notifier = NotificationDispatcher(db)

    def list_requests(self, viewer: User, status: Optional[str] = None,
                      kpi_id: Optional[int] = None) -> List[ChangeRequest]:
        query = self.db.query(ChangeRequest).join(KpiDefinition, ChangeRequest.kpi_definition_id == KpiDefinition.id)
        allowed = visible_user_ids(self.db, viewer)
        if allowed is not None:
            query = query.filter(KpiDefinition.user_id.in_(allowed))
        if status:
            query = query.filter(ChangeRequest.status == status)
        if kpi_id is not None:
            query = query.filter(ChangeRequest.kpi_definition_id == kpi_id)
        return query.order_by(ChangeRequest.created_at.desc(), ChangeRequest.id.desc()).all()

    def get_visible(self, request_id: int, viewer: User) -> ServiceResult:
        change_request = self.db.get(ChangeRequest, request_id)
        if change_request is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Change request not found")
        allowed = visible_user_ids(self.db, viewer)
        if allowed is not None and change_request.user_id not in allowed:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "You cannot view this change request")
        return ServiceResult.ok("OK", change_request)

    def create_request(self, data: ChangeRequestCreate, owner: User) -> ServiceResult:
        kpi = self.db.get(KpiDefinition, data.kpi_definition_id)
        if kpi is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI not found")
        if kpi.user_id != owner.id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the KPI owner can request changes")
        if kpi.status != KpiStatus.LOCKED_GOALS.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "Change requests apply to KPIs with locked goals only")

        changes = [
            {"field": item.field, "old_value": getattr(kpi, item.field), "new_value": item.new_value}
            for item in data.changes
        ]
        errors = validate_changes(changes)
        if errors:
            return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Validation failed", errors)

        change_request = ChangeRequest(
            kpi_definition_id=kpi.id,
            requester_id=owner.id,
            target_entity_type="KPI",
            target_entity_id=kpi.id,
            origin=ChangeRequestOrigin.STAFF.value,
            reason=data.reason.strip(),
            changes=changes,
            status=ChangeRequestStatus.DRAFT.value,
        )
        self.db.add(change_request)
        self.db.flush()
        self.audit.log_action("change_request_created", "CHANGE_REQUEST", change_request.id, owner.id, owner.role,
                              {"kpi_id": kpi.id, "fields": [c["field"] for c in changes]})
        self.commit()
        self.db.refresh(change_request)
        return ServiceResult.ok("Change request drafted", change_request)

    def resolve(self, request_id: int, data: ResolveRequest, owner: User) -> ServiceResult:
        """Owner closes an admin-issued request, recording the field values as they now stand."""
        change_request = self.db.get(ChangeRequest, request_id)
        if change_request is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Change request not found")
        if change_request.user_id != owner.id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the KPI owner can resolve this change request")
        if change_request.origin != ChangeRequestOrigin.ADMIN.value or \
                change_request.status != ChangeRequestStatus.OPEN.value:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "This change request has already been resolved")

        kpi = change_request.kpi
        after = field_snapshot(kpi)
        if change_request.target_entity_type == "ACTUAL" and change_request.target_entity_id:
            actual = self.db.get(KpiActual, change_request.target_entity_id)
            if actual is not None:
                after.update({"actual_value": actual.actual_value, "evidence_note": actual.evidence_note})

        change_request.status = ChangeRequestStatus.RESOLVED.value
        change_request.resolution = data.resolution
        change_request.resolution_comment = data.comment or (
            "Changes have been made as requested" if data.resolution == "COMPLETED" else None
        )
        change_request.resolved_by = owner.id
        change_request.resolved_at = utcnow()
        change_request.after_values = after

        self.notifier.create_notification(
            change_request.requester_id,
            NotificationType.CHANGE_REQUEST,
            "",
            {"kpi_title": kpi.title, "action": data.resolution.lower(), "change_request_id": change_request.id,
             "comment": data.comment},
            f"/kpis/{kpi.id}"
        )
        self.audit.log_action("change_request_resolved", "CHANGE_REQUEST", change_request.id, owner.id, owner.role,
                              {"resolution": data.resolution, "comment": data.comment}, after_state=after)
        self.commit()
        self.db.refresh(change_request)
        return ServiceResult.ok(f"Change request marked as {data.resolution.lower()}", change_request)
