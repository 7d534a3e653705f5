"""
Admin proxy operations.

Lets an administrator step in for staff or approvers: send work back, decide
a stuck approval, move it to another approver, or open a change request.
Every operation is recorded as one ``ProxyAction`` in the same commit as the
workflow change it performs.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from kpi_portal.core.clock import utcnow
from kpi_portal.models.approval import ApprovalEntityType
from kpi_portal.models.change_request import (
    ChangeRequest, ChangeRequestOrigin, ChangeRequestStatus, CHANGEABLE_FIELDS,
)
from kpi_portal.models.kpi import KpiDefinition
from kpi_portal.models.kpi_actual import KpiActual
from kpi_portal.models.notification import NotificationType
from kpi_portal.models.proxy_action import ProxyAction, ProxyActionType
from kpi_portal.models.user import User, UserRole
from kpi_portal.services.results import ServiceResult, ResultCode
from kpi_portal.services.workflow import (
    WorkflowEngine, PROFILES, DRAFT, entity_owner_id, entity_title, snapshot,
)

APPROVER_ROLES = {UserRole.LINE_MANAGER, UserRole.MANAGER}

# Entity types an admin may send back or issue a change request against
RETURNABLE_TYPES = {ApprovalEntityType.KPI.value, ApprovalEntityType.ACTUAL.value}


class AdminProxyService:
    def __init__(self, engine: WorkflowEngine):
        self.engine = engine
        self.store = engine.store
        self.db = engine.store.db

    @staticmethod
    def _denied(actor: User) -> Optional[ServiceResult]:
        if actor is None or not actor.is_admin:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Admin access required")
        return None

    def _record(self, action_type: ProxyActionType, actor: User, entity_type: str, entity_id: int,
                reason: str, **fields) -> ProxyAction:
        return ProxyAction(
            action_type=action_type.value,
            performed_by=actor.id,
            entity_type=entity_type,
            entity_id=entity_id,
            reason=reason,
            performed_at=utcnow(),
            **fields
        )

    def _cancel_staff_change_requests(self, kpi: KpiDefinition, reason: str, now: datetime, actor: User) -> int:
        """Withdraw the owner's in-flight change requests once the KPI leaves LOCKED_GOALS."""
        requests = self.store.open_staff_change_requests(kpi.id)
        for change_request in requests:
            self.store.cancel_pending(ApprovalEntityType.CHANGE_REQUEST.value, change_request.id,
                                      f"Cancelled: KPI returned to DRAFT by admin. {reason}", now, actor.id)
            change_request.status = ChangeRequestStatus.CANCELLED.value
            change_request.resolution_comment = f"Cancelled by admin: {reason}"
            change_request.resolved_by = actor.id
            change_request.resolved_at = now
        return len(requests)

    # ------------------------------------------------------------------

    def return_to_staff(self, entity_type: str, entity_id: int, reason: str,
                        comment: Optional[str], actor: User) -> ServiceResult:
        denied = self._denied(actor)
        if denied is not None:
            return denied
        if entity_type not in RETURNABLE_TYPES:
            return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Only KPIs and actuals can be returned to staff")
        entity = self.store.get_entity(entity_type, entity_id)
        if entity is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"{entity_type} {entity_id} not found")
        if entity.status == DRAFT:
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"{entity_type} is already in DRAFT")

        now = utcnow()
        before = snapshot(entity)
        owner_id = entity_owner_id(entity)
        cancelled = self.store.cancel_pending(entity_type, entity.id, f"Cancelled: returned to staff by admin. {reason}",
                                              now, actor.id)
        withdrawn = 0
        if isinstance(entity, KpiDefinition):
            withdrawn = self._cancel_staff_change_requests(entity, reason, now, actor)
        entity.status = DRAFT
        entity.admin_note = comment or reason

        profile = PROFILES[entity_type]
        title = entity_title(entity)
        self.engine.notifier.create_notification(
            owner_id,
            NotificationType.SYSTEM,
            f"Your {profile.label} \"{title}\" was returned to you by an administrator. Reason: {reason}",
            {"entity_type": entity_type, "entity_id": entity.id, "reason": reason, "comment": comment},
            profile.link.format(id=entity.id)
        )
        self.engine.audit.log_action(
            "proxy_return_to_staff", entity_type, entity.id, actor.id, actor.role,
            {"reason": reason, "cancelled_approvals": cancelled},
            before_state=before, after_state={"status": entity.status}
        )
        self.store.add(self._record(
            ProxyActionType.RETURN_TO_STAFF, actor, entity_type, entity.id, reason,
            comment=comment, target_user_id=owner_id,
            details={"previous_status": before["status"], "cancelled_approvals": cancelled,
                     "cancelled_change_requests": withdrawn}
        ))
        failure = self.engine._commit()
        if failure is not None:
            return failure
        return ServiceResult.ok(f"{profile.label} returned to staff",
                                {"status": entity.status, "cancelled_approvals": cancelled,
                                 "cancelled_change_requests": withdrawn})

    def approve_as_manager(self, entity_type: str, entity_id: int, level: int, reason: str,
                           comment: Optional[str], actor: User) -> ServiceResult:
        return self._decide_as_manager(ProxyActionType.APPROVE_AS_MANAGER, entity_type, entity_id, level,
                                       reason, comment, actor)

    def reject_as_manager(self, entity_type: str, entity_id: int, level: int, reason: str,
                          comment: Optional[str], actor: User) -> ServiceResult:
        return self._decide_as_manager(ProxyActionType.REJECT_AS_MANAGER, entity_type, entity_id, level,
                                       reason, comment, actor)

    def _decide_as_manager(self, action_type: ProxyActionType, entity_type: str, entity_id: int, level: int,
                           reason: str, comment: Optional[str], actor: User) -> ServiceResult:
        denied = self._denied(actor)
        if denied is not None:
            return denied
        rejecting = action_type == ProxyActionType.REJECT_AS_MANAGER
        if rejecting and not (comment and comment.strip()):
            return ServiceResult.fail(
                ResultCode.VALIDATION_ERROR, "A comment is required when rejecting",
                ["A comment is required when rejecting"]
            )

        loaded = self.engine.load_pending(entity_type, entity_id, level)
        if isinstance(loaded, ServiceResult):
            return loaded
        entity, approval = loaded

        record = self._record(
            action_type, actor, entity_type, entity.id, reason,
            level=level, comment=comment, target_user_id=entity_owner_id(entity),
            previous_approver_id=approval.approver_id,
            details={"approval_id": approval.id}
        )
        approval_extra = {
            "reassigned_by": actor.id,
            "reassigned_at": utcnow(),
            "reassign_reason": f"Admin proxy: {reason}",
        }
        decide = self.engine.reject if rejecting else self.engine.approve
        text = comment.strip() if rejecting else comment
        return decide(entity_type, entity, approval, actor, text,
                      approval_extra=approval_extra, extra_rows=[record], action_prefix="proxy_")

    def reassign_approver(self, entity_type: str, entity_id: int, level: int, new_approver_id: int,
                          reason: str, actor: User) -> ServiceResult:
        denied = self._denied(actor)
        if denied is not None:
            return denied
        loaded = self.engine.load_pending(entity_type, entity_id, level)
        if isinstance(loaded, ServiceResult):
            return loaded
        entity, approval = loaded

        new_approver = self.store.get_user(new_approver_id)
        if new_approver is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"User {new_approver_id} not found")
        errors = []
        if not new_approver.is_active:
            errors.append("New approver must be an active user")
        if new_approver.role not in APPROVER_ROLES:
            errors.append("New approver must be a LINE_MANAGER or MANAGER")
        if new_approver.id == entity_owner_id(entity):
            errors.append("Cannot assign the owner as approver")
        if new_approver.id == approval.approver_id:
            errors.append("Approval is already assigned to this user")
        if errors:
            return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Invalid approver", errors)

        now = utcnow()
        previous = approval.approver_id
        updated = self.store.reassign_pending(approval.id, {
            "approver_id": new_approver.id,
            "reassigned_by": actor.id,
            "reassigned_at": now,
            "reassign_reason": reason,
        })
        if updated == 0:
            self.store.rollback()
            return ServiceResult.fail(ResultCode.ALREADY_PROCESSED, "This approval has already been processed")

        profile = PROFILES[entity_type]
        title = entity_title(entity)
        link = profile.link.format(id=entity.id)
        owner_id = entity_owner_id(entity)
        self.engine.notifier.create_notification(
            new_approver.id,
            profile.approval_required,
            f"{profile.label} \"{title}\" was reassigned to you for approval (level {level})",
            {"entity_type": entity_type, "entity_id": entity.id, "level": level, "kpi_title": title},
            link
        )
        self.engine.notifier.create_notification(
            owner_id,
            NotificationType.SYSTEM,
            f"The level {level} approver for your {profile.label} \"{title}\" was changed to "
            f"{new_approver.display_name}",
            {"entity_type": entity_type, "entity_id": entity.id, "new_approver_id": new_approver.id},
            link
        )
        self.engine.audit.log_action(
            "proxy_reassign_approver", entity_type, entity.id, actor.id, actor.role,
            {"approval_id": approval.id, "level": level, "reason": reason},
            before_state={"approver_id": previous}, after_state={"approver_id": new_approver.id}
        )
        self.store.add(self._record(
            ProxyActionType.REASSIGN_APPROVER, actor, entity_type, entity.id, reason,
            level=level, target_user_id=owner_id,
            previous_approver_id=previous, new_approver_id=new_approver.id,
            details={"approval_id": approval.id}
        ))
        failure = self.engine._commit()
        if failure is not None:
            return failure
        return ServiceResult.ok("Approver reassigned", {"approval_id": approval.id, "approver_id": new_approver.id})

    def issue_change_request(self, entity_type: str, entity_id: int, reason: str, changes: List[Dict[str, Any]],
                             comment: Optional[str], actor: User) -> ServiceResult:
        denied = self._denied(actor)
        if denied is not None:
            return denied
        if entity_type not in RETURNABLE_TYPES:
            return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Change requests target a KPI or an actual")
        entity = self.store.get_entity(entity_type, entity_id)
        if entity is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"{entity_type} {entity_id} not found")

        kpi = entity if isinstance(entity, KpiDefinition) else entity.kpi
        before_values = {field: getattr(kpi, field) for field in CHANGEABLE_FIELDS}
        if isinstance(entity, KpiActual):
            before_values.update({"actual_value": entity.actual_value, "evidence_note": entity.evidence_note})
        requested = [
            {"field": c.get("field"), "old_value": before_values.get(c.get("field")), "new_value": c.get("new_value")}
            for c in changes
        ]

        now = utcnow()
        before = snapshot(entity)
        cancelled = self.store.cancel_pending(entity_type, entity.id,
                                              f"Cancelled: change request issued by admin. {reason}", now, actor.id)
        withdrawn = 0
        if isinstance(entity, KpiDefinition):
            withdrawn = self._cancel_staff_change_requests(entity, reason, now, actor)
        change_request = ChangeRequest(
            kpi_definition_id=kpi.id,
            requester_id=actor.id,
            target_entity_type=entity_type,
            target_entity_id=entity.id,
            origin=ChangeRequestOrigin.ADMIN.value,
            reason=reason,
            changes=requested,
            status=ChangeRequestStatus.OPEN.value,
            submitted_at=now,
        )
        self.store.add(change_request)
        entity.status = DRAFT
        entity.admin_note = comment or reason
        self.store.flush()

        owner_id = entity_owner_id(entity)
        title = entity_title(entity)
        self.engine.notifier.create_notification(
            owner_id,
            NotificationType.CHANGE_REQUEST,
            "",
            {"kpi_title": title, "action": "requested by an administrator", "reason": reason,
             "change_request_id": change_request.id, "entity_type": entity_type, "entity_id": entity.id},
            f"/change-requests/{change_request.id}"
        )
        self.engine.audit.log_action(
            "proxy_issue_change_request", entity_type, entity.id, actor.id, actor.role,
            {"change_request_id": change_request.id, "reason": reason, "cancelled_approvals": cancelled},
            before_state=before, after_state={"status": entity.status}
        )
        self.store.add(self._record(
            ProxyActionType.ISSUE_CHANGE_REQUEST, actor, entity_type, entity.id, reason,
            comment=comment, target_user_id=owner_id,
            details={"change_request_id": change_request.id, "before_values": before_values,
                     "cancelled_approvals": cancelled, "cancelled_change_requests": withdrawn}
        ))
        failure = self.engine._commit()
        if failure is not None:
            return failure
        return ServiceResult.ok("Change request issued",
                                {"change_request_id": change_request.id, "status": entity.status})

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def proxy_actions(self, action_type: Optional[str] = None, performed_by: Optional[int] = None,
                      entity_type: Optional[str] = None, entity_id: Optional[int] = None,
                      limit: int = 100, offset: int = 0) -> List[ProxyAction]:
        query = self.db.query(ProxyAction)
        if action_type:
            query = query.filter(ProxyAction.action_type == action_type)
        if performed_by is not None:
            query = query.filter(ProxyAction.performed_by == performed_by)
        if entity_type:
            query = query.filter(ProxyAction.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(ProxyAction.entity_id == entity_id)
        return query.order_by(ProxyAction.performed_at.desc(), ProxyAction.id.desc()).offset(offset).limit(limit).all()

    def statistics(self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> Dict[str, Any]:
        query = self.db.query(ProxyAction.action_type, func.count(ProxyAction.id))
        if date_from is not None:
            query = query.filter(ProxyAction.performed_at >= date_from)
        if date_to is not None:
            query = query.filter(ProxyAction.performed_at <= date_to)
        by_type = {action.value: 0 for action in ProxyActionType}
        for action_type, count in query.group_by(ProxyAction.action_type).all():
            by_type[action_type] = count

        admins = self.db.query(ProxyAction.performed_by, func.count(ProxyAction.id))
        if date_from is not None:
            admins = admins.filter(ProxyAction.performed_at >= date_from)
        if date_to is not None:
            admins = admins.filter(ProxyAction.performed_at <= date_to)
        by_admin = {str(user_id): count for user_id, count in admins.group_by(ProxyAction.performed_by).all()}

        return {
            "total": sum(by_type.values()),
            "by_type": by_type,
            "by_admin": by_admin,
            "date_from": date_from.isoformat() if date_from else None,
            "date_to": date_to.isoformat() if date_to else None,
        }
