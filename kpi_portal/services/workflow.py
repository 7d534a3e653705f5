"""
Two-level approval workflow for KPIs, actuals and staff change requests.

State machine (all three entity types):

    DRAFT|REJECTED  --submit-->           WAITING_LINE_MGR  (level 1 PENDING)
    WAITING_LINE_MGR --approve level 1--> WAITING_MANAGER   (level 2 PENDING)
    WAITING_MANAGER  --approve level 2--> APPROVED          (KPI: lock task -> LOCKED_GOALS)
    WAITING_*        --reject-->          DRAFT             (rejection_reason set)

Every operation validates before mutating and finishes in a single commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from kpi_portal.core.clock import utcnow, as_utc
from kpi_portal.models.approval import (
    Approval, ApprovalEntityType, ApprovalStatus, ApprovalDecision,
    FINAL_LEVEL, WAITING_STATUS_BY_LEVEL, LEVEL_LABELS,
)
from kpi_portal.models.change_request import ChangeRequest, ChangeRequestOrigin, ChangeResolution
from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.kpi_actual import KpiActual
from kpi_portal.models.notification import NotificationType
from kpi_portal.models.user import User
from kpi_portal.repositories.store import EntityStore
from kpi_portal.services.audit import AuditService
from kpi_portal.services.notification import NotificationDispatcher
from kpi_portal.services.results import ServiceResult, ResultCode
from kpi_portal.services.scoring import calculate_score
from kpi_portal.services import validation

logger = logging.getLogger(__name__)

LOCK_TASK = "lock_kpi_goals"

SUBMITTABLE_STATUSES = {"DRAFT", "REJECTED"}
DRAFT = "DRAFT"
APPROVED = "APPROVED"


@dataclass(frozen=True)
class EntityProfile:
    label: str
    approval_required: NotificationType
    submitted: NotificationType
    approved: NotificationType
    rejected: NotificationType
    link: str


PROFILES: Dict[str, EntityProfile] = {
    ApprovalEntityType.KPI.value: EntityProfile(
        "KPI", NotificationType.APPROVAL_REQUIRED, NotificationType.KPI_SUBMITTED,
        NotificationType.KPI_APPROVED, NotificationType.KPI_REJECTED, "/kpis/{id}"),
    ApprovalEntityType.ACTUAL.value: EntityProfile(
        "Actual", NotificationType.ACTUAL_APPROVAL_REQUIRED, NotificationType.ACTUAL_SUBMITTED,
        NotificationType.ACTUAL_APPROVED, NotificationType.ACTUAL_REJECTED, "/actuals/{id}"),
    ApprovalEntityType.CHANGE_REQUEST.value: EntityProfile(
        "Change request", NotificationType.APPROVAL_REQUIRED, NotificationType.CHANGE_REQUEST,
        NotificationType.CHANGE_REQUEST, NotificationType.CHANGE_REQUEST, "/change-requests/{id}"),
}


def entity_owner_id(entity) -> Optional[int]:
    """KPIs carry ``user_id``; actuals and change requests inherit the KPI owner."""
    return entity.user_id


def entity_kpi(entity) -> Optional[KpiDefinition]:
    return entity if isinstance(entity, KpiDefinition) else entity.kpi


def entity_title(entity) -> str:
    kpi = entity_kpi(entity)
    return kpi.title if kpi is not None else ""


def snapshot(entity) -> Dict[str, Any]:
    data = {"status": entity.status, "version": entity.version}
    if getattr(entity, "rejection_reason", None):
        data["rejection_reason"] = entity.rejection_reason
    return data


def recompute_actual(actual: KpiActual) -> None:
    kpi = actual.kpi
    if kpi is None or actual.actual_value is None:
        actual.percentage, actual.score, actual.band = 0, 0, None
        return
    result = calculate_score(kpi.type, actual.actual_value, kpi.target, kpi.scoring_scale)
    actual.percentage, actual.score, actual.band = result.percentage, result.score, result.band


def apply_changes(kpi: KpiDefinition, changes: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Write requested field values onto the KPI, returning the changes with fresh old values."""
    applied = []
    for change in changes:
        field = change["field"]
        new_value = change.get("new_value")
        if field == "target" and new_value is not None:
            new_value = float(new_value)
        applied.append({"field": field, "old_value": getattr(kpi, field), "new_value": new_value})
        setattr(kpi, field, new_value)
    if kpi.actual is not None and any(c["field"] == "target" for c in applied):
        recompute_actual(kpi.actual)
    return applied


def lock_kpi_goals(db: Session, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Task handler: APPROVED -> LOCKED_GOALS. Idempotent; the caller commits.
    """
    kpi = db.get(KpiDefinition, payload["kpi_id"])
    if kpi is None:
        return {"locked": False, "reason": "not_found"}
    if kpi.status == KpiStatus.LOCKED_GOALS.value:
        return {"locked": False, "reason": "already_locked"}
    if kpi.status != KpiStatus.APPROVED.value:
        logger.info(f"Skipping goal lock for KPI {kpi.id} in status {kpi.status}")
        return {"locked": False, "reason": f"status_{kpi.status}"}

    before = snapshot(kpi)
    kpi.status = KpiStatus.LOCKED_GOALS.value
    kpi.locked_at = utcnow()
    AuditService(db).log_action(
        action="kpi_goals_locked",
        entity_type=ApprovalEntityType.KPI.value,
        entity_id=kpi.id,
        user_id=None,
        user_role="system",
        details={"trigger": payload.get("trigger", "final_approval")},
        before_state=before,
        after_state={"status": kpi.status}
    )
    return {"locked": True, "kpi_id": kpi.id}


class WorkflowEngine:
    """
    Approval workflow over the entity store.

    Collaborators are injected so the same engine serves HTTP requests, the
    admin proxy and the escalation sweep.
    """

    def __init__(self, store: EntityStore, notifier: NotificationDispatcher, audit: AuditService, tasks):
        self.store = store
        self.notifier = notifier
        self.audit = audit
        self.tasks = tasks

    # ------------------------------------------------------------------
    # Approver resolution
    # ------------------------------------------------------------------

    def resolve_approver(self, owner: User, level: int) -> Optional[User]:
        """
        Level 1 is the owner's manager; level 2 is that manager's manager.
        Only ACTIVE users qualify and no level is skipped.
        """
        if owner is None:
            return None
        line_manager = self.store.get_user(owner.manager_id)
        if level == 1:
            candidate = line_manager
        elif level == 2:
            candidate = self.store.get_user(line_manager.manager_id) if line_manager else None
        else:
            return None
        if candidate is None or not candidate.is_active:
            return None
        return candidate

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit_for_approval(self, entity_type: str, entity_id: int, actor: User) -> ServiceResult:
        profile = PROFILES.get(entity_type)
        entity = self.store.get_entity(entity_type, entity_id)
        if profile is None or entity is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"{entity_type} {entity_id} not found")

        owner_id = entity_owner_id(entity)
        if actor.id != owner_id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, f"Only the owner can submit this {profile.label}")

        if entity.status not in SUBMITTABLE_STATUSES:
            return ServiceResult.fail(
                ResultCode.INVALID_STATE,
                f"Cannot submit a {profile.label} in status {entity.status}"
            )

        errors = self._submission_errors(entity_type, entity)
        if errors:
            return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Validation failed", errors)

        owner = self.store.get_user(owner_id)
        approver = self.resolve_approver(owner, 1)
        if approver is None:
            return ServiceResult.fail(ResultCode.NO_APPROVER, "No active line manager (level 1) found for the owner")

        now = utcnow()
        before = snapshot(entity)
        entity.status = WAITING_STATUS_BY_LEVEL[1]
        entity.submitted_at = now
        entity.rejection_reason = None
        approval = self.store.add_approval(entity_type, entity.id, 1, approver.id, now)

        title = entity_title(entity)
        link = profile.link.format(id=entity.id)
        self.notifier.create_notification(
            approver.id,
            profile.approval_required,
            f"{owner.display_name} submitted {profile.label} \"{title}\" for your approval ({LEVEL_LABELS[1]})",
            {"entity_type": entity_type, "entity_id": entity.id, "level": 1, "kpi_title": title},
            link
        )
        self.notifier.create_notification(
            owner.id,
            profile.submitted,
            f"Your {profile.label} \"{title}\" has been submitted for approval",
            {"entity_type": entity_type, "entity_id": entity.id, "kpi_title": title, "action": "submitted"},
            link
        )
        self.audit.log_action(
            action=f"{entity_type.lower()}_submitted",
            entity_type=entity_type,
            entity_id=entity.id,
            user_id=actor.id,
            user_role=actor.role,
            details={"approver_id": approver.id, "level": 1},
            before_state=before,
            after_state={"status": entity.status}
        )

        failure = self._commit()
        if failure is not None:
            return failure
        logger.info(f"{entity_type} {entity.id} submitted; level 1 approver {approver.id}")
        return ServiceResult.ok(
            f"{profile.label} submitted for approval",
            {"status": entity.status, "approval_id": approval.id, "approver_id": approver.id}
        )

    def _submission_errors(self, entity_type: str, entity) -> List[str]:
        if entity_type == ApprovalEntityType.KPI.value:
            errors = validation.validate_kpi_fields(entity)
            cycle = self.store.get_cycle(entity.cycle_id)
            cycle_errors = validation.validate_cycle_open_for_submission(cycle)
            errors.extend(cycle_errors)
            if cycle is not None and not cycle_errors:
                kpis = self.store.owner_kpis_in_cycle(entity.user_id, entity.cycle_id, include_id=entity.id)
                errors.extend(validation.validate_kpi_set(kpis, cycle))
            return errors
        if entity_type == ApprovalEntityType.ACTUAL.value:
            kpi = entity.kpi
            cycle = self.store.get_cycle(kpi.cycle_id) if kpi else None
            return validation.validate_actual_submission(entity, cycle)
        if entity.origin != ChangeRequestOrigin.STAFF.value:
            return ["Admin-issued change requests are resolved by the owner, not submitted"]
        return validation.validate_change_request_submission(entity)

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def process_approval(
        self,
        entity_type: str,
        entity_id: int,
        level: int,
        decision: str,
        comment: Optional[str],
        actor: User
    ) -> ServiceResult:
        loaded = self.load_pending(entity_type, entity_id, level)
        if isinstance(loaded, ServiceResult):
            return loaded
        entity, approval = loaded

        if approval.approver_id != actor.id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "You are not the assigned approver for this step")

        try:
            decision = ApprovalDecision(decision.upper() if isinstance(decision, str) else decision)
        except ValueError:
            return ServiceResult.fail(
                ResultCode.VALIDATION_ERROR, "Invalid decision",
                [f"Decision must be one of {[d.value for d in ApprovalDecision]}"]
            )
        if decision == ApprovalDecision.REJECT:
            if not comment or not comment.strip():
                return ServiceResult.fail(
                    ResultCode.VALIDATION_ERROR, "A comment is required when rejecting",
                    ["A comment is required when rejecting"]
                )
            return self.reject(entity_type, entity, approval, actor, comment.strip())
        return self.approve(entity_type, entity, approval, actor, comment)

    def load_pending(self, entity_type: str, entity_id: int, level: int):
        """(entity, pending approval) for a decision at ``level``, or a failed result."""
        entity = self.store.get_entity(entity_type, entity_id)
        if entity is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"{entity_type} {entity_id} not found")
        if level not in WAITING_STATUS_BY_LEVEL:
            return ServiceResult.fail(ResultCode.VALIDATION_ERROR, f"Invalid approval level {level}", ["Level must be 1 or 2"])
        approval = self.store.pending_approval(entity_type, entity_id, level)
        if approval is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"No pending approval at level {level}")
        if entity.status != WAITING_STATUS_BY_LEVEL[level]:
            return ServiceResult.fail(
                ResultCode.INVALID_STATE,
                f"Entity is {entity.status}; level {level} decisions need {WAITING_STATUS_BY_LEVEL[level]}"
            )
        return entity, approval

    def approve(
        self,
        entity_type: str,
        entity,
        approval: Approval,
        actor: User,
        comment: Optional[str],
        approval_extra: Optional[dict] = None,
        extra_rows: Sequence = (),
        action_prefix: str = ""
    ) -> ServiceResult:
        """Approve ``approval`` and advance the entity. Shared by approvers and the admin proxy."""
        profile = PROFILES[entity_type]
        level = approval.level
        if isinstance(entity, ChangeRequest) and (entity.kpi is None or entity.kpi.status != KpiStatus.LOCKED_GOALS.value):
            return ServiceResult.fail(
                ResultCode.INVALID_STATE,
                "The KPI is no longer LOCKED_GOALS; this change request cannot be approved"
            )
        owner = self.store.get_user(entity_owner_id(entity))

        next_approver = None
        if level < FINAL_LEVEL:
            next_approver = self.resolve_approver(owner, level + 1)
            if next_approver is None:
                return ServiceResult.fail(ResultCode.NO_APPROVER, f"No active approver found for level {level + 1}")

        now = utcnow()
        if self.store.decide_approval(approval.id, ApprovalStatus.APPROVED.value, comment, actor.id, now, approval_extra) == 0:
            self.store.rollback()
            return ServiceResult.fail(ResultCode.ALREADY_PROCESSED, "This approval has already been processed")

        before = snapshot(entity)
        title = entity_title(entity)
        link = profile.link.format(id=entity.id)
        data: Dict[str, Any] = {"level": level}

        if isinstance(entity, KpiDefinition):
            setattr(entity, f"approved_by_level{level}", actor.id)
            setattr(entity, f"approved_at_level{level}", now)

        if next_approver is not None:
            entity.status = WAITING_STATUS_BY_LEVEL[level + 1]
            new_approval = self.store.add_approval(entity_type, entity.id, level + 1, next_approver.id, now)
            self.notifier.create_notification(
                next_approver.id,
                profile.approval_required,
                f"{profile.label} \"{title}\" from {owner.display_name} needs your approval ({LEVEL_LABELS[level + 1]})",
                {"entity_type": entity_type, "entity_id": entity.id, "level": level + 1, "kpi_title": title},
                link
            )
            self.notifier.create_notification(
                owner.id,
                profile.approved,
                f"Your {profile.label} \"{title}\" was approved at level {level}",
                {"level": f" at level {level}", "kpi_title": title, "action": f"approved at level {level}",
                 "entity_type": entity_type, "entity_id": entity.id},
                link
            )
            data["next_approver_id"] = next_approver.id
        else:
            entity.status = APPROVED
            entity.approved_at = now
            new_approval = None
            if isinstance(entity, KpiActual):
                entity.approved_by = actor.id
            if isinstance(entity, KpiDefinition):
                self.tasks.enqueue(LOCK_TASK, {"kpi_id": entity.id, "trigger": "final_approval"})
            if isinstance(entity, ChangeRequest):
                entity.changes = apply_changes(entity.kpi, entity.changes or [])
                entity.resolution = ChangeResolution.APPLIED.value
                entity.resolved_by = actor.id
                entity.resolved_at = now
                data["applied_changes"] = entity.changes
            self.notifier.create_notification(
                owner.id,
                profile.approved,
                f"Your {profile.label} \"{title}\" has been fully approved",
                {"level": " (final)", "kpi_title": title, "action": "approved and applied",
                 "entity_type": entity_type, "entity_id": entity.id},
                link
            )

        self.audit.log_action(
            action=f"{action_prefix}{entity_type.lower()}_approved_level_{level}",
            entity_type=entity_type,
            entity_id=entity.id,
            user_id=actor.id,
            user_role=actor.role,
            details={"level": level, "comment": comment, "approval_id": approval.id},
            before_state=before,
            after_state={"status": entity.status}
        )
        for row in extra_rows:
            self.store.add(row)

        failure = self._commit()
        if failure is not None:
            return failure
        data["status"] = entity.status
        if new_approval is not None:
            data["approval_id"] = new_approval.id
        logger.info(f"{entity_type} {entity.id} approved at level {level} by user {actor.id}")
        return ServiceResult.ok(f"{profile.label} approved at level {level}", data)

    def reject(
        self,
        entity_type: str,
        entity,
        approval: Approval,
        actor: User,
        comment: str,
        approval_extra: Optional[dict] = None,
        extra_rows: Sequence = (),
        action_prefix: str = ""
    ) -> ServiceResult:
        """Reject ``approval``; the entity returns to DRAFT and other pending steps are cancelled."""
        profile = PROFILES[entity_type]
        level = approval.level
        now = utcnow()
        if self.store.decide_approval(approval.id, ApprovalStatus.REJECTED.value, comment, actor.id, now, approval_extra) == 0:
            self.store.rollback()
            return ServiceResult.fail(ResultCode.ALREADY_PROCESSED, "This approval has already been processed")

        before = snapshot(entity)
        self.store.cancel_pending(entity_type, entity.id, f"Cancelled: rejected at level {level}", now, actor.id)
        entity.status = DRAFT
        entity.rejection_reason = comment
        entity.rejected_by = actor.id
        entity.rejected_at = now

        title = entity_title(entity)
        self.notifier.create_notification(
            entity_owner_id(entity),
            profile.rejected,
            f"Your {profile.label} \"{title}\" was rejected at level {level}",
            {"reason": comment, "level": level, "kpi_title": title, "action": "rejected",
             "entity_type": entity_type, "entity_id": entity.id},
            profile.link.format(id=entity.id)
        )
        self.audit.log_action(
            action=f"{action_prefix}{entity_type.lower()}_rejected_level_{level}",
            entity_type=entity_type,
            entity_id=entity.id,
            user_id=actor.id,
            user_role=actor.role,
            details={"level": level, "comment": comment, "approval_id": approval.id},
            before_state=before,
            after_state={"status": entity.status}
        )
        for row in extra_rows:
            self.store.add(row)

        failure = self._commit()
        if failure is not None:
            return failure
        logger.info(f"{entity_type} {entity.id} rejected at level {level} by user {actor.id}")
        return ServiceResult.ok(f"{profile.label} rejected", {"status": entity.status, "level": level})

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    def delegate_approval(self, approval_id: int, delegate_to_user_id: int, reason: Optional[str], actor: User) -> ServiceResult:
        approval = self.store.get_approval(approval_id)
        if approval is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"Approval {approval_id} not found")
        if not approval.is_pending:
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"Approval is {approval.status}; only pending approvals can be delegated")
        if approval.approver_id != actor.id and not actor.is_admin:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the current approver or an admin can delegate")

        entity = self.store.get_entity(approval.entity_type, approval.entity_id)
        delegate = self.store.get_user(delegate_to_user_id)
        errors = []
        if delegate is None or not delegate.is_active:
            errors.append("Delegate must be an active user")
        elif entity is not None and delegate.id == entity_owner_id(entity):
            errors.append("Cannot delegate to the owner of the item")
        elif delegate.id == approval.approver_id:
            errors.append("Approval is already assigned to this user")
        if errors:
            return ServiceResult.fail(ResultCode.VALIDATION_ERROR, "Invalid delegate", errors)

        now = utcnow()
        previous = approval.approver_id
        updated = self.store.reassign_pending(approval.id, {
            "approver_id": delegate.id,
            "delegated_from": previous,
            "delegated_to": delegate.id,
            "delegated_at": now,
        })
        if updated == 0:
            self.store.rollback()
            return ServiceResult.fail(ResultCode.ALREADY_PROCESSED, "This approval has already been processed")

        profile = PROFILES[approval.entity_type]
        title = entity_title(entity) if entity is not None else ""
        self.notifier.create_notification(
            delegate.id,
            profile.approval_required,
            f"{actor.display_name} delegated {profile.label} \"{title}\" to you ({LEVEL_LABELS[approval.level]})"
            + (f". Reason: {reason}" if reason else ""),
            {"entity_type": approval.entity_type, "entity_id": approval.entity_id, "level": approval.level,
             "delegated_from": previous},
            profile.link.format(id=approval.entity_id)
        )
        self.audit.log_action(
            action="approval_delegated",
            entity_type=approval.entity_type,
            entity_id=approval.entity_id,
            user_id=actor.id,
            user_role=actor.role,
            details={"approval_id": approval.id, "level": approval.level, "reason": reason},
            before_state={"approver_id": previous},
            after_state={"approver_id": delegate.id}
        )
        failure = self._commit()
        if failure is not None:
            return failure
        return ServiceResult.ok("Approval delegated", {"approval_id": approval.id, "approver_id": delegate.id})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def approval_queue(self, user: User, now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        now = now or utcnow()
        queue = {"pending": [], "approved": [], "rejected": []}
        for key, status in (("pending", ApprovalStatus.PENDING), ("approved", ApprovalStatus.APPROVED),
                            ("rejected", ApprovalStatus.REJECTED)):
            for approval in self.store.approvals_for_approver(user.id, status.value):
                queue[key].append(self._queue_item(approval, now))
        return queue

    def _queue_item(self, approval: Approval, now: datetime) -> Dict[str, Any]:
        entity = self.store.get_entity(approval.entity_type, approval.entity_id)
        submitter = self.store.get_user(entity_owner_id(entity)) if entity is not None else None
        return {
            "approval": approval,
            "entity": self.entity_summary(approval.entity_type, entity),
            "submitter": {
                "id": submitter.id,
                "full_name": submitter.display_name,
                "email": submitter.email,
                "department": submitter.department,
            } if submitter else None,
            "days_pending": days_between(approval.created_at, now) if approval.is_pending else None,
        }

    @staticmethod
    def entity_summary(entity_type: str, entity) -> Optional[Dict[str, Any]]:
        if entity is None:
            return None
        summary = {"id": entity.id, "type": entity_type, "status": entity.status, "title": entity_title(entity)}
        kpi = entity_kpi(entity)
        if kpi is not None:
            summary.update({"kpi_id": kpi.id, "cycle_id": kpi.cycle_id, "weight": kpi.weight, "target": kpi.target})
        if isinstance(entity, KpiActual):
            summary.update({"actual_value": entity.actual_value, "percentage": entity.percentage, "score": entity.score})
        if isinstance(entity, ChangeRequest):
            summary.update({"reason": entity.reason, "changes": entity.changes})
        return summary

    def approval_history(self, entity_type: str, entity_id: int) -> List[Approval]:
        return self.store.approvals_for_entity(entity_type, entity_id)

    def workflow_state(self, entity_type: str, entity_id: int) -> Optional[Dict[str, Any]]:
        entity = self.store.get_entity(entity_type, entity_id)
        if entity is None:
            return None
        history = self.approval_history(entity_type, entity_id)

        steps = []
        for level in sorted(LEVEL_LABELS):
            rows = [a for a in history if a.level == level]
            latest = rows[-1] if rows else None
            approver = self.store.get_user(latest.approver_id) if latest else None
            steps.append({
                "level": level,
                "label": LEVEL_LABELS[level],
                "status": latest.status if latest else "NOT_STARTED",
                "approver_id": latest.approver_id if latest else None,
                "approver_name": approver.display_name if approver else None,
                "decided_at": latest.decided_at if latest else None,
                "comment": latest.comment if latest else None,
            })

        pending = [a for a in history if a.is_pending]
        completed = entity.status in (KpiStatus.APPROVED.value, KpiStatus.LOCKED_GOALS.value)
        if completed or getattr(entity, "resolution", None) is not None:
            overall = "COMPLETED"
        elif pending:
            overall = "IN_PROGRESS"
        elif entity.rejection_reason:
            overall = "REJECTED"
        else:
            overall = "NOT_STARTED"

        return {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "entity_status": entity.status,
            "current_level": pending[0].level if pending else None,
            "overall_status": overall,
            "steps": steps,
        }

    # ------------------------------------------------------------------
    # Goal lock
    # ------------------------------------------------------------------

    def lock_goals(self, kpi_id: int) -> ServiceResult:
        kpi = self.store.get_entity(ApprovalEntityType.KPI.value, kpi_id)
        if kpi is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, f"KPI {kpi_id} not found")
        if kpi.status not in (KpiStatus.APPROVED.value, KpiStatus.LOCKED_GOALS.value):
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"Cannot lock goals of a KPI in status {kpi.status}")
        outcome = lock_kpi_goals(self.store.db, {"kpi_id": kpi_id, "trigger": "manual"})
        failure = self._commit()
        if failure is not None:
            return failure
        return ServiceResult.ok("KPI goals locked", {"status": kpi.status, **outcome})

    # ------------------------------------------------------------------

    def _commit(self) -> Optional[ServiceResult]:
        try:
            self.store.commit()
        except StaleDataError:
            self.store.rollback()
            logger.warning("Concurrent modification detected; workflow change rolled back")
            return ServiceResult.fail(ResultCode.CONFLICT, "The item was modified concurrently; reload and retry")
        except Exception:
            self.store.rollback()
            raise
        return None


def days_between(start: Optional[datetime], end: datetime) -> int:
    if start is None:
        return 0
    return max((as_utc(end) - as_utc(start)).days, 0)


def build_engine(db: Session, tasks=None) -> WorkflowEngine:
    """Wire an engine onto one session."""
    from kpi_portal.services.task_service import TaskService
    return WorkflowEngine(
        store=EntityStore(db),
        notifier=NotificationDispatcher(db),
        audit=AuditService(db),
        tasks=tasks or TaskService(db)
    )
