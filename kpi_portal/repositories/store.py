"""
Entity store: the single persistence port used by the workflow services.

Wraps the request's SQLAlchemy session. Reads go through the ORM; approval
decisions use conditional updates so two concurrent deciders cannot both win.
"""
from datetime import datetime
from typing import Dict, List, Optional, Type

from sqlalchemy import or_
from sqlalchemy.orm import Session

from kpi_portal.models.approval import Approval, ApprovalEntityType, ApprovalStatus
from kpi_portal.models.change_request import ChangeRequest, ChangeRequestOrigin, ChangeRequestStatus
from kpi_portal.models.cycle import Cycle, CycleStatus
from kpi_portal.models.kpi import KpiDefinition, WEIGHT_EXCLUDED_STATUSES
from kpi_portal.models.kpi_actual import KpiActual
from kpi_portal.models.user import User

OPEN_STAFF_REQUEST_STATUSES = (
    ChangeRequestStatus.DRAFT.value,
    ChangeRequestStatus.WAITING_LINE_MGR.value,
    ChangeRequestStatus.WAITING_MANAGER.value,
)

ENTITY_MODELS: Dict[str, Type] = {
    ApprovalEntityType.KPI.value: KpiDefinition,
    ApprovalEntityType.ACTUAL.value: KpiActual,
    ApprovalEntityType.CHANGE_REQUEST.value: ChangeRequest,
}


class EntityStore:
    def __init__(self, db: Session):
        self.db = db

    # ---- Entities ----

    def get_entity(self, entity_type: str, entity_id: int):
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            return None
        return self.db.get(model, entity_id)

    def get_user(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return self.db.get(User, user_id)

    def get_cycle(self, cycle_id: Optional[int]) -> Optional[Cycle]:
        if cycle_id is None:
            return None
        return self.db.get(Cycle, cycle_id)

    def active_cycles(self) -> List[Cycle]:
        return self.db.query(Cycle).filter(Cycle.status == CycleStatus.ACTIVE.value).all()

    def owner_kpis_in_cycle(self, user_id: int, cycle_id: int, include_id: Optional[int] = None) -> List[KpiDefinition]:
        """Owner's KPIs that count toward the weight sum, plus ``include_id`` whatever its status."""
        counted = KpiDefinition.status.notin_(WEIGHT_EXCLUDED_STATUSES)
        if include_id is not None:
            counted = or_(counted, KpiDefinition.id == include_id)
        return self.db.query(KpiDefinition).filter(
            KpiDefinition.user_id == user_id,
            KpiDefinition.cycle_id == cycle_id,
            counted
        ).order_by(KpiDefinition.id).all()

    # ---- Approvals ----

    def get_approval(self, approval_id: int) -> Optional[Approval]:
        return self.db.get(Approval, approval_id)

    def pending_approval(self, entity_type: str, entity_id: int, level: int) -> Optional[Approval]:
        return self.db.query(Approval).filter(
            Approval.entity_type == entity_type,
            Approval.entity_id == entity_id,
            Approval.level == level,
            Approval.status == ApprovalStatus.PENDING.value
        ).first()

    def pending_approvals_for_entity(self, entity_type: str, entity_id: int) -> List[Approval]:
        return self.db.query(Approval).filter(
            Approval.entity_type == entity_type,
            Approval.entity_id == entity_id,
            Approval.status == ApprovalStatus.PENDING.value
        ).order_by(Approval.level).all()

    def approvals_for_entity(self, entity_type: str, entity_id: int) -> List[Approval]:
        return self.db.query(Approval).filter(
            Approval.entity_type == entity_type,
            Approval.entity_id == entity_id
        ).order_by(Approval.level, Approval.created_at, Approval.id).all()

    def approvals_for_approver(self, approver_id: int, status: str) -> List[Approval]:
        query = self.db.query(Approval).filter(
            Approval.approver_id == approver_id,
            Approval.status == status
        )
        if status == ApprovalStatus.PENDING.value:
            return query.order_by(Approval.created_at, Approval.id).all()
        return query.order_by(Approval.decided_at.desc(), Approval.id.desc()).all()

    def all_pending_approvals(self) -> List[Approval]:
        return self.db.query(Approval).filter(
            Approval.status == ApprovalStatus.PENDING.value
        ).order_by(Approval.created_at, Approval.id).all()

    def open_staff_change_requests(self, kpi_id: int) -> List[ChangeRequest]:
        """STAFF requests against the KPI that have not been approved, cancelled or resolved."""
        return self.db.query(ChangeRequest).filter(
            ChangeRequest.kpi_definition_id == kpi_id,
            ChangeRequest.origin == ChangeRequestOrigin.STAFF.value,
            ChangeRequest.status.in_(OPEN_STAFF_REQUEST_STATUSES)
        ).order_by(ChangeRequest.id).all()

    def add_approval(self, entity_type: str, entity_id: int, level: int, approver_id: int, now: datetime) -> Approval:
        approval = Approval(
            entity_type=entity_type,
            entity_id=entity_id,
            level=level,
            approver_id=approver_id,
            status=ApprovalStatus.PENDING.value,
            created_at=now
        )
        self.db.add(approval)
        return approval

    def decide_approval(
        self,
        approval_id: int,
        status: str,
        comment: Optional[str],
        decided_by: int,
        now: datetime,
        extra: Optional[dict] = None
    ) -> int:
        """Move a PENDING approval to ``status``. Returns the affected row count (0 if already decided)."""
        values = {
            Approval.status: status,
            Approval.comment: comment,
            Approval.decided_by: decided_by,
            Approval.decided_at: now,
        }
        for key, value in (extra or {}).items():
            values[getattr(Approval, key)] = value
        return self.db.query(Approval).filter(
            Approval.id == approval_id,
            Approval.status == ApprovalStatus.PENDING.value
        ).update(values, synchronize_session="fetch")

    def reassign_pending(self, approval_id: int, values: dict) -> int:
        """Change who decides a PENDING approval without touching level or status."""
        return self.db.query(Approval).filter(
            Approval.id == approval_id,
            Approval.status == ApprovalStatus.PENDING.value
        ).update({getattr(Approval, k): v for k, v in values.items()}, synchronize_session="fetch")

    def cancel_pending(self, entity_type: str, entity_id: int, comment: str, now: datetime, decided_by: Optional[int] = None) -> int:
        return self.db.query(Approval).filter(
            Approval.entity_type == entity_type,
            Approval.entity_id == entity_id,
            Approval.status == ApprovalStatus.PENDING.value
        ).update({
            Approval.status: ApprovalStatus.CANCELLED.value,
            Approval.comment: comment,
            Approval.decided_at: now,
            Approval.decided_by: decided_by,
        }, synchronize_session="fetch")

    # ---- Unit of work ----

    def add(self, obj):
        self.db.add(obj)
        return obj

    def flush(self):
        self.db.flush()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
