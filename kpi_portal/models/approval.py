"""
Approval rows: one per (entity, level) step of the two-level chain.

Level 1 is decided by the owner's line manager, level 2 by that line
manager's own manager. At most one row per (entity, level) is PENDING.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class ApprovalEntityType(str, enum.Enum):
    KPI = "KPI"
    ACTUAL = "ACTUAL"
    CHANGE_REQUEST = "CHANGE_REQUEST"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ApprovalLevel(int, enum.Enum):
    LINE_MANAGER = 1
    MANAGER = 2


FINAL_LEVEL = ApprovalLevel.MANAGER.value

# Entity status while the approval at each level is pending
WAITING_STATUS_BY_LEVEL = {
    ApprovalLevel.LINE_MANAGER.value: "WAITING_LINE_MGR",
    ApprovalLevel.MANAGER.value: "WAITING_MANAGER",
}

LEVEL_LABELS = {
    ApprovalLevel.LINE_MANAGER.value: "Level 1: Line Manager (N+1)",
    ApprovalLevel.MANAGER.value: "Level 2: Manager (N+2)",
}


class ApprovalDecision(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class Approval(Base):
    __tablename__ = "approvals"
    __table_args__ = (
        Index("ix_approvals_entity", "entity_type", "entity_id", "level"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(Integer, nullable=False)
    level = Column(Integer, nullable=False)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False, index=True)

    comment = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decided_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    delegated_from = Column(Integer, ForeignKey("users.id"), nullable=True)
    delegated_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    delegated_at = Column(DateTime(timezone=True), nullable=True)

    reassigned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reassigned_at = Column(DateTime(timezone=True), nullable=True)
    reassign_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    approver = relationship("User", foreign_keys=[approver_id])

    def __repr__(self):
        return f"<Approval {self.id} {self.entity_type}:{self.entity_id} L{self.level} {self.status}>"

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING.value
