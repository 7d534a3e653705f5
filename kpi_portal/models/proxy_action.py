from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class ProxyActionType(str, enum.Enum):
    RETURN_TO_STAFF = "RETURN_TO_STAFF"
    APPROVE_AS_MANAGER = "APPROVE_AS_MANAGER"
    REJECT_AS_MANAGER = "REJECT_AS_MANAGER"
    REASSIGN_APPROVER = "REASSIGN_APPROVER"
    ISSUE_CHANGE_REQUEST = "ISSUE_CHANGE_REQUEST"


class ProxyAction(Base):
    """Admin actions taken on behalf of staff or approvers. Append-only."""
    __tablename__ = "proxy_actions"

    id = Column(Integer, primary_key=True, index=True)
    action_type = Column(String(32), nullable=False, index=True)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    target_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(Integer, nullable=False, index=True)
    level = Column(Integer, nullable=True)
    reason = Column(Text, nullable=False)
    comment = Column(Text, nullable=True)
    previous_approver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    new_approver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    details = Column("metadata", JSON, nullable=True)
    performed_at = Column(DateTime(timezone=True), default=utcnow, index=True)
