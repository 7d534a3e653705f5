from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class NotificationType(str, enum.Enum):
    KPI_CREATED = "KPI_CREATED"
    KPI_SUBMITTED = "KPI_SUBMITTED"
    KPI_APPROVED = "KPI_APPROVED"
    KPI_REJECTED = "KPI_REJECTED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    ACTUAL_SUBMITTED = "ACTUAL_SUBMITTED"
    ACTUAL_APPROVED = "ACTUAL_APPROVED"
    ACTUAL_REJECTED = "ACTUAL_REJECTED"
    ACTUAL_APPROVAL_REQUIRED = "ACTUAL_APPROVAL_REQUIRED"
    CYCLE_OPENED = "CYCLE_OPENED"
    CYCLE_CLOSING_SOON = "CYCLE_CLOSING_SOON"
    CYCLE_CLOSED = "CYCLE_CLOSED"
    CHANGE_REQUEST = "CHANGE_REQUEST"
    REMINDER = "REMINDER"
    SYSTEM = "SYSTEM"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), default=NotificationType.SYSTEM.value, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(10), default=NotificationPriority.LOW.value, nullable=False)
    action_required = Column(Boolean, default=False, nullable=False)
    link = Column(String(255), nullable=True)  # Optional link to navigate to
    payload = Column("metadata", JSON, nullable=True)
    is_read = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="notifications")
