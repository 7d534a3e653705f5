from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    RETRYING = "RETRYING"
    FAILED = "FAILED"


RUNNABLE_TASK_STATUSES = (TaskStatus.PENDING.value, TaskStatus.RETRYING.value)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(64), nullable=False, index=True)
    status = Column(String(20), default=TaskStatus.PENDING.value, nullable=False, index=True)
    payload = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    retries = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
