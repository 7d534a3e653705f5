from sqlalchemy import Column, Integer, String, DateTime, JSON
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, nullable=True)
    user_id = Column(Integer, nullable=True, index=True)
    user_role = Column(String(32), nullable=True)
    details = Column(JSON, nullable=True)
    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
