from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class ActualStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    WAITING_LINE_MGR = "WAITING_LINE_MGR"
    WAITING_MANAGER = "WAITING_MANAGER"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


EDITABLE_ACTUAL_STATUSES = {ActualStatus.DRAFT.value, ActualStatus.REJECTED.value}


class KpiActual(Base):
    __tablename__ = "kpi_actuals"

    id = Column(Integer, primary_key=True, index=True)
    kpi_definition_id = Column(Integer, ForeignKey("kpi_definitions.id"), nullable=False, unique=True, index=True)

    actual_value = Column(Float, nullable=True)
    percentage = Column(Float, nullable=False, default=0)
    score = Column(Integer, nullable=False, default=0)
    band = Column(String(64), nullable=True)
    self_comment = Column(Text, nullable=True)
    evidence_note = Column(Text, nullable=True)

    status = Column(String(32), default=ActualStatus.DRAFT.value, nullable=False, index=True)
    rejection_reason = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    kpi = relationship("KpiDefinition", back_populates="actual")

    @property
    def user_id(self):
        return self.kpi.user_id if self.kpi else None
