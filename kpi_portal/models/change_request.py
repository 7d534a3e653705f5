from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class ChangeRequestOrigin(str, enum.Enum):
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class ChangeRequestStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    WAITING_LINE_MGR = "WAITING_LINE_MGR"
    WAITING_MANAGER = "WAITING_MANAGER"
    APPROVED = "APPROVED"
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"


class ChangeResolution(str, enum.Enum):
    APPLIED = "APPLIED"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"


CHANGEABLE_FIELDS = ("title", "description", "target", "unit", "data_source")


class ChangeRequest(Base):
    __tablename__ = "change_requests"

    id = Column(Integer, primary_key=True, index=True)
    kpi_definition_id = Column(Integer, ForeignKey("kpi_definitions.id"), nullable=False, index=True)
    # Owner of the KPI for STAFF requests; the issuing admin for ADMIN requests
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # KPI or ACTUAL the request targets
    target_entity_type = Column(String(32), default="KPI", nullable=False)
    target_entity_id = Column(Integer, nullable=True)
    origin = Column(String(16), default=ChangeRequestOrigin.STAFF.value, nullable=False)

    reason = Column(Text, nullable=False)
    # [{"field": "target", "old_value": 10, "new_value": 12}]
    changes = Column(JSON, nullable=False, default=list)
    # Field values captured when the owner resolved an ADMIN request
    after_values = Column(JSON, nullable=True)

    status = Column(String(32), default=ChangeRequestStatus.DRAFT.value, nullable=False, index=True)
    resolution = Column(String(16), nullable=True)
    resolution_comment = Column(Text, nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    kpi = relationship("KpiDefinition")

    @property
    def user_id(self):
        """The KPI owner, who drives the request through approval."""
        return self.kpi.user_id if self.kpi else None
