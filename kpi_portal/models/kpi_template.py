from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, JSON
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class TemplateStatus(str, enum.Enum):
    """Review lifecycle; only APPROVED templates can seed KPIs."""
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


EDITABLE_TEMPLATE_STATUSES = (TemplateStatus.DRAFT.value, TemplateStatus.REJECTED.value)


class KpiTemplate(Base):
    __tablename__ = "kpi_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    department = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    # [{"title", "type", "unit", "description", "target", "weight", "data_source"}]
    kpi_fields = Column(JSON, nullable=False, default=list)
    # Soft delete flag; independent of the review status
    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(String(20), default=TemplateStatus.APPROVED.value, nullable=False, index=True)

    submitted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_comment = Column(Text, nullable=True)

    cloned_from = Column(Integer, ForeignKey("kpi_templates.id"), nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    @property
    def is_usable(self) -> bool:
        return self.is_active and self.status == TemplateStatus.APPROVED.value
