from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class CycleType(str, enum.Enum):
    YEARLY = "YEARLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    QUARTERLY = "QUARTERLY"
    MONTHLY = "MONTHLY"


class CycleStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    ARCHIVED = "ARCHIVED"


DEFAULT_CYCLE_SETTINGS = {
    "total_weight_must_equal": 100,
    "min_kpis_per_user": 1,
    "max_kpis_per_user": 10,
    "require_evidence": False,
    "allow_late_submission": False,
    "closing_soon_days": 7,
}


class Cycle(Base):
    __tablename__ = "cycles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), default=CycleType.YEARLY.value, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    status = Column(String(20), default=CycleStatus.DRAFT.value, nullable=False, index=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    template_id = Column(Integer, ForeignKey("kpi_templates.id"), nullable=True)

    # {"roles": [...], "org_unit_ids": [...], "user_ids": [...]}
    target_audience = Column(JSON, nullable=True)
    settings = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    template = relationship("KpiTemplate")

    def __repr__(self):
        return f"<Cycle {self.id}: {self.name} ({self.status})>"

    @property
    def effective_settings(self) -> dict:
        return {**DEFAULT_CYCLE_SETTINGS, **(self.settings or {})}

    @property
    def accepts_changes(self) -> bool:
        return self.status in (CycleStatus.DRAFT.value, CycleStatus.ACTIVE.value)
