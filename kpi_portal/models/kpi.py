from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class KpiType(str, enum.Enum):
    QUANT_HIGHER_BETTER = "QUANT_HIGHER_BETTER"
    QUANT_LOWER_BETTER = "QUANT_LOWER_BETTER"
    BOOLEAN = "BOOLEAN"
    MILESTONE = "MILESTONE"


QUANTITATIVE_TYPES = {KpiType.QUANT_HIGHER_BETTER.value, KpiType.QUANT_LOWER_BETTER.value}


class KpiStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    WAITING_LINE_MGR = "WAITING_LINE_MGR"
    WAITING_MANAGER = "WAITING_MANAGER"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    LOCKED_GOALS = "LOCKED_GOALS"
    ARCHIVED = "ARCHIVED"


# Owner may edit, delete, archive or submit only in these states
EDITABLE_KPI_STATUSES = {KpiStatus.DRAFT.value, KpiStatus.REJECTED.value}

# Statuses that do not count toward the per-cycle weight sum
WEIGHT_EXCLUDED_STATUSES = {KpiStatus.REJECTED.value, KpiStatus.ARCHIVED.value}


class KpiDefinition(Base):
    __tablename__ = "kpi_definitions"

    id = Column(Integer, primary_key=True, index=True)
    cycle_id = Column(Integer, ForeignKey("cycles.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    org_unit_id = Column(Integer, ForeignKey("org_units.id"), nullable=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(32), default=KpiType.QUANT_HIGHER_BETTER.value, nullable=False)
    target = Column(Float, nullable=True)
    unit = Column(String(64), nullable=True)
    weight = Column(Float, nullable=False, default=0)
    data_source = Column(String(255), nullable=True)
    formula = Column(Text, nullable=True)
    # MILESTONE scale: [{"from": 0, "to": 3, "score_level": 80}, ...]
    scoring_scale = Column(JSON, nullable=True)

    status = Column(String(32), default=KpiStatus.DRAFT.value, nullable=False, index=True)
    created_from_template_id = Column(Integer, ForeignKey("kpi_templates.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)

    # Optimistic concurrency counter, bumped on every flush
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_by_level1 = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at_level1 = Column(DateTime(timezone=True), nullable=True)
    approved_by_level2 = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at_level2 = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    owner = relationship("User", foreign_keys=[user_id])
    cycle = relationship("Cycle")
    actual = relationship("KpiActual", back_populates="kpi", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<KpiDefinition {self.id}: {self.title} ({self.status})>"
