"""
OrgUnit Model with Hierarchy Support.
Supports parent-child relationships for organizational structure.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class OrgUnitType(str, enum.Enum):
    COMPANY = "COMPANY"
    DEPARTMENT = "DEPARTMENT"
    TEAM = "TEAM"
    GROUP = "GROUP"


class OrgUnit(Base):
    __tablename__ = "org_units"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    type = Column(String(20), default=OrgUnitType.DEPARTMENT.value, nullable=False)
    description = Column(Text, nullable=True)

    # Hierarchy support: parent unit for nested structures
    parent_id = Column(Integer, ForeignKey("org_units.id"), nullable=True)

    manager_id = Column(Integer, ForeignKey("users.id", use_alter=True, name="fk_org_unit_manager_id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    # Relationships
    parent = relationship("OrgUnit", remote_side=[id], back_populates="children")
    children = relationship("OrgUnit", back_populates="parent")
    manager = relationship("User", foreign_keys=[manager_id])
    members = relationship("User", foreign_keys="User.org_unit_id", back_populates="org_unit")

    def __repr__(self):
        return f"<OrgUnit {self.id}: {self.name}>"

    @property
    def full_path(self) -> str:
        """Returns the full hierarchical path of the unit."""
        if self.parent:
            return f"{self.parent.full_path} > {self.name}"
        return self.name
