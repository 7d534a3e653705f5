"""
User Model with the closed role set used by the approval workflow.

Approver resolution walks ``manager_id``: a user's line manager approves at
level 1 and the line manager's own manager approves at level 2.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship, validates
import enum
from kpi_portal.core.clock import utcnow
from kpi_portal.database import Base


class UserRole(str, enum.Enum):
    """
    User roles.

    - ADMIN: Administration and proxy actions on behalf of approvers
    - MANAGER: Level 2 approver (N+2)
    - LINE_MANAGER: Level 1 approver (N+1)
    - STAFF: Owns KPIs and actuals
    """
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    LINE_MANAGER = "LINE_MANAGER"
    MANAGER = "MANAGER"

    @classmethod
    def coerce(cls, value) -> "UserRole":
        """Map legacy role names onto the closed set; anything else is rejected."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid role: {value!r}")
        normalized = value.strip().upper()
        normalized = LEGACY_ROLE_MAP.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Invalid role: {value!r}") from None


# Roles that older data sets still carry
LEGACY_ROLE_MAP = {
    "HR": UserRole.ADMIN.value,
    "HEAD_OF_DEPT": UserRole.MANAGER.value,
    "BOD": UserRole.MANAGER.value,
}


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    employee_code = Column(String(64), nullable=True)

    role = Column(Enum(UserRole), default=UserRole.STAFF, nullable=False)
    status = Column(String(20), default=UserStatus.ACTIVE.value, nullable=False)

    department = Column(String(255), nullable=True)
    org_unit_id = Column(Integer, ForeignKey("org_units.id", use_alter=True, name="fk_user_org_unit_id"), nullable=True)
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    manager = relationship("User", remote_side=[id], backref="direct_reports")
    org_unit = relationship("OrgUnit", foreign_keys=[org_unit_id], back_populates="members")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.email} ({self.role.value if self.role else None})>"

    @validates("role")
    def _validate_role(self, key, value):
        return UserRole.coerce(value)

    @validates("manager_id")
    def _validate_manager(self, key, value):
        if value is not None and self.id is not None and value == self.id:
            raise ValueError("A user cannot be their own manager")
        return value

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_approve(self) -> bool:
        """Check if user holds an approver role."""
        return self.role in [UserRole.LINE_MANAGER, UserRole.MANAGER]

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
