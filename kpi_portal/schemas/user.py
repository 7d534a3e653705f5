from pydantic import BaseModel, EmailStr, ConfigDict, Field, field_validator
from typing import Optional
from datetime import datetime

from kpi_portal.models.user import UserRole, UserStatus


class UserBase(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    role: UserRole = UserRole.STAFF
    department: Optional[str] = None
    employee_code: Optional[str] = None
    org_unit_id: Optional[int] = None
    manager_id: Optional[int] = None

    @field_validator("role", mode="before")
    @classmethod
    def migrate_legacy_role(cls, value):
        # HR / HEAD_OF_DEPT / BOD are mapped; anything else outside the closed set fails
        return UserRole.coerce(value)


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    department: Optional[str] = None
    employee_code: Optional[str] = None
    org_unit_id: Optional[int] = None
    manager_id: Optional[int] = None

    @field_validator("role", mode="before")
    @classmethod
    def migrate_legacy_role(cls, value):
        return None if value is None else UserRole.coerce(value)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    full_name: Optional[str] = None
    role: UserRole
    status: str
    department: Optional[str] = None
    employee_code: Optional[str] = None
    org_unit_id: Optional[int] = None
    manager_id: Optional[int] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
