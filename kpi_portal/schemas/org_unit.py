from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime

from kpi_portal.models.org_unit import OrgUnitType


class OrgUnitBase(BaseModel):
    """Base schema for organisational unit data."""
    name: str = Field(..., min_length=1, max_length=255)
    type: OrgUnitType = OrgUnitType.DEPARTMENT
    description: Optional[str] = None
    parent_id: Optional[int] = None
    manager_id: Optional[int] = None


class OrgUnitCreate(OrgUnitBase):
    pass


class OrgUnitUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[OrgUnitType] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    manager_id: Optional[int] = None


class OrgUnitResponse(OrgUnitBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    full_path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
