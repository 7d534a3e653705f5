from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    user_id: int
    type: str
    title: str
    message: str
    priority: str
    action_required: bool
    link: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="payload")
    is_read: bool
    created_at: Optional[datetime] = None
    read_at: Optional[datetime] = None


class NotificationPage(BaseModel):
    items: List[NotificationResponse]
    total: int
    page: int
    page_size: int
    has_more: bool
