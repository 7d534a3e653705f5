from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user
from kpi_portal.schemas.approval import ApprovalQueueItem, ApprovalResponse
from kpi_portal.schemas.cycle import CycleResponse
from kpi_portal.schemas.notification import NotificationResponse
from kpi_portal.services.dashboard import DashboardService

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/")
def dashboard(cycle_id: Optional[int] = None, db: Session = Depends(get_db),
              current_user: User = Depends(get_current_user)):
    """Counts for the caller's landing page; the shape depends on their role."""
    data = DashboardService(db).for_user(current_user, cycle_id)

    cycle = data["active_cycle"]
    data["active_cycle"] = CycleResponse.model_validate(cycle) if cycle else None
    if "items" in data.get("pending_approvals", {}):
        data["pending_approvals"]["items"] = [
            ApprovalQueueItem(**{**item, "approval": ApprovalResponse.model_validate(item["approval"])})
            for item in data["pending_approvals"]["items"]
        ]
    if "notifications" in data:
        data["notifications"]["items"] = [
            NotificationResponse.model_validate(n) for n in data["notifications"]["items"]
        ]
    return ApiResponse.ok(data)
