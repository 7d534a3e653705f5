from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kpi_portal.core.exceptions import NotFoundError
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user
from kpi_portal.schemas.notification import NotificationResponse, NotificationPage
from kpi_portal.services.notification import NotificationDispatcher

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/")
def get_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    result = NotificationDispatcher(db).list_for_user(current_user.id, page, page_size, unread_only)
    result["items"] = [NotificationResponse.model_validate(n) for n in result["items"]]
    return ApiResponse.ok(NotificationPage(**result))


@router.get("/unread-count")
def get_unread_count(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return ApiResponse.ok({"count": NotificationDispatcher(db).unread_count(current_user.id)})


@router.patch("/{notification_id}/read")
def mark_notification_as_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    notification = NotificationDispatcher(db).mark_read(current_user.id, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    return ApiResponse.ok(NotificationResponse.model_validate(notification))


@router.post("/mark-all-read")
def mark_all_as_read(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    updated = NotificationDispatcher(db).mark_all_read(current_user.id)
    return ApiResponse.ok({"updated": updated}, message=f"{updated} notifications marked as read")


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not NotificationDispatcher(db).delete(current_user.id, notification_id):
        raise NotFoundError("Notification not found")
    return ApiResponse.ok({"id": notification_id}, message="Notification deleted")
