import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from kpi_portal.core import security
from kpi_portal.core.clock import utcnow
from kpi_portal.core.config import settings
from kpi_portal.core.limiter import limiter
from kpi_portal.core.schemas import ApiResponse
from kpi_portal.database import get_db
from kpi_portal.models.user import User
from kpi_portal.routers.auth_deps import get_current_user
from kpi_portal.schemas.auth import LoginRequest, Token, PasswordChange
from kpi_portal.schemas.user import UserResponse
from kpi_portal.services.audit import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)


@router.post("/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, login_data: LoginRequest, db: Session = Depends(get_db)):
    # JSON body rather than form-data; the token shape stays OAuth2 compatible
    user = db.query(User).filter(User.email == login_data.email).first()
    if not user or not security.verify_password(login_data.password, user.hashed_password):
        AuditService.log(
            db,
            action="failed_login",
            entity_type="USER",
            entity_id=user.id if user else None,
            user_id=None,
            user_role=None,
            details={"email": login_data.email, "reason": "invalid_credentials"}
        )
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")

    token_data = {
        "sub": user.email,
        "role": user.role.value,
        "user_id": user.id,
    }
    access_token = security.create_access_token(data=token_data)

    user.last_login_at = utcnow()
    AuditService.log(
        db,
        action="login",
        entity_type="USER",
        entity_id=user.id,
        user_id=user.id,
        user_role=user.role,
        details={"email": user.email}
    )
    db.commit()
    logger.info(f"User {user.id} logged in")

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": settings.access_token_expire_minutes * 60,
        "user": {
            "id": user.id,
            "email": user.email,
            "full_name": user.full_name,
            "role": user.role.value,
            "manager_id": user.manager_id,
        }
    }


@router.get("/me")
def get_me(current_user: User = Depends(get_current_user)):
    return ApiResponse.ok(UserResponse.model_validate(current_user))


@router.post("/change-password")
def change_password(
    data: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Securely update current user's password."""
    if not security.verify_password(data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect current password")
    if len(data.new_password) < 8:
        raise HTTPException(status_code=400, detail="New password must be at least 8 characters")

    current_user.hashed_password = security.get_password_hash(data.new_password)
    AuditService.log(
        db,
        action="change_password",
        entity_type="USER",
        entity_id=current_user.id,
        user_id=current_user.id,
        user_role=current_user.role,
        details={"status": "success"}
    )
    db.commit()
    return ApiResponse.ok(message="Password updated successfully")
