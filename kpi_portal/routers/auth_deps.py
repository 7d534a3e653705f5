"""
Authentication and role dependencies for FastAPI endpoints.
"""
import logging
from typing import Callable, List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from kpi_portal.core import security
from kpi_portal.database import get_db
from kpi_portal.models.user import User, UserRole
from kpi_portal.schemas.auth import TokenData

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def _credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_problem(payload) -> Optional[str]:
    """Why a decoded payload cannot identify a user, or None when it can."""
    if payload is None:
        return "Could not validate credentials"
    if payload.get("error") == "TOKEN_EXPIRED":
        return "TOKEN_EXPIRED"
    if payload.get("type") != "access":
        return "Invalid token type"
    if not payload.get("sub"):
        return "Missing subject in token"
    return None


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """Resolve the bearer token to an ACTIVE user (401 on a bad token, 403 when inactive)."""
    payload = security.decode_access_token(token)
    problem = _token_problem(payload)
    if problem:
        logger.info(f"Authentication failed: {problem}")
        raise _credentials_error(problem)

    token_data = TokenData(email=payload["sub"], role=payload.get("role"), user_id=payload.get("user_id"))
    user = db.query(User).filter(User.email == token_data.email).first()
    if user is None:
        logger.warning(f"Authentication failed: {token_data.email} has no account")
        raise _credentials_error("User not found")
    if not user.is_active:
        logger.warning(f"Authentication failed: {token_data.email} is {user.status}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")
    return user


def require_role(allowed_roles: List[UserRole]) -> Callable:
    """
    Dependency factory that checks if the user has one of the allowed roles.

    Usage:
        @router.post("/cycles")
        def create_cycle(user: User = Depends(require_role([UserRole.ADMIN]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)):
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[r.value for r in allowed_roles]}"
            )
        return current_user
    return role_checker


def require_admin():
    """Shorthand for requiring the ADMIN role."""
    return require_role([UserRole.ADMIN])


def require_approver():
    """Roles that sit in the approval chain, plus ADMIN."""
    return require_role([UserRole.LINE_MANAGER, UserRole.MANAGER, UserRole.ADMIN])
