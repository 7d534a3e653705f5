import logging

from kpi_portal.core.config import settings
from kpi_portal.core.security import get_password_hash
from kpi_portal.database import SessionLocal
from kpi_portal.models.user import User, UserRole, UserStatus

logger = logging.getLogger(__name__)


def init_system_data(session_factory=SessionLocal):
    """
    Creates the bootstrap admin from BOOTSTRAP_ADMIN_EMAIL / BOOTSTRAP_ADMIN_PASSWORD
    when both are set and no admin exists yet.
    """
    if not settings.bootstrap_admin_email or not settings.bootstrap_admin_password:
        logger.info("Bootstrap admin not configured; skipping")
        return None

    db = session_factory()
    try:
        admins = db.query(User).filter(User.role == UserRole.ADMIN).count()
        if admins:
            logger.info(f"System initialization check: {admins} admin(s) found.")
            return None

        existing = db.query(User).filter(User.email == settings.bootstrap_admin_email).first()
        if existing is not None:
            logger.warning(f"Bootstrap email {existing.email} belongs to a non-admin user; leaving it unchanged")
            return None

        admin = User(
            email=settings.bootstrap_admin_email,
            full_name="System Administrator",
            hashed_password=get_password_hash(settings.bootstrap_admin_password),
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE.value,
        )
        db.add(admin)
        db.commit()
        logger.info(f"Created bootstrap admin: {admin.email}")
        return admin.id
    except Exception as e:
        db.rollback()
        logger.error(f"Error during system initialization check: {str(e)}", exc_info=True)
        raise
    finally:
        db.close()
