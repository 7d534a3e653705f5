import argparse
import logging

from sqlalchemy.orm import Session

from kpi_portal.core.security import get_password_hash
from kpi_portal.database import SessionLocal, init_db
from kpi_portal.models.user import User, UserRole, UserStatus

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def create_admin_user(email: str, password: str):
    db: Session = SessionLocal()
    try:
        existing_user = db.query(User).filter(User.email == email).first()
        if existing_user:
            logger.warning(f"User '{email}' already exists.")
            return

        admin_user = User(
            email=email,
            hashed_password=get_password_hash(password),
            full_name="System Administrator",
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE.value,
        )
        db.add(admin_user)
        db.commit()
        logger.info(f"Admin user {email} created successfully. You can now login.")
    except Exception as e:
        logger.error(f"Error creating admin user: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create an ADMIN account")
    parser.add_argument("--email", default="admin@example.com")
    parser.add_argument("--password", required=True)
    args = parser.parse_args()
    init_db()
    create_admin_user(args.email, args.password)
