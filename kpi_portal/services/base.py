import logging
from sqlalchemy.orm import Session


class BaseService:
    """
    Common plumbing for domain services: the caller's session and a
    per-class logger. Services never open their own session.
    """

    def __init__(self, db: Session):
        self.db = db
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def log_info(self, message: str, **extra):
        self._logger.info(message, extra=extra or None)

    def log_warning(self, message: str, **extra):
        self._logger.warning(message, extra=extra or None)

    def log_error(self, message: str, **extra):
        self._logger.error(message, extra=extra or None)

    def commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
