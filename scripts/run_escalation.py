"""
Run one escalation sweep (SLA reminders, cycle reminders, pending tasks) and exit.
Suitable for cron when the in-process job is disabled.
"""
import json
import logging

from kpi_portal.core.logging import setup_logging
from kpi_portal.database import SessionLocal, init_db
from kpi_portal.services.escalation import EscalationService
from kpi_portal.services.workflow import build_engine

setup_logging()
logger = logging.getLogger(__name__)


def main():
    init_db()
    db = SessionLocal()
    try:
        summary = EscalationService(build_engine(db)).run()
        logger.info("Escalation sweep finished", extra=summary)
        print(json.dumps(summary))
    finally:
        db.close()


if __name__ == "__main__":
    main()
