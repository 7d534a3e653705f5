import logging
import traceback
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from kpi_portal.core.clock import as_utc, utcnow
from kpi_portal.core.config import settings
from kpi_portal.services.base import BaseService
from kpi_portal.models.task import Task, TaskStatus, RUNNABLE_TASK_STATUSES
from kpi_portal.services.workflow import LOCK_TASK, lock_kpi_goals

logger = logging.getLogger(__name__)

# Registry of task handlers: (session, payload) -> result dict
TASK_HANDLERS: Dict[str, Callable[[Session, Dict[str, Any]], Dict[str, Any]]] = {
    LOCK_TASK: lock_kpi_goals,
}


class TaskService(BaseService):
    """
    Manages persistent follow-up tasks with DB state and retries.

    ``enqueue`` only adds the row to the caller's transaction, so the task
    exists if and only if the change that produced it was committed.
    """

    def __init__(self, db: Session, background_tasks: Optional[BackgroundTasks] = None, session_factory=None):
        super().__init__(db)
        self.background_tasks = background_tasks
        self.session_factory = session_factory

    def enqueue(self, task_type: str, payload: Dict[str, Any]) -> Task:
        if task_type not in TASK_HANDLERS:
            raise ValueError(f"Unknown task type: {task_type}")

        task = Task(
            type=task_type,
            status=TaskStatus.PENDING.value,
            payload=payload,
            retries=0,
            max_retries=3
        )
        self.db.add(task)
        self.db.flush()
        logger.info(f"Enqueued Task {task.id} [{task_type}]")

        # Runs after the response is sent, i.e. after the request committed
        if self.background_tasks is not None:
            self.background_tasks.add_task(self.process_task_wrapper, task.id)
        return task

    def process_task_wrapper(self, task_id: int):
        """
        Background entry point. The request session is closed by now, so the
        task gets a fresh one.
        """
        if self.session_factory is None:
            from kpi_portal.database import SessionLocal
            factory = SessionLocal
        else:
            factory = self.session_factory
        db = factory()
        try:
            self.process_task(db, task_id)
        except Exception as e:
            logger.error(f"Critical error in task wrapper for {task_id}: {e}")
        finally:
            db.close()

    def run_pending(self, db: Optional[Session] = None) -> int:
        """
        Run every PENDING/RETRYING task once, plus PROCESSING tasks whose
        worker died mid-run. Used by the sweeper and tests.
        """
        db = db or self.db
        now = utcnow()
        ids = [row.id for row in db.query(Task.id).filter(
            Task.status.in_(RUNNABLE_TASK_STATUSES)
        ).order_by(Task.id).all()]
        ids.extend(task.id for task in db.query(Task).filter(
            Task.status == TaskStatus.PROCESSING.value
        ).order_by(Task.id).all() if _is_stale(task, now))
        ids.sort()
        for task_id in ids:
            self.process_task(db, task_id)
        return len(ids)

    def process_task(self, db: Session, task_id: int):
        task = db.get(Task, task_id)
        if not task:
            logger.error(f"Task {task_id} not found during processing.")
            return

        # Another worker may have picked it up already
        if task.status not in RUNNABLE_TASK_STATUSES and not _is_stale(task, utcnow()):
            return
        if task.status == TaskStatus.PROCESSING.value:
            logger.warning(f"Reclaiming stale Task {task.id} [{task.type}]")

        task.status = TaskStatus.PROCESSING.value
        task.updated_at = utcnow()
        _commit(db)

        handler = TASK_HANDLERS.get(task.type)
        if not handler:
            task.status = TaskStatus.FAILED.value
            task.error = f"No handler for type {task.type}"
            _commit(db)
            return

        try:
            logger.info(f"Processing Task {task.id} [{task.type}]")
            result = handler(db, task.payload or {})
            task.status = TaskStatus.COMPLETED.value
            task.result = result
            task.updated_at = utcnow()
            db.commit()
            logger.info(f"Task {task.id} Completed successfully.")
        except Exception as e:
            db.rollback()
            logger.error(f"Task {task_id} Failed: {str(e)}")
            logger.error(traceback.format_exc())

            task = db.get(Task, task_id)
            task.error = str(e)
            task.retries += 1
            task.updated_at = utcnow()
            # RETRYING tasks are picked up again by the periodic sweep
            task.status = TaskStatus.RETRYING.value if task.retries < task.max_retries else TaskStatus.FAILED.value
            _commit(db)


def _is_stale(task: Task, now: datetime) -> bool:
    if task.status != TaskStatus.PROCESSING.value:
        return False
    touched = as_utc(task.updated_at or task.created_at)
    if touched is None:
        return True
    return now - touched > timedelta(seconds=settings.workflow.task_stale_after_seconds)


def _commit(db: Session):
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
