from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import Session

from kpi_portal.core.exceptions import AppException, NotFoundError
from kpi_portal.database import get_db
from kpi_portal.models.approval import WAITING_STATUS_BY_LEVEL
from kpi_portal.services.task_service import TaskService
from kpi_portal.services.workflow import WorkflowEngine, build_engine


def get_engine(background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> WorkflowEngine:
    """Per-request engine; follow-up tasks run once the response is sent."""
    return build_engine(db, TaskService(db, background_tasks=background_tasks))


def level_for_status(status: str) -> int:
    """The approval level an entity in ``status`` is waiting on."""
    for level, waiting in WAITING_STATUS_BY_LEVEL.items():
        if waiting == status:
            return level
    raise AppException(f"Nothing is awaiting approval (status {status})", status_code=400,
                       error_code="INVALID_STATE")


def pending_level(engine: WorkflowEngine, entity_type: str, entity_id: int) -> int:
    entity = engine.store.get_entity(entity_type, entity_id)
    if entity is None:
        raise NotFoundError(f"{entity_type} {entity_id} not found")
    return level_for_status(entity.status)
