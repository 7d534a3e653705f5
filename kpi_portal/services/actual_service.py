from typing import List, Optional

from sqlalchemy.orm import Session

from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.kpi_actual import KpiActual, ActualStatus, EDITABLE_ACTUAL_STATUSES
from kpi_portal.models.user import User
from kpi_portal.schemas.actual import ActualCreate, ActualUpdate
from kpi_portal.services.audit import AuditService
from kpi_portal.services.base import BaseService
from kpi_portal.services.kpi_service import visible_user_ids
from kpi_portal.services.results import ServiceResult, ResultCode
from kpi_portal.services.workflow import recompute_actual


class ActualService(BaseService):
    """Recording realised values against locked KPI goals."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.audit = AuditService(db)

    def list_actuals(self, viewer: User, cycle_id: Optional[int] = None, status: Optional[str] = None) -> List[KpiActual]:
        query = self.db.query(KpiActual).join(KpiDefinition, KpiActual.kpi_definition_id == KpiDefinition.id)
        allowed = visible_user_ids(self.db, viewer)
        if allowed is not None:
            query = query.filter(KpiDefinition.user_id.in_(allowed))
        if cycle_id is not None:
            query = query.filter(KpiDefinition.cycle_id == cycle_id)
        if status:
            query = query.filter(KpiActual.status == status)
        return query.order_by(KpiActual.id.desc()).all()

    def get_visible(self, actual_id: int, viewer: User) -> ServiceResult:
        actual = self.db.get(KpiActual, actual_id)
        if actual is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Actual not found")
        allowed = visible_user_ids(self.db, viewer)
        if allowed is not None and actual.user_id not in allowed:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "You cannot view this actual")
        return ServiceResult.ok("OK", actual)

    def create_actual(self, data: ActualCreate, owner: User) -> ServiceResult:
        kpi = self.db.get(KpiDefinition, data.kpi_definition_id)
        if kpi is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "KPI not found")
        if kpi.user_id != owner.id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the KPI owner can record actuals")
        if kpi.status != KpiStatus.LOCKED_GOALS.value:
            return ServiceResult.fail(
                ResultCode.INVALID_STATE, "Actuals can only be recorded once the KPI goals are locked"
            )
        if kpi.actual is not None:
            return ServiceResult.fail(ResultCode.INVALID_STATE, "An actual already exists for this KPI")

        actual = KpiActual(
            kpi=kpi,
            actual_value=data.actual_value,
            self_comment=data.self_comment,
            evidence_note=data.evidence_note,
            status=ActualStatus.DRAFT.value,
        )
        recompute_actual(actual)
        self.db.add(actual)
        self.db.flush()
        self.audit.log_action("actual_created", "ACTUAL", actual.id, owner.id, owner.role,
                              {"kpi_id": kpi.id, "percentage": actual.percentage, "score": actual.score})
        self.commit()
        self.db.refresh(actual)
        return ServiceResult.ok("Actual recorded", actual)

    def update_actual(self, actual_id: int, data: ActualUpdate, owner: User) -> ServiceResult:
        actual = self.db.get(KpiActual, actual_id)
        if actual is None:
            return ServiceResult.fail(ResultCode.NOT_FOUND, "Actual not found")
        if actual.user_id != owner.id:
            return ServiceResult.fail(ResultCode.FORBIDDEN, "Only the KPI owner can edit this actual")
        if actual.status not in EDITABLE_ACTUAL_STATUSES:
            return ServiceResult.fail(ResultCode.INVALID_STATE, f"Actual in status {actual.status} cannot be edited")

        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(actual, field, value)
        recompute_actual(actual)
        self.audit.log_action("actual_updated", "ACTUAL", actual.id, owner.id, owner.role,
                              {"fields": sorted(changes), "percentage": actual.percentage, "score": actual.score})
        self.commit()
        self.db.refresh(actual)
        return ServiceResult.ok("Actual updated", actual)
