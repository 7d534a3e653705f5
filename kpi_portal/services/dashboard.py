"""
Role-shaped landing page numbers.

Admins get system-wide counts, approvers get their direct reports and
their own queue, staff get their own KPIs, actuals and unread notices.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query

from kpi_portal.models.approval import Approval, ApprovalStatus
from kpi_portal.models.change_request import ChangeRequest, ChangeRequestStatus
from kpi_portal.models.cycle import Cycle
from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.kpi_actual import KpiActual
from kpi_portal.models.notification import Notification
from kpi_portal.models.user import User, UserRole, UserStatus
from kpi_portal.services.base import BaseService
from kpi_portal.services.cycle_service import CycleService
from kpi_portal.services.workflow import build_engine

RECENT_ITEMS = 5
WAITING_STATUSES = (KpiStatus.WAITING_LINE_MGR.value, KpiStatus.WAITING_MANAGER.value)
OPEN_CHANGE_REQUEST_STATUSES = (
    ChangeRequestStatus.WAITING_LINE_MGR.value,
    ChangeRequestStatus.WAITING_MANAGER.value,
    ChangeRequestStatus.OPEN.value,
)


def _count_by(query: Query, column) -> Dict[str, int]:
    rows = query.with_entities(column, func.count()).group_by(column).all()
    return {getattr(key, "value", key): count for key, count in rows}


def _kpi_block(by_status: Dict[str, int]) -> Dict[str, Any]:
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "draft": by_status.get(KpiStatus.DRAFT.value, 0),
        "pending": sum(by_status.get(s, 0) for s in WAITING_STATUSES),
        "approved": by_status.get(KpiStatus.APPROVED.value, 0),
        "locked": by_status.get(KpiStatus.LOCKED_GOALS.value, 0),
    }


class DashboardService(BaseService):
    def for_user(self, user: User, cycle_id: Optional[int] = None) -> Dict[str, Any]:
        if user.is_admin:
            data = self.admin_statistics(cycle_id)
        elif user.role in (UserRole.MANAGER, UserRole.LINE_MANAGER):
            data = self.team_statistics(user, cycle_id)
        else:
            data = self.personal_statistics(user, cycle_id)
        data.update({
            "active_cycle": CycleService(self.db).current_cycle(),
            "user_role": user.role.value,
            "user_name": user.display_name,
        })
        return data

    def admin_statistics(self, cycle_id: Optional[int] = None) -> Dict[str, Any]:
        users = self.db.query(User)
        by_status = _count_by(self._kpis(cycle_id), KpiDefinition.status)
        return {
            "users": {
                "total": users.count(),
                "active": users.filter(User.status == UserStatus.ACTIVE.value).count(),
                "by_role": _count_by(self.db.query(User), User.role),
            },
            "kpis": _kpi_block(by_status),
            "actuals": self._actual_block(self._kpis(cycle_id)),
            "cycles": {
                "total": self.db.query(Cycle).count(),
                "by_status": _count_by(self.db.query(Cycle), Cycle.status),
            },
            "pending_approvals": {
                "count": self.db.query(Approval).filter(Approval.status == ApprovalStatus.PENDING.value).count(),
            },
            "open_change_requests": self.db.query(ChangeRequest).filter(
                ChangeRequest.status.in_(OPEN_CHANGE_REQUEST_STATUSES)
            ).count(),
        }

    def team_statistics(self, user: User, cycle_id: Optional[int] = None) -> Dict[str, Any]:
        reports = self.db.query(User).filter(User.manager_id == user.id).all()
        team_kpis = self._kpis(cycle_id).filter(KpiDefinition.user_id.in_([r.id for r in reports]))
        pending = build_engine(self.db).approval_queue(user)["pending"]
        return {
            "team": {
                "total_members": len(reports),
                "active_members": sum(1 for r in reports if r.is_active),
            },
            "kpis": _kpi_block(_count_by(team_kpis, KpiDefinition.status)),
            "pending_approvals": {"count": len(pending), "items": pending[:RECENT_ITEMS]},
        }

    def personal_statistics(self, user: User, cycle_id: Optional[int] = None) -> Dict[str, Any]:
        mine = self._kpis(cycle_id).filter(KpiDefinition.user_id == user.id)
        unread = self.db.query(Notification).filter(
            Notification.user_id == user.id,
            Notification.is_read == False  # noqa: E712
        )
        return {
            "kpis": _kpi_block(_count_by(mine, KpiDefinition.status)),
            "actuals": self._actual_block(mine),
            "notifications": {
                "unread": unread.count(),
                "items": unread.order_by(Notification.created_at.desc(), Notification.id.desc())
                .limit(RECENT_ITEMS).all(),
            },
        }

    def _kpis(self, cycle_id: Optional[int]) -> Query:
        query = self.db.query(KpiDefinition)
        if cycle_id is not None:
            query = query.filter(KpiDefinition.cycle_id == cycle_id)
        return query

    def _actual_block(self, kpis: Query) -> Dict[str, Any]:
        ids: List[int] = [k.id for k in kpis.with_entities(KpiDefinition.id).all()]
        by_status = _count_by(
            self.db.query(KpiActual).filter(KpiActual.kpi_definition_id.in_(ids)), KpiActual.status
        ) if ids else {}
        return {"total": sum(by_status.values()), "by_status": by_status}
