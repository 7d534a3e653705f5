# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    user, org_unit, cycle, kpi_template, kpi, kpi_actual,
    approval, change_request, notification, proxy_action,
    audit_log, task
)

# Explicit class exports for cleaner imports
from .user import User, UserRole, UserStatus
from .org_unit import OrgUnit
from .cycle import Cycle, CycleStatus
from .kpi_template import KpiTemplate
from .kpi import KpiDefinition, KpiStatus, KpiType
from .kpi_actual import KpiActual, ActualStatus
from .approval import Approval, ApprovalEntityType, ApprovalStatus
from .change_request import ChangeRequest, ChangeRequestStatus
from .notification import Notification, NotificationType
from .proxy_action import ProxyAction, ProxyActionType
from .audit_log import AuditLog
from .task import Task

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "OrgUnit",
    "Cycle",
    "CycleStatus",
    "KpiTemplate",
    "KpiDefinition",
    "KpiStatus",
    "KpiType",
    "KpiActual",
    "ActualStatus",
    "Approval",
    "ApprovalEntityType",
    "ApprovalStatus",
    "ChangeRequest",
    "ChangeRequestStatus",
    "Notification",
    "NotificationType",
    "ProxyAction",
    "ProxyActionType",
    "AuditLog",
    "Task",
]
