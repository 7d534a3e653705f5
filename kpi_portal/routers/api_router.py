from fastapi import APIRouter
from kpi_portal.routers import (
    auth, users, org_units, cycles, kpi_templates, kpis, actuals,
    approvals, change_requests, notifications, admin, dashboard
)

# Centralized API router hub: main.py only imports this one.
api_router = APIRouter()

api_router.include_router(auth.router, tags=["Authentication"])
api_router.include_router(users.router, tags=["Users"])
api_router.include_router(org_units.router, tags=["Org Units"])
api_router.include_router(cycles.router, tags=["Cycles"])
api_router.include_router(kpi_templates.router, tags=["KPI Templates"])
api_router.include_router(kpis.router, tags=["KPIs"])
api_router.include_router(actuals.router, tags=["Actuals"])
api_router.include_router(approvals.router, tags=["Approvals"])
api_router.include_router(change_requests.router, tags=["Change Requests"])
api_router.include_router(notifications.router, tags=["Notifications"])
api_router.include_router(admin.router, tags=["Administration"])
api_router.include_router(dashboard.router, tags=["Dashboard"])
