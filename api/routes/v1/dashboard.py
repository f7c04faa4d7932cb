"""
api/routes/v1/dashboard.py -- Aggregated views for the dashboard landing page.

  GET /dashboard/overview  -- organisation-wide counts for the current year
  GET /dashboard/my-tasks  -- open work assigned to the caller

This is a read-only aggregate route -- no mutations here.
"""

from fastapi import APIRouter, Depends, Request

from api.models import DashboardOverview, MyTasksResponse
from audit.store import AuditStore
from auth.dependencies import get_current_user
from auth.models import Principal

# Auth policy:
# - GET /api/v1/dashboard/*: requires auth -- audit metrics are internal data
router = APIRouter(prefix="/dashboard")


@router.get("/overview", response_model=DashboardOverview)
def overview(
    request: Request,
    current_user: Principal = Depends(get_current_user),
) -> DashboardOverview:
    """Return the dashboard overview.

    Response:
      audit_statistics    -- engagement counts by status, current year
      risk_statistics     -- risk assessment counts by level
      finding_statistics  -- finding counts by severity and status
      recent_engagements  -- 10 most recently created, with lead auditor name
      overdue_actions     -- 5 oldest open action plans past their target date
      metrics             -- total / completed / completion_rate (%) / year
    """
    store: AuditStore = request.app.state.audit_store
    return DashboardOverview.model_validate(store.dashboard_overview())


@router.get("/my-tasks", response_model=MyTasksResponse)
def my_tasks(
    request: Request,
    current_user: Principal = Depends(get_current_user),
) -> MyTasksResponse:
    """Return the caller's open engagements, open action plans and pending reviews."""
    store: AuditStore = request.app.state.audit_store
    return MyTasksResponse.model_validate(store.my_tasks(current_user.id))
