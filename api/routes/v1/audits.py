"""
api/routes/v1/audits.py -- Audit plans, engagements and their child records.

Routes (registration order):
  GET    /audits/plans                               -- list plans (?year, ?status)
  POST   /audits/plans                               -- create plan            PLANNERS
  GET    /audits/plans/{plan_id}                     -- plan detail
  PATCH  /audits/plans/{plan_id}                     -- update plan            PLANNERS
  GET    /audits/engagements                         -- list (?status, ?year, ?plan_id)
  POST   /audits/engagements                         -- create, numbered YYYY-NNN  PLANNERS
  GET    /audits/engagements/{id}                    -- engagement detail
  PATCH  /audits/engagements/{id}                    -- update engagement      PLANNERS
  GET    /audits/engagements/{id}/working-papers     -- list working papers
  POST   /audits/engagements/{id}/working-papers     -- create (WP<n> if no reference)
  PATCH  /audits/working-papers/{wp_id}/review       -- record a review        PLANNERS
  GET    /audits/engagements/{id}/findings           -- list findings
  POST   /audits/engagements/{id}/findings           -- create, numbered FNN
  PATCH  /audits/findings/{finding_id}               -- update finding         RESPONDERS
  GET    /audits/engagements/{id}/reports            -- list reports
  POST   /audits/engagements/{id}/reports            -- create, RPT-YYYY-NNN   PLANNERS
  PATCH  /audits/reports/{report_id}                 -- update report          PLANNERS
  GET    /audits/findings/{finding_id}/action-plans  -- list action plans
  POST   /audits/findings/{finding_id}/action-plans  -- create action plan     RESPONDERS
  PATCH  /audits/action-plans/{action_id}            -- update action plan     RESPONDERS

Routes without a role group accept any authenticated user.

Status changes are permissive (any value may follow any other). A few carry
side effects:
  plan -> approved          stamps approved_by / approved_date
  working paper review      stamps reviewed_by / reviewed_date
  finding -> resolved       stamps resolved_date unless given
  report -> final           stamps issue_date unless given
  action plan -> completed  stamps actual_completion_date unless given

A parent id in the path that does not exist is 404 not_found. A foreign key
in the body that does not exist is 422 validation_error.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from api.models import (
    ActionPlanCreate,
    ActionPlanResponse,
    ActionPlanUpdate,
    EngagementCreate,
    EngagementResponse,
    EngagementUpdate,
    FindingCreate,
    FindingResponse,
    FindingUpdate,
    PlanCreate,
    PlanResponse,
    PlanUpdate,
    ReportCreate,
    ReportResponse,
    ReportUpdate,
    WorkingPaperCreate,
    WorkingPaperResponse,
    WorkingPaperReview,
)
from audit.models import (
    ActionPlan,
    ActionPlanStatus,
    AuditPlan,
    Engagement,
    EngagementStatus,
    Finding,
    FindingStatus,
    PlanStatus,
    Report,
    ReportStatus,
    WorkingPaper,
)
from audit.store import AuditStore
from auth.dependencies import PLANNERS, RESPONDERS, get_current_user, require_roles
from auth.models import Principal
from auth.store import UserStore

logger = logging.getLogger("auditdesk.audit")

router = APIRouter(prefix="/audits")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"{what} not found."})


def _no_changes() -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "no_changes", "message": "No fields to update."})


def _changes(body: BaseModel) -> dict:
    """Fields the client sent with a non-null value."""
    return body.model_dump(exclude_none=True)


def _check_references(
    request: Request,
    users: tuple[Optional[int], ...] = (),
    plan_id: Optional[int] = None,
    risk_id: Optional[int] = None,
) -> None:
    """Raise 422 validation_error if any referenced row does not exist."""
    user_store: UserStore = request.app.state.user_store
    audit_store: AuditStore = request.app.state.audit_store

    missing: list[str] = []
    for user_id in users:
        if user_id is not None and not user_store.exists(user_id):
            missing.append(f"user {user_id}")
    if plan_id is not None and not audit_store.plan_exists(plan_id):
        missing.append(f"audit plan {plan_id}")
    if risk_id is not None and not audit_store.risk_exists(risk_id):
        missing.append(f"risk assessment {risk_id}")
    if missing:
        raise HTTPException(
            status_code=422,
            detail={
                "code": "validation_error",
                "message": "Referenced records do not exist.",
                "detail": ", ".join(missing),
            },
        )


def _require_engagement(store: AuditStore, engagement_id: int) -> None:
    if not store.engagement_exists(engagement_id):
        raise _not_found("Engagement")


# ---------------------------------------------------------------------------
# Audit plans
# ---------------------------------------------------------------------------


@router.get("/plans", response_model=list[PlanResponse])
def list_plans(
    request: Request,
    year: Optional[int] = None,
    status: Optional[PlanStatus] = None,
    current_user: Principal = Depends(get_current_user),
) -> list[PlanResponse]:
    store: AuditStore = request.app.state.audit_store
    return [PlanResponse.model_validate(p) for p in store.list_plans(year=year, status=status)]


@router.post("/plans", response_model=PlanResponse, status_code=201)
def create_plan(
    request: Request,
    body: PlanCreate,
    current_user: Principal = Depends(require_roles(*PLANNERS)),
) -> PlanResponse:
    store: AuditStore = request.app.state.audit_store
    plan_id = store.create_plan(
        AuditPlan(title=body.title, description=body.description, year=body.year, created_by=current_user.id)
    )
    logger.info("Audit plan %s created by %s", plan_id, current_user.id)
    return PlanResponse.model_validate(store.get_plan(plan_id))


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(
    request: Request,
    plan_id: int,
    current_user: Principal = Depends(get_current_user),
) -> PlanResponse:
    store: AuditStore = request.app.state.audit_store
    plan = store.get_plan(plan_id)
    if plan is None:
        raise _not_found("Audit plan")
    return PlanResponse.model_validate(plan)


@router.patch("/plans/{plan_id}", response_model=PlanResponse)
def update_plan(
    request: Request,
    plan_id: int,
    body: PlanUpdate,
    current_user: Principal = Depends(require_roles(*PLANNERS)),
) -> PlanResponse:
    store: AuditStore = request.app.state.audit_store
    updates = _changes(body)
    if not updates:
        raise _no_changes()
    if updates.get("status") is PlanStatus.approved:
        updates["approved_by"] = current_user.id
        updates["approved_date"] = datetime.now(timezone.utc).isoformat()
    if not store.update_plan(plan_id, **updates):
        raise _not_found("Audit plan")
    return PlanResponse.model_validate(store.get_plan(plan_id))


# ---------------------------------------------------------------------------
# Engagements
# ---------------------------------------------------------------------------


@router.get("/engagements", response_model=list[EngagementResponse])
def list_engagements(
    request: Request,
    status: Optional[EngagementStatus] = None,
    year: Optional[int] = None,
    plan_id: Optional[int] = None,
    current_user: Principal = Depends(get_current_user),
) -> list[EngagementResponse]:
    store: AuditStore = request.app.state.audit_store
    engagements = store.list_engagements(status=status, year=year, plan_id=plan_id)
    return [EngagementResponse.model_validate(e) for e in engagements]


@router.post("/engagements", response_model=EngagementResponse, status_code=201)
def create_engagement(
    request: Request,
    body: EngagementCreate,
    current_user: Principal = Depends(require_roles(*PLANNERS)),
) -> EngagementResponse:
    """Create an engagement. The response carries the allocated engagement_number."""
    store: AuditStore = request.app.state.audit_store
    _check_references(
        request,
        users=(body.lead_auditor,),
        plan_id=body.audit_plan_id,
        risk_id=body.risk_assessment_id,
    )
    engagement_id, number = store.create_engagement(Engagement(**body.model_dump()))
    logger.info("Engagement %s (%s) created by %s", number, engagement_id, current_user.id)
    return EngagementResponse.model_validate(store.get_engagement(engagement_id))


@router.get("/engagements/{engagement_id}", response_model=EngagementResponse)
def get_engagement(
    request: Request,
    engagement_id: int,
    current_user: Principal = Depends(get_current_user),
) -> EngagementResponse:
    store: AuditStore = request.app.state.audit_store
    engagement = store.get_engagement(engagement_id)
    if engagement is None:
        raise _not_found("Engagement")
    return EngagementResponse.model_validate(engagement)


@router.patch("/engagements/{engagement_id}", response_model=EngagementResponse)
def update_engagement(
    request: Request,
    engagement_id: int,
    body: EngagementUpdate,
    current_user: Principal = Depends(require_roles(*PLANNERS)),
) -> EngagementResponse:
    store: AuditStore = request.app.state.audit_store
    updates = _changes(body)
    if not updates:
        raise _no_changes()
    _require_engagement(store, engagement_id)
    _check_references(
        request,
        users=(updates.get("lead_auditor"),),
        plan_id=updates.get("audit_plan_id"),
        risk_id=updates.get("risk_assessment_id"),
    )
    store.update_engagement(engagement_id, **updates)
    return EngagementResponse.model_validate(store.get_engagement(engagement_id))


# ---------------------------------------------------------------------------
# Working papers
# ---------------------------------------------------------------------------


@router.get("/engagements/{engagement_id}/working-papers", response_model=list[WorkingPaperResponse])
def list_working_papers(
    request: Request,
    engagement_id: int,
    current_user: Principal = Depends(get_current_user),
) -> list[WorkingPaperResponse]:
    store: AuditStore = request.app.state.audit_store
    _require_engagement(store, engagement_id)
    return [WorkingPaperResponse.model_validate(w) for w in store.list_working_papers(engagement_id)]


@router.post(
    "/engagements/{engagement_id}/working-papers",
    response_model=WorkingPaperResponse,
    status_code=201,
)
def create_working_paper(
    request: Request,
    engagement_id: int,
    body: WorkingPaperCreate,
    current_user: Principal = Depends(get_current_user),
) -> WorkingPaperResponse:
    """Create a working paper. Without a wp_reference one is allocated (WP1, WP2, ...)."""
    store: AuditStore = request.app.state.audit_store
    _require_engagement(store, engagement_id)
    fields = body.model_dump()
    fields["wp_reference"] = fields["wp_reference"] or ""
    paper_id, reference = store.create_working_paper(
        WorkingPaper(engagement_id=engagement_id, created_by=current_user.id, **fields)
    )
    logger.info("Working paper %s added to engagement %s by %s", reference, engagement_id, current_user.id)
    return WorkingPaperResponse.model_validate(store.get_working_paper(paper_id))


@router.patch("/working-papers/{wp_id}/review", response_model=WorkingPaperResponse)
def review_working_paper(
    request: Request,
    wp_id: int,
    body: WorkingPaperReview,
    current_user: Principal = Depends(require_roles(*PLANNERS)),
) -> WorkingPaperResponse:
    """Record a review decision; the caller becomes the reviewer of record."""
    store: AuditStore = request.app.state.audit_store
    updated = store.update_working_paper(
        wp_id,
        review_status=body.review_status,
        review_comments=body.review_comments,
        reviewed_by=current_user.id,
        reviewed_date=datetime.now(timezone.utc).isoformat(),
    )
    if not updated:
        raise _not_found("Working paper")
    return WorkingPaperResponse.model_validate(store.get_working_paper(wp_id))


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


@router.get("/engagements/{engagement_id}/findings", response_model=list[FindingResponse])
def list_findings(
    request: Request,
    engagement_id: int,
    current_user: Principal = Depends(get_current_user),
) -> list[FindingResponse]:
    store: AuditStore = request.app.state.audit_store
    _require_engagement(store, engagement_id)
    return [FindingResponse.model_validate(f) for f in store.list_findings(engagement_id)]


@router.post("/engagements/{engagement_id}/findings", response_model=FindingResponse, status_code=201)
def create_finding(
    request: Request,
    engagement_id: int,
    body: FindingCreate,
    current_user: Principal = Depends(get_current_user),
) -> FindingResponse:
    """Create a finding. finding_number is allocated per engagement (F01, F02, ...)."""
    store: AuditStore = request.app.state.audit_store
    _require_engagement(store, engagement_id)
    _check_references(request, users=(body.assigned_to,))
    finding_id, number = store.create_finding(Finding(engagement_id=engagement_id, **body.model_dump()))
    logger.info("Finding %s added to engagement %s by %s", number, engagement_id, current_user.id)
    return FindingResponse.model_validate(store.get_finding(finding_id))


@router.patch("/findings/{finding_id}", response_model=FindingResponse)
def update_finding(
    request: Request,
    finding_id: int,
    body: FindingUpdate,
    current_user: Principal = Depends(require_roles(*RESPONDERS)),
) -> FindingResponse:
    store: AuditStore = request.app.state.audit_store
    updates = _changes(body)
    if not updates:
        raise _no_changes()
    if store.get_finding(finding_id) is None:
        raise _not_found("Finding")
    _check_references(request, users=(updates.get("assigned_to"),))
    if updates.get("status") is FindingStatus.resolved:
        updates.setdefault("resolved_date", _today())
    store.update_finding(finding_id, **updates)
    return FindingResponse.model_validate(store.get_finding(finding_id))


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@router.get("/engagements/{engagement_id}/reports", response_model=list[ReportResponse])
def list_reports(
    request: Request,
    engagement_id: int,
    current_user: Principal = Depends(get_current_user),
) -> list[ReportResponse]:
    store: AuditStore = request.app.state.audit_store
    _require_engagement(store, engagement_id)
    return [ReportResponse.model_validate(r) for r in store.list_reports(engagement_id)]


@router.post("/engagements/{engagement_id}/reports", response_model=ReportResponse, status_code=201)
def create_report(
    request: Request,
    engagement_id: int,
    body: ReportCreate,
    current_user: Principal = Depends(require_roles(*PLANNERS)),
) -> ReportResponse:
    """Create a draft report. report_number is allocated per year (RPT-YYYY-NNN)."""
    store: AuditStore = request.app.state.audit_store
    _require_engagement(store, engagement_id)
    report_id, number = store.create_report(
        Report(engagement_id=engagement_id, prepared_by=current_user.id, **body.model_dump())
    )
    logger.info("Report %s created for engagement %s by %s", number, engagement_id, current_user.id)
    return ReportResponse.model_validate(store.get_report(report_id))


@router.patch("/reports/{report_id}", response_model=ReportResponse)
def update_report(
    request: Request,
    report_id: int,
    body: ReportUpdate,
    current_user: Principal = Depends(require_roles(*PLANNERS)),
) -> ReportResponse:
    store: AuditStore = request.app.state.audit_store
    updates = _changes(body)
    if not updates:
        raise _no_changes()
    if store.get_report(report_id) is None:
        raise _not_found("Report")
    _check_references(request, users=(updates.get("reviewed_by"),))
    if updates.get("status") is ReportStatus.final:
        updates.setdefault("issue_date", _today())
    store.update_report(report_id, **updates)
    return ReportResponse.model_validate(store.get_report(report_id))


# ---------------------------------------------------------------------------
# Action plans
# ---------------------------------------------------------------------------


@router.get("/findings/{finding_id}/action-plans", response_model=list[ActionPlanResponse])
def list_action_plans(
    request: Request,
    finding_id: int,
    current_user: Principal = Depends(get_current_user),
) -> list[ActionPlanResponse]:
    store: AuditStore = request.app.state.audit_store
    if store.get_finding(finding_id) is None:
        raise _not_found("Finding")
    return [ActionPlanResponse.model_validate(a) for a in store.list_action_plans(finding_id)]


@router.post("/findings/{finding_id}/action-plans", response_model=ActionPlanResponse, status_code=201)
def create_action_plan(
    request: Request,
    finding_id: int,
    body: ActionPlanCreate,
    current_user: Principal = Depends(require_roles(*RESPONDERS)),
) -> ActionPlanResponse:
    store: AuditStore = request.app.state.audit_store
    if store.get_finding(finding_id) is None:
        raise _not_found("Finding")
    _check_references(request, users=(body.responsible_person,))
    action_id = store.create_action_plan(ActionPlan(finding_id=finding_id, **body.model_dump()))
    logger.info("Action plan %s added to finding %s by %s", action_id, finding_id, current_user.id)
    return ActionPlanResponse.model_validate(store.get_action_plan(action_id))


@router.patch("/action-plans/{action_id}", response_model=ActionPlanResponse)
def update_action_plan(
    request: Request,
    action_id: int,
    body: ActionPlanUpdate,
    current_user: Principal = Depends(require_roles(*RESPONDERS)),
) -> ActionPlanResponse:
    store: AuditStore = request.app.state.audit_store
    updates = _changes(body)
    if not updates:
        raise _no_changes()
    if store.get_action_plan(action_id) is None:
        raise _not_found("Action plan")
    _check_references(request, users=(updates.get("responsible_person"),))
    if updates.get("status") is ActionPlanStatus.completed:
        updates.setdefault("actual_completion_date", _today())
    store.update_action_plan(action_id, **updates)
    return ActionPlanResponse.model_validate(store.get_action_plan(action_id))
