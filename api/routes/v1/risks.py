"""
api/routes/v1/risks.py -- Risk assessment register and heat map.

Routes (the literal /risks/heatmap is registered before /risks/{risk_id} so
FastAPI does not try to parse "heatmap" as an id):
  GET  /risks            -- list (?risk_level, ?area substring)
  POST /risks            -- create                          ASSESSORS
  GET  /risks/heatmap    -- last 12 months of scores + level counts
  GET  /risks/{risk_id}  -- detail
  PUT  /risks/{risk_id}  -- update                          ASSESSORS

risk_level is never taken from the client. The store derives it from
residual_risk_score on every create and update (audit/risk.py).
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import HeatmapResponse, RiskCreate, RiskResponse, RiskUpdate
from audit.models import RiskAssessment, RiskLevel
from audit.store import AuditStore
from auth.dependencies import ASSESSORS, get_current_user, require_roles
from auth.models import Principal

logger = logging.getLogger("auditdesk.audit")

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "Risk assessment not found."})


@router.get("/risks", response_model=list[RiskResponse])
def list_risks(
    request: Request,
    risk_level: Optional[RiskLevel] = None,
    area: Optional[str] = Query(default=None, max_length=255),
    current_user: Principal = Depends(get_current_user),
) -> list[RiskResponse]:
    store: AuditStore = request.app.state.audit_store
    return [RiskResponse.model_validate(r) for r in store.list_risks(risk_level=risk_level, area=area)]


@router.post("/risks", response_model=RiskResponse, status_code=201)
def create_risk(
    request: Request,
    body: RiskCreate,
    current_user: Principal = Depends(require_roles(*ASSESSORS)),
) -> RiskResponse:
    store: AuditStore = request.app.state.audit_store
    risk_id = store.create_risk(RiskAssessment(assessed_by=current_user.id, **body.model_dump()))
    created = store.get_risk(risk_id)
    logger.info("Risk assessment %s created by %s (level=%s)", risk_id, current_user.id, created.risk_level.value)
    return RiskResponse.model_validate(created)


@router.get("/risks/heatmap", response_model=HeatmapResponse)
def risk_heatmap(
    request: Request,
    current_user: Principal = Depends(get_current_user),
) -> HeatmapResponse:
    """Return inherent/residual score points assessed in the last 12 months, plus counts per level."""
    store: AuditStore = request.app.state.audit_store
    return HeatmapResponse.model_validate(store.risk_heatmap())


@router.get("/risks/{risk_id}", response_model=RiskResponse)
def get_risk(
    request: Request,
    risk_id: int,
    current_user: Principal = Depends(get_current_user),
) -> RiskResponse:
    store: AuditStore = request.app.state.audit_store
    risk = store.get_risk(risk_id)
    if risk is None:
        raise _not_found()
    return RiskResponse.model_validate(risk)


@router.put("/risks/{risk_id}", response_model=RiskResponse)
def update_risk(
    request: Request,
    risk_id: int,
    body: RiskUpdate,
    current_user: Principal = Depends(require_roles(*ASSESSORS)),
) -> RiskResponse:
    """Update a risk assessment. risk_level is recomputed even if the score is unchanged."""
    store: AuditStore = request.app.state.audit_store
    updates = body.model_dump(exclude_none=True)
    if not store.update_risk(risk_id, **updates):
        raise _not_found()
    return RiskResponse.model_validate(store.get_risk(risk_id))
