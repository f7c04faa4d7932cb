"""
audit/models.py -- Domain dataclasses and status enums for the audit workflow.

These are pure data containers with zero logic. Business rules (risk level
derivation, identifier allocation) live in audit/risk.py, audit/sequence.py
and audit/store.py.

Status fields are closed enums, but no transition graph is enforced: any
value of a status enum may follow any other.

Dates are ISO 8601 strings (YYYY-MM-DD); timestamps are ISO 8601 UTC.
id is None before the record is written to the database.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class PlanStatus(str, Enum):
    draft = "draft"
    approved = "approved"
    in_progress = "in_progress"
    completed = "completed"


class EngagementStatus(str, Enum):
    planning = "planning"
    fieldwork = "fieldwork"
    reporting = "reporting"
    completed = "completed"
    cancelled = "cancelled"


class ReviewStatus(str, Enum):
    draft = "draft"
    under_review = "under_review"
    approved = "approved"
    needs_revision = "needs_revision"


class FindingSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class FindingStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    resolved = "resolved"
    closed = "closed"


class ReportStatus(str, Enum):
    draft = "draft"
    under_review = "under_review"
    final = "final"


class ReportOpinion(str, Enum):
    satisfactory = "satisfactory"
    needs_improvement = "needs_improvement"
    unsatisfactory = "unsatisfactory"


class ActionPlanStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    overdue = "overdue"


@dataclass
class AuditPlan:
    """The annual, risk-based programme of engagements."""

    title: str
    year: int
    description: Optional[str] = None
    status: PlanStatus = PlanStatus.draft
    created_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_date: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class RiskAssessment:
    """Inherent and residual risk of an auditable area.

    risk_level is derived from residual_risk_score by the store on every
    write; whatever value a caller puts here before create/update is ignored.
    """

    title: str
    area_assessed: str
    inherent_risk_score: int
    residual_risk_score: int
    risk_level: Optional[RiskLevel] = None
    description: Optional[str] = None
    risk_factors: Optional[str] = None
    controls_identified: Optional[str] = None
    assessed_by: Optional[int] = None
    assessment_date: Optional[str] = None
    next_review_date: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Engagement:
    """A single audit, numbered YYYY-NNN within its creation year."""

    title: str
    engagement_number: str = ""  # allocated by the store on insert
    objective: Optional[str] = None
    scope: Optional[str] = None
    audit_plan_id: Optional[int] = None
    risk_assessment_id: Optional[int] = None
    lead_auditor: Optional[int] = None
    status: EngagementStatus = EngagementStatus.planning
    planned_start_date: Optional[str] = None
    planned_end_date: Optional[str] = None
    actual_start_date: Optional[str] = None
    actual_end_date: Optional[str] = None
    budgeted_hours: Optional[int] = None
    actual_hours: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class WorkingPaper:
    """Evidence and analysis documenting the work done on an engagement."""

    engagement_id: int
    title: str
    wp_reference: str = ""  # WP1, WP2, ... allocated when left empty
    description: Optional[str] = None
    file_path: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    created_by: Optional[int] = None
    reviewed_by: Optional[int] = None
    reviewed_date: Optional[str] = None
    review_status: ReviewStatus = ReviewStatus.draft
    review_comments: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Finding:
    """An observed control gap, written as condition / criteria / cause / effect.

    finding_number (F01, F02, ...) is unique within its engagement only.
    """

    engagement_id: int
    title: str
    finding_number: str = ""  # allocated by the store on insert
    condition: Optional[str] = None  # what we found
    criteria: Optional[str] = None  # what should be
    cause: Optional[str] = None  # why it happened
    effect: Optional[str] = None  # impact
    recommendation: Optional[str] = None
    severity: Optional[FindingSeverity] = None
    status: FindingStatus = FindingStatus.open
    assigned_to: Optional[int] = None
    target_date: Optional[str] = None
    resolved_date: Optional[str] = None
    management_response: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Report:
    """The issued audit report for an engagement."""

    engagement_id: int
    title: str
    report_number: str = ""  # RPT-YYYY-NNN, allocated by the store on insert
    executive_summary: Optional[str] = None
    background: Optional[str] = None
    objectives: Optional[str] = None
    scope: Optional[str] = None
    methodology: Optional[str] = None
    conclusions: Optional[str] = None
    opinion: Optional[ReportOpinion] = None
    status: ReportStatus = ReportStatus.draft
    prepared_by: Optional[int] = None
    reviewed_by: Optional[int] = None
    issue_date: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ActionPlan:
    """A corrective action management commits to for a finding."""

    finding_id: int
    action_description: str
    responsible_person: Optional[int] = None
    target_completion_date: Optional[str] = None
    actual_completion_date: Optional[str] = None
    status: ActionPlanStatus = ActionPlanStatus.pending
    progress_notes: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
