"""
API request and response models for AuditDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
audit/models.py, which own the internal domain representation. Route handlers
map between the two.

Response models use from_attributes=True so a domain dataclass can be passed
straight to model_validate().

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

from datetime import date
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from audit.models import (
    ActionPlanStatus,
    EngagementStatus,
    FindingSeverity,
    FindingStatus,
    PlanStatus,
    ReportOpinion,
    ReportStatus,
    ReviewStatus,
    RiskLevel,
)
from auth.models import Role, UserStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt ignores everything past 72 bytes of input.
_BCRYPT_MAX_BYTES = 72

# Risk scores are strict integers: JSON true/false or "5" are rejected rather
# than coerced.
_RiskScore = Annotated[int, Field(ge=1, le=10, strict=True)]

_Text = Annotated[str, Field(max_length=10_000)]
_Name = Annotated[str, Field(min_length=1, max_length=100)]
_Title = Annotated[str, Field(min_length=1, max_length=255)]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth and users
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=256)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class UserResponse(BaseModel):
    """Public view of a user. password_hash is never part of it."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: Role
    status: UserStatus
    phone: Optional[str] = None
    department: Optional[str] = None
    certifications: list[str] = Field(default_factory=list)
    last_login: Optional[str] = None
    created_at: str = ""


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int
    user: UserResponse


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register (director only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8)
    first_name: _Name
    last_name: _Name
    role: Role
    phone: Optional[str] = Field(default=None, max_length=50)
    department: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise ValueError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes when UTF-8 encoded.")
        return value


class ProfileUpdate(BaseModel):
    """Self-service profile fields. Role and status are not accepted here."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    first_name: Optional[_Name] = None
    last_name: Optional[_Name] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    department: Optional[str] = Field(default=None, max_length=100)
    certifications: Optional[list[Annotated[str, Field(max_length=100)]]] = Field(default=None, max_length=20)

    @field_validator("first_name", "last_name")
    @classmethod
    def name_not_null(cls, value: Optional[str]) -> str:
        # Omit a name to leave it unchanged; null would blank a required column.
        if value is None:
            raise ValueError("Name cannot be null.")
        return value


class UserStatusUpdate(BaseModel):
    status: UserStatus


# ---------------------------------------------------------------------------
# Audit plans
# ---------------------------------------------------------------------------


class PlanCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: _Title
    description: Optional[_Text] = None
    year: int = Field(ge=2000, le=2100)


class PlanUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[_Title] = None
    description: Optional[_Text] = None
    year: Optional[int] = Field(default=None, ge=2000, le=2100)
    status: Optional[PlanStatus] = None


class PlanResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    year: int
    status: PlanStatus
    created_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_date: Optional[str] = None
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Risk assessments
#
# risk_level is not an input field. A client that sends one has it ignored;
# the store derives it from residual_risk_score.
# ---------------------------------------------------------------------------


class RiskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: _Title
    description: Optional[_Text] = None
    area_assessed: _Title
    inherent_risk_score: _RiskScore
    residual_risk_score: _RiskScore
    risk_factors: Optional[_Text] = None
    controls_identified: Optional[_Text] = None
    assessment_date: Optional[date] = None
    next_review_date: Optional[date] = None


class RiskUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[_Title] = None
    description: Optional[_Text] = None
    area_assessed: Optional[_Title] = None
    inherent_risk_score: Optional[_RiskScore] = None
    residual_risk_score: Optional[_RiskScore] = None
    risk_factors: Optional[_Text] = None
    controls_identified: Optional[_Text] = None
    assessment_date: Optional[date] = None
    next_review_date: Optional[date] = None


class RiskResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    area_assessed: str
    inherent_risk_score: int
    residual_risk_score: int
    risk_level: RiskLevel
    risk_factors: Optional[str] = None
    controls_identified: Optional[str] = None
    assessed_by: Optional[int] = None
    assessment_date: Optional[str] = None
    next_review_date: Optional[str] = None
    created_at: str
    updated_at: str


class HeatmapPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    area_assessed: str
    inherent_risk_score: int
    residual_risk_score: int
    risk_level: RiskLevel


class RiskLevelCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_level: RiskLevel
    count: int


class HeatmapResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    heat_map_data: list[HeatmapPoint]
    risk_summary: list[RiskLevelCount]


# ---------------------------------------------------------------------------
# Engagements
# ---------------------------------------------------------------------------


class EngagementCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: _Title
    objective: Optional[_Text] = None
    scope: Optional[_Text] = None
    audit_plan_id: Optional[int] = None
    risk_assessment_id: Optional[int] = None
    lead_auditor: Optional[int] = None
    planned_start_date: Optional[date] = None
    planned_end_date: Optional[date] = None
    budgeted_hours: Optional[int] = Field(default=None, ge=0)


class EngagementUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[_Title] = None
    objective: Optional[_Text] = None
    scope: Optional[_Text] = None
    audit_plan_id: Optional[int] = None
    risk_assessment_id: Optional[int] = None
    lead_auditor: Optional[int] = None
    status: Optional[EngagementStatus] = None
    planned_start_date: Optional[date] = None
    planned_end_date: Optional[date] = None
    actual_start_date: Optional[date] = None
    actual_end_date: Optional[date] = None
    budgeted_hours: Optional[int] = Field(default=None, ge=0)
    actual_hours: Optional[int] = Field(default=None, ge=0)


class EngagementResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    engagement_number: str
    title: str
    objective: Optional[str] = None
    scope: Optional[str] = None
    audit_plan_id: Optional[int] = None
    risk_assessment_id: Optional[int] = None
    lead_auditor: Optional[int] = None
    status: EngagementStatus
    planned_start_date: Optional[str] = None
    planned_end_date: Optional[str] = None
    actual_start_date: Optional[str] = None
    actual_end_date: Optional[str] = None
    budgeted_hours: Optional[int] = None
    actual_hours: Optional[int] = None
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Working papers
# ---------------------------------------------------------------------------


class WorkingPaperCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    wp_reference: Optional[str] = Field(default=None, max_length=30)
    title: _Title
    description: Optional[_Text] = None
    file_path: Optional[str] = Field(default=None, max_length=500)
    file_type: Optional[str] = Field(default=None, max_length=50)
    file_size: Optional[int] = Field(default=None, ge=0)


class WorkingPaperReview(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    review_status: ReviewStatus
    review_comments: Optional[_Text] = None


class WorkingPaperResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    wp_reference: str
    engagement_id: int
    title: str
    description: Optional[str] = None
    file_path: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    created_by: Optional[int] = None
    reviewed_by: Optional[int] = None
    reviewed_date: Optional[str] = None
    review_status: ReviewStatus
    review_comments: Optional[str] = None
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


class FindingCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: _Title
    condition: Optional[_Text] = None
    criteria: Optional[_Text] = None
    cause: Optional[_Text] = None
    effect: Optional[_Text] = None
    recommendation: Optional[_Text] = None
    severity: Optional[FindingSeverity] = None
    assigned_to: Optional[int] = None
    target_date: Optional[date] = None


class FindingUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[_Title] = None
    condition: Optional[_Text] = None
    criteria: Optional[_Text] = None
    cause: Optional[_Text] = None
    effect: Optional[_Text] = None
    recommendation: Optional[_Text] = None
    severity: Optional[FindingSeverity] = None
    status: Optional[FindingStatus] = None
    assigned_to: Optional[int] = None
    target_date: Optional[date] = None
    resolved_date: Optional[date] = None
    management_response: Optional[_Text] = None


class FindingResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    finding_number: str
    engagement_id: int
    title: str
    condition: Optional[str] = None
    criteria: Optional[str] = None
    cause: Optional[str] = None
    effect: Optional[str] = None
    recommendation: Optional[str] = None
    severity: Optional[FindingSeverity] = None
    status: FindingStatus
    assigned_to: Optional[int] = None
    target_date: Optional[str] = None
    resolved_date: Optional[str] = None
    management_response: Optional[str] = None
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: _Title
    executive_summary: Optional[_Text] = None
    background: Optional[_Text] = None
    objectives: Optional[_Text] = None
    scope: Optional[_Text] = None
    methodology: Optional[_Text] = None
    conclusions: Optional[_Text] = None
    opinion: Optional[ReportOpinion] = None


class ReportUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[_Title] = None
    executive_summary: Optional[_Text] = None
    background: Optional[_Text] = None
    objectives: Optional[_Text] = None
    scope: Optional[_Text] = None
    methodology: Optional[_Text] = None
    conclusions: Optional[_Text] = None
    opinion: Optional[ReportOpinion] = None
    status: Optional[ReportStatus] = None
    reviewed_by: Optional[int] = None
    issue_date: Optional[date] = None


class ReportResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    engagement_id: int
    report_number: str
    title: str
    executive_summary: Optional[str] = None
    background: Optional[str] = None
    objectives: Optional[str] = None
    scope: Optional[str] = None
    methodology: Optional[str] = None
    conclusions: Optional[str] = None
    opinion: Optional[ReportOpinion] = None
    status: ReportStatus
    prepared_by: Optional[int] = None
    reviewed_by: Optional[int] = None
    issue_date: Optional[str] = None
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Action plans
# ---------------------------------------------------------------------------


class ActionPlanCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    action_description: Annotated[str, Field(min_length=1, max_length=10_000)]
    responsible_person: Optional[int] = None
    target_completion_date: Optional[date] = None


class ActionPlanUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    action_description: Optional[Annotated[str, Field(min_length=1, max_length=10_000)]] = None
    responsible_person: Optional[int] = None
    target_completion_date: Optional[date] = None
    actual_completion_date: Optional[date] = None
    status: Optional[ActionPlanStatus] = None
    progress_notes: Optional[_Text] = None


class ActionPlanResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    finding_id: int
    action_description: str
    responsible_person: Optional[int] = None
    target_completion_date: Optional[str] = None
    actual_completion_date: Optional[str] = None
    status: ActionPlanStatus
    progress_notes: Optional[str] = None
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class DashboardMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_engagements: int
    completed_engagements: int
    completion_rate: int
    year: int


class DashboardOverview(BaseModel):
    """Response for GET /api/v1/dashboard/overview.

    The list fields are pass-through aggregate rows; see
    AuditStore.dashboard_overview() for their shapes.
    """

    model_config = ConfigDict(frozen=True)

    audit_statistics: list[dict]
    risk_statistics: list[dict]
    finding_statistics: list[dict]
    recent_engagements: list[dict]
    overdue_actions: list[dict]
    metrics: DashboardMetrics


class MyTasksResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    my_engagements: list[dict]
    my_action_plans: list[dict]
    pending_reviews: list[dict]
