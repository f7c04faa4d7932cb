"""
audit/store.py -- SQLAlchemy Core persistence layer for the audit workflow.

Uses SQLAlchemy Core (not ORM) so the dataclasses in audit/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. AuditStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route
handlers never touch SQL directly.

Ownership chain: plans -> engagements -> {working papers, findings, reports}
-> action plans (per finding). Every table references users.id for the
responsible person.

Numbered entities (engagements, findings, working papers, reports) are
inserted through _insert_numbered(), which allocates the identifier and
inserts the row in one transaction and retries when the identifier is
already taken. See audit/sequence.py.

Risk assessments get their risk_level from audit.risk.classify_risk() on
every create and update.

Security: all queries use bound parameters. No f-strings in SQL. Update
methods only accept whitelisted column names.

Usage:
    store = AuditStore(create_db_engine("sqlite:///auditdesk.db"))
    engagement_id, number = store.create_engagement(Engagement(title="Payroll"))
    store.update_engagement(engagement_id, status=EngagementStatus.fieldwork)
"""

import logging
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from audit.models import (
    ActionPlan,
    ActionPlanStatus,
    AuditPlan,
    Engagement,
    EngagementStatus,
    Finding,
    FindingSeverity,
    FindingStatus,
    PlanStatus,
    Report,
    ReportOpinion,
    ReportStatus,
    ReviewStatus,
    RiskAssessment,
    RiskLevel,
    WorkingPaper,
)
from audit.risk import classify_risk
from audit.sequence import (
    IdentifierAllocationError,
    SequenceScope,
    engagement_scope,
    finding_scope,
    next_value,
    report_scope,
    sequence_counters,
    working_paper_scope,
)
from auth.store import users
from core.database import create_tables, metadata

logger = logging.getLogger("auditdesk.audit")

_MAX_ALLOCATION_ATTEMPTS = 5

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_plans = Table(
    "audit_plans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("year", Integer, nullable=False),
    Column("status", String(20), nullable=False, server_default=PlanStatus.draft.value),
    Column("created_by", Integer, ForeignKey("users.id")),
    Column("approved_by", Integer, ForeignKey("users.id")),
    Column("approved_date", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_risks = Table(
    "risk_assessments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("area_assessed", String(255), nullable=False),
    Column("inherent_risk_score", Integer, nullable=False),
    Column("residual_risk_score", Integer, nullable=False),
    Column("risk_level", String(20), nullable=False),
    Column("risk_factors", Text),
    Column("controls_identified", Text),
    Column("assessed_by", Integer, ForeignKey("users.id")),
    Column("assessment_date", String(10)),
    Column("next_review_date", String(10)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_engagements = Table(
    "audit_engagements",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("engagement_number", String(20), nullable=False, unique=True),
    Column("title", String(255), nullable=False),
    Column("objective", Text),
    Column("scope", Text),
    Column("audit_plan_id", Integer, ForeignKey("audit_plans.id")),
    Column("risk_assessment_id", Integer, ForeignKey("risk_assessments.id")),
    Column("lead_auditor", Integer, ForeignKey("users.id")),
    Column("status", String(20), nullable=False, server_default=EngagementStatus.planning.value),
    Column("planned_start_date", String(10)),
    Column("planned_end_date", String(10)),
    Column("actual_start_date", String(10)),
    Column("actual_end_date", String(10)),
    Column("budgeted_hours", Integer),
    Column("actual_hours", Integer),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_working_papers = Table(
    "working_papers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("wp_reference", String(30), nullable=False),
    Column("engagement_id", Integer, ForeignKey("audit_engagements.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("file_path", String(500)),
    Column("file_type", String(50)),
    Column("file_size", Integer),
    Column("created_by", Integer, ForeignKey("users.id")),
    Column("reviewed_by", Integer, ForeignKey("users.id")),
    Column("reviewed_date", String(32)),
    Column("review_status", String(20), nullable=False, server_default=ReviewStatus.draft.value),
    Column("review_comments", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_findings = Table(
    "audit_findings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("finding_number", String(10), nullable=False),
    Column("engagement_id", Integer, ForeignKey("audit_engagements.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("condition", Text),
    Column("criteria", Text),
    Column("cause", Text),
    Column("effect", Text),
    Column("recommendation", Text),
    Column("severity", String(20)),
    Column("status", String(20), nullable=False, server_default=FindingStatus.open.value),
    Column("assigned_to", Integer, ForeignKey("users.id")),
    Column("target_date", String(10)),
    Column("resolved_date", String(10)),
    Column("management_response", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("engagement_id", "finding_number", name="uq_engagement_finding_number"),
)

_reports = Table(
    "audit_reports",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("engagement_id", Integer, ForeignKey("audit_engagements.id"), nullable=False),
    Column("report_number", String(20), nullable=False, unique=True),
    Column("title", String(255), nullable=False),
    Column("executive_summary", Text),
    Column("background", Text),
    Column("objectives", Text),
    Column("scope", Text),
    Column("methodology", Text),
    Column("conclusions", Text),
    Column("opinion", String(30)),
    Column("status", String(20), nullable=False, server_default=ReportStatus.draft.value),
    Column("prepared_by", Integer, ForeignKey("users.id")),
    Column("reviewed_by", Integer, ForeignKey("users.id")),
    Column("issue_date", String(10)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_action_plans = Table(
    "action_plans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("finding_id", Integer, ForeignKey("audit_findings.id"), nullable=False),
    Column("action_description", Text, nullable=False),
    Column("responsible_person", Integer, ForeignKey("users.id")),
    Column("target_completion_date", String(10)),
    Column("actual_completion_date", String(10)),
    Column("status", String(20), nullable=False, server_default=ActionPlanStatus.pending.value),
    Column("progress_notes", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_TABLES = [
    sequence_counters,
    _plans,
    _risks,
    _engagements,
    _working_papers,
    _findings,
    _reports,
    _action_plans,
]

# Columns each update_* method accepts. Identifiers, parents and audit
# timestamps are never client-writable.
_PLAN_FIELDS = frozenset({"title", "description", "year", "status", "approved_by", "approved_date"})
_RISK_FIELDS = frozenset(
    {
        "title",
        "description",
        "area_assessed",
        "inherent_risk_score",
        "residual_risk_score",
        "risk_factors",
        "controls_identified",
        "assessment_date",
        "next_review_date",
    }
)
_ENGAGEMENT_FIELDS = frozenset(
    {
        "title",
        "objective",
        "scope",
        "audit_plan_id",
        "risk_assessment_id",
        "lead_auditor",
        "status",
        "planned_start_date",
        "planned_end_date",
        "actual_start_date",
        "actual_end_date",
        "budgeted_hours",
        "actual_hours",
    }
)
_WORKING_PAPER_FIELDS = frozenset(
    {"title", "description", "file_path", "file_type", "file_size", "reviewed_by", "reviewed_date",
     "review_status", "review_comments"}
)
_FINDING_FIELDS = frozenset(
    {"title", "condition", "criteria", "cause", "effect", "recommendation", "severity", "status", "assigned_to",
     "target_date", "resolved_date", "management_response"}
)
_REPORT_FIELDS = frozenset(
    {"title", "executive_summary", "background", "objectives", "scope", "methodology", "conclusions", "opinion",
     "status", "reviewed_by", "issue_date"}
)
_ACTION_PLAN_FIELDS = frozenset(
    {"action_description", "responsible_person", "target_completion_date", "actual_completion_date", "status",
     "progress_notes"}
)

_NOT_COMPLETED = (EngagementStatus.completed.value,)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now().isoformat()


def _db_value(value):
    """Normalize a Python value for a String/Integer column."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _insert_values(record, exclude: tuple = ()) -> dict:
    """Turn a domain dataclass into column values for INSERT."""
    skip = {"id", "created_at", "updated_at", *exclude}
    now = _now_iso()
    values = {k: _db_value(v) for k, v in asdict(record).items() if k not in skip}
    values["created_at"] = now
    values["updated_at"] = now
    return values


def _check_fields(fields: dict, allowed: frozenset) -> dict:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown or read-only fields: {sorted(unknown)!r}")
    values = {k: _db_value(v) for k, v in fields.items()}
    values["updated_at"] = _now_iso()
    return values


def _full_name(first: Optional[str], last: Optional[str]) -> Optional[str]:
    if first is None and last is None:
        return None
    return f"{first or ''} {last or ''}".strip()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        create_tables(engine, [users, *_TABLES])

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    def _get(self, table: Table, row_id: int):
        with self.engine.connect() as conn:
            return conn.execute(table.select().where(table.c.id == row_id)).fetchone()

    def _exists(self, table: Table, row_id: int) -> bool:
        with self.engine.connect() as conn:
            return conn.execute(select(table.c.id).where(table.c.id == row_id)).fetchone() is not None

    def _insert(self, table: Table, values: dict) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(table.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    def _update(self, table: Table, row_id: int, values: dict) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(table.update().where(table.c.id == row_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def _identifier_taken(self, table: Table, column: str, number: str, within=None) -> bool:
        stmt = select(table.c.id).where(table.c[column] == number)
        if within is not None:
            stmt = stmt.where(within)
        with self.engine.connect() as conn:
            return conn.execute(stmt.limit(1)).fetchone() is not None

    def _insert_numbered(
        self, table: Table, values: dict, column: str, scope: SequenceScope, within=None
    ) -> tuple[int, str]:
        """Allocate an identifier for column and insert the row, atomically.

        Allocation and insert share one transaction, so a failed insert rolls
        the counter back too. Only identifier conflicts are retried, up to
        _MAX_ALLOCATION_ATTEMPTS times: a race on the scope's counter row, or
        an identifier that already exists (within narrows that check to the
        identifier's uniqueness scope). After a taken identifier the next
        attempt allocates past it. Other IntegrityErrors (NOT NULL, foreign
        keys) propagate unchanged.
        """
        floor = 0
        for attempt in range(1, _MAX_ALLOCATION_ATTEMPTS + 1):
            value = None
            try:
                with self.engine.begin() as conn:
                    value = next_value(conn, scope, floor)
                    number = scope.format(value)
                    result = conn.execute(table.insert().values(**values, **{column: number}))
                    return result.inserted_primary_key[0], number
            except IntegrityError:
                if value is not None:
                    if not self._identifier_taken(table, column, scope.format(value), within):
                        raise
                    floor = value
                logger.warning(
                    "Identifier collision in scope %s (attempt %d/%d)",
                    scope.key,
                    attempt,
                    _MAX_ALLOCATION_ATTEMPTS,
                )
        raise IdentifierAllocationError(f"Could not allocate a unique identifier in scope {scope.key}")

    # ------------------------------------------------------------------
    # Audit plans
    # ------------------------------------------------------------------

    def create_plan(self, plan: AuditPlan) -> int:
        return self._insert(_plans, _insert_values(plan))

    def get_plan(self, plan_id: int) -> Optional[AuditPlan]:
        row = self._get(_plans, plan_id)
        return _row_to_plan(row) if row is not None else None

    def plan_exists(self, plan_id: int) -> bool:
        return self._exists(_plans, plan_id)

    def list_plans(self, year: Optional[int] = None, status: Optional[PlanStatus] = None) -> list[AuditPlan]:
        """Return plans newest year first, optionally filtered."""
        stmt = _plans.select()
        if year is not None:
            stmt = stmt.where(_plans.c.year == year)
        if status is not None:
            stmt = stmt.where(_plans.c.status == PlanStatus(status).value)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_plans.c.year.desc(), _plans.c.id)).fetchall()
        return [_row_to_plan(r) for r in rows]

    def update_plan(self, plan_id: int, **fields) -> bool:
        return self._update(_plans, plan_id, _check_fields(fields, _PLAN_FIELDS))

    # ------------------------------------------------------------------
    # Risk assessments
    # ------------------------------------------------------------------

    def create_risk(self, risk: RiskAssessment) -> int:
        """Insert a risk assessment with risk_level derived from the residual score."""
        values = _insert_values(risk, exclude=("risk_level",))
        values["risk_level"] = classify_risk(risk.residual_risk_score).value
        return self._insert(_risks, values)

    def get_risk(self, risk_id: int) -> Optional[RiskAssessment]:
        row = self._get(_risks, risk_id)
        return _row_to_risk(row) if row is not None else None

    def risk_exists(self, risk_id: int) -> bool:
        return self._exists(_risks, risk_id)

    def list_risks(self, risk_level: Optional[RiskLevel] = None, area: Optional[str] = None) -> list[RiskAssessment]:
        """Return risk assessments, highest inherent risk first.

        area is a case-insensitive substring match on area_assessed.
        """
        stmt = _risks.select()
        if risk_level is not None:
            stmt = stmt.where(_risks.c.risk_level == RiskLevel(risk_level).value)
        if area:
            stmt = stmt.where(_risks.c.area_assessed.icontains(area, autoescape=True))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_risks.c.inherent_risk_score.desc(), _risks.c.id)).fetchall()
        return [_row_to_risk(r) for r in rows]

    def update_risk(self, risk_id: int, **fields) -> bool:
        """Update a risk assessment and recompute risk_level.

        The level is recomputed from the residual score that will be stored
        after this update -- the new one if given, otherwise the current one.
        Read and write share a transaction so a concurrent score change
        cannot slip between them.
        """
        values = _check_fields(fields, _RISK_FIELDS)
        with self.engine.begin() as conn:
            current = conn.execute(
                select(_risks.c.residual_risk_score).where(_risks.c.id == risk_id)
            ).scalar()
            if current is None:
                return False
            residual = values.get("residual_risk_score", current)
            values["risk_level"] = classify_risk(residual).value
            conn.execute(_risks.update().where(_risks.c.id == risk_id).values(**values))
        return True

    def risk_heatmap(self, since: Optional[date] = None) -> dict:
        """Return heat map points for assessments dated on/after since, plus level counts.

        since defaults to one year before today.
        """
        since = since or (_now().date() - timedelta(days=365))
        with self.engine.connect() as conn:
            points = conn.execute(
                select(
                    _risks.c.id,
                    _risks.c.area_assessed,
                    _risks.c.inherent_risk_score,
                    _risks.c.residual_risk_score,
                    _risks.c.risk_level,
                )
                .where(_risks.c.assessment_date >= since.isoformat())
                .order_by(_risks.c.residual_risk_score.desc())
            ).fetchall()
            summary = conn.execute(
                select(_risks.c.risk_level, func.count().label("count")).group_by(_risks.c.risk_level)
            ).fetchall()
        return {
            "heat_map_data": [dict(r._mapping) for r in points],
            "risk_summary": [{"risk_level": r.risk_level, "count": r.count} for r in summary],
        }

    # ------------------------------------------------------------------
    # Engagements
    # ------------------------------------------------------------------

    def create_engagement(self, engagement: Engagement) -> tuple[int, str]:
        """Insert an engagement numbered YYYY-NNN for the current UTC year.

        Returns (id, engagement_number).
        """
        values = _insert_values(engagement, exclude=("engagement_number",))
        year = values["created_at"][:4]
        seed = select(func.count()).select_from(_engagements).where(_engagements.c.created_at.startswith(f"{year}-"))
        return self._insert_numbered(_engagements, values, "engagement_number", engagement_scope(int(year), seed))

    def get_engagement(self, engagement_id: int) -> Optional[Engagement]:
        row = self._get(_engagements, engagement_id)
        return _row_to_engagement(row) if row is not None else None

    def engagement_exists(self, engagement_id: int) -> bool:
        return self._exists(_engagements, engagement_id)

    def list_engagements(
        self,
        status: Optional[EngagementStatus] = None,
        year: Optional[int] = None,
        plan_id: Optional[int] = None,
    ) -> list[Engagement]:
        """Return engagements newest first. year filters on the creation year."""
        stmt = _engagements.select()
        if status is not None:
            stmt = stmt.where(_engagements.c.status == EngagementStatus(status).value)
        if year is not None:
            stmt = stmt.where(_engagements.c.created_at.startswith(f"{year}-"))
        if plan_id is not None:
            stmt = stmt.where(_engagements.c.audit_plan_id == plan_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_engagements.c.created_at.desc(), _engagements.c.id.desc())).fetchall()
        return [_row_to_engagement(r) for r in rows]

    def update_engagement(self, engagement_id: int, **fields) -> bool:
        return self._update(_engagements, engagement_id, _check_fields(fields, _ENGAGEMENT_FIELDS))

    # ------------------------------------------------------------------
    # Working papers
    # ------------------------------------------------------------------

    def create_working_paper(self, paper: WorkingPaper) -> tuple[int, str]:
        """Insert a working paper. Returns (id, wp_reference).

        A caller-supplied wp_reference is kept as-is; an empty one is
        allocated as WP<n> within the engagement.
        """
        if paper.wp_reference:
            values = _insert_values(paper)
            return self._insert(_working_papers, values), paper.wp_reference
        values = _insert_values(paper, exclude=("wp_reference",))
        seed = (
            select(func.count())
            .select_from(_working_papers)
            .where(_working_papers.c.engagement_id == paper.engagement_id)
        )
        return self._insert_numbered(
            _working_papers,
            values,
            "wp_reference",
            working_paper_scope(paper.engagement_id, seed),
            within=_working_papers.c.engagement_id == paper.engagement_id,
        )

    def get_working_paper(self, paper_id: int) -> Optional[WorkingPaper]:
        row = self._get(_working_papers, paper_id)
        return _row_to_working_paper(row) if row is not None else None

    def list_working_papers(self, engagement_id: int) -> list[WorkingPaper]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _working_papers.select()
                .where(_working_papers.c.engagement_id == engagement_id)
                .order_by(_working_papers.c.wp_reference, _working_papers.c.id)
            ).fetchall()
        return [_row_to_working_paper(r) for r in rows]

    def update_working_paper(self, paper_id: int, **fields) -> bool:
        return self._update(_working_papers, paper_id, _check_fields(fields, _WORKING_PAPER_FIELDS))

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    def create_finding(self, finding: Finding) -> tuple[int, str]:
        """Insert a finding numbered FNN within its engagement. Returns (id, finding_number)."""
        values = _insert_values(finding, exclude=("finding_number",))
        seed = select(func.count()).select_from(_findings).where(_findings.c.engagement_id == finding.engagement_id)
        return self._insert_numbered(
            _findings,
            values,
            "finding_number",
            finding_scope(finding.engagement_id, seed),
            within=_findings.c.engagement_id == finding.engagement_id,
        )

    def get_finding(self, finding_id: int) -> Optional[Finding]:
        row = self._get(_findings, finding_id)
        return _row_to_finding(row) if row is not None else None

    def list_findings(self, engagement_id: int) -> list[Finding]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _findings.select()
                .where(_findings.c.engagement_id == engagement_id)
                .order_by(_findings.c.finding_number)
            ).fetchall()
        return [_row_to_finding(r) for r in rows]

    def update_finding(self, finding_id: int, **fields) -> bool:
        return self._update(_findings, finding_id, _check_fields(fields, _FINDING_FIELDS))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def create_report(self, report: Report) -> tuple[int, str]:
        """Insert a report numbered RPT-YYYY-NNN. Returns (id, report_number)."""
        values = _insert_values(report, exclude=("report_number",))
        year = values["created_at"][:4]
        seed = select(func.count()).select_from(_reports).where(_reports.c.created_at.startswith(f"{year}-"))
        return self._insert_numbered(_reports, values, "report_number", report_scope(int(year), seed))

    def get_report(self, report_id: int) -> Optional[Report]:
        row = self._get(_reports, report_id)
        return _row_to_report(row) if row is not None else None

    def list_reports(self, engagement_id: int) -> list[Report]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _reports.select().where(_reports.c.engagement_id == engagement_id).order_by(_reports.c.report_number)
            ).fetchall()
        return [_row_to_report(r) for r in rows]

    def update_report(self, report_id: int, **fields) -> bool:
        return self._update(_reports, report_id, _check_fields(fields, _REPORT_FIELDS))

    # ------------------------------------------------------------------
    # Action plans
    # ------------------------------------------------------------------

    def create_action_plan(self, action: ActionPlan) -> int:
        return self._insert(_action_plans, _insert_values(action))

    def get_action_plan(self, action_id: int) -> Optional[ActionPlan]:
        row = self._get(_action_plans, action_id)
        return _row_to_action_plan(row) if row is not None else None

    def list_action_plans(self, finding_id: int) -> list[ActionPlan]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _action_plans.select()
                .where(_action_plans.c.finding_id == finding_id)
                .order_by(_action_plans.c.target_completion_date, _action_plans.c.id)
            ).fetchall()
        return [_row_to_action_plan(r) for r in rows]

    def update_action_plan(self, action_id: int, **fields) -> bool:
        return self._update(_action_plans, action_id, _check_fields(fields, _ACTION_PLAN_FIELDS))

    # ------------------------------------------------------------------
    # Dashboard aggregates
    # ------------------------------------------------------------------

    def dashboard_overview(self, year: Optional[int] = None, today: Optional[date] = None) -> dict:
        """Return the counts and lists behind the dashboard landing page.

        Engagement statistics and completion metrics cover engagements created
        in year (default: current UTC year). Overdue actions are open action
        plans whose target date is before today.
        """
        today = today or _now().date()
        year = year or today.year
        in_year = _engagements.c.created_at.startswith(f"{year}-")
        lead = users.alias("lead")

        with self.engine.connect() as conn:
            audit_stats = conn.execute(
                select(_engagements.c.status, func.count().label("count"))
                .where(in_year)
                .group_by(_engagements.c.status)
            ).fetchall()
            risk_stats = conn.execute(
                select(_risks.c.risk_level, func.count().label("count")).group_by(_risks.c.risk_level)
            ).fetchall()
            finding_stats = conn.execute(
                select(_findings.c.severity, _findings.c.status, func.count().label("count")).group_by(
                    _findings.c.severity, _findings.c.status
                )
            ).fetchall()
            recent = conn.execute(
                select(
                    _engagements.c.id,
                    _engagements.c.title,
                    _engagements.c.engagement_number,
                    _engagements.c.status,
                    _engagements.c.planned_start_date,
                    _engagements.c.planned_end_date,
                    lead.c.first_name,
                    lead.c.last_name,
                )
                .select_from(_engagements.outerjoin(lead, _engagements.c.lead_auditor == lead.c.id))
                .order_by(_engagements.c.created_at.desc(), _engagements.c.id.desc())
                .limit(10)
            ).fetchall()
            overdue = conn.execute(
                select(
                    _action_plans.c.id,
                    _action_plans.c.action_description,
                    _action_plans.c.target_completion_date,
                    _findings.c.title.label("finding_title"),
                    _engagements.c.title.label("engagement_title"),
                )
                .select_from(
                    _action_plans.join(_findings, _action_plans.c.finding_id == _findings.c.id).join(
                        _engagements, _findings.c.engagement_id == _engagements.c.id
                    )
                )
                .where(
                    (_action_plans.c.status != ActionPlanStatus.completed.value)
                    & (_action_plans.c.target_completion_date < today.isoformat())
                )
                .order_by(_action_plans.c.target_completion_date)
                .limit(5)
            ).fetchall()

        total = sum(r.count for r in audit_stats)
        completed = sum(r.count for r in audit_stats if r.status == EngagementStatus.completed.value)
        completion_rate = round(completed / total * 100) if total else 0

        return {
            "audit_statistics": [{"status": r.status, "count": r.count} for r in audit_stats],
            "risk_statistics": [{"risk_level": r.risk_level, "count": r.count} for r in risk_stats],
            "finding_statistics": [
                {"severity": r.severity, "status": r.status, "count": r.count} for r in finding_stats
            ],
            "recent_engagements": [
                {
                    "id": r.id,
                    "title": r.title,
                    "engagement_number": r.engagement_number,
                    "status": r.status,
                    "planned_start_date": r.planned_start_date,
                    "planned_end_date": r.planned_end_date,
                    "lead_auditor_name": _full_name(r.first_name, r.last_name),
                }
                for r in recent
            ],
            "overdue_actions": [dict(r._mapping) for r in overdue],
            "metrics": {
                "total_engagements": total,
                "completed_engagements": completed,
                "completion_rate": completion_rate,
                "year": year,
            },
        }

    def my_tasks(self, user_id: int) -> dict:
        """Return the open work assigned to one user."""
        author = users.alias("author")
        with self.engine.connect() as conn:
            engagements = conn.execute(
                select(
                    _engagements.c.id,
                    _engagements.c.title,
                    _engagements.c.engagement_number,
                    _engagements.c.status,
                    _engagements.c.planned_start_date,
                    _engagements.c.planned_end_date,
                )
                .where(
                    (_engagements.c.lead_auditor == user_id)
                    & (_engagements.c.status.not_in(_NOT_COMPLETED))
                )
                .order_by(_engagements.c.planned_start_date)
            ).fetchall()
            actions = conn.execute(
                select(
                    _action_plans.c.id,
                    _action_plans.c.action_description,
                    _action_plans.c.target_completion_date,
                    _action_plans.c.status,
                    _findings.c.title.label("finding_title"),
                    _engagements.c.title.label("engagement_title"),
                )
                .select_from(
                    _action_plans.join(_findings, _action_plans.c.finding_id == _findings.c.id).join(
                        _engagements, _findings.c.engagement_id == _engagements.c.id
                    )
                )
                .where(
                    (_action_plans.c.responsible_person == user_id)
                    & (_action_plans.c.status != ActionPlanStatus.completed.value)
                )
                .order_by(_action_plans.c.target_completion_date)
            ).fetchall()
            reviews = conn.execute(
                select(
                    _working_papers.c.id,
                    _working_papers.c.title,
                    _working_papers.c.wp_reference,
                    _working_papers.c.created_at,
                    _engagements.c.title.label("engagement_title"),
                    author.c.first_name,
                    author.c.last_name,
                )
                .select_from(
                    _working_papers.join(_engagements, _working_papers.c.engagement_id == _engagements.c.id).outerjoin(
                        author, _working_papers.c.created_by == author.c.id
                    )
                )
                .where(
                    (_working_papers.c.review_status == ReviewStatus.under_review.value)
                    & (_working_papers.c.reviewed_by == user_id)
                )
                .order_by(_working_papers.c.created_at)
            ).fetchall()

        return {
            "my_engagements": [dict(r._mapping) for r in engagements],
            "my_action_plans": [dict(r._mapping) for r in actions],
            "pending_reviews": [
                {
                    "id": r.id,
                    "title": r.title,
                    "wp_reference": r.wp_reference,
                    "created_at": r.created_at,
                    "engagement_title": r.engagement_title,
                    "author_name": _full_name(r.first_name, r.last_name),
                }
                for r in reviews
            ],
        }

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
#
# Column names match dataclass field names one-to-one; the mappers only lift
# stored strings back into their enums.
# ---------------------------------------------------------------------------


def _row_to_plan(row) -> AuditPlan:
    data = dict(row._mapping)
    data["status"] = PlanStatus(data["status"])
    return AuditPlan(**data)


def _row_to_risk(row) -> RiskAssessment:
    data = dict(row._mapping)
    data["risk_level"] = RiskLevel(data["risk_level"])
    return RiskAssessment(**data)


def _row_to_engagement(row) -> Engagement:
    data = dict(row._mapping)
    data["status"] = EngagementStatus(data["status"])
    return Engagement(**data)


def _row_to_working_paper(row) -> WorkingPaper:
    data = dict(row._mapping)
    data["review_status"] = ReviewStatus(data["review_status"])
    return WorkingPaper(**data)


def _row_to_finding(row) -> Finding:
    data = dict(row._mapping)
    data["status"] = FindingStatus(data["status"])
    data["severity"] = FindingSeverity(data["severity"]) if data["severity"] else None
    return Finding(**data)


def _row_to_report(row) -> Report:
    data = dict(row._mapping)
    data["status"] = ReportStatus(data["status"])
    data["opinion"] = ReportOpinion(data["opinion"]) if data["opinion"] else None
    return Report(**data)


def _row_to_action_plan(row) -> ActionPlan:
    data = dict(row._mapping)
    data["status"] = ActionPlanStatus(data["status"])
    return ActionPlan(**data)
