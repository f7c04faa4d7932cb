#!/usr/bin/env python3
"""
AuditDesk -- administration commands.

Usage:
  python main.py init-db
  python main.py init-db --with-samples
  python main.py create-user --email jane@corp.example --first-name Jane \
      --last-name Doe --role director
  python main.py create-user ... --password 'correct horse battery staple'

The first director has to be created here: POST /api/v1/auth/register
requires a director token.

Environment variables (see core/config.py):
  DATABASE_URL  SQLAlchemy URL. Default: sqlite file auditdesk.db next to this file.
  SECRET_KEY    Required unless DEBUG=true.
"""

import argparse
import getpass
import logging
import sys
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from audit.models import AuditPlan, PlanStatus, RiskAssessment
from audit.store import AuditStore
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.database import create_db_engine

logger = logging.getLogger("auditdesk.cli")

_MIN_PASSWORD_LENGTH = 8


def _sample_risks(assessor_id: Optional[int]) -> list[RiskAssessment]:
    today = date.today()
    next_review = (today + timedelta(days=365)).isoformat()
    return [
        RiskAssessment(
            title="Financial Reporting Risk Assessment",
            description="Assessment of risks related to financial reporting processes",
            area_assessed="Financial Reporting",
            inherent_risk_score=8,
            residual_risk_score=5,
            risk_factors="Complex transactions, manual processes, limited segregation of duties",
            controls_identified="Monthly reconciliations, supervisor reviews, independent verification",
            assessed_by=assessor_id,
            assessment_date=today.isoformat(),
            next_review_date=next_review,
        ),
        RiskAssessment(
            title="IT Security Risk Assessment",
            description="Assessment of information technology security risks",
            area_assessed="Information Technology",
            inherent_risk_score=9,
            residual_risk_score=6,
            risk_factors="External threats, system complexity, user access management",
            controls_identified="Firewalls, access controls, security monitoring, regular updates",
            assessed_by=assessor_id,
            assessment_date=today.isoformat(),
            next_review_date=next_review,
        ),
    ]


def init_db(engine: Engine, with_samples: bool = False) -> dict:
    """Create every table and optionally seed sample data.

    Seeding is idempotent: the plan is skipped when one already exists for
    the current year, the risks when any risk assessment exists. Samples are
    attributed to the first active director, if there is one.

    Returns {"plans": n, "risks": n} with the number of rows seeded.
    """
    user_store = UserStore(engine)
    audit_store = AuditStore(engine)
    seeded = {"plans": 0, "risks": 0}
    if not with_samples:
        return seeded

    directors = [u for u in user_store.list_users() if u.role is Role.director and u.is_active]
    owner_id = directors[0].id if directors else None

    year = date.today().year
    if not audit_store.list_plans(year=year):
        audit_store.create_plan(
            AuditPlan(
                title=f"{year} Annual Audit Plan",
                description="Comprehensive risk-based audit plan covering key organizational areas",
                year=year,
                status=PlanStatus.approved if owner_id else PlanStatus.draft,
                created_by=owner_id,
                approved_by=owner_id,
                approved_date=date.today().isoformat() if owner_id else None,
            )
        )
        seeded["plans"] = 1

    if not audit_store.list_risks():
        for risk in _sample_risks(owner_id):
            audit_store.create_risk(risk)
            seeded["risks"] += 1
    return seeded


def create_user(
    engine: Engine,
    email: str,
    first_name: str,
    last_name: str,
    role: Role,
    password: str,
    department: Optional[str] = None,
) -> int:
    """Create a user. Raises ValueError on a duplicate email or a short password."""
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Password must be at most 72 bytes when UTF-8 encoded.")
    store = UserStore(engine)
    email = email.strip().lower()
    if store.get_by_email(email) is not None:
        raise ValueError(f"A user with email {email} already exists.")
    try:
        return store.create_user(
            User(
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=role,
                password_hash=hash_password(password),
                department=department,
            )
        )
    except IntegrityError as exc:
        raise ValueError(f"A user with email {email} already exists.") from exc


def _prompt_password() -> str:
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise ValueError("Passwords do not match.")
    return first


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")

    parser = argparse.ArgumentParser(
        prog="auditdesk",
        description="AuditDesk administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init_parser = sub.add_parser("init-db", help="Create the database schema")
    init_parser.add_argument(
        "--with-samples",
        action="store_true",
        help="Also seed the current-year audit plan and two sample risk assessments",
    )

    user_parser = sub.add_parser("create-user", help="Create a user account")
    user_parser.add_argument("--email", required=True)
    user_parser.add_argument("--first-name", required=True)
    user_parser.add_argument("--last-name", required=True)
    user_parser.add_argument("--role", required=True, choices=[r.value for r in Role])
    user_parser.add_argument("--department", default=None)
    user_parser.add_argument(
        "--password",
        default=None,
        help="Password for the new account. Prompted for when omitted (recommended).",
    )

    args = parser.parse_args(argv)
    engine = create_db_engine(get_settings().database_url)
    try:
        if args.command == "init-db":
            seeded = init_db(engine, with_samples=args.with_samples)
            print("Database schema ready.")
            if args.with_samples:
                print(f"  Seeded {seeded['plans']} audit plan(s) and {seeded['risks']} risk assessment(s).")
            return 0

        try:
            password = args.password if args.password is not None else _prompt_password()
            user_id = create_user(
                engine,
                email=args.email,
                first_name=args.first_name,
                last_name=args.last_name,
                role=Role(args.role),
                password=password,
                department=args.department,
            )
        except ValueError as exc:
            print(f"  [!] {exc}", file=sys.stderr)
            return 1
        logger.info("Created user %s (%s, role=%s)", user_id, args.email, args.role)
        print(f"User {user_id} created.")
        return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
