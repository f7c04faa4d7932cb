"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper (same as audit/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

The Engine is injected by the caller (api/main.py lifespan, the CLI, or a
test fixture). The store never builds its own connection pool, so it shares
one database with AuditStore.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_profile() only writes whitelisted columns -- role and status can
  never be changed through it.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import Role, User, UserStatus
from core.database import create_tables, metadata

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("role", String(30), nullable=False),
    Column("status", String(20), nullable=False, server_default=UserStatus.active.value),
    Column("phone", String(50)),
    Column("department", String(100)),
    Column("certifications", Text),  # JSON array serialized as text
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(create_db_engine("sqlite:///auditdesk.db"))
        store.create_user(User(email="a@b.c", first_name="A", last_name="B",
                               role=Role.auditor, password_hash=hash_password("secret")))
        user = store.get_by_email("a@b.c")
    """

    # Columns a user may change on their own profile.
    _PROFILE_FIELDS: frozenset = frozenset({"first_name", "last_name", "phone", "department", "certifications"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        create_tables(engine, [users])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return (result or 0) > 0

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def exists(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.id == user_id)).fetchone()
        return row is not None

    def list_users(self) -> list[User]:
        """Return all users ordered by last name. Director-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().order_by(users.c.last_name, users.c.first_name)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_active(self, role: Role) -> int:
        """Return the number of active users holding the given role.

        Used by PUT /users/{id}/status to keep at least one active director.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(users)
                .where((users.c.role == role.value) & (users.c.status == UserStatus.active.value))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers should treat that as a conflict: a concurrent registration
        won the race after their own existence check.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=Role(user.role).value,
                    status=UserStatus(user.status).value,
                    phone=user.phone,
                    department=user.department,
                    certifications=json.dumps(user.certifications),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_profile(self, user_id: int, **fields) -> bool:
        """Update self-service profile fields.

        Accepted fields: first_name, last_name, phone, department,
        certifications (list[str]). Unknown keys raise ValueError.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if "certifications" in fields:
            fields["certifications"] = json.dumps(fields["certifications"] or [])
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_status(self, user_id: int, status: UserStatus) -> bool:
        """Set the account status. Returns False if user_id was not found.

        Takes effect on the user's next request: the access gate re-reads the
        status on every call, so outstanding tokens stop working immediately.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(status=UserStatus(status).value, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        status=UserStatus(row.status),
        phone=row.phone,
        department=row.department,
        certifications=json.loads(row.certifications) if row.certifications else [],
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
