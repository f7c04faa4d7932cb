"""
audit/sequence.py -- Human-readable identifier allocation.

Engagements, findings, working papers and reports carry identifiers that
people quote in meetings and reports:

    engagement     2026-007       scope: creation year
    finding        F03            scope: parent engagement
    working paper  WP12           scope: parent engagement
    report         RPT-2026-002   scope: creation year

Each scope owns one row in sequence_counters. allocate() increments that row
and reads it back inside the caller's transaction, so the write lock taken by
the UPDATE serializes concurrent creators in the same scope: two requests can
never read the same value. The entity tables also carry UNIQUE constraints on
the identifier. AuditStore retries the insert transaction when two creators
race to create a scope's first counter row, or when the allocated identifier
is already taken (the counter lags the table); it then passes the taken value
as floor so the next attempt moves past it. Any other IntegrityError is the
caller's to handle.

The first allocation in a scope seeds the counter from the number of rows that
already exist in it, so a database populated before the counter table existed
continues its numbering instead of restarting at 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import Column, Integer, String, Table, case, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select

from core.database import metadata

sequence_counters = Table(
    "sequence_counters",
    metadata,
    Column("scope", String(100), primary_key=True),
    Column("value", Integer, nullable=False),
)


@dataclass(frozen=True)
class SequenceScope:
    """A grouping key plus the template its identifiers are rendered with.

    template is a str.format pattern with a single field, n, e.g. "F{n:02d}".
    seed, when given, is a SELECT COUNT(*) over existing rows in the scope.
    """

    key: str
    template: str
    seed: Optional[Select] = None

    def format(self, value: int) -> str:
        return self.template.format(n=value)


def engagement_scope(year: int, seed: Optional[Select] = None) -> SequenceScope:
    return SequenceScope(key=f"engagement:{year}", template=f"{year}-{{n:03d}}", seed=seed)


def finding_scope(engagement_id: int, seed: Optional[Select] = None) -> SequenceScope:
    return SequenceScope(key=f"finding:{engagement_id}", template="F{n:02d}", seed=seed)


def working_paper_scope(engagement_id: int, seed: Optional[Select] = None) -> SequenceScope:
    return SequenceScope(key=f"working_paper:{engagement_id}", template="WP{n}", seed=seed)


def report_scope(year: int, seed: Optional[Select] = None) -> SequenceScope:
    return SequenceScope(key=f"report:{year}", template=f"RPT-{year}-{{n:03d}}", seed=seed)


def next_value(conn: Connection, scope: SequenceScope, floor: int = 0) -> int:
    """Reserve and return the next counter value in scope.

    The result is always greater than floor. AuditStore passes the last value
    that collided with an existing row, so a counter that lags its table
    catches up instead of handing out the same number again.

    Must run inside the transaction that inserts the numbered row. If that
    transaction rolls back, the reservation rolls back with it and the number
    is handed out again, so identifiers have no gaps.
    """
    counter = sequence_counters.c.value
    result = conn.execute(
        sequence_counters.update()
        .where(sequence_counters.c.scope == scope.key)
        .values(value=case((counter < floor, floor), else_=counter) + 1)
    )
    if result.rowcount == 0:
        existing = conn.execute(scope.seed).scalar() if scope.seed is not None else 0
        conn.execute(sequence_counters.insert().values(scope=scope.key, value=max(existing or 0, floor) + 1))
    return conn.execute(select(counter).where(sequence_counters.c.scope == scope.key)).scalar_one()


def allocate(conn: Connection, scope: SequenceScope, floor: int = 0) -> str:
    """Reserve and return the next identifier in scope. See next_value()."""
    return scope.format(next_value(conn, scope, floor))


class IdentifierAllocationError(Exception):
    """Raised when a numbered insert keeps colliding after every retry."""
