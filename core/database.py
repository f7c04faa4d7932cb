"""
core/database.py -- Engine construction and the shared schema registry.

One Engine is built at startup (api/main.py lifespan or the CLI) and handed
to every store's constructor. Stores never open their own connection pools,
so the auth and audit tables live in one database and foreign keys between
them resolve.

metadata is the single MetaData instance every table registers on. Stores
call create_tables() for the tables they own.
"""

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()

# Seconds a SQLite writer waits for a competing write lock before failing.
_SQLITE_BUSY_TIMEOUT = 30


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine for db_url with SQLite-specific connection tuning."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # FastAPI runs sync handlers in a thread pool, so a pooled connection
        # may be used from a thread other than the one that opened it.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = _SQLITE_BUSY_TIMEOUT
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def create_tables(engine: Engine, tables: list) -> None:
    """Create the given tables if they do not exist yet."""
    metadata.create_all(engine, tables=tables)
