"""
core/database.py -- Shared SQLAlchemy Core plumbing for the Folio stores.

Every table (users, sessions, roles, permissions, the RBAC join tables, tags
and book_tags) is registered on the single `metadata` object below so that
foreign keys across stores resolve and one database file holds the whole
schema. Stores own their Table definitions; this module owns the engine
factory and the dialect helpers they share.

SQLite pragmas are applied per connection because SQLite does not inherit
them across pooled connections:
  journal_mode=WAL  -- readers proceed while a writer holds the lock.
  foreign_keys=ON   -- required for ON DELETE RESTRICT on tag requirements.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/ or library/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import MetaData, Table, create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

metadata = MetaData()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure the full schema exists.

    create_all() is idempotent, so each store may call this with the same URL.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


def insert_ignore(engine: Engine, table: Table):
    """Return an INSERT for table that silently skips unique-key conflicts.

    Used for the idempotent link operations (role grants, user roles, tag
    assignments). Only SQLite and PostgreSQL are supported backends.
    """
    if engine.dialect.name == "postgresql":
        return postgresql.insert(table).on_conflict_do_nothing()
    return sqlite.insert(table).on_conflict_do_nothing()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
