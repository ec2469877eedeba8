"""
auth/store.py -- SQLAlchemy Core persistence for users and sessions.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
and _row_to_session are the mappers. Route and service code never touches
SQL directly.

Sessions are the only server-side trace of an issued token: one row per
token, keyed by the raw token string. Logout deletes the row. Whether a
missing row rejects an otherwise valid token is decided by the caller
(SessionManager.authenticate(require_session=...)).

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, library/ or cache/.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import Session, User
from core.config import DEFAULT_DB_URL
from core.database import create_db_engine, metadata, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255), unique=True),
    Column("hashed_password", Text),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

sessions = Table(
    "sessions",
    metadata,
    Column("token", Text, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", Integer, nullable=False),  # Unix seconds
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Session entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@b.com", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_db_engine(db_url)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username is taken.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                users.insert().values(
                    email=user.email,
                    username=user.username,
                    hashed_password=user.hashed_password,
                    is_active=user.is_active,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and, through the foreign key cascade, their sessions."""
        with self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, token: str, user_id: int, expires_at: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                sessions.insert().values(
                    token=token,
                    user_id=user_id,
                    expires_at=expires_at,
                    created_at=now_iso(),
                )
            )
            conn.commit()

    def get_session(self, token: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(sessions.select().where(sessions.c.token == token)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, token: str) -> bool:
        """Delete the session for token. Returns False if there was none."""
        with self.engine.connect() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: int) -> int:
        """Log a user out everywhere. Returns the number of sessions removed."""
        with self.engine.connect() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired_sessions(self, now: int) -> int:
        """Delete sessions whose expires_at is before now."""
        with self.engine.connect() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.expires_at < now))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        token=row.token,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
