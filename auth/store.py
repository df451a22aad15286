"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_user / _row_to_refresh_token are
the mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is the source of truth for email uniqueness. The service
  checks for an existing email first for a friendly error, but a concurrent
  duplicate still surfaces as IntegrityError here.

  refresh_tokens rows are the single source of truth for "is this refresh
  token still live". Deleting the row revokes the token.

DB path: auth/authgate.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine

from auth.models import RefreshTokenRecord, Role, UserRecord, new_id

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(255), nullable=False),
    Column("email", String(320), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.USER.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), nullable=False),
    Column("token", Text, nullable=False),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("ip", String(64), nullable=False, server_default=""),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_refresh_tokens_token", "token", unique=True),
    Index("ix_refresh_tokens_user_id", "user_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for UserRecord and RefreshTokenRecord entities.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        store.create_user(UserRecord(id=new_id(), username="ana", email="ana@x.com", hashed_password=h))
        user = store.get_by_email("ana@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == email.lower())).first()
        return row is not None

    def create_user(self, user: UserRecord) -> UserRecord:
        """Insert a new user and return it with timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now_iso()
        user.email = user.email.lower()
        user.created_at = user.created_at or now
        user.updated_at = now
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role.value,
                    created_at=user.created_at,
                    updated_at=user.updated_at,
                )
            )
            conn.commit()
        return user

    def get_by_email(self, email: str) -> UserRecord | None:
        """Look up a user (hash included) by email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> UserRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Refresh token queries
    # ------------------------------------------------------------------

    def create_refresh_token(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        """Persist one issued refresh token and return it with id/created_at set."""
        record.id = record.id or new_id()
        record.created_at = record.created_at or _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=record.id,
                    user_id=record.user_id,
                    token=record.token,
                    user_agent=record.user_agent,
                    ip=record.ip,
                    expires_at=record.expires_at,
                    created_at=record.created_at,
                )
            )
            conn.commit()
        return record

    def get_refresh_token(self, token: str) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_refresh_tokens(self, user_id: str) -> list[RefreshTokenRecord]:
        """Return every live session record for a user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.created_at)
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def delete_refresh_token(self, token: str) -> bool:
        """Revoke a refresh token. Returns True if a row was deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        user_agent=row.user_agent,
        ip=row.ip,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
