"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and flow code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  consume_verification_token() is a compare-and-set: the UPDATE repeats the
  hash and expiry predicates, so when two requests race with the same raw
  token exactly one UPDATE matches a row. The loser sees rowcount == 0 and
  reports the token as invalid.

  Admin-count check-then-mutate sequences (auth/guard.py) run under
  admin_lock, which serializes them inside one process. Across processes the
  race is accepted; see DESIGN.md.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision so that
string comparison in SQL matches chronological order.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from core.errors import ConflictError, InternalError

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'kavyakala_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(120), nullable=False),
    Column("email", String(320), nullable=False, unique=True),
    Column("handle", String(50), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user", index=True),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("verification_token_hash", String(64), index=True),  # HMAC-SHA256 hex
    Column("verification_token_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    # Ids of deleted users are never reissued; session tokens carry the id.
    sqlite_autoincrement=True,
)

# Fields update_user() accepts. Identity columns (id, email, handle) are immutable.
_MUTABLE_FIELDS = frozenset(
    {
        "name",
        "hashed_password",
        "role",
        "is_active",
        "is_verified",
        "verification_token_hash",
        "verification_token_expires",
    }
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block the single writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _to_db(fields: dict) -> dict:
    """Convert domain values to their column representation."""
    values = dict(fields)
    for flag in ("is_active", "is_verified"):
        if flag in values:
            values[flag] = 1 if values[flag] else 0
    if isinstance(values.get("role"), Role):
        values["role"] = values["role"].value
    if isinstance(values.get("verification_token_expires"), datetime):
        values["verification_token_expires"] = _iso(values["verification_token_expires"])
    return values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        user = store.create_user(User(name="A", email="a@x.com", handle="a",
                                      hashed_password=hash_password("secret1")))
        store.find_by_email_or_handle("a")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self.admin_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).first()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).first()
        return _row_to_user(row) if row is not None else None

    def find_by_email_or_handle(self, key: str) -> User | None:
        """Look up a user whose email OR handle equals key (case-insensitive).

        Emails contain "@" and handles may not, so at most one account can
        match a given key in practice; the email match wins if both do.
        """
        key = key.strip().lower()
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .where(or_(_users.c.email == key, _users.c.handle == key))
                .order_by((_users.c.email == key).desc())
            ).first()
        return _row_to_user(row) if row is not None else None

    def find_existing(self, email: str, handle: str) -> User | None:
        """Return the account already holding email or handle, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.email == email.lower(), _users.c.handle == handle.lower()))
            ).first()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_active_admins(self) -> int:
        """Return the number of active admin users."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def find_admin(self) -> User | None:
        """Return the oldest admin account, or None if there is none."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(_users.c.role == Role.admin.value).order_by(_users.c.id)
            ).first()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return the stored record.

        email and handle are lowercased here so the UNIQUE constraints are
        case-insensitive. Raises ConflictError if either is already taken.
        """
        values = _to_db(
            {
                "name": user.name,
                "email": user.email.strip().lower(),
                "handle": user.handle.strip().lower(),
                "hashed_password": user.hashed_password,
                "role": user.role,
                "is_active": user.is_active,
                "is_verified": user.is_verified,
                "verification_token_hash": user.verification_token_hash,
                "verification_token_expires": user.verification_token_expires,
                "created_at": _now_iso(),
            }
        )
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.insert().values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError() from exc
        created = self.get_by_id(result.inserted_primary_key[0])
        if created is None:
            raise InternalError("Inserted user could not be read back.")
        return created

    def update_user(self, user_id: int, **fields) -> User | None:
        """Apply a patch to an existing user and return the updated record.

        Accepted fields: see _MUTABLE_FIELDS. Unknown keys raise ValueError
        rather than being silently ignored. Returns None if user_id was not
        found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown or immutable user fields: {unknown!r}")
        if fields:
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(_users.update().where(_users.c.id == user_id).values(**_to_db(fields)))
                    conn.commit()
            except IntegrityError as exc:
                raise ConflictError() from exc
            if result.rowcount == 0:
                return None
        return self.get_by_id(user_id)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Callers must check last-admin invariants first (auth/guard.py).
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    def set_verification_token(self, user_id: int, token_hash: str, expires: datetime) -> bool:
        """Store a pending verification token, overwriting any previous one.

        Overwrite (not append) means at most one outstanding token per user.
        Returns False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(verification_token_hash=token_hash, verification_token_expires=_iso(expires))
            )
            conn.commit()
        return result.rowcount > 0

    def consume_verification_token(self, token_hash: str, now: datetime) -> User | None:
        """Atomically redeem a pending token and mark its owner verified.

        Returns the verified User, or None if no unexpired token with this
        hash exists (never issued, expired, already consumed, or lost a race).
        """
        now_s = _iso(now)
        pending = (_users.c.verification_token_hash == token_hash) & (_users.c.verification_token_expires > now_s)
        with self.engine.connect() as conn:
            user_id = conn.execute(select(_users.c.id).where(pending)).scalar()
            if user_id is None:
                return None
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & pending)
                .values(is_verified=1, verification_token_hash=None, verification_token_expires=None)
            )
            conn.commit()
        if result.rowcount != 1:
            return None
        return self.get_by_id(user_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    expires = row.verification_token_expires
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        handle=row.handle,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        verification_token_hash=row.verification_token_hash,
        verification_token_expires=datetime.fromisoformat(expires) if expires else None,
        created_at=row.created_at,
    )
