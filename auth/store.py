"""
auth/store.py -- SQLAlchemy Core user directory.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The auth core depends on the UserDirectory protocol only:
after an OTP or magic link proves control of an email/phone, the directory
resolves (or creates) the principal whose id and roles go into the tokens.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) and UNIQUE(phone) are declared in SQL. Both columns are
  nullable; SQLite and Postgres treat NULLs as distinct, so users with only a
  phone (or only an email) do not collide.

  find_or_create() is race-safe: when two verifications for the same new
  identifier arrive together, the loser's INSERT hits the unique constraint
  and it re-reads the winner's row instead of failing.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

import json
import re
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import IdentityClaim, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("username", String(64), nullable=False),
    Column("email", String(255), unique=True),
    Column("phone", String(32), unique=True),
    Column("roles", Text, nullable=False),  # JSON list of Role values
    Column("provider", String(30), nullable=False, server_default="email"),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


class UserDirectory(Protocol):
    def find_or_create(self, claim: IdentityClaim) -> User: ...

    def get_by_id(self, user_id: str) -> Optional[User]: ...


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


def _generate_username(identifier: str) -> str:
    """Local part of the identifier, alphanumerics only, plus a 4-char random suffix."""
    base = re.sub(r"[^a-zA-Z0-9]", "", identifier.split("@")[0])[:24]
    return f"{base}{secrets.token_hex(2)}".lower()


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        phone=row.phone,
        roles=[Role(r) for r in json.loads(row.roles)],
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.find_or_create(IdentityClaim(email="a@b.com"))
        store.get_by_id(user.id)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_identifier(self, identifier: str) -> Optional[User]:
        """Look up a user by email (if identifier contains "@") or phone."""
        column = _users.c.email if "@" in identifier else _users.c.phone
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(column == identifier)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def find_or_create(self, claim: IdentityClaim) -> User:
        """Return the user owning claim's email/phone, creating a player if none exists.

        Raises ValueError if the claim carries neither an email nor a phone.
        """
        identifier = claim.email or claim.phone
        if not identifier:
            raise ValueError("identity claim needs an email or a phone")

        existing = self.get_by_identifier(identifier)
        if existing is not None:
            return existing

        user = User(
            id=uuid.uuid4().hex,
            username=_generate_username(identifier),
            email=claim.email,
            phone=claim.phone,
            roles=[Role.player],
            created_at=_now_iso(),
        )
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        username=user.username,
                        email=user.email,
                        phone=user.phone,
                        roles=json.dumps([r.value for r in user.roles]),
                        provider=claim.provider,
                        created_at=user.created_at,
                        is_active=1,
                    )
                )
                conn.commit()
        except IntegrityError:
            # A concurrent verification created the same identifier first.
            winner = self.get_by_identifier(identifier)
            if winner is None:
                raise
            return winner
        return user

    def add_role(self, user_id: str, role: Role) -> Optional[User]:
        """Grant role to the user. Idempotent. Returns the updated user, or None if absent."""
        user = self.get_by_id(user_id)
        if user is None:
            return None
        if role not in user.roles:
            user.roles.append(role)
            with self.engine.connect() as conn:
                conn.execute(
                    _users.update()
                    .where(_users.c.id == user_id)
                    .values(roles=json.dumps([r.value for r in user.roles]))
                )
                conn.commit()
        return user

    def set_active(self, user_id: str, is_active: bool) -> bool:
        """Activate or deactivate a user. Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_active=1 if is_active else 0)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()
