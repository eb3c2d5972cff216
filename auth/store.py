"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Services and routes never touch SQL directly.

Tables:
  users             one row per account, email UNIQUE
  user_sessions     many per user, token UNIQUE, expiry as epoch seconds (REAL)
  user_preferences  one per user
  user_favorites    many per user, UNIQUE(user_id, fragrance_id)

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced by the UNIQUE constraint, not only by the
  account service's existence pre-check. Two concurrent signups for the same
  email cannot both commit; the loser gets sqlalchemy.exc.IntegrityError.

Fault translation:
  Operational/DBAPI errors (locked DB, lost connection, missing file) are
  re-raised as core.errors.StoreUnavailableError so the API answers 500, never
  a misleading 401. IntegrityError passes through untouched -- it is a
  uniqueness signal for the caller, not an outage.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from auth.models import Session, User, UserFavorite, UserPreferences
from core.config import get_settings
from core.errors import StoreUnavailableError

logger = logging.getLogger("fragrancecollect.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(255), primary_key=True),  # UUID, or Google "sub"
    Column("email", String(320), nullable=False, unique=True),  # case preserved
    Column("name", Text),
    Column("picture", Text),
    Column("password_hash", Text),  # NULL for Google-only users
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("expires_at", Float, nullable=False),  # epoch seconds
    Column("client_ip", String(64), nullable=False),
    Column("user_agent", Text, nullable=False),
    Column("fingerprint", String(64), nullable=False),  # sha256 hex
    Column("created_at", Float, nullable=False),
    Column("last_activity", Float),
)

_preferences = Table(
    "user_preferences",
    _metadata,
    Column("user_id", String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("scent_categories", Text),  # JSON list
    Column("intensity", String(50)),
    Column("season", String(50)),
    Column("occasion", String(100)),
    Column("budget_range", String(50)),
    Column("sensitivities", Text),
    Column("updated_at", String(32), nullable=False),
)

_favorites = Table(
    "user_favorites",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("fragrance_id", String(255), nullable=False),
    Column("name", Text, nullable=False),
    Column("advertiser_name", Text),
    Column("description", Text),
    Column("image_url", Text),
    Column("product_url", Text),
    Column("price", Float),
    Column("currency", String(10)),
    Column("shipping_availability", String(50)),
    Column("added_at", String(32), nullable=False),
    UniqueConstraint("user_id", "fragrance_id", name="uq_user_favorites_user_fragrance"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, sessions, preferences, and favorites.

    Usage:
        store = UserStore()
        store.create_user(User(id=str(uuid4()), email="ann@x.com", name="Ann"))
        user = store.get_user_by_email("ann@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        try:
            _metadata.create_all(self.engine)
        except DBAPIError as exc:
            raise StoreUnavailableError(f"Could not initialise auth store: {exc}") from exc

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """engine.connect() with DB faults translated to StoreUnavailableError."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except DBAPIError as exc:
            logger.error("Auth store failure: %s", exc.__class__.__name__)
            raise StoreUnavailableError() from exc

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._connect() as conn:
                conn.execute(text("SELECT 1"))
        except StoreUnavailableError:
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the id or email already exists.
        """
        now = _now_iso()
        with self._connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    email=user.email,
                    name=user.name,
                    picture=user.picture,
                    password_hash=user.password_hash,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        user.created_at = now
        user.updated_at = now
        return user

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable profile fields (name, picture, password_hash).

        updated_at is stamped automatically. Returns True if a row was updated.
        """
        fields["updated_at"] = _now_iso()
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        return self.update_user(user_id, password_hash=password_hash)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        """Insert a session row and return its ID."""
        with self._connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token=session.token,
                    expires_at=session.expires_at,
                    client_ip=session.client_ip,
                    user_agent=session.user_agent,
                    fingerprint=session.fingerprint,
                    created_at=session.created_at,
                    last_activity=session.last_activity,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session_by_token(self, token: str) -> Session | None:
        """Return the session for token joined with its owner's profile, expired or not."""
        query = (
            select(_sessions, _users.c.email, _users.c.name, _users.c.picture)
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.token == token)
        )
        with self._connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, token: str) -> bool:
        """Delete the session with this token. Returns False if it was already gone."""
        with self._connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_expired_sessions(self, user_id: str, now: float) -> int:
        """Delete this user's sessions with expires_at <= now. Returns the count removed."""
        with self._connect() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at <= now))
            )
            conn.commit()
        return result.rowcount

    def touch_session(self, token: str, now: float) -> None:
        with self._connect() as conn:
            conn.execute(_sessions.update().where(_sessions.c.token == token).values(last_activity=now))
            conn.commit()

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preferences(self, user_id: str) -> UserPreferences | None:
        with self._connect() as conn:
            row = conn.execute(_preferences.select().where(_preferences.c.user_id == user_id)).fetchone()
        return _row_to_preferences(row) if row is not None else None

    def upsert_preferences(self, prefs: UserPreferences) -> UserPreferences:
        """Insert or replace the single preferences row for prefs.user_id."""
        prefs.updated_at = _now_iso()
        values = {
            "scent_categories": json.dumps(prefs.scent_categories),
            "intensity": prefs.intensity,
            "season": prefs.season,
            "occasion": prefs.occasion,
            "budget_range": prefs.budget_range,
            "sensitivities": prefs.sensitivities,
            "updated_at": prefs.updated_at,
        }
        with self._connect() as conn:
            result = conn.execute(
                _preferences.update().where(_preferences.c.user_id == prefs.user_id).values(**values)
            )
            if result.rowcount == 0:
                conn.execute(_preferences.insert().values(user_id=prefs.user_id, **values))
            conn.commit()
        return prefs

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def list_favorites(self, user_id: str) -> list[UserFavorite]:
        """Return a user's favorites, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                _favorites.select()
                .where(_favorites.c.user_id == user_id)
                .order_by(_favorites.c.added_at.desc(), _favorites.c.id.desc())
            ).fetchall()
        return [_row_to_favorite(r) for r in rows]

    def add_favorite(self, favorite: UserFavorite) -> int:
        """Insert a favorite and return its ID.

        Raises sqlalchemy.exc.IntegrityError if (user_id, fragrance_id) exists.
        """
        favorite.added_at = _now_iso()
        with self._connect() as conn:
            result = conn.execute(
                _favorites.insert().values(
                    user_id=favorite.user_id,
                    fragrance_id=favorite.fragrance_id,
                    name=favorite.name,
                    advertiser_name=favorite.advertiser_name,
                    description=favorite.description,
                    image_url=favorite.image_url,
                    product_url=favorite.product_url,
                    price=favorite.price,
                    currency=favorite.currency,
                    shipping_availability=favorite.shipping_availability,
                    added_at=favorite.added_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def remove_favorite(self, user_id: str, fragrance_id: str) -> bool:
        """Delete one favorite. user_id is part of the filter so users cannot delete each other's rows."""
        with self._connect() as conn:
            result = conn.execute(
                _favorites.delete().where(
                    (_favorites.c.user_id == user_id) & (_favorites.c.fragrance_id == fragrance_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        picture=row.picture,
        password_hash=row.password_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        fingerprint=row.fingerprint,
        client_ip=row.client_ip,
        user_agent=row.user_agent,
        last_activity=row.last_activity,
        created_at=row.created_at,
        email=row.email,
        name=row.name,
        picture=row.picture,
    )


def _row_to_preferences(row) -> UserPreferences:
    try:
        categories = json.loads(row.scent_categories) if row.scent_categories else []
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable scent_categories for user %s", row.user_id)
        categories = []
    return UserPreferences(
        user_id=row.user_id,
        scent_categories=categories if isinstance(categories, list) else [],
        intensity=row.intensity,
        season=row.season,
        occasion=row.occasion,
        budget_range=row.budget_range,
        sensitivities=row.sensitivities,
        updated_at=row.updated_at,
    )


def _row_to_favorite(row) -> UserFavorite:
    return UserFavorite(
        id=row.id,
        user_id=row.user_id,
        fragrance_id=row.fragrance_id,
        name=row.name,
        advertiser_name=row.advertiser_name,
        description=row.description,
        image_url=row.image_url,
        product_url=row.product_url,
        price=row.price,
        currency=row.currency,
        shipping_availability=row.shipping_availability,
        added_at=row.added_at,
    )
