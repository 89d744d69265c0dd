"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper + Unit of Work.
UserStore is the repository; _row_to_* functions are the mappers; begin()
hands out a Transaction that groups several repository calls into one atomic
write. Service code never touches SQL directly.

Every repository method accepts an optional tx. Without one, the method runs
in its own short transaction (engine.begin()). With one, it joins the caller's
transaction and nothing is committed until the caller commits.

Security:
  All queries use bound parameters. No f-strings in SQL.

Integrity:
  UNIQUE(email) on users is the race-resolution mechanism for concurrent
  sign-ups. The losing INSERT raises sqlalchemy.exc.IntegrityError, which the
  credential service reports as a conflict.

  UNIQUE(provider, provider_account_id) on accounts backs upsert_account(),
  which uses the dialect's INSERT ... ON CONFLICT DO NOTHING rather than a
  check-then-insert, so two concurrent first logins for the same external
  identity cannot produce two rows.

DB path: auth/snipshare_auth.db unless DATABASE_URL is configured.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import Account, EmailVerificationToken, User

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'snipshare_auth.db'}"

# Default preference values written alongside every new user.
DEFAULT_PREFERENCES: dict = {
    "language": "en",
    "theme_preference": "system",
    "editor_theme": "vs_dark",
    "default_code_language": "plaintext",
    "default_snippet_visibility": "public",
    "keyboard_shortcuts": 1,
    "notifications": 1,
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255), nullable=False),
    Column("password", Text),  # bcrypt hash, NULL for OAuth-only users
    Column("salt", String(64)),  # NULL for OAuth-only users
    Column("email_verified", String(32)),
    Column("image", Text),
    Column("created_at", String(32), nullable=False),
)

_preferences = Table(
    "preferences",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("language", String(8), nullable=False),
    Column("theme_preference", String(16), nullable=False),
    Column("editor_theme", String(32), nullable=False),
    Column("default_code_language", String(32), nullable=False),
    Column("default_snippet_visibility", String(16), nullable=False),
    Column("keyboard_shortcuts", Integer, nullable=False),
    Column("notifications", Integer, nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("provider", String(30), nullable=False),
    Column("provider_account_id", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("provider", "provider_account_id", name="uq_provider_account"),
)

_verification_tokens = Table(
    "email_verification_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("email", String(255), nullable=False),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

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
# Unit of work
# ---------------------------------------------------------------------------


class Transaction:
    """One open database transaction.

    commit() and rollback() both release the connection. Used as a context
    manager, the transaction commits on a clean exit and rolls back when the
    block raises; an explicit commit() or rollback() inside the block wins.
    """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self._tx = connection.begin()
        self._closed = False

    def commit(self) -> None:
        try:
            self._tx.commit()
        finally:
            self._close()

    def rollback(self) -> None:
        try:
            if self._tx.is_active:
                self._tx.rollback()
        finally:
            self._close()

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            self.connection.close()

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._closed:
            return False
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository and unit of work for User, Account and token entities.

    Usage:
        store = UserStore()
        with store.begin() as tx:
            user_id = store.create_user(User(email="a@x.com", username="alice"), tx=tx)
            store.upsert_account(Account(user_id=user_id, provider="github", provider_account_id="42"), tx=tx)
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def begin(self) -> Transaction:
        """Open a transaction spanning several repository calls."""
        return Transaction(self.engine.connect())

    @contextmanager
    def _connection(self, tx: Transaction | None) -> Iterator[Connection]:
        if tx is not None:
            yield tx.connection
        else:
            with self.engine.begin() as conn:
                yield conn

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_by_email(self, email: str, tx: Transaction | None = None) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self._connection(tx) as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int, tx: Transaction | None = None) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self._connection(tx) as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_credentials(self, email: str, tx: Transaction | None = None) -> User | None:
        """Return only the columns sign-in needs (no image or verification state)."""
        query = select(
            _users.c.id,
            _users.c.email,
            _users.c.username,
            _users.c.password,
            _users.c.salt,
        ).where(_users.c.email == email)
        with self._connection(tx) as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        return User(id=row.id, email=row.email, username=row.username, password=row.password, salt=row.salt)

    def create_user(self, user: User, tx: Transaction | None = None) -> int:
        """Insert a user plus its default preferences row and return the user ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self._connection(tx) as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    username=user.username,
                    password=user.password,
                    salt=user.salt,
                    email_verified=user.email_verified,
                    image=user.image,
                    created_at=_now_iso(),
                )
            )
            user_id = result.inserted_primary_key[0]
            conn.execute(_preferences.insert().values(user_id=user_id, **DEFAULT_PREFERENCES))
        return user_id

    # ------------------------------------------------------------------
    # External accounts
    # ------------------------------------------------------------------

    def upsert_account(self, account: Account, tx: Transaction | None = None) -> None:
        """Insert the (provider, provider_account_id) link unless it already exists.

        An existing row is left untouched, including its user_id. Callers
        that need to know who owns the identity read it back with
        get_account() inside the same transaction.
        """
        insert = self._dialect_insert()
        stmt = (
            insert(_accounts)
            .values(
                user_id=account.user_id,
                provider=account.provider,
                provider_account_id=account.provider_account_id,
                created_at=_now_iso(),
            )
            .on_conflict_do_nothing(index_elements=["provider", "provider_account_id"])
        )
        with self._connection(tx) as conn:
            conn.execute(stmt)

    def get_account(self, provider: str, provider_account_id: str, tx: Transaction | None = None) -> Account | None:
        with self._connection(tx) as conn:
            row = conn.execute(
                _accounts.select().where(
                    (_accounts.c.provider == provider) & (_accounts.c.provider_account_id == provider_account_id)
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def _dialect_insert(self):
        """Return the dialect-specific insert() that supports ON CONFLICT."""
        name = self.engine.dialect.name
        if name == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        elif name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            raise NotImplementedError(f"Upsert is not supported on dialect {name!r}")
        return insert

    # ------------------------------------------------------------------
    # Email verification tokens
    # ------------------------------------------------------------------

    def create_verification_token(self, token: EmailVerificationToken, tx: Transaction | None = None) -> int:
        with self._connection(tx) as conn:
            result = conn.execute(
                _verification_tokens.insert().values(
                    user_id=token.user_id,
                    email=token.email,
                    token=token.token,
                    expires_at=token.expires_at,
                )
            )
        return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Inspection helpers
    #
    # Read-only queries outside the sign-up/sign-in/linking flows. They run
    # on their own connection and never join a Transaction, so they only see
    # committed state. Used to check store invariants (one user per email,
    # one link per external identity).
    # ------------------------------------------------------------------

    def count_users(self, email: str | None = None) -> int:
        """Return the number of users, optionally restricted to one email."""
        query = select(func.count()).select_from(_users)
        if email is not None:
            query = query.where(_users.c.email == email)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def count_accounts(self, provider: str | None = None, provider_account_id: str | None = None) -> int:
        """Return the number of account links matching the given filters."""
        query = select(func.count()).select_from(_accounts)
        if provider is not None:
            query = query.where(_accounts.c.provider == provider)
        if provider_account_id is not None:
            query = query.where(_accounts.c.provider_account_id == provider_account_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def get_preferences(self, user_id: int) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(_preferences.select().where(_preferences.c.user_id == user_id)).fetchone()
        if row is None:
            return None
        return {key: getattr(row, key) for key in DEFAULT_PREFERENCES}

    def get_verification_tokens(self, user_id: int) -> list[EmailVerificationToken]:
        """Return every verification token issued to a user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _verification_tokens.select()
                .where(_verification_tokens.c.user_id == user_id)
                .order_by(_verification_tokens.c.id)
            ).fetchall()
        return [_row_to_token(r) for r in rows]

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
        password=row.password,
        salt=row.salt,
        email_verified=row.email_verified,
        image=row.image,
        created_at=row.created_at,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        provider_account_id=row.provider_account_id,
        created_at=row.created_at,
    )


def _row_to_token(row) -> EmailVerificationToken:
    return EmailVerificationToken(
        id=row.id,
        user_id=row.user_id,
        email=row.email,
        token=row.token,
        expires_at=row.expires_at,
    )
