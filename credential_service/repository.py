"""Account persistence: the store contract plus in-memory and Postgres backends."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Iterable, Protocol

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import MUTABLE_FIELDS, Account, NewAccount
from .domain.errors import DuplicateEmailError, StoreUnavailableError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _checked_fields(fields: Iterable[str]) -> tuple[str, ...]:
    """Return the requested columns in order, without duplicates, rejecting unknown names."""
    columns = tuple(dict.fromkeys(fields))
    if not columns:
        raise ValueError("save requires at least one field")
    unknown = [name for name in columns if name not in MUTABLE_FIELDS]
    if unknown:
        raise ValueError(f"fields are not writable: {', '.join(unknown)}")
    return columns


class AccountStore(Protocol):
    """Keyed account persistence with point lookups and atomic per-field writes."""

    def get_by_id(self, account_id: str) -> Account | None: ...

    def get_by_email(self, email: str) -> Account | None: ...

    def get_by_verification_token(self, token: str) -> Account | None: ...

    def get_by_reset_token(self, token: str) -> Account | None: ...

    def create(self, draft: NewAccount) -> Account: ...

    def save(self, account: Account, *, fields: Iterable[str]) -> Account: ...


class InMemoryAccountStore:
    """Thread-safe process-local store used for tests and local development."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._accounts: dict[str, Account] = {}
        self._by_email: dict[str, str] = {}
        self._by_verification: dict[str, str] = {}
        self._by_reset: dict[str, str] = {}
        self._lock = Lock()

    def get_by_id(self, account_id: str) -> Account | None:
        with self._lock:
            return self._copy(self._accounts.get(account_id))

    def get_by_email(self, email: str) -> Account | None:
        with self._lock:
            return self._lookup(self._by_email, email)

    def get_by_verification_token(self, token: str) -> Account | None:
        with self._lock:
            return self._lookup(self._by_verification, token)

    def get_by_reset_token(self, token: str) -> Account | None:
        with self._lock:
            return self._lookup(self._by_reset, token)

    def create(self, draft: NewAccount) -> Account:
        now = self._clock()
        account = Account(
            account_id=str(uuid.uuid4()),
            email=draft.email,
            password_hash=draft.password_hash,
            first_name=draft.first_name,
            last_name=draft.last_name,
            created_at=now,
            updated_at=now,
            email_verification_token=draft.email_verification_token,
        )
        with self._lock:
            if draft.email in self._by_email:
                raise DuplicateEmailError(draft.email)
            self._put(account)
        return replace(account)

    def save(self, account: Account, *, fields: Iterable[str]) -> Account:
        """Write only ``fields`` onto the stored record, or insert ``account`` when it is unknown.

        The merge happens under the lock against the current record, so
        columns another caller changed since ``account`` was read survive.
        """
        columns = _checked_fields(fields)
        with self._lock:
            current = self._accounts.get(account.account_id)
            if current is None:
                owner = self._by_email.get(account.email)
                if owner is not None:
                    raise DuplicateEmailError(account.email)
                stored = replace(account, updated_at=self._clock())
            else:
                changes = {name: getattr(account, name) for name in columns}
                stored = replace(current, updated_at=self._clock(), **changes)
                self._drop_indexes(current)
            self._put(stored)
        return replace(stored)

    def _lookup(self, index: dict[str, str], key: str) -> Account | None:
        account_id = index.get(key)
        if account_id is None:
            return None
        return self._copy(self._accounts.get(account_id))

    def _put(self, account: Account) -> None:
        self._accounts[account.account_id] = account
        self._by_email[account.email] = account.account_id
        if account.email_verification_token is not None:
            self._by_verification[account.email_verification_token] = account.account_id
        if account.reset_password_token is not None:
            self._by_reset[account.reset_password_token] = account.account_id

    def _drop_indexes(self, account: Account) -> None:
        self._by_email.pop(account.email, None)
        if account.email_verification_token is not None:
            self._by_verification.pop(account.email_verification_token, None)
        if account.reset_password_token is not None:
            self._by_reset.pop(account.reset_password_token, None)

    @staticmethod
    def _copy(account: Account | None) -> Account | None:
        return replace(account) if account is not None else None


_COLUMNS = (
    "account_id, email, password_hash, first_name, last_name, created_at, updated_at, "
    "is_email_verified, email_verification_token, reset_password_token, "
    "reset_password_expires, refresh_token_hash"
)


class PostgresAccountStore:
    """Postgres-backed account persistence."""

    SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS credential_accounts (
        account_id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        is_email_verified BOOLEAN NOT NULL DEFAULT FALSE,
        email_verification_token TEXT UNIQUE,
        reset_password_token TEXT UNIQUE,
        reset_password_expires TIMESTAMPTZ,
        refresh_token_hash TEXT,
        CONSTRAINT credential_accounts_reset_pair
            CHECK ((reset_password_token IS NULL) = (reset_password_expires IS NULL))
    )
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def ensure_schema(self) -> None:
        """Create the accounts table when it does not exist yet."""
        try:
            with self._pool.connection() as conn:
                conn.execute(self.SCHEMA_SQL)
                conn.commit()
        except psycopg.OperationalError as exc:
            raise StoreUnavailableError("account store unavailable") from exc

    def get_by_id(self, account_id: str) -> Account | None:
        return self._fetch_one("account_id", account_id)

    def get_by_email(self, email: str) -> Account | None:
        return self._fetch_one("email", email)

    def get_by_verification_token(self, token: str) -> Account | None:
        return self._fetch_one("email_verification_token", token)

    def get_by_reset_token(self, token: str) -> Account | None:
        return self._fetch_one("reset_password_token", token)

    def create(self, draft: NewAccount) -> Account:
        """Insert a new account, assigning its identifier and timestamps."""
        account_id = str(uuid.uuid4())
        now = _utcnow()
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO credential_accounts (
                            account_id, email, password_hash, first_name, last_name,
                            created_at, updated_at, is_email_verified, email_verification_token
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, FALSE, %s)
                        RETURNING {_COLUMNS}
                        """,
                        (
                            account_id,
                            draft.email,
                            draft.password_hash,
                            draft.first_name,
                            draft.last_name,
                            now,
                            now,
                            draft.email_verification_token,
                        ),
                    )
                    row = cur.fetchone()
                conn.commit()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateEmailError(draft.email) from exc
        except psycopg.OperationalError as exc:
            raise StoreUnavailableError("account store unavailable") from exc
        return self._map_record(row)

    def save(self, account: Account, *, fields: Iterable[str]) -> Account:
        """Upsert the account, overwriting only ``fields`` when the row already exists."""
        columns = _checked_fields(fields)
        assignments = ", ".join(f"{name} = EXCLUDED.{name}" for name in columns)
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO credential_accounts ({_COLUMNS})
                        VALUES (%s, %s, %s, %s, %s, %s, NOW(), %s, %s, %s, %s, %s)
                        ON CONFLICT (account_id) DO UPDATE SET
                            {assignments},
                            updated_at = EXCLUDED.updated_at
                        RETURNING {_COLUMNS}
                        """,
                        (
                            account.account_id,
                            account.email,
                            account.password_hash,
                            account.first_name,
                            account.last_name,
                            account.created_at,
                            account.is_email_verified,
                            account.email_verification_token,
                            account.reset_password_token,
                            account.reset_password_expires,
                            account.refresh_token_hash,
                        ),
                    )
                    row = cur.fetchone()
                conn.commit()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateEmailError(account.email) from exc
        except psycopg.OperationalError as exc:
            raise StoreUnavailableError("account store unavailable") from exc
        return self._map_record(row)

    def _fetch_one(self, column: str, value: str) -> Account | None:
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"SELECT {_COLUMNS} FROM credential_accounts WHERE {column} = %s",
                        (value,),
                    )
                    row = cur.fetchone()
        except psycopg.OperationalError as exc:
            logger.warning("account lookup by %s failed: %s", column, exc)
            raise StoreUnavailableError("account store unavailable") from exc
        if not row:
            return None
        return self._map_record(row)

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            password_hash=row[2],
            first_name=row[3],
            last_name=row[4],
            created_at=row[5],
            updated_at=row[6],
            is_email_verified=row[7],
            email_verification_token=row[8],
            reset_password_token=row[9],
            reset_password_expires=row[10],
            refresh_token_hash=row[11],
        )
