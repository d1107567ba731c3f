"""Database repository for account and confirmation data."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account
from .domain.contracts import CreateAccountInput
from .errors import AccountExistsError, AccountNotFoundError, TokenCollisionError

_ACCOUNT_COLUMNS = "account_id, email, confirm_token, confirmed, created_at"
# Partial unique index over outstanding (non-empty) confirm tokens.
CONFIRM_TOKEN_INDEX = "accounts_confirm_token_key"


@dataclass(slots=True)
class RefreshTokenRecord:
    """DTO mapping the refresh_tokens table for repository consumers."""

    token_id: str
    account_id: str
    expires_at: datetime
    revoked_at: datetime | None


def hash_email(email: str) -> bytes:
    """Normalise an email address and return its SHA-256 digest."""
    return hashlib.sha256(email.strip().lower().encode("utf-8")).digest()


class AccountRepository:
    """Postgres-backed account persistence."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def create_account(self, payload: CreateAccountInput) -> Account:
        """Insert an unconfirmed account with no token issued yet."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                try:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (account_id, email_hash, email, confirm_token, confirmed, created_at, updated_at)
                        VALUES (%s, %s, %s, '', FALSE, %s, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (account_id, hash_email(payload.email), payload.email, now, now),
                    )
                except UniqueViolation as exc:
                    raise AccountExistsError("an account with this e-mail already exists") from exc
                record = cur.fetchone()
                conn.commit()
        return self._map_record(record)

    def get_account(self, account_id: str) -> Account | None:
        return self._fetch_one(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s", (account_id,))

    def get_account_by_email(self, email: str) -> Account | None:
        return self._fetch_one(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email_hash = %s", (hash_email(email),)
        )

    def find_account_by_token(self, token: str) -> Account:
        """Return the account holding ``token``; raises ``AccountNotFoundError`` otherwise."""
        account = None
        if token:
            account = self._fetch_one(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE confirm_token = %s", (token,)
            )
        if account is None:
            raise AccountNotFoundError("confirm token not found")
        return account

    def redeem_token(self, token: str) -> Account:
        """Consume ``token`` and mark its account confirmed in a single statement.

        Concurrent redemptions of one token race on the row lock; only the
        first sees the token and the rest raise ``AccountNotFoundError``.
        """
        row = None
        if token:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        UPDATE accounts
                        SET confirm_token = '', confirmed = TRUE, updated_at = NOW()
                        WHERE confirm_token = %s AND confirm_token <> ''
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (token,),
                    )
                    row = cur.fetchone()
                    conn.commit()
        if row is None:
            raise AccountNotFoundError("confirm token not found")
        return self._map_record(row)

    def save_account(self, account: Account) -> None:
        """Write back the mutable confirmation fields of ``account``."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        """
                        UPDATE accounts
                        SET email = %s, confirm_token = %s, confirmed = %s, updated_at = NOW()
                        WHERE account_id = %s
                        """,
                        (account.email, account.confirm_token, account.confirmed, account.account_id),
                    )
                except UniqueViolation as exc:
                    if exc.diag.constraint_name == CONFIRM_TOKEN_INDEX:
                        raise TokenCollisionError("confirm token already issued") from exc
                    raise AccountExistsError("an account with this e-mail already exists") from exc
                if cur.rowcount == 0:
                    raise AccountNotFoundError()
                conn.commit()

    def _fetch_one(self, query: str, params: tuple) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                if not row:
                    return None
        return self._map_record(row)

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            confirm_token=row[2] or "",
            confirmed=row[3],
            created_at=row[4],
        )

    def create_refresh_token(
        self,
        *,
        account_id: str,
        token_hash: str,
        expires_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> RefreshTokenRecord:
        """Persist a hashed refresh token associated with an account."""
        token_id = str(uuid.uuid4())
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    INSERT INTO refresh_tokens (token_id, account_id, token_hash, expires_at, metadata)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING token_id, account_id, expires_at, revoked_at
                    """,
                    (token_id, account_id, token_hash, expires_at, Json(metadata or {})),
                )
                row = cur.fetchone()
                conn.commit()
        return RefreshTokenRecord(*row)

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        """Return an active refresh token record for the provided hash."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT token_id, account_id, expires_at, revoked_at
                    FROM refresh_tokens
                    WHERE token_hash = %s AND revoked_at IS NULL
                    """,
                    (token_hash,),
                )
                row = cur.fetchone()
                if not row:
                    return None
        return RefreshTokenRecord(*row)

    def revoke_refresh_token(self, token_id: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE refresh_tokens
                    SET revoked_at = NOW()
                    WHERE token_id = %s AND revoked_at IS NULL
                    """,
                    (token_id,),
                )
                conn.commit()
