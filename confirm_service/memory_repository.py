"""In-process account storage for development and tests."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from .domain.account import (
    FIELD_CONFIRM_TOKEN,
    FIELD_PRIMARY_ID,
    FIELD_EMAIL,
    Account,
    account_from_fields,
    account_to_fields,
)
from .domain.contracts import CreateAccountInput
from .errors import AccountExistsError, AccountNotFoundError, TokenCollisionError
from .repository import RefreshTokenRecord


class InMemoryAccountRepository:
    """Schema-less store keeping each account as a field bag.

    Records cross the boundary through :func:`account_from_fields` and
    :func:`account_to_fields`, so a corrupted bag surfaces as a field error.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.refresh_tokens: dict[str, RefreshTokenRecord] = {}
        self._lock = Lock()

    def create_account(self, payload: CreateAccountInput) -> Account:
        account = Account(account_id=str(uuid.uuid4()), email=payload.email)
        with self._lock:
            if self._find_by_email(payload.email) is not None:
                raise AccountExistsError("an account with this e-mail already exists")
            self.records[account.account_id] = account_to_fields(account)
        return account

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            fields = self.records.get(account_id)
            return account_from_fields(fields) if fields is not None else None

    def get_account_by_email(self, email: str) -> Account | None:
        with self._lock:
            fields = self._find_by_email(email)
            return account_from_fields(fields) if fields is not None else None

    def find_account_by_token(self, token: str) -> Account:
        with self._lock:
            fields = self._find_by_token(token)
            if fields is None:
                raise AccountNotFoundError("confirm token not found")
            return account_from_fields(fields)

    def redeem_token(self, token: str) -> Account:
        """Consume ``token`` and confirm its account under one lock hold."""
        with self._lock:
            fields = self._find_by_token(token)
            if fields is None:
                raise AccountNotFoundError("confirm token not found")
            account = account_from_fields(fields)
            account.mark_confirmed()
            fields.update(account_to_fields(account))
            return account

    def save_account(self, account: Account) -> None:
        with self._lock:
            if account.account_id not in self.records:
                raise AccountNotFoundError()
            holder = self._find_by_token(account.confirm_token)
            if holder is not None and holder[FIELD_PRIMARY_ID] != account.account_id:
                raise TokenCollisionError("confirm token already issued")
            self.records[account.account_id].update(account_to_fields(account))

    def _find_by_token(self, token: str) -> dict[str, Any] | None:
        if not token:
            return None
        for fields in self.records.values():
            if fields.get(FIELD_CONFIRM_TOKEN) == token:
                return fields
        return None

    def _find_by_email(self, email: str) -> dict[str, Any] | None:
        wanted = email.strip().lower()
        for fields in self.records.values():
            if str(fields.get(FIELD_EMAIL, "")).lower() == wanted:
                return fields
        return None

    def create_refresh_token(
        self,
        *,
        account_id: str,
        token_hash: str,
        expires_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> RefreshTokenRecord:
        record = RefreshTokenRecord(
            token_id=str(uuid.uuid4()),
            account_id=account_id,
            expires_at=expires_at,
            revoked_at=None,
        )
        with self._lock:
            self.refresh_tokens[token_hash] = record
        return record

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        with self._lock:
            record = self.refresh_tokens.get(token_hash)
            if record and record.revoked_at is None:
                return record
            return None

    def revoke_refresh_token(self, token_id: str) -> None:
        with self._lock:
            for record in self.refresh_tokens.values():
                if record.token_id == token_id and record.revoked_at is None:
                    record.revoked_at = datetime.now(timezone.utc)
                    break
