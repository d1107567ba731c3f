"""Account service orchestrating registration, login, and confirmation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .account import Account
from .confirm import ConfirmModule, Redirect
from .contracts import CreateAccountInput
from .pipeline import AuthPipeline, ConfirmContext
from ..config import Settings, get_settings
from ..core.logging_safety import safe_log_identifier
from ..errors import AccountExistsError, AccountNotFoundError, InvalidTokenError
from ..repository import AccountRepository
from ..security.sessions import Session
from ..security.tokens import (
    DEFAULT_SCOPES,
    generate_refresh_token,
    hash_refresh_token,
    issue_access_token,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TokenBundle:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    refresh_expires_in: int
    account_id: str


class AccountService:
    """Account workflows whose auth checkpoints run through an :class:`AuthPipeline`."""

    def __init__(
        self,
        repository: AccountRepository,
        pipeline: AuthPipeline,
        confirm: ConfirmModule,
        settings: Settings | None = None,
    ) -> None:
        self._repository = repository
        self._pipeline = pipeline
        self._confirm = confirm
        self._settings = settings or get_settings()

    def register(self, payload: CreateAccountInput) -> Account:
        """Persist a new unconfirmed account and run the after-register hooks."""
        if self._repository.get_account_by_email(payload.email) is not None:
            raise AccountExistsError("an account with this e-mail already exists")
        account = self._repository.create_account(payload)
        logger.info(
            "registered account %s (%s)",
            account.account_id,
            safe_log_identifier(account.email, prefix="email"),
        )
        self._pipeline.fire_after_register(ConfirmContext(account=account))
        return account

    def get_account(self, account_id: str) -> Account | None:
        return self._repository.get_account(account_id)

    def load_account(self, account_id: str, session: Session | None = None) -> Account:
        """Load an account into request context, subject to the after-load checkpoint."""
        account = self._repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError()
        self._pipeline.fire_after_load_account(ConfirmContext(account=account, session=session))
        return account

    def issue_token(self, account_id: str, scopes: list[str] | None = None) -> TokenBundle:
        """Authenticate the account and issue access and refresh tokens."""
        account = self._repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError()
        self._pipeline.fire_before_auth(ConfirmContext(account=account))
        return self._mint_tokens(account, scopes)

    def refresh_access_token(
        self, refresh_token: str, scopes: list[str] | None = None
    ) -> TokenBundle:
        """Exchange a refresh token for a new access/refresh pair.

        Parameters
        ----------
        refresh_token:
            Raw refresh token obtained from a previous call to :meth:`issue_token`.
        scopes:
            Optional overrides for the scope list baked into the new access token.
        """
        record = self._repository.find_refresh_token(hash_refresh_token(refresh_token))
        if record is None:
            raise InvalidTokenError("invalid refresh token")
        if record.revoked_at is not None:
            raise InvalidTokenError("refresh token revoked")
        if record.expires_at <= datetime.now(timezone.utc):
            self._repository.revoke_refresh_token(record.token_id)
            raise InvalidTokenError("refresh token expired")

        account = self._repository.get_account(record.account_id)
        if account is None:
            self._repository.revoke_refresh_token(record.token_id)
            raise InvalidTokenError("account unavailable")
        self._pipeline.fire_after_load_account(ConfirmContext(account=account))

        self._repository.revoke_refresh_token(record.token_id)
        return self._mint_tokens(account, scopes)

    def confirm(self, token: str | None, session: Session | None = None) -> Redirect:
        return self._confirm.confirm(token, ConfirmContext(session=session))

    def _mint_tokens(self, account: Account, scopes: list[str] | None) -> TokenBundle:
        effective_scopes = scopes or DEFAULT_SCOPES
        access_token, expires_in = issue_access_token(
            subject=account.account_id, scopes=effective_scopes, settings=self._settings
        )
        refresh_token, token_hash = generate_refresh_token()
        self._repository.create_refresh_token(
            account_id=account.account_id,
            token_hash=token_hash,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self._settings.refresh_ttl_seconds),
            metadata={"scopes": effective_scopes},
        )
        return TokenBundle(
            access_token=access_token,
            access_expires_in=expires_in,
            refresh_token=refresh_token,
            refresh_expires_in=self._settings.refresh_ttl_seconds,
            account_id=account.account_id,
        )
