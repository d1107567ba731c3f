"""E-mail confirmation of newly registered accounts."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from urllib.parse import quote

from jinja2 import TemplateError

from .account import FIELD_CONFIRMED, FIELD_EMAIL, Account
from .contracts import AccountStorer, Email
from .pipeline import ConfirmContext, Interrupt
from .. import metrics
from ..config import Settings
from ..delivery.dispatch import DeliveryDispatcher
from ..delivery.templates import EmailRenderer
from ..errors import (
    AccountNotFoundError,
    ClientDataError,
    FieldTypeError,
    MissingAccountError,
    MissingFieldError,
    RedirectError,
    TokenCollisionError,
)
from ..security.confirm_tokens import TokenGenerator, default_generator
from ..security.sessions import SESSION_KEY

logger = logging.getLogger(__name__)

FORM_VALUE_CONFIRM = "cnf"
CONFIRM_SUBJECT = "Confirm New Account"
CONFIRM_SUCCESS_MESSAGE = "You have successfully confirmed your account."
TOKEN_NOT_FOUND_MESSAGE = "Your confirmation link is invalid or has already been used."
TOKEN_ISSUE_ATTEMPTS = 5


@dataclass(slots=True)
class Redirect:
    location: str
    message: str


class ConfirmModule:
    """Gates new accounts until the e-mailed confirmation token is redeemed.

    Register an instance with :class:`~confirm_service.domain.pipeline.AuthPipeline`
    to hook registration, login and account loading.
    """

    def __init__(
        self,
        settings: Settings,
        storer: AccountStorer,
        dispatcher: DeliveryDispatcher,
        *,
        renderer: EmailRenderer | None = None,
        generator: TokenGenerator | None = None,
    ) -> None:
        self._settings = settings
        self._storer = storer
        self._dispatcher = dispatcher
        self._renderer = renderer or EmailRenderer()
        self._generator = generator or default_generator

    def after_register(self, ctx: ConfirmContext) -> None:
        """Attach a fresh token to the new account and e-mail the confirmation link."""
        account = ctx.account
        if account is None:
            raise MissingAccountError()

        token = self._issue_token(account)
        metrics.TOKENS_ISSUED.inc()
        logger.info("confirm token issued for account %s", account.account_id)

        if not account.email:
            raise MissingFieldError(FIELD_EMAIL)

        self.send_confirm_email(account.email, token)

    def _issue_token(self, account: Account) -> str:
        """Store a fresh token on ``account``, drawing again if another account holds it."""
        attempts = 0
        while True:
            attempts += 1
            token = self._generator.generate(self._settings.confirm_token_length)
            account.issue_confirm_token(token.upper())
            try:
                self._storer.save_account(account)
                return token
            except TokenCollisionError:
                if attempts >= TOKEN_ISSUE_ATTEMPTS:
                    raise
                logger.warning("confirm token collision for account %s, drawing again", account.account_id)

    def before_auth(self, ctx: ConfirmContext) -> Interrupt:
        account = ctx.account
        if account is None:
            raise MissingAccountError("confirm: no account loaded for authentication")
        confirmed = account.confirmed
        if not isinstance(confirmed, bool):
            raise FieldTypeError(FIELD_CONFIRMED, bool, confirmed)
        if not confirmed:
            return Interrupt.account_not_confirmed
        return Interrupt.none

    after_load_account = before_auth

    def confirm_url(self, token: str) -> str:
        path = posixpath.join("/", self._settings.mount_path.strip("/"), "confirm")
        root = self._settings.root_url.rstrip("/")
        return f"{root}{path}?{quote(FORM_VALUE_CONFIRM)}={quote(token, safe='')}"

    def send_confirm_email(self, to: str, token: str) -> None:
        url = self.confirm_url(token)
        try:
            html_body, text_body = self._renderer.render_confirm(url)
        except TemplateError:
            metrics.DELIVERY_FAILURES.inc()
            logger.exception("confirm: failed to render confirmation e-mail")
            return

        self._dispatcher.dispatch(
            Email(
                to=[to],
                from_address=self._settings.email_from,
                subject=self._settings.email_subject_prefix + CONFIRM_SUBJECT,
                html_body=html_body,
                text_body=text_body,
            )
        )

    def confirm(self, token: str | None, ctx: ConfirmContext) -> Redirect:
        """Redeem a confirmation token.

        Raises
        ------
        ClientDataError
            When no token was supplied; storage is not consulted.
        RedirectError
            When the token matches no account. Storage clears the token in
            the same step that confirms the account, so a second redemption,
            concurrent or not, always ends here.
        """
        if not token:
            metrics.REDEMPTIONS.labels(outcome="rejected").inc()
            raise ClientDataError(FORM_VALUE_CONFIRM)

        try:
            account = self._storer.redeem_token(token.upper())
        except AccountNotFoundError as exc:
            metrics.REDEMPTIONS.labels(outcome="not_found").inc()
            raise RedirectError("/", TOKEN_NOT_FOUND_MESSAGE) from exc

        ctx.account = account
        metrics.REDEMPTIONS.labels(outcome="confirmed").inc()
        logger.info("account %s confirmed", account.account_id)

        if self._settings.allow_insecure_login_after_confirm and ctx.session is not None:
            ctx.session.put(SESSION_KEY, account.account_id)

        return Redirect(location=self._settings.register_ok_path, message=CONFIRM_SUCCESS_MESSAGE)
