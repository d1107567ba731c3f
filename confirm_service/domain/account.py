"""Account aggregate and its confirmation state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import FieldTypeError, MissingFieldError

FIELD_PRIMARY_ID = "account_id"
FIELD_EMAIL = "email"
FIELD_CONFIRM_TOKEN = "confirm_token"
FIELD_CONFIRMED = "confirmed"

# Field types a storage backend must support for the confirm module.
STORAGE_SCHEMA: dict[str, type] = {
    FIELD_PRIMARY_ID: str,
    FIELD_EMAIL: str,
    FIELD_CONFIRM_TOKEN: str,
    FIELD_CONFIRMED: bool,
}


class ConfirmationState(str, Enum):
    unissued = "unissued"
    pending = "pending"
    confirmed = "confirmed"


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered identity gated by e-mail confirmation."""

    account_id: str
    email: str
    confirm_token: str = ""
    confirmed: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def state(self) -> ConfirmationState:
        """Project the confirmation fields onto a lifecycle state.

        Raises
        ------
        ValueError
            When the account is confirmed but still carries a token.
        """
        if self.confirmed:
            if self.confirm_token:
                raise ValueError("confirmed account must not carry a confirm token")
            return ConfirmationState.confirmed
        if self.confirm_token:
            return ConfirmationState.pending
        return ConfirmationState.unissued

    def issue_confirm_token(self, token: str) -> None:
        """Attach an outstanding token, replacing any previous one."""
        if self.confirmed:
            raise ValueError("account is already confirmed")
        self.confirm_token = token

    def mark_confirmed(self) -> None:
        self.confirm_token = ""
        self.confirmed = True


def _require(fields: dict[str, Any], name: str, expected: type) -> Any:
    if name not in fields or fields[name] is None:
        raise MissingFieldError(name)
    value = fields[name]
    if not isinstance(value, expected):
        raise FieldTypeError(name, expected, value)
    return value


def account_from_fields(fields: dict[str, Any]) -> Account:
    """Build an ``Account`` from a schema-less field bag, checking types at the boundary."""
    token = fields.get(FIELD_CONFIRM_TOKEN) or ""
    if not isinstance(token, str):
        raise FieldTypeError(FIELD_CONFIRM_TOKEN, str, token)
    confirmed = fields.get(FIELD_CONFIRMED, False)
    if not isinstance(confirmed, bool):
        raise FieldTypeError(FIELD_CONFIRMED, bool, confirmed)
    account = Account(
        account_id=_require(fields, FIELD_PRIMARY_ID, str),
        email=_require(fields, FIELD_EMAIL, str),
        confirm_token=token,
        confirmed=confirmed,
    )
    created_at = fields.get("created_at")
    if isinstance(created_at, datetime):
        account.created_at = created_at
    return account


def account_to_fields(account: Account) -> dict[str, Any]:
    """Flatten an ``Account`` into the field bag stored by schema-less backends."""
    return {
        FIELD_PRIMARY_ID: account.account_id,
        FIELD_EMAIL: account.email,
        FIELD_CONFIRM_TOKEN: account.confirm_token,
        FIELD_CONFIRMED: account.confirmed,
        "created_at": account.created_at,
    }
