"""Domain-level contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from .account import Account


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to register an account."""

    email: str


@dataclass(slots=True)
class Email:
    """A rendered message ready to hand to a ``Mailer``."""

    to: list[str]
    from_address: str
    subject: str
    html_body: str = ""
    text_body: str = ""


class AccountStorer(Protocol):
    """Storage capability the confirm module consumes."""

    def save_account(self, account: Account) -> None:
        """Persist ``account``; raises ``TokenCollisionError`` if its token is held elsewhere."""
        ...

    def redeem_token(self, token: str) -> Account:
        """Atomically clear ``token`` and confirm the account holding it.

        Raises ``AccountNotFoundError`` when no pending account holds the
        token, including when a concurrent redemption consumed it first.
        """
        ...

    def find_account_by_token(self, token: str) -> Account:
        """Return the account whose stored token equals ``token`` exactly.

        Raises ``AccountNotFoundError`` when no account matches; any other
        exception is a storage failure.
        """
        ...


class Mailer(Protocol):
    """Delivery capability; ``synchronous`` asks callers not to detach sends."""

    synchronous: bool

    def send(self, email: Email) -> None: ...


class SessionStore(Protocol):
    def get(self, session_id: str, key: str) -> Any: ...

    def put(self, session_id: str, key: str, value: Any) -> None: ...

    def delete(self, session_id: str, key: str) -> None: ...
