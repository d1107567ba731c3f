"""Unit tests for the confirm module's hooks, gate, and redemption handler."""

from __future__ import annotations

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from confirm_service.delivery.dispatch import DeliveryDispatcher
from confirm_service.domain.account import Account
from confirm_service.domain.confirm import (
    CONFIRM_SUCCESS_MESSAGE,
    TOKEN_ISSUE_ATTEMPTS,
    ConfirmModule,
    Redirect,
)
from confirm_service.domain.contracts import CreateAccountInput
from confirm_service.domain.pipeline import AuthPipeline, ConfirmContext, Interrupt
from confirm_service.errors import (
    AccountNotConfirmedInterrupt,
    AccountNotFoundError,
    ClientDataError,
    FieldTypeError,
    MissingAccountError,
    MissingFieldError,
    RedirectError,
    TokenCollisionError,
)
from confirm_service.memory_repository import InMemoryAccountRepository
from confirm_service.security.confirm_tokens import RandomSource, TokenGenerator
from confirm_service.security.sessions import SESSION_KEY, InMemorySessionStore, Session


class BrokenStorer:
    def __init__(self) -> None:
        self.lookups = 0

    def save_account(self, account: Account) -> None:
        raise RuntimeError("database unavailable")

    def find_account_by_token(self, token: str) -> Account:
        self.lookups += 1
        raise RuntimeError("database unavailable")

    def redeem_token(self, token: str) -> Account:
        self.lookups += 1
        raise RuntimeError("database unavailable")


class ScriptedGenerator:
    """Hands out a fixed sequence of tokens."""

    def __init__(self, *tokens: str) -> None:
        self.tokens = list(tokens)

    def generate(self, length: int) -> str:
        return self.tokens.pop(0)


@pytest.fixture
def module(settings, repository, dispatcher) -> ConfirmModule:
    return ConfirmModule(
        settings,
        repository,
        dispatcher,
        generator=TokenGenerator(RandomSource(random.Random(11))),
    )


@pytest.fixture
def registered(repository, module) -> Account:
    account = repository.create_account(CreateAccountInput(email="alice@example.com"))
    module.after_register(ConfirmContext(account=account))
    return account


def test_after_register_requires_account(module):
    with pytest.raises(MissingAccountError):
        module.after_register(ConfirmContext())


def test_after_register_stores_uppercase_token(registered, repository):
    stored = repository.get_account(registered.account_id)
    assert stored.confirmed is False
    assert len(stored.confirm_token) == 6
    assert stored.confirm_token == stored.confirm_token.upper()


def test_after_register_sends_one_email(registered, repository, mailer, settings):
    assert len(mailer.sent) == 1
    email = mailer.sent[0]
    assert email.to == ["alice@example.com"]
    assert email.from_address == "accounts@example.com"
    assert email.subject == "[Example] Confirm New Account"

    token = mailer.last_token()
    assert token.upper() == repository.get_account(registered.account_id).confirm_token
    mount = settings.mount_path.strip("/")
    expected_url = f"http://testserver/{mount}/confirm?cnf={token}" if mount else f"http://testserver/confirm?cnf={token}"
    assert expected_url in email.text_body
    assert expected_url in email.html_body


def test_after_register_token_is_deterministic_with_seeded_source(settings, mailer):
    def mint() -> str:
        repository = InMemoryAccountRepository()
        module = ConfirmModule(
            settings,
            repository,
            DeliveryDispatcher(mailer),
            generator=TokenGenerator(RandomSource(random.Random(3))),
        )
        account = repository.create_account(CreateAccountInput(email="seed@example.com"))
        module.after_register(ConfirmContext(account=account))
        return mailer.last_token()

    assert mint() == mint()


def test_after_register_draws_again_on_token_collision(settings, repository, dispatcher, mailer):
    module = ConfirmModule(
        settings, repository, dispatcher, generator=ScriptedGenerator("aaaaaa", "aaaaaa", "bbbbbb")
    )
    first = repository.create_account(CreateAccountInput(email="first@example.com"))
    module.after_register(ConfirmContext(account=first))
    second = repository.create_account(CreateAccountInput(email="second@example.com"))
    module.after_register(ConfirmContext(account=second))

    assert repository.get_account(first.account_id).confirm_token == "AAAAAA"
    assert repository.get_account(second.account_id).confirm_token == "BBBBBB"
    assert mailer.last_token() == "bbbbbb"
    assert len(mailer.sent) == 2


def test_after_register_gives_up_after_repeated_collisions(settings, repository, dispatcher, mailer):
    module = ConfirmModule(
        settings,
        repository,
        dispatcher,
        generator=ScriptedGenerator(*["aaaaaa"] * (TOKEN_ISSUE_ATTEMPTS + 1)),
    )
    holder = repository.create_account(CreateAccountInput(email="holder@example.com"))
    module.after_register(ConfirmContext(account=holder))
    other = repository.create_account(CreateAccountInput(email="other@example.com"))

    with pytest.raises(TokenCollisionError):
        module.after_register(ConfirmContext(account=other))
    assert repository.get_account(other.account_id).confirm_token == ""
    assert len(mailer.sent) == 1


def test_after_register_missing_email(module, repository, mailer):
    account = repository.create_account(CreateAccountInput(email="gone@example.com"))
    account.email = ""
    with pytest.raises(MissingFieldError):
        module.after_register(ConfirmContext(account=account))
    assert mailer.sent == []


def test_after_register_propagates_storage_failure(settings, dispatcher, mailer):
    module = ConfirmModule(settings, BrokenStorer(), dispatcher)
    account = Account(account_id="a-1", email="bob@example.com")
    with pytest.raises(RuntimeError, match="database unavailable"):
        module.after_register(ConfirmContext(account=account))
    assert mailer.sent == []


def test_delivery_failure_does_not_fail_registration(settings, repository, failing_mailer):
    failing = failing_mailer
    dispatcher = DeliveryDispatcher(failing)
    module = ConfirmModule(settings, repository, dispatcher)
    account = repository.create_account(CreateAccountInput(email="carol@example.com"))

    module.after_register(ConfirmContext(account=account))

    assert failing.attempts == 1
    assert repository.get_account(account.account_id).confirm_token
    dispatcher.shutdown()


def test_asynchronous_mailer_is_sent_on_worker(settings, repository, mailer):
    mailer.synchronous = False
    dispatcher = DeliveryDispatcher(mailer, max_workers=1)
    module = ConfirmModule(settings, repository, dispatcher)
    account = repository.create_account(CreateAccountInput(email="dan@example.com"))

    module.after_register(ConfirmContext(account=account))
    dispatcher.shutdown(wait=True)

    assert [email.to for email in mailer.sent] == [["dan@example.com"]]


def test_gate_allows_confirmed_account(module):
    account = Account(account_id="a-1", email="ok@example.com", confirmed=True)
    assert module.before_auth(ConfirmContext(account=account)) is Interrupt.none
    assert module.after_load_account(ConfirmContext(account=account)) is Interrupt.none


def test_gate_interrupts_unconfirmed_account(module):
    account = Account(account_id="a-1", email="no@example.com", confirm_token="ABC123")
    assert module.before_auth(ConfirmContext(account=account)) is Interrupt.account_not_confirmed


def test_gate_rejects_unreadable_confirmed_field(module):
    account = Account(account_id="a-1", email="odd@example.com")
    account.confirmed = "false"
    with pytest.raises(FieldTypeError):
        module.before_auth(ConfirmContext(account=account))


def test_pipeline_raises_interrupt_and_skips_session(module):
    pipeline = AuthPipeline(not_confirmed_path="/please-confirm")
    pipeline.register(module)
    session = Session(InMemorySessionStore(ttl_seconds=60))
    account = Account(account_id="a-1", email="no@example.com", confirm_token="ABC123")

    with pytest.raises(AccountNotConfirmedInterrupt) as excinfo:
        pipeline.fire_before_auth(ConfirmContext(account=account, session=session))
    assert excinfo.value.location == "/please-confirm"
    assert session.get(SESSION_KEY) is None

    with pytest.raises(AccountNotConfirmedInterrupt):
        pipeline.fire_after_load_account(ConfirmContext(account=account))


def test_confirm_rejects_empty_token_without_storage(settings, dispatcher):
    storer = BrokenStorer()
    module = ConfirmModule(settings, storer, dispatcher)
    with pytest.raises(ClientDataError) as excinfo:
        module.confirm("", ConfirmContext())
    assert excinfo.value.name == "cnf"
    assert storer.lookups == 0


def test_confirm_redeems_token_once(module, registered, repository, mailer, settings):
    token = mailer.last_token()

    result = module.confirm(token.lower(), ConfirmContext())
    assert result.location == settings.register_ok_path
    assert result.message == CONFIRM_SUCCESS_MESSAGE
    stored = repository.get_account(registered.account_id)
    assert stored.confirmed is True
    assert stored.confirm_token == ""

    with pytest.raises(RedirectError) as excinfo:
        module.confirm(token, ConfirmContext())
    assert excinfo.value.location == "/"


def test_confirm_propagates_storage_errors(settings, dispatcher):
    module = ConfirmModule(settings, BrokenStorer(), dispatcher)
    with pytest.raises(RuntimeError):
        module.confirm("ABC123", ConfirmContext())


def test_confirm_logs_in_when_policy_allows(settings, repository, dispatcher, mailer):
    module = ConfirmModule(replace(settings, allow_insecure_login_after_confirm=True), repository, dispatcher)
    account = repository.create_account(CreateAccountInput(email="erin@example.com"))
    module.after_register(ConfirmContext(account=account))
    session = Session(InMemorySessionStore(ttl_seconds=60))

    module.confirm(mailer.last_token(), ConfirmContext(session=session))

    assert session.get(SESSION_KEY) == account.account_id


def test_confirm_does_not_log_in_by_default(module, registered, mailer):
    session = Session(InMemorySessionStore(ttl_seconds=60))
    module.confirm(mailer.last_token(), ConfirmContext(session=session))
    assert session.get(SESSION_KEY) is None


def test_concurrent_redemptions_confirm_exactly_once(module, registered, repository, mailer):
    token = mailer.last_token()
    workers = 8
    barrier = threading.Barrier(workers)

    def redeem() -> Redirect | RedirectError:
        barrier.wait()
        try:
            return module.confirm(token, ConfirmContext())
        except RedirectError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda _: redeem(), range(workers)))

    assert sum(isinstance(outcome, Redirect) for outcome in outcomes) == 1
    assert sum(isinstance(outcome, RedirectError) for outcome in outcomes) == workers - 1
    stored = repository.get_account(registered.account_id)
    assert stored.confirmed is True
    assert stored.confirm_token == ""


def test_repository_redeem_token_consumes_token(repository):
    account = repository.create_account(CreateAccountInput(email="grace@example.com"))
    account.issue_confirm_token("XYZ789")
    repository.save_account(account)

    assert repository.find_account_by_token("XYZ789").account_id == account.account_id
    redeemed = repository.redeem_token("XYZ789")
    assert redeemed.account_id == account.account_id
    assert redeemed.confirmed is True

    with pytest.raises(AccountNotFoundError):
        repository.redeem_token("XYZ789")
    with pytest.raises(AccountNotFoundError):
        repository.redeem_token("")


def test_repository_rejects_token_held_by_another_account(repository):
    holder = repository.create_account(CreateAccountInput(email="holder@example.com"))
    holder.issue_confirm_token("SAME01")
    repository.save_account(holder)

    other = repository.create_account(CreateAccountInput(email="other@example.com"))
    other.issue_confirm_token("SAME01")
    with pytest.raises(TokenCollisionError):
        repository.save_account(other)

    holder.issue_confirm_token("SAME01")
    repository.save_account(holder)
