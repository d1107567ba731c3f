from __future__ import annotations

import re
from dataclasses import replace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from confirm_service.api import routes
from confirm_service.config import Settings, get_settings
from confirm_service.delivery.dispatch import DeliveryDispatcher
from confirm_service.domain.contracts import Email
from confirm_service.main import build_service
from confirm_service.memory_repository import InMemoryAccountRepository
from confirm_service.security.sessions import InMemorySessionStore

TOKEN_PATTERN = re.compile(r"cnf=([A-Za-z0-9]+)")


class RecordingMailer:
    """Synchronous mailer that keeps every message it is handed."""

    def __init__(self, *, synchronous: bool = True) -> None:
        self.synchronous = synchronous
        self.sent: list[Email] = []

    def send(self, email: Email) -> None:
        self.sent.append(email)

    def last_token(self) -> str:
        match = TOKEN_PATTERN.search(self.sent[-1].text_body)
        assert match, "no confirmation link in message"
        return match.group(1)


class FailingMailer:
    synchronous = True

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, email: Email) -> None:
        self.attempts += 1
        raise ConnectionRefusedError("smtp relay down")


@pytest.fixture
def settings() -> Settings:
    return replace(
        get_settings(),
        root_url="http://testserver",
        register_ok_path="/welcome",
        not_confirmed_path="/",
        email_from="accounts@example.com",
        email_subject_prefix="[Example] ",
        allow_insecure_login_after_confirm=False,
        confirm_token_length=6,
    )


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def dispatcher(mailer):
    dispatcher = DeliveryDispatcher(mailer, max_workers=1)
    yield dispatcher
    dispatcher.shutdown(wait=True)


def make_client(settings: Settings, repository, dispatcher) -> TestClient:
    app = FastAPI()
    app.include_router(routes.router)
    app.include_router(routes.confirm_router)
    app.state.session_store = InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)
    app.state.account_service = build_service(settings, repository, dispatcher)
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def api_client(settings, repository, dispatcher, mailer):
    """Provide a FastAPI test client with isolated state."""
    with make_client(settings, repository, dispatcher) as client:
        yield client, repository, mailer


@pytest.fixture
def confirm_path() -> str:
    mount = get_settings().mount_path.strip("/")
    return f"/{mount}/confirm" if mount else "/confirm"


@pytest.fixture
def failing_mailer() -> FailingMailer:
    return FailingMailer()


@pytest.fixture
def client_factory():
    """Build extra test clients, e.g. with altered settings."""
    return make_client
