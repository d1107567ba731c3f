from __future__ import annotations

import pytest

from confirm_service.delivery import mailer as mailer_module
from confirm_service.delivery.dispatch import DeliveryDispatcher
from confirm_service.delivery.mailer import LogMailer, SmtpMailer, build_message
from confirm_service.delivery.templates import EmailRenderer
from confirm_service.domain.contracts import Email


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.login_args = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.login_args = (user, password)

    def send_message(self, message):
        self.messages.append(message)


@pytest.fixture
def email() -> Email:
    return Email(
        to=["alice@example.com"],
        from_address="accounts@example.com",
        subject="Confirm New Account",
        html_body="<p>hi</p>",
        text_body="hi",
    )


def test_build_message_has_text_and_html_parts(email):
    message = build_message(email)
    assert message["To"] == "alice@example.com"
    assert message["Subject"] == "Confirm New Account"
    assert message.is_multipart()
    assert [part.get_content_type() for part in message.iter_parts()] == ["text/plain", "text/html"]


def test_smtp_mailer_uses_tls_and_login(monkeypatch, email):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    mailer = SmtpMailer("mail.example.com", 587, user="u", password="p", starttls=True)

    mailer.send(email)

    conn = FakeSMTP.instances[0]
    assert (conn.host, conn.port) == ("mail.example.com", 587)
    assert conn.started_tls
    assert conn.login_args == ("u", "p")
    assert len(conn.messages) == 1


def test_smtp_mailer_skips_login_without_credentials(monkeypatch, email):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    SmtpMailer("localhost", 25).send(email)
    assert FakeSMTP.instances[0].login_args is None


def test_log_mailer_logs_message(caplog, email):
    with caplog.at_level("INFO", logger="confirm_service.delivery.mailer"):
        LogMailer().send(email)
    assert "Confirm New Account" in caplog.text


def test_dispatcher_swallows_send_errors(caplog, email, failing_mailer):
    failing = failing_mailer
    dispatcher = DeliveryDispatcher(failing)
    with caplog.at_level("ERROR"):
        assert dispatcher.dispatch(email) is None
    assert failing.attempts == 1
    assert "failed to send e-mail" in caplog.text
    dispatcher.shutdown()


def test_dispatcher_detaches_asynchronous_sends(email):
    mailer = LogMailer(synchronous=False)
    dispatcher = DeliveryDispatcher(mailer, max_workers=1)
    future = dispatcher.dispatch(email)
    assert future is not None
    future.result(timeout=5)
    dispatcher.shutdown()


def test_renderer_escapes_html_but_not_text():
    html, text = EmailRenderer().render_confirm("http://testserver/confirm?cnf=A&B")
    assert "cnf=A&amp;B" in html
    assert "cnf=A&B" in text
