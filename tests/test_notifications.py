import smtplib

import pytest

from taskboard.config import Settings
from taskboard.emailer import EmailNotConfigured
from taskboard.services.notifications import NotificationService

pytestmark = pytest.mark.anyio


def _settings(**overrides):
    values = dict(
        app_env="test",
        app_url="https://board.example.com",
        jwt_secret="x",
        jwt_algorithm="HS256",
        jwt_expiry_minutes=60,
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="bot",
        smtp_password="pw",
        smtp_from="bot@example.com",
        preregistration_ttl_seconds=3600,
        preregistration_sweep_seconds=3600,
        email_send_attempts=2,
        email_retry_delay_seconds=2.0,
    )
    values.update(overrides)
    return Settings(**values)


class Outbox:
    def __init__(self, failures=0, error=None):
        self.failures = failures
        self.error = error
        self.sent = []

    def __call__(self, to, subject, html, text, settings):
        if self.error is not None:
            raise self.error
        if self.failures:
            self.failures -= 1
            raise smtplib.SMTPServerDisconnected("connection dropped")
        self.sent.append((to, subject, html, text))
        return f"<msg-{len(self.sent)}@example.com>"


class Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


async def test_verification_email_is_sent_with_link_and_code():
    outbox = Outbox()
    service = NotificationService(_settings(), sender=outbox, sleep=Sleeps())

    result = await service.send_verification_email("a@example.com", "Ada", "tok123", "482913", "Alpha")

    assert (result.success, result.method, result.message_id) == (True, "email", "<msg-1@example.com>")
    to, subject, html, text = outbox.sent[0]
    assert to == "a@example.com"
    assert "482913" in html and "482913" in text
    assert "https://board.example.com" in html
    assert "tok123" in html


async def test_unconfigured_smtp_reports_console_method(caplog):
    sleeps = Sleeps()
    service = NotificationService(
        _settings(), sender=Outbox(error=EmailNotConfigured("missing")), sleep=sleeps
    )

    with caplog.at_level("INFO"):
        result = await service.send_team_code_to_leader("lead@example.com", "Lena", "QX7K2M", "Alpha")

    assert (result.success, result.method) == (True, "console")
    assert "QX7K2M" in caplog.text
    assert sleeps.delays == []


async def test_verification_email_retries_once_then_falls_back(caplog):
    outbox = Outbox(failures=5)
    sleeps = Sleeps()
    service = NotificationService(_settings(), sender=outbox, sleep=sleeps)

    with caplog.at_level("ERROR"):
        result = await service.send_verification_email("a@example.com", "Ada", "tok", "654321")

    assert (result.success, result.method) == (False, "console_fallback")
    assert outbox.failures == 3
    assert sleeps.delays == [2.0]
    assert "654321" in caplog.text


async def test_transient_failure_recovers_on_second_attempt():
    outbox = Outbox(failures=1)
    service = NotificationService(_settings(), sender=outbox, sleep=Sleeps())

    result = await service.send_verification_email("a@example.com", "Ada", "tok", "111111")

    assert result.method == "email"
    assert len(outbox.sent) == 1


async def test_approval_email_is_single_attempt():
    outbox = Outbox(failures=1)
    sleeps = Sleeps()
    service = NotificationService(_settings(), sender=outbox, sleep=sleeps)

    result = await service.send_member_approval("m@example.com", "Max", "Lena", "Alpha")

    assert result.method == "console_fallback"
    assert sleeps.delays == []
