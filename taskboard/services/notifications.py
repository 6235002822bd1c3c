"""Email notifications sent at registration and approval transition points.

Every ``send_*`` coroutine returns an :class:`EmailResult` and never raises:
a failed email must not undo the database change that triggered it. When
delivery fails the important bit (one-time code, team code) is logged so an
operator can hand it over manually.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from taskboard import email_templates
from taskboard.config import Settings, get_settings
from taskboard.emailer import EmailNotConfigured, send_email
from taskboard.retry import RetryExhausted, retry

_LOGGER = logging.getLogger(__name__)

METHOD_EMAIL = "email"
METHOD_CONSOLE = "console"
METHOD_CONSOLE_FALLBACK = "console_fallback"


@dataclass(slots=True)
class EmailResult:
    success: bool
    method: str
    message_id: Optional[str] = None
    message: Optional[str] = None


Sender = Callable[..., str]


class NotificationService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        sender: Sender = send_email,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self._sender = sender
        self._sleep = sleep

    async def _deliver(self, to: str, subject: str, html: str, text: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._sender, to, subject, html, text, self.settings)
        except EmailNotConfigured:
            return None

    async def _send_with_fallback(
        self,
        to: str,
        content: tuple[str, str, str],
        *,
        fallback_note: str,
        attempts: int = 1,
    ) -> EmailResult:
        subject, html, text = content
        try:
            message_id = await retry(
                lambda: self._deliver(to, subject, html, text),
                attempts=attempts,
                retry_on=(Exception,),
                delay=self.settings.email_retry_delay_seconds,
                sleep=self._sleep,
                label=f"Email to {to}",
            )
        except RetryExhausted as exc:
            _LOGGER.error(
                "EMAIL FAILED after %s attempt(s) to %s: %s. %s",
                exc.attempts,
                to,
                exc.last_error,
                fallback_note,
            )
            return EmailResult(
                success=False,
                method=METHOD_CONSOLE_FALLBACK,
                message=f"Email failed. {fallback_note}",
            )
        if message_id is None:
            _LOGGER.info("Email service not configured. %s (to %s)", fallback_note, to)
            return EmailResult(success=True, method=METHOD_CONSOLE, message=fallback_note)
        return EmailResult(success=True, method=METHOD_EMAIL, message_id=message_id)

    async def send_verification_email(
        self,
        to: str,
        name: str,
        token: str,
        code: str,
        team_name: Optional[str] = None,
    ) -> EmailResult:
        link = email_templates.verification_link(self.settings.app_url, token)
        content = email_templates.verification_email(name, link, code, team_name)
        return await self._send_with_fallback(
            to,
            content,
            fallback_note=f"Verification code for {name}: {code}",
            attempts=self.settings.email_send_attempts,
        )

    async def send_team_code_to_leader(self, to: str, name: str, team_code: str, team_name: str) -> EmailResult:
        register = email_templates.member_register_link(self.settings.app_url)
        content = email_templates.team_code_email(name, team_name, team_code, register)
        return await self._send_with_fallback(
            to,
            content,
            fallback_note=f"TEAM CODE for {team_name} (leader {name}): {team_code}",
        )

    async def send_new_member_notification(
        self,
        to: str,
        leader_name: str,
        member_name: str,
        member_email: str,
        team_name: str,
    ) -> EmailResult:
        content = email_templates.new_member_email(leader_name, member_name, member_email, team_name)
        return await self._send_with_fallback(
            to,
            content,
            fallback_note=f"{member_name} ({member_email}) is waiting for approval in {team_name}",
        )

    async def send_member_approval(self, to: str, member_name: str, leader_name: str, team_name: str) -> EmailResult:
        content = email_templates.approval_email(member_name, leader_name, team_name, self.settings.app_url)
        return await self._send_with_fallback(
            to,
            content,
            fallback_note=f"{member_name} was approved to join {team_name}",
        )


_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _service
    if _service is None:
        _service = NotificationService()
    return _service
