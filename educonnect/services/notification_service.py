"""Outbound email for invitations and password resets.

``send_templated_invitation`` never raises: every failure is logged and
returned as an ``EmailResult`` so provisioning can report ``email_sent``
without undoing its writes.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any

from educonnect.core.config import Settings, get_settings
from educonnect.core.structured_logging import log_json

logger = logging.getLogger(__name__)

TEACHER_INVITATION = "teacher-invitation"
PARENT_INVITATION = "parent-invitation"
PASSWORD_RESET = "password-reset"

_BODIES = {
    TEACHER_INVITATION: (
        "Hi {name},\n\n"
        "{inviter_name} has invited you to join {school_name} on EduConnect as a teacher.\n"
        "Subjects: {subjects}\n\n"
        "School ID: {school_id}\n"
        "Temporary password: {temporary_password}\n\n"
        "Sign in here to complete your registration: {login_url}\n"
        "This invitation expires on {expires_at}.\n\n"
        "{message}"
    ),
    PARENT_INVITATION: (
        "Hi {name},\n\n"
        "{inviter_name} has invited you to join {school_name} on EduConnect as a parent of "
        "{student_names}.\n\n"
        "School ID: {school_id}\n"
        "Temporary password: {temporary_password}\n\n"
        "Sign in here to complete your registration: {login_url}\n"
        "This invitation expires on {expires_at}.\n\n"
        "{message}"
    ),
    PASSWORD_RESET: (
        "Hi {name},\n\n"
        "A password reset was requested for your EduConnect account at {school_name}.\n"
        "Use this link within one hour to choose a new password: {reset_url}\n\n"
        "If you did not request this, you can ignore this email."
    ),
}


class _Defaults(dict):
    def __missing__(self, key: str) -> str:
        return ""


@dataclass
class EmailResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class NotificationService:
    """SMTP notifier; the blocking send runs in a worker thread."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def render(self, template_name: str, variables: dict[str, Any]) -> str:
        body = _BODIES.get(template_name)
        if body is None:
            raise KeyError(f"Unknown email template: {template_name}")
        return body.format_map(_Defaults({k: v for k, v in variables.items() if v is not None}))

    def _build_message(self, to_email: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_from
        msg["To"] = to_email
        msg["Message-ID"] = make_msgid(domain=self.settings.smtp_from.split("@")[-1])
        msg.set_content(body)
        return msg

    def _send(self, msg: EmailMessage) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=20) as smtp:
            smtp.ehlo()
            if s.smtp_use_tls:
                smtp.starttls(context=ssl.create_default_context())
                smtp.ehlo()
            if s.smtp_user:
                smtp.login(s.smtp_user, s.smtp_password)
            smtp.send_message(msg)

    async def send_templated_invitation(
        self,
        template_name: str,
        to_email: str,
        subject: str,
        variables: dict[str, Any],
    ) -> EmailResult:
        if not self.settings.email_enabled:
            log_json(logger, logging.INFO, "email_skipped", template=template_name, to=to_email)
            return EmailResult(success=False, error="email disabled")

        try:
            msg = self._build_message(to_email, subject, self.render(template_name, variables))
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError, KeyError, ValueError) as exc:
            log_json(
                logger,
                logging.WARNING,
                "email_send_failed",
                template=template_name,
                to=to_email,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return EmailResult(success=False, error=str(exc))

        log_json(logger, logging.INFO, "email_sent", template=template_name, to=to_email)
        return EmailResult(success=True, message_id=msg["Message-ID"])
