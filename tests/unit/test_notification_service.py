"""Unit tests for the email notifier."""

import smtplib
from unittest.mock import patch

import pytest

from educonnect.core.config import Settings
from educonnect.services.notification_service import (
    PARENT_INVITATION,
    PASSWORD_RESET,
    TEACHER_INVITATION,
    NotificationService,
)

VARIABLES = {
    "name": "Tina Teach",
    "inviter_name": "Alice Admin",
    "school_name": "Greenfield Academy",
    "school_id": "GRE1234",
    "temporary_password": "0123456789abcdef",
    "login_url": "http://localhost:3000/login?school_id=GRE1234",
    "expires_at": "2030-01-01 00:00 UTC",
    "subjects": "Math, Physics",
}


def _settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///./educonnect_test.db",
        "jwt_secret": "test-secret-key-that-is-long-enough-for-hs256",
        "email_enabled": True,
        "smtp_host": "smtp.greenfield.edu",
        "smtp_port": 2525,
        "smtp_from": "noreply@greenfield.edu",
    }
    values.update(overrides)
    return Settings(**values)


class TestRender:
    def test_teacher_template(self):
        body = NotificationService(_settings()).render(TEACHER_INVITATION, VARIABLES)

        assert "Tina Teach" in body
        assert "as a teacher" in body
        assert "Subjects: Math, Physics" in body
        assert "0123456789abcdef" in body
        assert "GRE1234" in body

    def test_missing_variables_render_empty(self):
        """Optional values such as the personal message may be absent."""
        body = NotificationService(_settings()).render(
            PARENT_INVITATION, {"name": "Pat", "student_names": "Sam Student", "message": None}
        )

        assert "as a parent of Sam Student" in body
        assert "None" not in body

    def test_reset_template(self):
        body = NotificationService(_settings()).render(
            PASSWORD_RESET,
            {"name": "Tina", "school_name": "Greenfield", "reset_url": "http://x/reset?token=t"},
        )

        assert "http://x/reset?token=t" in body

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            NotificationService(_settings()).render("welcome", {})


@pytest.mark.asyncio
class TestSend:
    """send_templated_invitation reports failures instead of raising."""

    async def test_disabled_email_is_reported_not_sent(self):
        service = NotificationService(_settings(email_enabled=False))

        with patch("educonnect.services.notification_service.smtplib.SMTP") as smtp_cls:
            result = await service.send_templated_invitation(
                TEACHER_INVITATION, "t@greenfield.edu", "Invitation", VARIABLES
            )

        assert result.success is False
        assert result.error == "email disabled"
        smtp_cls.assert_not_called()

    async def test_successful_send(self):
        service = NotificationService(_settings(smtp_user="mailer", smtp_password="secret"))

        with patch("educonnect.services.notification_service.smtplib.SMTP") as smtp_cls:
            result = await service.send_templated_invitation(
                TEACHER_INVITATION, "t@greenfield.edu", "Invitation", VARIABLES
            )

        assert result.success is True
        assert result.message_id
        smtp_cls.assert_called_once_with("smtp.greenfield.edu", 2525, timeout=20)
        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.login.assert_called_once_with("mailer", "secret")
        smtp.starttls.assert_not_called()
        message = smtp.send_message.call_args.args[0]
        assert message["To"] == "t@greenfield.edu"
        assert message["From"] == "noreply@greenfield.edu"
        assert message["Subject"] == "Invitation"

    async def test_smtp_failure_returns_failed_result(self):
        service = NotificationService(_settings())

        with patch(
            "educonnect.services.notification_service.smtplib.SMTP",
            side_effect=smtplib.SMTPConnectError(421, b"try later"),
        ):
            result = await service.send_templated_invitation(
                PARENT_INVITATION, "p@greenfield.edu", "Invitation", VARIABLES
            )

        assert result.success is False
        assert result.error

    async def test_connection_refused_returns_failed_result(self):
        service = NotificationService(_settings())

        with patch(
            "educonnect.services.notification_service.smtplib.SMTP",
            side_effect=ConnectionRefusedError("refused"),
        ):
            result = await service.send_templated_invitation(
                PARENT_INVITATION, "p@greenfield.edu", "Invitation", VARIABLES
            )

        assert result.success is False
        assert "refused" in result.error
