"""Tests for email bodies of the validation-token flows."""

from datetime import timedelta

import pytest

from tokengate.services import email_templates
from tokengate.services.email_templates import describe_duration

_FRONTEND = "https://app.example.com/"
_VALIDATION_ID = "ab" * 32


class TestLinks:
    """Tests for the link builders."""

    def test_verification_link(self):
        assert (
            email_templates.verification_link(_FRONTEND, _VALIDATION_ID)
            == f"https://app.example.com/verify/{_VALIDATION_ID}"
        )

    def test_login_link(self):
        assert (
            email_templates.login_link(_FRONTEND, _VALIDATION_ID)
            == f"https://app.example.com/login/verify/{_VALIDATION_ID}"
        )

    def test_password_reset_link(self):
        assert (
            email_templates.password_reset_link(_FRONTEND, _VALIDATION_ID)
            == f"https://app.example.com/reset-password/{_VALIDATION_ID}"
        )


class TestDescribeDuration:
    @pytest.mark.parametrize(
        ("duration", "text"),
        [
            (timedelta(hours=24), "24 hours"),
            (timedelta(hours=1), "1 hour"),
            (timedelta(minutes=15), "15 minutes"),
            (timedelta(minutes=1), "1 minute"),
        ],
    )
    def test_rendering(self, duration, text):
        assert describe_duration(duration) == text


class TestEmailVerification:
    """Tests for the verification email."""

    def test_contains_code_link_and_expiry(self):
        message = email_templates.email_verification(
            name="Ada",
            code="482913",
            link="https://app.example.com/verify/x",
            expires_in=timedelta(hours=24),
            site_name="Tokengate",
        )
        assert message.subject == "Verify your email address"
        assert "Hi Ada," in message.body
        assert "482913" in message.body
        assert "https://app.example.com/verify/x" in message.body
        assert "24 hours" in message.body

    def test_regenerated_subject(self):
        message = email_templates.email_verification(
            name=None,
            code="482913",
            link="https://app.example.com/verify/x",
            expires_in=timedelta(hours=24),
            site_name="Tokengate",
            regenerated=True,
        )
        assert message.subject == "New verification code"
        assert message.body.startswith("Hi,\n")


class TestLoginVerification:
    """Tests for the sign-in email."""

    def test_contains_link_and_site_name_only(self):
        message = email_templates.login_verification(
            name="Ada",
            link="https://app.example.com/login/verify/x",
            expires_in=timedelta(minutes=15),
            site_name="Tokengate",
        )
        assert message.subject == "Sign in to Tokengate"
        assert "https://app.example.com/login/verify/x" in message.body
        assert "15 minutes" in message.body
        assert "code" not in message.body.lower()


class TestPasswordReset:
    def test_contains_link(self):
        message = email_templates.password_reset(
            name="Ada",
            link="https://app.example.com/reset-password/x",
            expires_in=timedelta(hours=1),
            site_name="Tokengate",
        )
        assert message.subject == "Reset your password"
        assert "https://app.example.com/reset-password/x" in message.body
        assert "1 hour" in message.body
