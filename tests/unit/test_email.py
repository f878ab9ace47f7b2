"""Tests for the Resend mail transport."""

import json
from unittest.mock import patch

import httpx

from tokengate.core import email as core_email
from tokengate.core.config import Settings
from tokengate.core.email import MailResult, ResendMailer


def _mock_client_factory(handler):
    real_client = httpx.AsyncClient

    def build(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return build


def _mailer(api_key: str = "re_test_key") -> ResendMailer:  # nosec B107
    return ResendMailer(api_key=api_key, sender="noreply@example.com", timeout=2.0)


class TestResendMailer:
    """Tests for ResendMailer.send()."""

    async def test_unconfigured_mailer_reports_failure(self):
        result = await _mailer(api_key="").send(to="a@example.com", subject="s", body="b")
        assert result == MailResult(success=False, error="Email delivery not configured")

    async def test_successful_send(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"id": "msg_123"})

        with patch.object(core_email.httpx, "AsyncClient", _mock_client_factory(handler)):
            result = await _mailer().send(
                to="a@example.com", subject="Hello", body="Plain body"
            )

        assert result == MailResult(success=True, message_id="msg_123")
        (request,) = captured
        assert request.headers["Authorization"] == "Bearer re_test_key"
        payload = json.loads(request.content)
        assert payload["text"] == "Plain body"
        assert payload["from"] == "noreply@example.com"

    async def test_http_error_is_reported_not_raised(self):
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"message": "boom"})

        with patch.object(core_email.httpx, "AsyncClient", _mock_client_factory(handler)):
            result = await _mailer().send(to="a@example.com", subject="s", body="b")

        assert result.success is False
        assert result.error == "Email delivery failed"

    async def test_timeout_is_reported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with patch.object(core_email.httpx, "AsyncClient", _mock_client_factory(handler)):
            result = await _mailer().send(to="a@example.com", subject="s", body="b")

        assert result.error == "Email delivery timed out"

    def test_from_settings(self):
        mailer = ResendMailer.from_settings(
            Settings(resend_api_key="re_key", email_from="x@example.com")  # nosec B106
        )
        assert mailer._api_key == "re_key"
        assert mailer._sender == "x@example.com"
