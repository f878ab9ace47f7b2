"""Tests for client context capture (IP, country, user-agent parsing)."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from starlette.requests import Request

from tokengate.core import client_context
from tokengate.core.client_context import (
    UNKNOWN,
    capture_client_context,
    client_ip,
    is_public_ip,
    parse_browser,
    parse_device,
    parse_os,
)
from tokengate.core.config import settings

_CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0 Safari/537.36"
)
_SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Mobile/15E148 Safari/604.1"
)
_SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 17_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Safari/604.1"
)
_CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0 Mobile Safari/537.36"
)
_FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:127.0) Gecko/20100101 Firefox/127.0"
_SAFARI_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Safari/605.1.15"
)


def _request(headers: dict[str, str] | None = None, peer: str | None = "10.0.0.5"):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [
            (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
        ],
        "client": (peer, 50000) if peer else None,
    }
    return Request(scope)


def _mock_client_factory(handler):
    """Build httpx.AsyncClient instances that answer through handler."""
    real_client = httpx.AsyncClient

    def build(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return build


class TestUserAgentParsing:
    """Tests for parse_browser, parse_os, parse_device."""

    @pytest.mark.parametrize(
        ("user_agent", "browser", "os_name", "device"),
        [
            (_CHROME_WINDOWS, "Chrome", "Windows", "Desktop"),
            (_SAFARI_IPHONE, "Safari", "iOS", "Mobile"),
            (_SAFARI_IPAD, "Safari", "iOS", "Tablet"),
            (_CHROME_ANDROID, "Chrome", "Android", "Mobile"),
            (_FIREFOX_LINUX, "Firefox", "Linux", "Desktop"),
            (_SAFARI_MAC, "Safari", "MacOS", "Desktop"),
            ("", UNKNOWN, UNKNOWN, "Desktop"),
        ],
    )
    def test_parsing(self, user_agent, browser, os_name, device):
        assert parse_browser(user_agent) == browser
        assert parse_os(user_agent) == os_name
        assert parse_device(user_agent) == device


class TestClientIp:
    """Tests for client_ip()."""

    def test_first_forwarded_hop_wins(self):
        request = _request({"X-Forwarded-For": "198.51.100.1, 10.0.0.2"})
        assert client_ip(request) == "198.51.100.1"

    def test_real_ip_header(self):
        request = _request({"X-Real-IP": "198.51.100.9"})
        assert client_ip(request) == "198.51.100.9"

    def test_socket_peer_fallback(self):
        assert client_ip(_request()) == "10.0.0.5"

    def test_ipv4_mapped_address_is_unwrapped(self):
        assert client_ip(_request(peer="::ffff:198.51.100.4")) == "198.51.100.4"

    def test_ipv6_loopback_normalized(self):
        assert client_ip(_request(peer="::1")) == "127.0.0.1"

    def test_no_source(self):
        assert client_ip(_request(peer=None)) == UNKNOWN


class TestIsPublicIp:
    """Tests for is_public_ip()."""

    @pytest.mark.parametrize(
        ("ip", "expected"),
        [
            ("8.8.8.8", True),
            ("10.1.2.3", False),
            ("192.168.0.1", False),
            ("127.0.0.1", False),
            ("not-an-ip", False),
            (UNKNOWN, False),
        ],
    )
    def test_classification(self, ip, expected):
        assert is_public_ip(ip) is expected


class TestCountryLookup:
    """Tests for the ip-api.com country lookup."""

    async def test_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "8.8.8.8" in str(request.url)
            return httpx.Response(
                200, json={"status": "success", "country": "United States"}
            )

        with patch.object(
            client_context.httpx, "AsyncClient", _mock_client_factory(handler)
        ):
            assert await client_context._fetch_country("8.8.8.8") == "United States"

    async def test_failed_status_is_unknown(self):
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "fail"})

        with patch.object(
            client_context.httpx, "AsyncClient", _mock_client_factory(handler)
        ):
            assert await client_context._fetch_country("8.8.8.8") == UNKNOWN

    async def test_network_error_fails_open(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with patch.object(
            client_context.httpx, "AsyncClient", _mock_client_factory(handler)
        ):
            assert await client_context._fetch_country("8.8.8.8") == UNKNOWN

    async def test_non_json_body_fails_open(self):
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with patch.object(
            client_context.httpx, "AsyncClient", _mock_client_factory(handler)
        ):
            assert await client_context._fetch_country("8.8.8.8") == UNKNOWN


class TestCaptureClientContext:
    """Tests for capture_client_context()."""

    async def test_private_address_never_looked_up(self, monkeypatch):
        monkeypatch.setattr(settings, "geo_lookup_enabled", True)
        with patch(
            "tokengate.core.client_context._fetch_country", new_callable=AsyncMock
        ) as fetch:
            context = await capture_client_context(
                _request({"User-Agent": _FIREFOX_LINUX})
            )

        fetch.assert_not_called()
        assert context.as_dict() == {
            "ip": "10.0.0.5",
            "country": UNKNOWN,
            "browser": "Firefox",
            "os": "Linux",
            "device": "Desktop",
            "user_agent": _FIREFOX_LINUX,
        }

    async def test_public_address_looked_up(self, monkeypatch):
        monkeypatch.setattr(settings, "geo_lookup_enabled", True)
        with patch(
            "tokengate.core.client_context._fetch_country",
            new_callable=AsyncMock,
            return_value="Iceland",
        ):
            context = await capture_client_context(
                _request({"X-Forwarded-For": "8.8.8.8"})
            )
        assert context.country == "Iceland"

    async def test_lookup_disabled(self):
        with patch(
            "tokengate.core.client_context._fetch_country", new_callable=AsyncMock
        ) as fetch:
            context = await capture_client_context(
                _request({"X-Forwarded-For": "8.8.8.8"})
            )
        fetch.assert_not_called()
        assert context.country == UNKNOWN
