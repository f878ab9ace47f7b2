"""Client context capture: IP, country, browser, OS, device.

Stored as opaque metadata on validation tokens. Never rendered into emails.

User-agent parsing is deliberately coarse (substring checks). Country lookup
uses ip-api.com and fails open to "Unknown"; private, loopback, and
unparseable addresses are never sent out.
"""

import ipaddress
import logging
from dataclasses import asdict, dataclass

import httpx
from fastapi import Request

from tokengate.core.config import settings

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

_GEO_API_URL = "http://ip-api.com/json/{ip}?fields=status,country"
_GEO_TIMEOUT = 3.0


@dataclass(frozen=True)
class ClientContext:
    """Who/where a request came from.

    Attributes:
        ip: Client IP (first X-Forwarded-For hop, else socket peer).
        country: Country name or "Unknown".
        browser: Chrome, Firefox, Safari, or Unknown.
        os: Windows, MacOS, Linux, Android, iOS, or Unknown.
        device: Mobile, Tablet, or Desktop.
        user_agent: Raw User-Agent header.
    """

    ip: str
    country: str
    browser: str
    os: str
    device: str
    user_agent: str

    def as_dict(self) -> dict[str, str]:
        """JSON-ready form for the token context column."""
        return asdict(self)


def client_ip(request: Request) -> str:
    """Resolve the client IP address.

    X-Forwarded-For is trusted only for its first hop; the app is expected
    to run behind a reverse proxy that overwrites the header.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return _strip_ipv4_mapping(first)
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return _strip_ipv4_mapping(real_ip)
    if request.client and request.client.host:
        return _strip_ipv4_mapping(request.client.host)
    return UNKNOWN


def _strip_ipv4_mapping(ip: str) -> str:
    # ::ffff:10.0.0.1 -> 10.0.0.1, ::1 -> 127.0.0.1
    if ip == "::1":
        return "127.0.0.1"
    return ip.removeprefix("::ffff:")


def parse_browser(user_agent: str) -> str:
    if "Chrome" in user_agent:
        return "Chrome"
    if "Firefox" in user_agent:
        return "Firefox"
    if "Safari" in user_agent:
        return "Safari"
    return UNKNOWN


def parse_os(user_agent: str) -> str:
    # Android UAs also say "Linux"; iOS UAs also say "Mac OS X"
    if "Windows" in user_agent:
        return "Windows"
    if "Android" in user_agent:
        return "Android"
    if "iPhone" in user_agent or "iPad" in user_agent or "iOS" in user_agent:
        return "iOS"
    if "Mac" in user_agent:
        return "MacOS"
    if "Linux" in user_agent:
        return "Linux"
    return UNKNOWN


def parse_device(user_agent: str) -> str:
    if "Tablet" in user_agent or "iPad" in user_agent:
        return "Tablet"
    if "Mobile" in user_agent:
        return "Mobile"
    return "Desktop"


def is_public_ip(ip: str) -> bool:
    """True only for a parseable, globally routable address."""
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False


async def _fetch_country(ip: str) -> str:
    """Look up the country for a public IP via ip-api.com.

    Returns:
        Country name, or "Unknown" on any failure.
    """
    try:
        async with httpx.AsyncClient(timeout=_GEO_TIMEOUT) as client:
            response = await client.get(_GEO_API_URL.format(ip=ip))
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError):
        logger.warning("Country lookup failed")
        return UNKNOWN

    if data.get("status") == "success" and data.get("country"):
        return str(data["country"])
    return UNKNOWN


async def capture_client_context(request: Request) -> ClientContext:
    """Capture client metadata for a request.

    Args:
        request: Incoming request.

    Returns:
        ClientContext snapshot.
    """
    ip = client_ip(request)
    user_agent = request.headers.get("user-agent", "")

    country = UNKNOWN
    if settings.geo_lookup_enabled and is_public_ip(ip):
        country = await _fetch_country(ip)

    return ClientContext(
        ip=ip,
        country=country,
        browser=parse_browser(user_agent),
        os=parse_os(user_agent),
        device=parse_device(user_agent),
        user_agent=user_agent,
    )
