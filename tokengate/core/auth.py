"""Password hashing, password rules, and refresh-cookie helpers.

Shared utilities used by AuthOrchestrator and the auth endpoints.

Pipeline:
- hash_password / verify_password: bcrypt, timing-safe on unknown users
- validate_password_strength: Format rules (sync, no network)
- check_password_breached: HIBP k-anonymity check (async, network)
- set_refresh_cookie / clear_refresh_cookie: http-only refresh transport
- DUMMY_HASH: Timing-safe constant for user enumeration defense
"""

import hashlib
import logging
import re

import bcrypt
import httpx
from fastapi import Response

from tokengate.core.config import settings
from tokengate.core.errors import APIError, ValidationError

logger = logging.getLogger(__name__)

# bcrypt cost factor for stored password hashes
_BCRYPT_ROUNDS = 12

# HIBP API timeout in seconds
_HIBP_TIMEOUT = 5.0

_PASSWORD_BREACHED_MSG = (
    "This password has appeared in a data breach. Please choose a different one."
)

# Refresh cookie is only sent to the auth endpoints that consume it
_REFRESH_COOKIE_PATH = "/api/v1/auth"

# Pre-computed bcrypt hash for timing-safe comparison on user-not-found.
# Security: prevents user enumeration via response time differences.
# Pre-generated to avoid ~300ms bcrypt computation on every app startup.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    Args:
        password: Plain-text password (already strength-checked).

    Returns:
        bcrypt hash as a string.
    """
    salt = bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored hash in constant time.

    When the account does not exist (password_hash is None) the comparison
    still runs against DUMMY_HASH, so both paths cost one bcrypt check.

    Args:
        password: Plain-text password from the request.
        password_hash: Stored bcrypt hash, or None if no such user.

    Returns:
        True only if the account exists and the password matches.
    """
    if password_hash is None:
        bcrypt.checkpw(password.encode(), DUMMY_HASH)
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def set_refresh_cookie(response: Response, token: str, *, max_age: int) -> None:
    """Set the http-only refresh credential cookie.

    Security: httpOnly keeps the refresh credential out of reach of page
    scripts. Secure flag and SameSite are configured via settings.

    Args:
        response: FastAPI response object.
        token: Encoded refresh JWT.
        max_age: Cookie lifetime in seconds (the refresh TTL).
    """
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=token,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite=settings.refresh_cookie_samesite,
        path=_REFRESH_COOKIE_PATH,
        max_age=max_age,
        domain=settings.refresh_cookie_domain or None,
    )


def clear_refresh_cookie(response: Response) -> None:
    """Expire the refresh credential cookie.

    Attributes must match set_refresh_cookie() or browsers keep the cookie.

    Args:
        response: FastAPI response object.
    """
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite=settings.refresh_cookie_samesite,
        path=_REFRESH_COOKIE_PATH,
        domain=settings.refresh_cookie_domain or None,
    )


def validate_password_strength(password: str) -> None:
    """Validate password meets strength requirements.

    8-128 chars, letter + number + special character.

    Args:
        password: Plain-text password to validate.

    Raises:
        ValidationError: If password doesn't meet requirements.
    """
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if len(password) > 128:
        raise ValidationError("Password must be at most 128 characters")
    if not re.search(r"[a-zA-Z]", password):
        raise ValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one number")
    if not re.search(r"[^a-zA-Z\d]", password):
        raise ValidationError("Password must contain at least one special character")


async def _fetch_hibp_range(prefix: str) -> str | None:
    """Fetch HIBP range response for a SHA-1 prefix.

    Uses k-anonymity: only the first 5 chars of the SHA-1 hash are sent.
    The API returns all suffixes matching that prefix, and we check locally.

    Args:
        prefix: First 5 chars of SHA-1 hex digest (uppercase).

    Returns:
        Response text or None on error.
    """
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"https://api.pwnedpasswords.com/range/{prefix}",
                headers={"Add-Padding": "true"},
                timeout=_HIBP_TIMEOUT,
            )
            response.raise_for_status()
            return response.text
    except httpx.HTTPError:
        logger.warning("HIBP API request failed")
        return None


async def check_password_breached(password: str) -> bool:
    """Check if password appears in HIBP breach database.

    Only the first 5 characters of the SHA-1 hash are sent to HIBP. The full
    hash never leaves the server.

    Fails open: if HIBP is unavailable, allows the password. This prevents
    HIBP outages from blocking registration or password reset.

    Args:
        password: Plain-text password to check.

    Returns:
        True if password found in breach database, False otherwise.
    """
    sha1 = hashlib.sha1(password.encode()).hexdigest().upper()  # nosec B324
    prefix = sha1[:5]
    suffix = sha1[5:]

    text = await _fetch_hibp_range(prefix)
    if text is None:
        return False

    for line in text.splitlines():
        parts = line.split(":")
        if len(parts) == 2 and parts[0] == suffix:
            return True

    return False


async def ensure_password_acceptable(password: str) -> None:
    """Run format rules, then the breach check when enabled.

    Args:
        password: Plain-text password chosen by the user.

    Raises:
        ValidationError: If the password breaks the format rules.
        APIError: PASSWORD_BREACHED (422) if the password is in the HIBP corpus.
    """
    validate_password_strength(password)
    if settings.password_breach_check_enabled and await check_password_breached(
        password
    ):
        raise APIError(
            code="PASSWORD_BREACHED",
            message=_PASSWORD_BREACHED_MSG,
            status_code=422,
        )
