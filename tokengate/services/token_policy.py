"""Validation token value type and lifecycle policy.

A validation token is a single-use, typed, expiring secret that gates one user
action (verify email, confirm login, reset password, ...). This module holds
the pure parts of its lifecycle:

- TokenKind: closed set of token kinds
- KIND_POLICIES: one exhaustive table of expiry, attempt ceiling, and secret
  format per kind (checked at import time)
- ValidationToken: frozen snapshot of a stored token
- new_token / is_expired / is_used / can_attempt / state_of / secret_matches

State machine (terminal states are never left):
- Active → Active (wrong guess, attempts < max)
- Active → Locked (wrong guess that brings attempts to max)
- Active → Expired (time elapses)
- Active → Used (secret matches)

Nothing here touches storage. Persisting attempts and consumption is the
TokenStore's job (see repositories/token_store.py).
"""

import hashlib
import hmac
import secrets
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

# Public identifier and opaque secrets: 32 random bytes, hex encoded (64 chars)
_OPAQUE_TOKEN_BYTES = 32

# Numeric codes are always 6 digits (no leading zero)
_CODE_MIN = 100_000
_CODE_SPAN = 900_000

# =============================================================================
# Enums
# =============================================================================


class TokenKind(str, Enum):
    """Action a validation token gates.

    Values match the database check constraint in validation_tokens.
    """

    EMAIL_VERIFICATION = "email_verification"
    LOGIN_VERIFICATION = "login_verification"
    PASSWORD_RESET = "password_reset"
    EMAIL_CHANGE = "email_change"
    PHONE_VERIFICATION = "phone_verification"
    TWO_FACTOR = "two_factor"
    ACCOUNT_RECOVERY = "account_recovery"


class SecretFormat(str, Enum):
    """How a kind's secret is generated.

    NUMERIC codes are typed in by a human. OPAQUE secrets only travel
    inside links and carry 256 bits of entropy.
    """

    NUMERIC = "numeric"
    OPAQUE = "opaque"


class TokenState(str, Enum):
    """Lifecycle state derived from a token snapshot and the current time."""

    ACTIVE = "active"
    LOCKED = "locked"
    EXPIRED = "expired"
    USED = "used"


# =============================================================================
# Policy Table
# =============================================================================


@dataclass(frozen=True)
class KindPolicy:
    """Creation-time policy for one token kind.

    Attributes:
        ttl: Lifetime from creation to expiry.
        max_attempts: Attempt ceiling; reaching it locks the token.
        secret_format: Secret generation scheme.
    """

    ttl: timedelta
    max_attempts: int
    secret_format: SecretFormat


KIND_POLICIES: Mapping[TokenKind, KindPolicy] = {
    TokenKind.EMAIL_VERIFICATION: KindPolicy(
        ttl=timedelta(hours=24), max_attempts=1, secret_format=SecretFormat.NUMERIC
    ),
    TokenKind.LOGIN_VERIFICATION: KindPolicy(
        ttl=timedelta(minutes=15), max_attempts=5, secret_format=SecretFormat.NUMERIC
    ),
    TokenKind.PASSWORD_RESET: KindPolicy(
        ttl=timedelta(hours=1), max_attempts=3, secret_format=SecretFormat.OPAQUE
    ),
    TokenKind.EMAIL_CHANGE: KindPolicy(
        ttl=timedelta(hours=2), max_attempts=1, secret_format=SecretFormat.OPAQUE
    ),
    TokenKind.PHONE_VERIFICATION: KindPolicy(
        ttl=timedelta(minutes=10), max_attempts=5, secret_format=SecretFormat.NUMERIC
    ),
    TokenKind.TWO_FACTOR: KindPolicy(
        ttl=timedelta(minutes=5), max_attempts=5, secret_format=SecretFormat.NUMERIC
    ),
    TokenKind.ACCOUNT_RECOVERY: KindPolicy(
        ttl=timedelta(hours=48), max_attempts=1, secret_format=SecretFormat.OPAQUE
    ),
}

_missing_kinds = set(TokenKind) - set(KIND_POLICIES)
if _missing_kinds:  # pragma: no cover - guards edits to the table above
    raise RuntimeError(
        f"KIND_POLICIES has no entry for: {sorted(k.value for k in _missing_kinds)}"
    )


def policy_for(kind: TokenKind) -> KindPolicy:
    """Return the creation-time policy for a kind."""
    return KIND_POLICIES[kind]


# =============================================================================
# Value Type
# =============================================================================


@dataclass(frozen=True)
class ValidationToken:
    """Immutable snapshot of a stored validation token.

    Only the SHA-256 digest of the secret is kept; the plaintext is returned
    once by new_token() so it can be mailed, then discarded.

    Attributes:
        validation_id: Public identifier used in links.
        secret_hash: SHA-256 hex digest of the secret.
        kind: Action the token gates.
        user_id: Owning user.
        email: Owner's email at creation time.
        created_at: Creation timestamp.
        expires_at: Fixed expiry timestamp (never extended).
        max_attempts: Attempt ceiling for this token.
        attempts: Attempts recorded so far.
        used_at: Consumption timestamp, None while unused.
        context: Client metadata captured at creation (ip, device, ...).
    """

    validation_id: str
    secret_hash: str
    kind: TokenKind
    user_id: uuid.UUID
    email: str
    created_at: datetime
    expires_at: datetime
    max_attempts: int
    attempts: int = 0
    used_at: datetime | None = None
    context: Mapping[str, Any] = field(default_factory=dict)

    @property
    def attempts_remaining(self) -> int:
        """Attempts left before the token locks."""
        return max(self.max_attempts - self.attempts, 0)


# =============================================================================
# Generation
# =============================================================================


def hash_secret(secret: str) -> str:
    """Return the SHA-256 hex digest stored in place of a secret."""
    return hashlib.sha256(secret.encode()).hexdigest()


def generate_validation_id() -> str:
    """Generate a public token identifier (64 hex chars)."""
    return secrets.token_hex(_OPAQUE_TOKEN_BYTES)


def generate_secret(secret_format: SecretFormat) -> str:
    """Generate a secret from a cryptographically secure source.

    Args:
        secret_format: NUMERIC for a 6-digit code, OPAQUE for 64 hex chars.

    Returns:
        Plaintext secret.
    """
    if secret_format is SecretFormat.NUMERIC:
        return str(_CODE_MIN + secrets.randbelow(_CODE_SPAN))
    return secrets.token_hex(_OPAQUE_TOKEN_BYTES)


def new_token(
    *,
    user_id: uuid.UUID,
    email: str,
    kind: TokenKind,
    now: datetime,
    context: Mapping[str, Any] | None = None,
) -> tuple[ValidationToken, str]:
    """Build a fresh token for a kind.

    Expiry, attempt ceiling and secret format come from KIND_POLICIES and are
    fixed here, once.

    Args:
        user_id: Owning user.
        email: Owner's email.
        kind: Action the token gates.
        now: Creation time.
        context: Client metadata to store with the token.

    Returns:
        Tuple of (token snapshot, plaintext secret).
    """
    policy = policy_for(kind)
    secret = generate_secret(policy.secret_format)
    token = ValidationToken(
        validation_id=generate_validation_id(),
        secret_hash=hash_secret(secret),
        kind=kind,
        user_id=user_id,
        email=email,
        created_at=now,
        expires_at=now + policy.ttl,
        max_attempts=policy.max_attempts,
        context=dict(context or {}),
    )
    return token, secret


# =============================================================================
# Lifecycle Checks
# =============================================================================


def is_expired(token: ValidationToken, now: datetime) -> bool:
    """True once now is past the token's expiry."""
    return now > token.expires_at


def is_used(token: ValidationToken) -> bool:
    """True once the token has been consumed."""
    return token.used_at is not None


def can_attempt(token: ValidationToken, now: datetime) -> bool:
    """True while the token may still accept a guess."""
    return (
        token.attempts < token.max_attempts
        and not is_expired(token, now)
        and not is_used(token)
    )


def state_of(token: ValidationToken, now: datetime) -> TokenState:
    """Derive the lifecycle state of a token.

    Precedence: Used, then Expired, then Locked. A locked token that later
    expires reports Expired, so it becomes eligible for regeneration.
    """
    if is_used(token):
        return TokenState.USED
    if is_expired(token, now):
        return TokenState.EXPIRED
    if token.attempts >= token.max_attempts:
        return TokenState.LOCKED
    return TokenState.ACTIVE


def secret_matches(token: ValidationToken, presented: str) -> bool:
    """Compare a presented secret against the stored digest in constant time."""
    return hmac.compare_digest(hash_secret(presented), token.secret_hash)
