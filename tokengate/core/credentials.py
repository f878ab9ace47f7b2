"""Signed access/refresh credential issuance and verification.

Credentials are self-contained JWTs; nothing is persisted. Each carries
sub, type ("access" or "refresh"), jti, iat, exp, iss and aud. Access
credentials also embed display claims (email, name) so authenticated
requests need no user lookup; staleness is bounded by the access TTL.
Refresh credentials carry only the subject.

Access and refresh credentials are signed with different secrets.
There is no revocation list: jti exists so one can be added later.

iat is encoded in whole seconds, so two pairs issued within one second
carry the same iat. jti is what tells them apart.
"""

import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import jwt

from tokengate.core.config import Settings

_ACCESS = "access"
_REFRESH = "refresh"

# jti: 16 random bytes, hex encoded
_JTI_BYTES = 16

# Clock skew tolerated when checking exp/iat
_LEEWAY = timedelta(seconds=5)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialFailure(str, Enum):
    """Why a presented credential was rejected."""

    EXPIRED = "expired"
    MALFORMED = "malformed"
    WRONG_KIND = "wrong_kind"


@dataclass(frozen=True)
class CredentialPair:
    """Freshly minted access + refresh credentials.

    Attributes:
        access_token: Encoded access JWT.
        refresh_token: Encoded refresh JWT.
        access_jti: jti embedded in the access token.
        refresh_jti: jti embedded in the refresh token.
        issued_at: iat shared by both tokens.
        access_expires_at: Access token expiry.
        refresh_expires_at: Refresh token expiry.
    """

    access_token: str
    refresh_token: str
    access_jti: str
    refresh_jti: str
    issued_at: datetime
    access_expires_at: datetime
    refresh_expires_at: datetime

    @property
    def access_expires_in(self) -> int:
        """Access token lifetime in whole seconds."""
        return int((self.access_expires_at - self.issued_at).total_seconds())

    @property
    def refresh_expires_in(self) -> int:
        """Refresh token lifetime in whole seconds."""
        return int((self.refresh_expires_at - self.issued_at).total_seconds())


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of an access credential."""

    user_id: uuid.UUID
    email: str
    name: str | None
    jti: str
    issued_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    """Verified claims of a refresh credential."""

    user_id: uuid.UUID
    jti: str
    issued_at: datetime


class CredentialIssuer:
    """Mints and verifies access/refresh credential pairs.

    Stateless apart from its keys and clock; safe to share across requests.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        issuer: str,
        audience: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        algorithm: str = "HS512",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("Access and refresh signing secrets must be set")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh signing secrets must differ")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._issuer = issuer
        self._audience = audience
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Callable[[], datetime] = _utcnow
    ) -> "CredentialIssuer":
        """Build an issuer from application settings."""
        return cls(
            access_secret=settings.access_token_secret.get_secret_value(),
            refresh_secret=settings.refresh_token_secret.get_secret_value(),
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    def issue_pair(
        self, *, user_id: uuid.UUID, email: str, name: str | None
    ) -> CredentialPair:
        """Mint a new access + refresh pair for a user.

        Args:
            user_id: Subject of both credentials.
            email: Display claim for the access credential.
            name: Display claim for the access credential.

        Returns:
            CredentialPair with fresh jti values. issued_at keeps full
            precision; the encoded iat is truncated to the second.
        """
        now = self._clock()
        access_jti = secrets.token_hex(_JTI_BYTES)
        refresh_jti = secrets.token_hex(_JTI_BYTES)
        access_expires_at = now + self._access_ttl
        refresh_expires_at = now + self._refresh_ttl

        access_token = self._encode(
            {
                "sub": str(user_id),
                "type": _ACCESS,
                "email": email,
                "name": name,
                "jti": access_jti,
                "iat": now,
                "exp": access_expires_at,
            },
            self._access_secret,
        )
        refresh_token = self._encode(
            {
                "sub": str(user_id),
                "type": _REFRESH,
                "jti": refresh_jti,
                "iat": now,
                "exp": refresh_expires_at,
            },
            self._refresh_secret,
        )
        return CredentialPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_jti=access_jti,
            refresh_jti=refresh_jti,
            issued_at=now,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def _encode(self, payload: dict[str, Any], secret: str) -> str:
        payload = {**payload, "iss": self._issuer, "aud": self._audience}
        return jwt.encode(payload, secret, algorithm=self._algorithm)

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_access(self, token: str) -> AccessClaims | CredentialFailure:
        """Verify an access credential.

        Args:
            token: Encoded JWT from the Authorization header.

        Returns:
            AccessClaims, or the CredentialFailure explaining the rejection.
        """
        payload = self._decode(token, self._access_secret, expected_type=_ACCESS)
        if isinstance(payload, CredentialFailure):
            return payload
        try:
            return AccessClaims(
                user_id=uuid.UUID(payload["sub"]),
                email=payload["email"],
                name=payload.get("name"),
                jti=payload["jti"],
                issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            )
        except (KeyError, TypeError, ValueError):
            return CredentialFailure.MALFORMED

    def verify_refresh(self, token: str) -> RefreshClaims | CredentialFailure:
        """Verify a refresh credential.

        Args:
            token: Encoded JWT from the refresh cookie or request body.

        Returns:
            RefreshClaims, or the CredentialFailure explaining the rejection.
        """
        payload = self._decode(token, self._refresh_secret, expected_type=_REFRESH)
        if isinstance(payload, CredentialFailure):
            return payload
        try:
            return RefreshClaims(
                user_id=uuid.UUID(payload["sub"]),
                jti=payload["jti"],
                issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            )
        except (KeyError, TypeError, ValueError):
            return CredentialFailure.MALFORMED

    def _decode(
        self, token: str, secret: str, *, expected_type: str
    ) -> dict[str, Any] | CredentialFailure:
        # exp is checked below against the injected clock, not PyJWT's wall clock
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={
                    "require": ["sub", "type", "jti", "iat", "exp"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError:
            return CredentialFailure.MALFORMED

        exp = payload["exp"]
        if not isinstance(exp, int | float):
            return CredentialFailure.MALFORMED
        now = self._clock()
        if datetime.fromtimestamp(exp, UTC) <= now - _LEEWAY:
            return CredentialFailure.EXPIRED
        if payload["type"] != expected_type:
            return CredentialFailure.WRONG_KIND
        return payload
