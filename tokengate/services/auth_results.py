"""Typed outcomes of the validation-token and credential flows.

Every expected failure (wrong code, expired link, bad password, ...) comes
back from AuthOrchestrator as an AuthFailure value rather than an exception.
Only infrastructure faults (database down, bugs) propagate as exceptions.
Endpoints translate AuthFailure into AuthFlowError at the HTTP edge.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from tokengate.core.credentials import CredentialPair
from tokengate.repositories.user_store import UserAccount
from tokengate.services.token_policy import TokenKind


class AuthErrorCode(str, Enum):
    """Expected failure codes, exposed verbatim to clients."""

    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    ALREADY_USED = "ALREADY_USED"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_TYPE = "INVALID_TYPE"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    REFRESH_TOKEN_ERROR = "REFRESH_TOKEN_ERROR"
    TOKEN_STILL_ACTIVE = "TOKEN_STILL_ACTIVE"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    EMAIL_ALREADY_VERIFIED = "EMAIL_ALREADY_VERIFIED"


@dataclass(frozen=True)
class AuthFailure:
    """An expected, caller-recoverable failure.

    Attributes:
        code: Failure code.
        attempts_remaining: Set only for INVALID_TOKEN.
    """

    code: AuthErrorCode
    attempts_remaining: int | None = None


@dataclass(frozen=True)
class IssuedToken:
    """A freshly minted token as reported to the caller.

    Attributes:
        validation_id: Public identifier of the new token.
        kind: Token kind.
        expires_at: Fixed expiry.
        email_sent: Whether the mail collaborator accepted the message.
    """

    validation_id: str
    kind: TokenKind
    expires_at: datetime
    email_sent: bool


@dataclass(frozen=True)
class Registration:
    """Result of a successful registration."""

    user: UserAccount
    token: IssuedToken


@dataclass(frozen=True)
class LinkStatus:
    """Public status of a usable token (never includes the secret)."""

    email: str
    kind: TokenKind
    expires_at: datetime


@dataclass(frozen=True)
class VerifiedToken:
    """A token whose secret matched and which is now consumed."""

    user_id: uuid.UUID
    email: str
    kind: TokenKind


@dataclass(frozen=True)
class CodeVerification:
    """Outcome of a submitted code after kind-specific effects ran.

    Attributes:
        verified: The consumed token.
        credentials: Issued for login_verification codes only.
        user: Account the credentials belong to, when issued.
    """

    verified: VerifiedToken
    credentials: CredentialPair | None = None
    user: UserAccount | None = None


@dataclass(frozen=True)
class SignedIn:
    """A credential pair together with the account it was issued for."""

    user: UserAccount
    credentials: CredentialPair
