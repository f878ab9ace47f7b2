"""Helpers shared by the auth routers.

- raise_for_failure: AuthFailure result -> AuthFlowError (HTTP status + envelope)
- payload builders for issued tokens, sessions, and users
"""

from typing import Any, NoReturn

from fastapi import Response

from tokengate.core.auth import set_refresh_cookie
from tokengate.core.credentials import CredentialPair
from tokengate.core.errors import AuthFlowError
from tokengate.repositories.user_store import UserAccount
from tokengate.services.auth_results import (
    AuthErrorCode,
    AuthFailure,
    IssuedToken,
    LinkStatus,
    SignedIn,
)

# HTTP status and client message per failure code.
# Security: INVALID_CREDENTIALS never says which half was wrong.
_FAILURE_RESPONSES: dict[AuthErrorCode, tuple[int, str]] = {
    AuthErrorCode.NOT_FOUND: (404, "Link not found"),
    AuthErrorCode.EXPIRED: (410, "This link has expired. Request a new one."),
    AuthErrorCode.ALREADY_USED: (409, "This link has already been used"),
    AuthErrorCode.MAX_ATTEMPTS_EXCEEDED: (
        429,
        "Too many incorrect attempts. Wait for this code to expire, then request a new one.",
    ),
    AuthErrorCode.INVALID_TOKEN: (400, "Incorrect code"),
    AuthErrorCode.INVALID_CREDENTIALS: (401, "Invalid email or password"),
    AuthErrorCode.INVALID_TYPE: (400, "This link cannot be used here"),
    AuthErrorCode.USER_NOT_FOUND: (404, "Account not found"),
    AuthErrorCode.REFRESH_TOKEN_ERROR: (401, "Invalid or expired refresh token"),
    AuthErrorCode.TOKEN_STILL_ACTIVE: (
        409,
        "The current code is still valid. Check your inbox.",
    ),
    AuthErrorCode.EMAIL_NOT_VERIFIED: (
        403,
        "Please verify your email before signing in. Check your inbox for the verification code.",
    ),
    AuthErrorCode.EMAIL_ALREADY_EXISTS: (409, "Email already registered"),
    AuthErrorCode.EMAIL_ALREADY_VERIFIED: (409, "Email is already verified"),
}


def raise_for_failure(failure: AuthFailure) -> NoReturn:
    """Convert an AuthFailure into the matching AuthFlowError.

    Args:
        failure: Result returned by AuthOrchestrator.

    Raises:
        AuthFlowError: Always.
    """
    status_code, message = _FAILURE_RESPONSES[failure.code]
    details = None
    if failure.attempts_remaining is not None:
        details = [{"attempts_remaining": failure.attempts_remaining}]
    raise AuthFlowError(
        code=failure.code.value,
        message=message,
        status_code=status_code,
        details=details,
    )


def user_payload(user: UserAccount) -> dict[str, Any]:
    """Public view of an account."""
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "email_verified": user.is_email_verified,
    }


def issued_payload(issued: IssuedToken) -> dict[str, Any]:
    """Public view of a newly minted token (never the secret)."""
    return {
        "validation_id": issued.validation_id,
        "kind": issued.kind.value,
        "expires_at": issued.expires_at.isoformat(),
        "email_sent": issued.email_sent,
    }


def link_status_payload(status: LinkStatus) -> dict[str, Any]:
    """Public view of a usable token."""
    return {
        "email": status.email,
        "kind": status.kind.value,
        "expires_at": status.expires_at.isoformat(),
    }


def access_payload(credentials: CredentialPair) -> dict[str, Any]:
    """Access credential fields returned in a response body."""
    return {
        "access_token": credentials.access_token,
        "token_type": "Bearer",
        "expires_in": credentials.access_expires_in,
    }


def start_session(response: Response, signed_in: SignedIn) -> dict[str, Any]:
    """Set the refresh cookie and build the session body.

    The refresh credential travels only in the http-only cookie.

    Args:
        response: Response to attach the cookie to.
        signed_in: Credentials and account from the orchestrator.

    Returns:
        Body with the access credential and the account.
    """
    credentials = signed_in.credentials
    set_refresh_cookie(
        response,
        credentials.refresh_token,
        max_age=credentials.refresh_expires_in,
    )
    return {**access_payload(credentials), "user": user_payload(signed_in.user)}
