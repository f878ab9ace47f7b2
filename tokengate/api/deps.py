"""Shared dependencies for API endpoints.

Every collaborator of AuthOrchestrator is provided through Depends, so tests
swap any of them with app.dependency_overrides (in-memory stores, a
recording mailer, a fixed clock).

WHY DEPENDENCY INJECTION:
- Consistent auth across all endpoints
- Storage lifecycle owned by the app lifespan, not by first access
- Testable with substituted collaborators
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.core.client_context import capture_client_context
from tokengate.core.config import settings
from tokengate.core.credentials import AccessClaims, CredentialFailure, CredentialIssuer
from tokengate.core.database import get_db
from tokengate.core.email import Mailer, ResendMailer
from tokengate.core.errors import UnauthorizedError
from tokengate.repositories.token_store import TokenStore
from tokengate.repositories.user_repository import UserRepository
from tokengate.repositories.user_store import UserStore
from tokengate.repositories.validation_token_repository import (
    ValidationTokenRepository,
)
from tokengate.services.auth_orchestrator import AuthOrchestrator

_BEARER_SCHEME = "bearer"

DbSession = Annotated[AsyncSession, Depends(get_db)]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def get_clock() -> Callable[[], datetime]:
    """Source of "now" for token expiry and credential timestamps."""
    return _utcnow


Clock = Annotated[Callable[[], datetime], Depends(get_clock)]


def get_token_store(db: DbSession) -> TokenStore:
    """Validation token store bound to the request's session."""
    return ValidationTokenRepository(db)


def get_user_store(db: DbSession) -> UserStore:
    """User store bound to the request's session."""
    return UserRepository(db)


def get_credential_issuer(clock: Clock) -> CredentialIssuer:
    """Credential issuer configured from settings.

    Raises:
        ValueError: If signing secrets are missing or identical.
    """
    return CredentialIssuer.from_settings(settings, clock=clock)


def get_mailer() -> Mailer:
    """Mail transport configured from settings."""
    return ResendMailer.from_settings(settings)


Issuer = Annotated[CredentialIssuer, Depends(get_credential_issuer)]


async def get_client_context(request: Request) -> dict[str, Any]:
    """Client metadata (ip, country, browser, os, device) for token context."""
    context = await capture_client_context(request)
    return context.as_dict()


ClientContextData = Annotated[dict[str, Any], Depends(get_client_context)]


def get_auth_orchestrator(
    tokens: Annotated[TokenStore, Depends(get_token_store)],
    users: Annotated[UserStore, Depends(get_user_store)],
    issuer: Issuer,
    mailer: Annotated[Mailer, Depends(get_mailer)],
    clock: Clock,
) -> AuthOrchestrator:
    """Assemble the orchestrator for one request."""
    return AuthOrchestrator(
        tokens=tokens,
        users=users,
        issuer=issuer,
        mailer=mailer,
        frontend_url=settings.frontend_url,
        site_name=settings.app_name,
        mail_timeout=settings.email_timeout_seconds,
        require_verified_email=settings.require_verified_email,
        clock=clock,
    )


Orchestrator = Annotated[AuthOrchestrator, Depends(get_auth_orchestrator)]


async def get_current_identity(request: Request, issuer: Issuer) -> AccessClaims:
    """Verify the bearer access credential and return its claims.

    Expects ``Authorization: Bearer <access token>``. Refresh credentials
    are rejected (signed with a different secret and typed "refresh").

    Security: Every failure (missing header, wrong scheme, bad signature,
    expired, wrong kind) returns the same generic 401.

    Args:
        request: HTTP request (injected by FastAPI).
        issuer: Credential issuer (injected).

    Returns:
        Verified access claims of the caller.

    Raises:
        UnauthorizedError: 401 for any auth failure.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != _BEARER_SCHEME or not token:
        raise UnauthorizedError()

    claims = issuer.verify_access(token)
    if isinstance(claims, CredentialFailure):
        raise UnauthorizedError()

    request.state.identity = claims
    return claims


CurrentIdentity = Annotated[AccessClaims, Depends(get_current_identity)]
