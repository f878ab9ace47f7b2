"""Registration, login, refresh, and session endpoints.

Endpoints:
- POST /auth/register: create account, mail verification code
- POST /auth/login: check password, mail single-use sign-in link
- GET /auth/login/{validation_id}: exchange sign-in link for credentials
- POST /auth/refresh-token: rotate refresh credential into a new pair
- POST /auth/logout: clear refresh cookie
- GET /auth/me: current account
"""

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from starlette.responses import Response

from tokengate.api.deps import ClientContextData, CurrentIdentity, Orchestrator
from tokengate.api.v1.auth_common import (
    access_payload,
    issued_payload,
    raise_for_failure,
    start_session,
    user_payload,
)
from tokengate.core.auth import (
    clear_refresh_cookie,
    ensure_password_acceptable,
    set_refresh_cookie,
)
from tokengate.core.config import settings
from tokengate.core.rate_limiting import limiter
from tokengate.core.responses import DataResponse
from tokengate.services.auth_results import AuthErrorCode, AuthFailure

logger = logging.getLogger(__name__)

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh-token (non-browser clients)."""

    model_config = ConfigDict(extra="forbid")

    refresh_token: str | None = Field(default=None, max_length=4096)


# ===================================================================
# POST /auth/register
# ===================================================================


@router.post("/register", status_code=201)
@limiter.limit(lambda: settings.rate_limit_credentials)
async def register(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RegisterRequest,
    orchestrator: Orchestrator,
    context: ClientContextData,
) -> DataResponse[dict]:
    """Register a new user with name, email and password.

    Validates password strength, checks the HIBP breach database, creates
    the account, and mails a 6-digit verification code plus a link to the
    page where it is entered.

    Rate limit: settings.rate_limit_credentials per IP.
    """
    await ensure_password_acceptable(body.password)

    result = await orchestrator.register(
        name=body.name.strip(),
        email=body.email,
        password=body.password,
        context=context,
    )
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(
        data={
            "user_id": str(result.user.id),
            "user": user_payload(result.user),
            **issued_payload(result.token),
        }
    )


# ===================================================================
# POST /auth/login
# ===================================================================


@router.post("/login")
@limiter.limit(lambda: settings.rate_limit_credentials)
async def login(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: LoginRequest,
    orchestrator: Orchestrator,
    context: ClientContextData,
) -> DataResponse[dict]:
    """Check email + password and mail a single-use sign-in link.

    Security: Unknown email and wrong password are indistinguishable
    (same code, same message, one bcrypt comparison either way). The email
    carries only the link, never a code or device details.

    Rate limit: settings.rate_limit_credentials per IP.
    """
    result = await orchestrator.login(
        email=body.email, password=body.password, context=context
    )
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(data=issued_payload(result))


# ===================================================================
# GET /auth/login/{validation_id}
# ===================================================================


@router.get("/login/{validation_id}")
async def complete_login(
    validation_id: str,
    response: Response,
    orchestrator: Orchestrator,
) -> DataResponse[dict]:
    """Exchange a sign-in link for credentials.

    The access credential is returned in the body; the refresh credential
    is set as an http-only cookie. The link is consumed.
    """
    result = await orchestrator.complete_login(validation_id)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(data=start_session(response, result))


# ===================================================================
# POST /auth/refresh-token
# ===================================================================


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    response: Response,
    orchestrator: Orchestrator,
    body: RefreshRequest | None = None,
) -> DataResponse[dict]:
    """Rotate a refresh credential into a brand-new pair.

    Reads the refresh credential from the cookie, or from the body for
    clients without cookies. The new refresh credential goes back the same
    way it came in: cookie always, body too when it was sent in the body.
    """
    body_token = body.refresh_token if body is not None else None
    presented = body_token or request.cookies.get(settings.refresh_cookie_name)
    if not presented:
        raise_for_failure(AuthFailure(AuthErrorCode.REFRESH_TOKEN_ERROR))

    result = await orchestrator.refresh(presented)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    credentials = result.credentials
    set_refresh_cookie(
        response,
        credentials.refresh_token,
        max_age=credentials.refresh_expires_in,
    )
    data = access_payload(credentials)
    if body_token:
        data["refresh_token"] = credentials.refresh_token
    return DataResponse(data=data)


# ===================================================================
# POST /auth/logout
# ===================================================================


@router.post("/logout")
async def logout(
    response: Response,
    identity: CurrentIdentity,
) -> DataResponse[dict]:
    """Clear the refresh cookie.

    Access credentials are stateless and stay valid until they expire;
    clients must discard theirs.
    """
    clear_refresh_cookie(response)
    logger.info("User %s logged out", identity.user_id)
    return DataResponse(data={"message": "Logged out"})


# ===================================================================
# GET /auth/me
# ===================================================================


@router.get("/me")
async def me(identity: CurrentIdentity) -> DataResponse[dict]:
    """Return the caller's identity from the access credential."""
    return DataResponse(
        data={
            "id": str(identity.user_id),
            "email": identity.email,
            "name": identity.name,
        }
    )
