"""Validation link endpoints: status, code submission, resend.

Endpoints:
- GET /auth/links/{validation_id}: is the link still usable?
- POST /auth/verify-code: submit a typed code
- POST /auth/resend/{validation_id}: replace an expired token
- POST /auth/resend: new email verification code by email address
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from starlette.responses import Response

from tokengate.api.deps import ClientContextData, Orchestrator
from tokengate.api.v1.auth_common import (
    issued_payload,
    link_status_payload,
    raise_for_failure,
    start_session,
)
from tokengate.core.config import settings
from tokengate.core.rate_limiting import limiter
from tokengate.core.responses import DataResponse
from tokengate.services.auth_results import AuthFailure, SignedIn

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class VerifyCodeRequest(BaseModel):
    """Request body for POST /auth/verify-code."""

    model_config = ConfigDict(extra="forbid")

    validation_id: str = Field(min_length=1, max_length=128)
    secret: str = Field(min_length=1, max_length=128)


class ResendByEmailRequest(BaseModel):
    """Request body for POST /auth/resend."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


# ===================================================================
# GET /auth/links/{validation_id}
# ===================================================================


@router.get("/links/{validation_id}")
async def get_link_status(
    validation_id: str,
    orchestrator: Orchestrator,
) -> DataResponse[dict]:
    """Report a link's email, kind and expiry without consuming it.

    Lets the frontend show "expired, request a new code" before the user
    types anything.
    """
    result = await orchestrator.link_status(validation_id)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(data=link_status_payload(result))


# ===================================================================
# POST /auth/verify-code
# ===================================================================


@router.post("/verify-code")
@limiter.limit(lambda: settings.rate_limit_codes)
async def verify_code(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: VerifyCodeRequest,
    response: Response,
    orchestrator: Orchestrator,
) -> DataResponse[dict]:
    """Submit a 6-digit code.

    Every submission consumes one attempt. A wrong code returns
    INVALID_TOKEN with attempts_remaining in the error details; the guess
    that exhausts the budget returns MAX_ATTEMPTS_EXCEEDED.

    A login code signs the user in exactly like the login link does.

    Rate limit: settings.rate_limit_codes per IP.
    """
    result = await orchestrator.submit_code(body.validation_id, body.secret.strip())
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    verified = result.verified
    data: dict = {
        "user_id": str(verified.user_id),
        "email": verified.email,
        "kind": verified.kind.value,
    }
    if result.credentials is not None and result.user is not None:
        data["session"] = start_session(
            response, SignedIn(user=result.user, credentials=result.credentials)
        )
    return DataResponse(data=data)


# ===================================================================
# POST /auth/resend/{validation_id}
# ===================================================================


@router.post("/resend/{validation_id}")
@limiter.limit(lambda: settings.rate_limit_codes)
async def resend_by_validation_id(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    validation_id: str,
    orchestrator: Orchestrator,
    context: ClientContextData,
) -> DataResponse[dict]:
    """Replace an expired token with a new one and re-send its email.

    Refused while the token is still active, after it was used, and while
    it is locked by failed attempts.

    Rate limit: settings.rate_limit_codes per IP.
    """
    result = await orchestrator.resend(validation_id, context=context)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(data=issued_payload(result))


# ===================================================================
# POST /auth/resend
# ===================================================================


@router.post("/resend")
@limiter.limit(lambda: settings.rate_limit_codes)
async def resend_by_email(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResendByEmailRequest,
    orchestrator: Orchestrator,
    context: ClientContextData,
) -> DataResponse[dict]:
    """Send a fresh email verification code to an unverified account.

    Rate limit: settings.rate_limit_codes per IP.
    """
    result = await orchestrator.resend_verification(email=body.email, context=context)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(data=issued_payload(result))
