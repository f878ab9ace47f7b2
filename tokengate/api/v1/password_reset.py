"""Password reset endpoints.

Endpoints:
- POST /auth/forgot-password: mail a reset link (response never reveals
  whether the account exists)
- GET /auth/reset-password/{validation_id}: is the reset link usable?
- POST /auth/reset-password: set a new password through the link
"""

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from tokengate.api.deps import ClientContextData, Orchestrator
from tokengate.api.v1.auth_common import (
    link_status_payload,
    raise_for_failure,
    user_payload,
)
from tokengate.core.auth import ensure_password_acceptable
from tokengate.core.config import settings
from tokengate.core.rate_limiting import limiter
from tokengate.core.responses import DataResponse
from tokengate.services.auth_results import AuthFailure

router = APIRouter()

_FORGOT_PASSWORD_MESSAGE = (
    "If an account exists for that email, a password reset link has been sent."
)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /auth/forgot-password."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = ConfigDict(extra="forbid")

    validation_id: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


@router.post("/forgot-password")
@limiter.limit(lambda: settings.rate_limit_credentials)
async def forgot_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    orchestrator: Orchestrator,
    context: ClientContextData,
) -> DataResponse[dict]:
    """Mail a password reset link if the account exists.

    Security: Always returns the same message. Mail is sent after the
    response, so timing does not depend on whether a message went out.

    Rate limit: settings.rate_limit_credentials per IP.
    """
    mail = await orchestrator.forgot_password(email=body.email, context=context)
    if mail is not None:
        background_tasks.add_task(orchestrator.deliver, mail)

    return DataResponse(data={"message": _FORGOT_PASSWORD_MESSAGE})


@router.get("/reset-password/{validation_id}")
async def check_reset_link(
    validation_id: str,
    orchestrator: Orchestrator,
) -> DataResponse[dict]:
    """Report whether a reset link can still be used."""
    result = await orchestrator.check_reset_link(validation_id)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(data=link_status_payload(result))


@router.post("/reset-password")
@limiter.limit(lambda: settings.rate_limit_credentials)
async def reset_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResetPasswordRequest,
    orchestrator: Orchestrator,
) -> DataResponse[dict]:
    """Set a new password through a reset link and consume the link.

    The new password goes through the same strength and breach checks as
    registration. Outstanding sign-in links for the account are discarded.

    Rate limit: settings.rate_limit_credentials per IP.
    """
    await ensure_password_acceptable(body.new_password)

    result = await orchestrator.reset_password(body.validation_id, body.new_password)
    if isinstance(result, AuthFailure):
        raise_for_failure(result)

    return DataResponse(
        data={"message": "Password updated", "user": user_payload(result)}
    )
