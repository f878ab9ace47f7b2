"""API v1 router aggregator.

All v1 endpoint routers are included here. Every auth flow lives under
/api/v1/auth.
"""

from fastapi import APIRouter

from tokengate.api.v1 import auth, password_reset, validation

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

_AUTH_PREFIX = "/auth"

router.include_router(auth.router, prefix=_AUTH_PREFIX, tags=["auth"])
router.include_router(validation.router, prefix=_AUTH_PREFIX, tags=["auth"])
router.include_router(password_reset.router, prefix=_AUTH_PREFIX, tags=["auth"])
