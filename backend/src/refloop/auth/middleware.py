"""Authentication dependencies for FastAPI."""

import secrets

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from refloop.auth.local import LocalAuthService
from refloop.auth.models import UserAccount
from refloop.logging_config import get_logger
from refloop.referral.errors import AuthError
from refloop.settings import settings

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

# Auth service instance
auth_service = LocalAuthService()


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> UserAccount | None:
    """Get current authenticated user.

    Args:
        request: FastAPI request
        credentials: Bearer token

    Returns:
        User account or None if not authenticated
    """
    if not credentials:
        return None

    user = auth_service.get_user_from_token(credentials.credentials)

    if user:
        # Store user in request state for later use
        request.state.user = user

    return user


def require_auth(user: UserAccount | None = Depends(get_current_user)) -> UserAccount:
    """Require authentication - raises 401 if not authenticated.

    Args:
        user: Current user from get_current_user

    Returns:
        Authenticated user

    Raises:
        AuthError: 401 if not authenticated
    """
    if not user:
        raise AuthError("Not authenticated")
    return user


def require_verified_user(user: UserAccount = Depends(require_auth)) -> UserAccount:
    """Require a user whose email the identity provider has verified.

    Raises:
        AuthError: 403 if the email is not verified
    """
    if not user.email_verified:
        raise AuthError("Email verification required", status_code=403)
    return user


def require_cron_secret(
    x_cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
) -> None:
    """Require the scheduler's shared secret.

    An unset ``CRON_SECRET`` rejects every call.

    Raises:
        AuthError: 401 if the secret is missing or wrong
    """
    expected = settings.cron_secret
    if not expected or not x_cron_secret or not secrets.compare_digest(
        x_cron_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("cron_secret_rejected", provided=bool(x_cron_secret))
        raise AuthError("Unauthorized")
