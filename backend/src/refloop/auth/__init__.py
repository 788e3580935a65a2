"""Authentication for refloop - bearer tokens from the identity provider plus the cron secret."""

from refloop.auth.models import UserAccount
from refloop.auth.local import LocalAuthService
from refloop.auth.middleware import get_current_user, require_auth, require_cron_secret, require_verified_user

__all__ = [
    "UserAccount",
    "LocalAuthService",
    "get_current_user",
    "require_auth",
    "require_cron_secret",
    "require_verified_user",
]
