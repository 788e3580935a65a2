"""Per-IP HTTP limits for public lookup endpoints.

Click and completion windows live in ``refloop.referral.rate_limit``; this
limiter only guards routes decorated with ``@limiter.limit``. Both key on the
same client IP resolution and share ``RATE_LIMIT_STORAGE_URI``.
"""

from slowapi import Limiter

from refloop.referral.hashing import get_client_ip
from refloop.settings import settings

# Enforced in production only so local runs and tests are not throttled
limiter = Limiter(
    key_func=get_client_ip,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.env == "production",
)
