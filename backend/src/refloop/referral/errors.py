"""Error taxonomy for referral operations.

Fraud rejections and idempotent claim replays are successful outcomes and
never raise.
"""


class ReferralError(Exception):
    """Base class for referral operation errors."""

    status_code = 500
    code = "referral_error"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ReferralError):
    """Missing or malformed input."""
    status_code = 400
    code = "validation_error"


class AuthError(ReferralError):
    """Missing or invalid identity or scheduler secret."""
    status_code = 401
    code = "auth_error"


class RateLimited(ReferralError):
    """A rate-limit window was exhausted."""
    status_code = 429
    code = "rate_limited"

    def __init__(self, window: str, limit: str):
        self.window = window
        self.limit = limit
        super().__init__(f"Rate limit exceeded for {window} ({limit})")


class InvalidState(ReferralError):
    """Operation attempted on a reward in the wrong lifecycle state."""
    status_code = 409
    code = "invalid_state"


class NotFound(ReferralError):
    """Referenced code, reward or user does not exist for this caller."""
    status_code = 404
    code = "not_found"


class Internal(ReferralError):
    """Store or infrastructure failure."""
    status_code = 500
    code = "internal_error"
