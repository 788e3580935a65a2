"""Bearer token verification against the identity provider's shared secret."""

from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from refloop.auth.models import UserAccount
from refloop.logging_config import get_logger
from refloop.settings import settings
from refloop.storage.db import db

logger = get_logger(__name__)

# JWT settings
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 2


class LocalAuthService:
    """Resolves session tokens to local user accounts."""

    def __init__(self):
        """Initialize auth service."""
        self.logger = get_logger(__name__)

    # ==================== USER LOOKUP ====================

    def get_user_by_id(self, user_id: int) -> UserAccount | None:
        """Get active user by ID.

        Args:
            user_id: User ID

        Returns:
            User account or None
        """
        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.id == user_id,
                UserAccount.is_active == True,  # noqa: E712
            ).first()

    # ==================== JWT TOKENS ====================

    def create_access_token(
        self,
        user: UserAccount,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create JWT access token.

        Tokens are normally minted by the identity provider; this is used by
        internal tooling and tests.

        Args:
            user: User account
            expires_delta: Optional expiration time

        Returns:
            JWT token string
        """
        if expires_delta is None:
            expires_delta = timedelta(hours=JWT_EXPIRE_HOURS)

        now = datetime.utcnow()
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "exp": now + expires_delta,
            "iat": now,
        }

        return jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode JWT token.

        Args:
            token: JWT token string

        Returns:
            Token payload or None if invalid
        """
        try:
            return jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def get_user_from_token(self, token: str) -> UserAccount | None:
        """Get user from JWT token.

        Args:
            token: JWT token string

        Returns:
            User account or None
        """
        payload = self.verify_token(token)
        if not payload:
            return None

        user_id = payload.get("sub")
        if not user_id or not str(user_id).isdigit():
            return None

        return self.get_user_by_id(int(user_id))
