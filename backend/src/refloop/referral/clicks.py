"""Referral link click tracking."""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from refloop.logging_config import get_logger
from refloop.referral.errors import Internal, ValidationError
from refloop.referral.hashing import hash_ip, hash_user_agent, normalize_code
from refloop.referral.models import ReferralClick
from refloop.referral.rate_limit import ReferralLimiters, referral_limiters
from refloop.settings import settings
from refloop.storage.db import db

logger = get_logger(__name__)

MAX_CODE_LENGTH = 32


class ClickTracker:
    """Records clicks on referral links.

    Code existence is not checked here; attribution is resolved when the
    referee completes signup.
    """

    def __init__(self, limiters: ReferralLimiters | None = None):
        self.limiters = limiters or referral_limiters
        self.logger = get_logger(__name__)

    def record_click(self, code: str, ip: str, user_agent: str) -> ReferralClick:
        """Log a click from a fingerprinted visitor.

        Args:
            code: Referral code from the link
            ip: Caller IP address (hashed before storage)
            user_agent: Caller user agent (hashed before storage)

        Returns:
            Persisted click event

        Raises:
            ValidationError: Missing or over-long code
            RateLimited: Fingerprint exceeded its hourly click budget
        """
        code = normalize_code(code)
        if not code:
            raise ValidationError("Referral code required")
        if len(code) > MAX_CODE_LENGTH:
            raise ValidationError("Referral code too long")

        ip_hash = hash_ip(ip or "")
        ua_hash = hash_user_agent(user_agent or "")

        self.limiters.clicks.hit(ip_hash)

        try:
            with db.session() as session:
                click = ReferralClick(code=code, ip_hash=ip_hash, ua_hash=ua_hash)
                session.add(click)
                session.flush()
        except SQLAlchemyError as e:
            self.logger.error("referral_click_store_failed", code=code, error=str(e))
            raise Internal("Failed to record click") from e

        self.logger.info("referral_click_recorded", code=code, ip_hash=ip_hash[:12])
        return click

    def cleanup_old_clicks(self, now: datetime | None = None) -> dict[str, Any]:
        """Delete clicks older than the retention window.

        Returns:
            Number of deleted rows and the cutoff used
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=settings.click_retention_days)

        try:
            with db.session() as session:
                result = session.execute(
                    delete(ReferralClick).where(ReferralClick.created_at < cutoff)
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            self.logger.error("referral_click_cleanup_failed", cutoff=cutoff.isoformat(), error=str(e))
            raise Internal("Click cleanup failed") from e

        self.logger.info("referral_clicks_cleaned", deleted=deleted, cutoff=cutoff.isoformat())
        return {"deleted_records": deleted, "cutoff": cutoff.isoformat()}


# Singleton instance
click_tracker = ClickTracker()
