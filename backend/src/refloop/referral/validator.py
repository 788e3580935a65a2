"""Fraud rules applied when a referred user completes signup."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from refloop.logging_config import get_logger
from refloop.referral.hashing import is_disposable_email
from refloop.referral.models import Referral, ReferralClick
from refloop.settings import settings

logger = get_logger(__name__)

# Rejection reasons
SELF_REFERRAL = "self-referral"
DISPOSABLE_EMAIL = "disposable-email"
DUPLICATE_DEVICE = "duplicate-device"
IP_LIMIT_EXCEEDED = "ip-limit-exceeded"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of the fraud checks."""
    valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, reason=reason)


class ReferralValidator:
    """Runs the fraud checks in order and stops at the first failure.

    1. Self-referral
    2. Disposable email domain
    3. Duplicate device: any click sharing the IP hash or the UA hash inside
       the duplicate window. A single matching dimension is enough.
    4. Per-IP signup cap over the last 24 hours
    """

    def __init__(
        self,
        duplicate_window_days: int | None = None,
        max_signups_per_ip_24h: int | None = None,
    ):
        self.duplicate_window_days = (
            settings.duplicate_window_days if duplicate_window_days is None else duplicate_window_days
        )
        self.max_signups_per_ip_24h = (
            settings.max_signups_per_ip_24h if max_signups_per_ip_24h is None else max_signups_per_ip_24h
        )

    def validate(
        self,
        session: Session,
        referrer_user_id: int,
        referee_user_id: int,
        referee_email: str,
        ip_hash: str,
        ua_hash: str,
        now: datetime | None = None,
    ) -> ValidationResult:
        now = now or datetime.utcnow()

        if referrer_user_id == referee_user_id:
            return ValidationResult.reject(SELF_REFERRAL)

        if is_disposable_email(referee_email):
            return ValidationResult.reject(DISPOSABLE_EMAIL)

        if self._has_recent_click(session, ip_hash, ua_hash, now):
            return ValidationResult.reject(DUPLICATE_DEVICE)

        if self._ip_signups_last_day(session, ip_hash, now) >= self.max_signups_per_ip_24h:
            return ValidationResult.reject(IP_LIMIT_EXCEEDED)

        return ValidationResult.ok()

    def _has_recent_click(self, session: Session, ip_hash: str, ua_hash: str, now: datetime) -> bool:
        window_start = now - timedelta(days=self.duplicate_window_days)
        stmt = (
            select(ReferralClick.id)
            .where(
                or_(ReferralClick.ip_hash == ip_hash, ReferralClick.ua_hash == ua_hash),
                ReferralClick.created_at >= window_start,
            )
            .limit(1)
        )
        return session.scalar(stmt) is not None

    def _ip_signups_last_day(self, session: Session, ip_hash: str, now: datetime) -> int:
        day_start = now - timedelta(hours=24)
        stmt = select(func.count(Referral.id)).where(
            Referral.ip_hash == ip_hash,
            Referral.created_at >= day_start,
        )
        return session.scalar(stmt) or 0


# Singleton instance
referral_validator = ReferralValidator()
