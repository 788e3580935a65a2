"""Referral service: codes, signup completion and summaries."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from refloop.auth.models import UserAccount
from refloop.logging_config import get_logger
from refloop.referral.errors import Internal, NotFound, ValidationError
from refloop.referral.hashing import (
    generate_referral_code,
    hash_ip,
    hash_user_agent,
    iso_week_id,
    normalize_code,
)
from refloop.referral.models import (
    LeaderboardWeekEntry,
    Referral,
    ReferralClick,
    ReferralCode,
    ReferralStatus,
    Reward,
    RewardStatus,
)
from refloop.referral.rate_limit import ReferralLimiters, referral_limiters
from refloop.referral.rewards import RewardTierEngine, count_verified_referrals, reward_tier_engine
from refloop.referral.validator import ReferralValidator, referral_validator
from refloop.settings import settings
from refloop.storage.db import db

logger = get_logger(__name__)

CODE_GENERATION_ATTEMPTS = 10


@dataclass
class CompletionOutcome:
    """Result of a referral completion. Rejections are a normal outcome."""
    status: str
    reason: str | None = None
    referrer_user_id: int | None = None
    total_referrals: int | None = None
    rewards_created: list[Reward] = field(default_factory=list)
    already_recorded: bool = False


class ReferralService:
    """Service for referral codes and signup attribution."""

    def __init__(
        self,
        limiters: ReferralLimiters | None = None,
        validator: ReferralValidator | None = None,
        tier_engine: RewardTierEngine | None = None,
    ):
        """Initialize referral service."""
        self.limiters = limiters or referral_limiters
        self.validator = validator or referral_validator
        self.tier_engine = tier_engine or reward_tier_engine
        self.logger = get_logger(__name__)

    # ==================== CODES ====================

    def get_code(self, user_id: int) -> ReferralCode | None:
        with db.session() as session:
            return session.scalar(select(ReferralCode).where(ReferralCode.user_id == user_id))

    def get_or_create_code(self, user_id: int) -> ReferralCode:
        """Get existing referral code or create new one for user.

        Codes are immutable once created. If two requests race to create the
        first code, the unique user_id constraint keeps one and the loser
        returns it.

        Args:
            user_id: User ID

        Returns:
            ReferralCode object
        """
        existing = self.get_code(user_id)
        if existing:
            return existing

        try:
            with db.session() as session:
                code = generate_referral_code()
                attempts = 0
                while attempts < CODE_GENERATION_ATTEMPTS:
                    taken = session.scalar(select(ReferralCode.id).where(ReferralCode.code == code))
                    if not taken:
                        break
                    code = generate_referral_code()
                    attempts += 1
                else:
                    raise Internal("Could not generate a unique referral code")

                referral_code = ReferralCode(user_id=user_id, code=code)
                session.add(referral_code)
                session.flush()
        except IntegrityError:
            existing = self.get_code(user_id)
            if existing is None:
                raise Internal("Referral code creation conflict")
            return existing

        self.logger.info("referral_code_created", user_id=user_id, code=referral_code.code)
        return referral_code

    def resolve_code(self, code: str) -> ReferralCode | None:
        """Look up a referral code (case-insensitive)."""
        code = normalize_code(code)
        if not code:
            return None
        with db.session() as session:
            return session.scalar(select(ReferralCode).where(ReferralCode.code == code))

    # ==================== COMPLETION ====================

    def complete_referral(
        self,
        referee_user_id: int,
        referee_email: str,
        code: str,
        ip: str,
        user_agent: str,
        now: datetime | None = None,
    ) -> CompletionOutcome:
        """Attribute a freshly verified user to the owner of ``code``.

        Args:
            referee_user_id: The newly verified user
            referee_email: Their verified email
            code: Referral code they signed up with
            ip: Their IP address
            user_agent: Their user agent
            now: Clock override

        Returns:
            Verified or rejected outcome; a referee that already has a
            terminal referral gets the recorded outcome back unchanged

        Raises:
            ValidationError: Missing fields
            RateLimited: Global completion budget exhausted
            NotFound: Unknown referral code
            Internal: Store failure
        """
        code = normalize_code(code)
        if not referee_user_id or not referee_email or not code:
            raise ValidationError("Missing required fields")

        self.limiters.completions.hit()

        now = now or datetime.utcnow()
        ip_hash = hash_ip(ip or "")
        ua_hash = hash_user_agent(user_agent or "")

        try:
            outcome = self._record_outcome(
                referee_user_id, referee_email, code, ip_hash, ua_hash, now
            )
        except IntegrityError:
            # Concurrent completion for the same referee already wrote a row
            outcome = self._recorded_outcome(referee_user_id)
            if outcome is None:
                raise Internal("Referral completion conflict")
            return outcome
        except SQLAlchemyError as e:
            self.logger.error("referral_completion_failed", referee_user_id=referee_user_id, error=str(e))
            raise Internal("Referral completion failed") from e

        if outcome.already_recorded or outcome.status != ReferralStatus.VERIFIED.value:
            return outcome

        try:
            total, created = self.tier_engine.award_for_referrer(outcome.referrer_user_id)
        except SQLAlchemyError as e:
            self.logger.error(
                "tier_award_failed",
                referrer_user_id=outcome.referrer_user_id,
                error=str(e),
            )
            raise Internal("Referral verified but tier rewards could not be issued") from e

        outcome.total_referrals = total
        outcome.rewards_created = created
        return outcome

    def _record_outcome(
        self,
        referee_user_id: int,
        referee_email: str,
        code: str,
        ip_hash: str,
        ua_hash: str,
        now: datetime,
    ) -> CompletionOutcome:
        with db.session() as session:
            owner = session.scalar(select(ReferralCode).where(ReferralCode.code == code))
            if owner is None:
                raise NotFound("Invalid referral code")

            referral = session.scalar(
                select(Referral).where(Referral.referee_user_id == referee_user_id)
            )
            if referral is not None:
                self.logger.info(
                    "referral_already_recorded",
                    referee_user_id=referee_user_id,
                    status=referral.status,
                )
                return CompletionOutcome(
                    status=referral.status,
                    reason=referral.reason,
                    referrer_user_id=referral.referrer_user_id,
                    already_recorded=True,
                )

            result = self.validator.validate(
                session,
                referrer_user_id=owner.user_id,
                referee_user_id=referee_user_id,
                referee_email=referee_email,
                ip_hash=ip_hash,
                ua_hash=ua_hash,
                now=now,
            )

            referral = Referral(
                code=code,
                referrer_user_id=owner.user_id,
                referee_user_id=referee_user_id,
                ip_hash=ip_hash,
                ua_hash=ua_hash,
                created_at=now,
            )
            if result.valid:
                referral.status = ReferralStatus.VERIFIED.value
                referral.verified_at = now
            else:
                referral.status = ReferralStatus.REJECTED.value
                referral.reason = result.reason
            session.add(referral)
            session.flush()

        if result.valid:
            self.logger.info(
                "referral_verified",
                referrer_user_id=owner.user_id,
                referee_user_id=referee_user_id,
            )
        else:
            self.logger.info(
                "referral_rejected",
                referrer_user_id=owner.user_id,
                referee_user_id=referee_user_id,
                reason=result.reason,
            )
        return CompletionOutcome(
            status=referral.status,
            reason=referral.reason,
            referrer_user_id=owner.user_id,
        )

    def _recorded_outcome(self, referee_user_id: int) -> CompletionOutcome | None:
        with db.session() as session:
            referral = session.scalar(
                select(Referral).where(Referral.referee_user_id == referee_user_id)
            )
            if referral is None:
                return None
            return CompletionOutcome(
                status=referral.status,
                reason=referral.reason,
                referrer_user_id=referral.referrer_user_id,
                already_recorded=True,
            )

    # ==================== READS ====================

    def get_summary(self, user_id: int, now: datetime | None = None) -> dict[str, Any]:
        """Dashboard numbers for a referrer.

        Referral data is not critical to the rest of the product, so any store
        failure returns zeroed defaults instead of an error.
        """
        try:
            referral_code = self.get_or_create_code(user_id)
            with db.session() as session:
                clicks = session.scalar(
                    select(func.count(ReferralClick.id)).where(ReferralClick.code == referral_code.code)
                ) or 0
                verified = count_verified_referrals(session, user_id)
                earned = session.scalar(
                    select(func.coalesce(func.sum(Reward.amount_cents), 0)).where(
                        Reward.user_id == user_id,
                        Reward.status.in_([RewardStatus.APPROVED.value, RewardStatus.PAID.value]),
                    )
                ) or 0
                week_points = session.scalar(
                    select(LeaderboardWeekEntry.points).where(
                        LeaderboardWeekEntry.user_id == user_id,
                        LeaderboardWeekEntry.week_id == iso_week_id(now),
                    )
                ) or 0
        except (SQLAlchemyError, Internal) as e:
            self.logger.warning("referral_summary_degraded", user_id=user_id, error=str(e))
            return self._empty_summary()

        next_tier = self.tier_engine.next_tier(verified)
        return {
            "clicks": clicks,
            "verified_count": verified,
            "earned_cents": int(earned),
            "this_week_points": week_points,
            "next_tier": (
                {
                    "refs": next_tier.threshold,
                    "reward": {
                        "type": next_tier.type.value,
                        "amount_cents": next_tier.amount_cents,
                        "description": next_tier.description,
                    },
                }
                if next_tier
                else None
            ),
            "referral_code": referral_code.code,
            "referral_link": settings.referral_link(referral_code.code),
        }

    @staticmethod
    def _empty_summary() -> dict[str, Any]:
        return {
            "clicks": 0,
            "verified_count": 0,
            "earned_cents": 0,
            "this_week_points": 0,
            "next_tier": None,
            "referral_code": None,
            "referral_link": None,
        }

    def get_public_info(self, email: str) -> dict[str, Any]:
        """Referral link for an existing account, looked up by email.

        Raises:
            ValidationError: Missing email
            NotFound: No such user, or the user has no code yet
        """
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required")

        with db.session() as session:
            row = session.execute(
                select(UserAccount.name, ReferralCode.code)
                .outerjoin(ReferralCode, ReferralCode.user_id == UserAccount.id)
                .where(UserAccount.email == email)
            ).first()

        if row is None:
            raise NotFound("User not found")
        name, code = row
        if not code:
            raise NotFound("No referral code found for this user")

        return {
            "has_account": True,
            "referral_code": code,
            "referral_link": settings.referral_link(code),
            "user_name": name or "User",
        }


# Singleton instance
referral_service = ReferralService()
