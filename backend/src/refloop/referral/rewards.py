"""Tier rewards and idempotent reward claims."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from refloop.logging_config import get_logger
from refloop.referral.config import ReferralTier
from refloop.referral.errors import Internal, InvalidState, NotFound, ValidationError
from refloop.referral.models import (
    ClaimStatus,
    Referral,
    ReferralStatus,
    Reward,
    RewardClaim,
    RewardSource,
    RewardStatus,
)
from refloop.settings import settings
from refloop.storage.db import db

logger = get_logger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 255


def tier_award_key(threshold: int) -> str:
    return f"tier-{threshold}"


def count_verified_referrals(session: Session, referrer_user_id: int) -> int:
    """Number of verified referrals credited to a referrer."""
    stmt = select(func.count(Referral.id)).where(
        Referral.referrer_user_id == referrer_user_id,
        Referral.status == ReferralStatus.VERIFIED.value,
    )
    return session.scalar(stmt) or 0


class RewardTierEngine:
    """Maps verified-referral counts to tier rewards.

    Modes:
        catch_up: every threshold at or below the count that has not been
            awarded yet (a jump from 4 to 6 still awards the 5 tier)
        exact: only the threshold equal to the count
    """

    def __init__(self, tiers: list[ReferralTier] | None = None, mode: str | None = None):
        self.tiers = list(tiers if tiers is not None else settings.referral_tiers)
        self.mode = mode or settings.tier_award_mode
        self.logger = get_logger(__name__)

    def due_tiers(self, count: int) -> list[ReferralTier]:
        if self.mode == "exact":
            return [tier for tier in self.tiers if tier.threshold == count]
        return [tier for tier in self.tiers if tier.threshold <= count]

    def next_tier(self, count: int) -> ReferralTier | None:
        """First tier the referrer has not reached yet."""
        return next((tier for tier in self.tiers if tier.threshold > count), None)

    def award_for_referrer(self, referrer_user_id: int) -> tuple[int, list[Reward]]:
        """Recount a referrer's verified referrals and issue any due tier rewards.

        A concurrent completion for the same referrer may insert the same
        tier first; the unique (user_id, award_key) constraint rejects our
        copy and we recount once.

        Returns:
            Verified count and the rewards created by this call
        """
        try:
            return self._award(referrer_user_id)
        except IntegrityError:
            self.logger.info("tier_award_race_retry", referrer_user_id=referrer_user_id)
            return self._award(referrer_user_id)

    def _award(self, referrer_user_id: int) -> tuple[int, list[Reward]]:
        with db.session() as session:
            count = count_verified_referrals(session, referrer_user_id)
            due = self.due_tiers(count)
            if not due:
                return count, []

            existing = self._awarded_keys(session, referrer_user_id)

            created = []
            for tier in due:
                key = tier_award_key(tier.threshold)
                if key in existing:
                    continue
                reward = Reward(
                    user_id=referrer_user_id,
                    type=tier.type.value,
                    amount_cents=tier.amount_cents,
                    tier=tier.threshold,
                    source=RewardSource.REFERRAL.value,
                    status=RewardStatus.PENDING.value,
                    description=tier.description,
                    award_key=key,
                )
                session.add(reward)
                created.append(reward)

            session.flush()

        for reward in created:
            self.logger.info(
                "tier_reward_created",
                user_id=referrer_user_id,
                tier=reward.tier,
                reward_id=reward.id,
                verified_count=count,
            )
        return count, created

    @staticmethod
    def _awarded_keys(session: Session, referrer_user_id: int) -> set[str]:
        return set(
            session.scalars(
                select(Reward.award_key).where(
                    Reward.user_id == referrer_user_id,
                    Reward.source == RewardSource.REFERRAL.value,
                )
            )
        )


@dataclass
class ClaimResult:
    """A claim and the reward it paid. ``replayed`` marks an idempotent repeat."""
    claim: RewardClaim
    reward: Reward
    replayed: bool


class ClaimProcessor:
    """Turns approved rewards into paid claims exactly once.

    Replays are detected by (reward_id, idempotency_key). The reward moves to
    paid with a compare-and-swap on its status, so two different keys racing
    on the same reward cannot both succeed.
    """

    def __init__(self):
        self.logger = get_logger(__name__)

    def claim(self, reward_id: int, user_id: int, idempotency_key: str | None) -> ClaimResult:
        """Claim a reward.

        Raises:
            ValidationError: Missing or over-long idempotency key
            NotFound: Reward missing or owned by someone else
            InvalidState: Reward is not approved (and this is not a replay)
        """
        idempotency_key = (idempotency_key or "").strip()
        if not idempotency_key:
            raise ValidationError("Idempotency-Key header required")
        if len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError("Idempotency-Key too long")

        try:
            return self._claim(reward_id, user_id, idempotency_key)
        except IntegrityError:
            # Lost a race with the same key; the winner's claim is the answer
            self.logger.info("reward_claim_race", reward_id=reward_id, user_id=user_id)
            replay = self._find_replay(reward_id, user_id, idempotency_key)
            if replay is None:
                raise Internal("Claim conflict could not be resolved")
            return replay
        except SQLAlchemyError as e:
            self.logger.error("reward_claim_failed", reward_id=reward_id, error=str(e))
            raise Internal("Failed to claim reward") from e

    def _claim(self, reward_id: int, user_id: int, idempotency_key: str) -> ClaimResult:
        with db.session() as session:
            reward = self._owned_reward(session, reward_id, user_id)

            existing = self._existing_claim(session, reward_id, idempotency_key)
            if existing is not None:
                self.logger.info("reward_claim_replayed", reward_id=reward_id, claim_id=existing.id)
                return ClaimResult(claim=existing, reward=reward, replayed=True)

            if reward.status != RewardStatus.APPROVED.value:
                raise InvalidState(f"Reward is {reward.status}, only approved rewards can be claimed")

            claim = RewardClaim(
                reward_id=reward_id,
                user_id=user_id,
                idempotency_key=idempotency_key,
                status=ClaimStatus.PENDING.value,
                claimed_at=datetime.utcnow(),
            )
            session.add(claim)
            session.flush()

            result = session.execute(
                update(Reward)
                .where(Reward.id == reward_id, Reward.status == RewardStatus.APPROVED.value)
                .values(status=RewardStatus.PAID.value, updated_at=datetime.utcnow())
            )
            if result.rowcount != 1:
                raise InvalidState("Reward was claimed concurrently")

            session.refresh(reward)

        self.logger.info(
            "reward_claimed",
            reward_id=reward_id,
            user_id=user_id,
            claim_id=claim.id,
            amount_cents=reward.amount_cents,
        )
        return ClaimResult(claim=claim, reward=reward, replayed=False)

    def _find_replay(self, reward_id: int, user_id: int, idempotency_key: str) -> ClaimResult | None:
        with db.session() as session:
            reward = self._owned_reward(session, reward_id, user_id)
            existing = self._existing_claim(session, reward_id, idempotency_key)
            if existing is None:
                return None
            return ClaimResult(claim=existing, reward=reward, replayed=True)

    @staticmethod
    def _owned_reward(session: Session, reward_id: int, user_id: int) -> Reward:
        reward = session.get(Reward, reward_id)
        if reward is None or reward.user_id != user_id:
            raise NotFound("Reward not found")
        return reward

    @staticmethod
    def _existing_claim(session: Session, reward_id: int, idempotency_key: str) -> RewardClaim | None:
        return session.scalar(
            select(RewardClaim).where(
                RewardClaim.reward_id == reward_id,
                RewardClaim.idempotency_key == idempotency_key,
            )
        )

    def approve(self, reward_id: int) -> Reward:
        """Operator approval: pending -> approved. Approving twice is a no-op.

        Raises:
            NotFound: Unknown reward
            InvalidState: Reward already paid
        """
        with db.session() as session:
            reward = session.get(Reward, reward_id)
            if reward is None:
                raise NotFound("Reward not found")
            if reward.status == RewardStatus.PAID.value:
                raise InvalidState("Reward already paid")
            if reward.status == RewardStatus.PENDING.value:
                reward.status = RewardStatus.APPROVED.value
                reward.updated_at = datetime.utcnow()
                self.logger.info("reward_approved", reward_id=reward_id, user_id=reward.user_id)
            return reward

    def list_rewards(self, user_id: int) -> list[Reward]:
        with db.session() as session:
            return list(
                session.scalars(
                    select(Reward)
                    .where(Reward.user_id == user_id)
                    .order_by(Reward.created_at, Reward.id)
                )
            )


# Singleton instances
reward_tier_engine = RewardTierEngine()
claim_processor = ClaimProcessor()
