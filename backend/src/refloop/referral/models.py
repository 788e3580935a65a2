"""Referral program database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from refloop.storage.models import Base


class ReferralStatus(str, Enum):
    """Lifecycle of a referral. ``verified`` and ``rejected`` are terminal.

    Completion writes the terminal row directly; pre-signup clicks live in
    ``referral_clicks``, so ``clicked`` is never stored on a referral row.
    """
    CLICKED = "clicked"
    VERIFIED = "verified"
    REJECTED = "rejected"


class RewardStatus(str, Enum):
    """Reward lifecycle, advancing pending -> approved -> paid."""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"


class RewardSource(str, Enum):
    """What produced a reward."""
    REFERRAL = "referral"
    MONTHLY_PRIZE = "monthly_prize"


class ClaimStatus(str, Enum):
    """Claim state. Fulfilment happens outside this service."""
    PENDING = "pending"


class ReferralCode(Base):
    """Unique, immutable referral code owned by one user."""

    __tablename__ = "referral_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True
    )
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ReferralCode(user_id={self.user_id}, code={self.code})>"


class ReferralClick(Base):
    """Append-only click event. Only salted hashes of IP and user agent are kept."""

    __tablename__ = "referral_clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    ip_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ua_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<ReferralClick(code={self.code}, at={self.created_at})>"


class Referral(Base):
    """Referral outcome for a referee. One row per referee, ever."""

    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    referrer_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_accounts.id"), nullable=False, index=True
    )
    referee_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )
    reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Signup fingerprint, used by the per-IP signup cap
    ip_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    ua_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return (
            f"<Referral(referrer={self.referrer_user_id}, referee={self.referee_user_id}, "
            f"status={self.status})>"
        )


class Reward(Base):
    """Reward earned by a user.

    ``award_key`` names the milestone that produced the reward (``tier-5``,
    ``monthly-2026-09``); the (user_id, award_key) constraint makes creation
    at-most-once per milestone.
    """

    __tablename__ = "rewards"
    __table_args__ = (
        UniqueConstraint("user_id", "award_key", name="uq_rewards_user_award_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_accounts.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RewardStatus.PENDING.value, index=True
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    award_key: Mapped[str] = mapped_column(String(50), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "tier": self.tier,
            "source": self.source,
            "status": self.status,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Reward(id={self.id}, user={self.user_id}, key={self.award_key}, status={self.status})>"


class RewardClaim(Base):
    """Claim on an approved reward, unique per (reward, idempotency key)."""

    __tablename__ = "reward_claims"
    __table_args__ = (
        UniqueConstraint("reward_id", "idempotency_key", name="uq_reward_claims_reward_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reward_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("rewards.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_accounts.id"), nullable=False, index=True
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ClaimStatus.PENDING.value)
    claimed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RewardClaim(id={self.id}, reward={self.reward_id})>"


class LeaderboardWeekEntry(Base):
    """Ranked weekly points for a referrer. A week is rebuilt as a whole."""

    __tablename__ = "leaderboard_week"
    __table_args__ = (
        UniqueConstraint("week_id", "user_id", name="uq_leaderboard_week_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_id: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_accounts.id"), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<LeaderboardWeekEntry(week={self.week_id}, user={self.user_id}, rank={self.rank})>"


class MonthlyPrize(Base):
    """Grand prize award. The unique month_key guards the monthly job."""

    __tablename__ = "monthly_prizes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    month_key: Mapped[str] = mapped_column(String(7), unique=True, nullable=False)
    winner_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_accounts.id"), nullable=False
    )
    referrals_count: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_type: Mapped[str] = mapped_column(String(20), nullable=False)
    prize_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("rewards.id"), nullable=True)
    awarded_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "month_key": self.month_key,
            "winner_user_id": self.winner_user_id,
            "referrals_count": self.referrals_count,
            "prize_type": self.prize_type,
            "prize_amount_cents": self.prize_amount_cents,
            "reward_id": self.reward_id,
            "awarded_at": self.awarded_at.isoformat() if self.awarded_at else None,
        }

    def __repr__(self) -> str:
        return f"<MonthlyPrize(month={self.month_key}, winner={self.winner_user_id})>"
