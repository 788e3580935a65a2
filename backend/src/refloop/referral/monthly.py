"""Monthly grand prize selection."""

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from refloop.logging_config import get_logger
from refloop.referral.config import RewardType
from refloop.referral.errors import Internal
from refloop.referral.hashing import previous_month_bounds
from refloop.referral.leaderboard import rank_referrers
from refloop.referral.models import MonthlyPrize, Reward, RewardSource, RewardStatus
from refloop.settings import settings
from refloop.storage.db import db

logger = get_logger(__name__)


def monthly_award_key(month_key: str) -> str:
    return f"monthly-{month_key}"


class MonthlyPrizeSelector:
    """Picks one grand prize winner for the previous calendar month.

    Qualifying referrers need at least ``min_referrals`` verified referrals in
    the month. The winner has the most referrals; ties go to whoever verified
    their first referral of the month earliest. The unique month key makes a
    re-run a no-op.
    """

    def __init__(self, min_referrals: int | None = None, prize_amount_cents: int | None = None):
        self.min_referrals = min_referrals or settings.monthly_prize_min_referrals
        self.prize_amount_cents = (
            settings.monthly_prize_amount_cents if prize_amount_cents is None else prize_amount_cents
        )
        self.logger = get_logger(__name__)

    def compute(self, now: datetime | None = None) -> dict[str, Any]:
        """Award the previous month's prize if it has not been awarded yet.

        Returns:
            Summary of what was written (or found)
        """
        now = now or datetime.utcnow()
        month_key, month_start, month_end = previous_month_bounds(now)

        try:
            existing = self._existing(month_key)
            if existing is not None:
                self.logger.info("monthly_prize_already_awarded", month_key=month_key)
                return {"month_key": month_key, "already_awarded": True, "prize": existing.to_dict()}

            return self._award(month_key, month_start, month_end, now)
        except IntegrityError:
            # Another run awarded the month between our check and insert
            existing = self._existing(month_key)
            if existing is None:
                raise Internal("Monthly prize conflict could not be resolved")
            return {"month_key": month_key, "already_awarded": True, "prize": existing.to_dict()}
        except SQLAlchemyError as e:
            self.logger.error("monthly_prize_failed", month_key=month_key, error=str(e))
            raise Internal("Monthly prize computation failed") from e

    def _existing(self, month_key: str) -> MonthlyPrize | None:
        with db.session() as session:
            return session.scalar(select(MonthlyPrize).where(MonthlyPrize.month_key == month_key))

    def _award(
        self,
        month_key: str,
        month_start: datetime,
        month_end: datetime,
        now: datetime,
    ) -> dict[str, Any]:
        with db.session() as session:
            ranked = rank_referrers(session, month_start, month_end)
            qualified = [row for row in ranked if row[1] >= self.min_referrals]

            if not qualified:
                self.logger.info("monthly_prize_no_qualifiers", month_key=month_key)
                return {
                    "month_key": month_key,
                    "already_awarded": False,
                    "qualified_users": 0,
                    "prize": None,
                }

            winner_id, referrals_count, first_referral_at = qualified[0]

            reward = Reward(
                user_id=winner_id,
                type=RewardType.DEVICE.value,
                amount_cents=self.prize_amount_cents,
                tier=self.min_referrals,
                source=RewardSource.MONTHLY_PRIZE.value,
                status=RewardStatus.APPROVED.value,
                description=f"Monthly grand prize {month_key}",
                award_key=monthly_award_key(month_key),
            )
            session.add(reward)
            session.flush()

            prize = MonthlyPrize(
                month_key=month_key,
                winner_user_id=winner_id,
                referrals_count=referrals_count,
                prize_type=RewardType.DEVICE.value,
                prize_amount_cents=self.prize_amount_cents,
                reward_id=reward.id,
                awarded_at=now,
            )
            session.add(prize)
            session.flush()

        self.logger.info(
            "monthly_prize_awarded",
            month_key=month_key,
            winner_user_id=winner_id,
            referrals=referrals_count,
            first_referral_at=first_referral_at.isoformat() if first_referral_at else None,
            qualified_users=len(qualified),
        )
        return {
            "month_key": month_key,
            "already_awarded": False,
            "qualified_users": len(qualified),
            "prize": prize.to_dict(),
        }


# Singleton instance
monthly_prize_selector = MonthlyPrizeSelector()
