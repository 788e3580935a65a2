"""Tests for the monthly grand prize."""

from datetime import datetime, timedelta

from sqlalchemy import func, select

from refloop.referral.models import MonthlyPrize, Reward, RewardSource, RewardStatus
from refloop.referral.monthly import MonthlyPrizeSelector
from refloop.storage.db import db

RUN_AT = datetime(2026, 10, 1, 1, 0)


def _times(n: int, start: datetime) -> list[datetime]:
    return [start + timedelta(minutes=i) for i in range(n)]


class TestMonthlyPrize:

    def test_earliest_first_referral_wins_a_tie(self, make_user, add_verified_referrals):
        late = make_user("late@example.com")
        early = make_user("early@example.com")
        add_verified_referrals(late.id, _times(120, datetime(2026, 9, 3, 8, 0)))
        add_verified_referrals(early.id, _times(120, datetime(2026, 9, 2, 8, 0)))

        result = MonthlyPrizeSelector().compute(now=RUN_AT)

        assert result["month_key"] == "2026-09"
        assert result["already_awarded"] is False
        assert result["qualified_users"] == 2
        assert result["prize"]["winner_user_id"] == early.id
        assert result["prize"]["referrals_count"] == 120

        with db.session() as session:
            reward = session.scalar(select(Reward).where(Reward.user_id == early.id))
        assert reward.type == "device"
        assert reward.source == RewardSource.MONTHLY_PRIZE.value
        assert reward.status == RewardStatus.APPROVED.value
        assert reward.amount_cents == 100000

    def test_only_previous_month_counts(self, make_user, add_verified_referrals):
        user = make_user("busy@example.com")
        add_verified_referrals(user.id, _times(60, datetime(2026, 9, 30, 20, 0)))
        add_verified_referrals(user.id, _times(60, datetime(2026, 10, 1, 0, 0)))

        result = MonthlyPrizeSelector().compute(now=RUN_AT)

        assert result["qualified_users"] == 0
        assert result["prize"] is None

    def test_below_threshold(self, make_user, add_verified_referrals):
        user = make_user("almost@example.com")
        add_verified_referrals(user.id, _times(99, datetime(2026, 9, 10)))

        result = MonthlyPrizeSelector().compute(now=RUN_AT)

        assert result["prize"] is None
        with db.session() as session:
            assert session.scalar(select(func.count(MonthlyPrize.id))) == 0

    def test_second_run_is_a_no_op(self, make_user, add_verified_referrals):
        user = make_user("winner@example.com")
        add_verified_referrals(user.id, _times(5, datetime(2026, 9, 10)))
        selector = MonthlyPrizeSelector(min_referrals=5)

        first = selector.compute(now=RUN_AT)
        second = selector.compute(now=RUN_AT + timedelta(hours=3))

        assert first["already_awarded"] is False
        assert second["already_awarded"] is True
        assert second["prize"]["id"] == first["prize"]["id"]
        with db.session() as session:
            assert session.scalar(select(func.count(MonthlyPrize.id))) == 1
            assert session.scalar(select(func.count(Reward.id))) == 1

    def test_concurrent_run_returns_existing_prize(self, make_user, add_verified_referrals, monkeypatch, stale_once):
        user = make_user("winner@example.com")
        add_verified_referrals(user.id, _times(5, datetime(2026, 9, 10)))
        MonthlyPrizeSelector(min_referrals=5).compute(now=RUN_AT)

        # Second run checked for an existing prize before the first one committed
        late = MonthlyPrizeSelector(min_referrals=5)
        monkeypatch.setattr(late, "_existing", stale_once(late._existing, None))

        result = late.compute(now=RUN_AT)

        assert result["already_awarded"] is True
        assert result["prize"]["winner_user_id"] == user.id
        with db.session() as session:
            assert session.scalar(select(func.count(MonthlyPrize.id))) == 1
            assert session.scalar(select(func.count(Reward.id))) == 1
