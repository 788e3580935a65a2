"""Tests for tier rewards and reward claims."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from refloop.referral.config import DEFAULT_TIERS
from refloop.referral.errors import InvalidState, NotFound, ValidationError
from refloop.referral.models import Reward, RewardClaim, RewardSource, RewardStatus
from refloop.referral.rewards import ClaimProcessor, RewardTierEngine, tier_award_key
from refloop.storage.db import db

BASE = datetime(2026, 10, 12, 9, 0)


def _timestamps(n: int, start: datetime = BASE) -> list[datetime]:
    return [start + timedelta(minutes=i) for i in range(n)]


def _rewards(user_id: int) -> list[Reward]:
    with db.session() as session:
        return list(session.scalars(select(Reward).where(Reward.user_id == user_id).order_by(Reward.tier)))


@pytest.fixture
def make_reward():
    def _make(user_id: int, status: str = RewardStatus.APPROVED.value, tier: int = 5) -> Reward:
        with db.session() as session:
            reward = Reward(
                user_id=user_id,
                type="voucher",
                amount_cents=1000,
                tier=tier,
                source=RewardSource.REFERRAL.value,
                status=status,
                description="$10 Amazon voucher",
                award_key=tier_award_key(tier),
            )
            session.add(reward)
            session.flush()
            return reward

    return _make


class TestRewardTierEngine:

    def test_fifth_referral_creates_tier_reward(self, make_user, add_verified_referrals):
        referrer = make_user("referrer@example.com")
        engine = RewardTierEngine()

        add_verified_referrals(referrer.id, _timestamps(4))
        assert engine.award_for_referrer(referrer.id) == (4, [])

        add_verified_referrals(referrer.id, _timestamps(1, BASE + timedelta(hours=1)))
        count, created = engine.award_for_referrer(referrer.id)

        assert count == 5
        assert [reward.tier for reward in created] == [5]
        reward = _rewards(referrer.id)[0]
        assert reward.status == RewardStatus.PENDING.value
        assert reward.amount_cents == 1000
        assert reward.type == "voucher"

    def test_tier_awarded_once(self, make_user, add_verified_referrals):
        referrer = make_user("referrer@example.com")
        engine = RewardTierEngine()
        add_verified_referrals(referrer.id, _timestamps(5))
        engine.award_for_referrer(referrer.id)

        add_verified_referrals(referrer.id, _timestamps(1, BASE + timedelta(hours=1)))
        count, created = engine.award_for_referrer(referrer.id)
        engine.award_for_referrer(referrer.id)

        assert count == 6
        assert created == []
        assert [reward.tier for reward in _rewards(referrer.id)] == [5]

    def test_catch_up_awards_skipped_thresholds(self, make_user, add_verified_referrals):
        referrer = make_user("referrer@example.com")
        add_verified_referrals(referrer.id, _timestamps(11))

        _, created = RewardTierEngine(mode="catch_up").award_for_referrer(referrer.id)

        assert sorted(reward.tier for reward in created) == [5, 10]

    def test_exact_mode_skips_passed_thresholds(self, make_user, add_verified_referrals):
        referrer = make_user("referrer@example.com")
        add_verified_referrals(referrer.id, _timestamps(11))

        _, created = RewardTierEngine(mode="exact").award_for_referrer(referrer.id)

        assert created == []

    def test_next_tier(self):
        engine = RewardTierEngine()
        assert engine.next_tier(0).threshold == 5
        assert engine.next_tier(5).threshold == 10
        assert engine.next_tier(499).threshold == 500
        assert engine.next_tier(500) is None

    def test_default_tier_table(self):
        assert [tier.threshold for tier in DEFAULT_TIERS] == [5, 10, 25, 50, 75, 100, 200, 500]
        assert DEFAULT_TIERS[0].amount_cents == 1000
        assert DEFAULT_TIERS[-1].type.value == "equity"


class TestClaimProcessor:

    def test_claim_pays_reward(self, make_user, make_reward):
        user = make_user("winner@example.com")
        reward = make_reward(user.id)

        result = ClaimProcessor().claim(reward.id, user.id, "key-1")

        assert result.replayed is False
        assert result.reward.status == RewardStatus.PAID.value
        assert result.claim.idempotency_key == "key-1"

    def test_same_key_replays(self, make_user, make_reward):
        user = make_user("winner@example.com")
        reward = make_reward(user.id)
        processor = ClaimProcessor()

        first = processor.claim(reward.id, user.id, "key-1")
        second = processor.claim(reward.id, user.id, "key-1")

        assert second.replayed is True
        assert second.claim.id == first.claim.id
        assert second.reward.status == RewardStatus.PAID.value
        with db.session() as session:
            assert session.scalar(select(func.count(RewardClaim.id))) == 1

    def test_different_key_after_paid(self, make_user, make_reward):
        user = make_user("winner@example.com")
        reward = make_reward(user.id)
        processor = ClaimProcessor()
        processor.claim(reward.id, user.id, "key-1")

        with pytest.raises(InvalidState):
            processor.claim(reward.id, user.id, "key-2")

    def test_pending_reward_cannot_be_claimed(self, make_user, make_reward):
        user = make_user("winner@example.com")
        reward = make_reward(user.id, status=RewardStatus.PENDING.value)

        with pytest.raises(InvalidState):
            ClaimProcessor().claim(reward.id, user.id, "key-1")

    def test_other_users_reward(self, make_user, make_reward):
        owner = make_user("owner@example.com")
        intruder = make_user("intruder@example.com")
        reward = make_reward(owner.id)

        with pytest.raises(NotFound):
            ClaimProcessor().claim(reward.id, intruder.id, "key-1")

    def test_missing_reward(self, make_user):
        user = make_user("winner@example.com")
        with pytest.raises(NotFound):
            ClaimProcessor().claim(9999, user.id, "key-1")

    @pytest.mark.parametrize("key", [None, "", "   ", "k" * 256])
    def test_bad_idempotency_key(self, make_user, make_reward, key):
        user = make_user("winner@example.com")
        reward = make_reward(user.id)

        with pytest.raises(ValidationError):
            ClaimProcessor().claim(reward.id, user.id, key)

    def test_approve(self, make_user, make_reward):
        user = make_user("winner@example.com")
        reward = make_reward(user.id, status=RewardStatus.PENDING.value)
        processor = ClaimProcessor()

        assert processor.approve(reward.id).status == RewardStatus.APPROVED.value
        assert processor.approve(reward.id).status == RewardStatus.APPROVED.value

        processor.claim(reward.id, user.id, "key-1")
        with pytest.raises(InvalidState):
            processor.approve(reward.id)

    def test_approve_unknown_reward(self):
        with pytest.raises(NotFound):
            ClaimProcessor().approve(4242)

    def test_list_rewards(self, make_user, make_reward):
        user = make_user("winner@example.com")
        other = make_user("other@example.com")
        make_reward(user.id, tier=5)
        make_reward(user.id, tier=10)
        make_reward(other.id, tier=5)

        rewards = ClaimProcessor().list_rewards(user.id)

        assert sorted(reward.tier for reward in rewards) == [5, 10]


class TestConcurrentWriters:
    """Recovery when another request commits between our check and our insert."""

    @staticmethod
    def _approved_snapshot(reward: Reward) -> Reward:
        return Reward(
            id=reward.id,
            user_id=reward.user_id,
            type=reward.type,
            amount_cents=reward.amount_cents,
            tier=reward.tier,
            source=reward.source,
            status=RewardStatus.APPROVED.value,
            award_key=reward.award_key,
        )

    def test_same_key_claim_race_returns_winner(self, make_user, make_reward, monkeypatch, stale_once):
        user = make_user("winner@example.com")
        reward = make_reward(user.id)
        processor = ClaimProcessor()
        winner = processor.claim(reward.id, user.id, "K")

        # Second request read the reward and claim table before the winner committed
        monkeypatch.setattr(
            processor, "_owned_reward", stale_once(processor._owned_reward, self._approved_snapshot(reward))
        )
        monkeypatch.setattr(processor, "_existing_claim", stale_once(processor._existing_claim, None))

        loser = processor.claim(reward.id, user.id, "K")

        assert loser.replayed is True
        assert loser.claim.id == winner.claim.id
        assert loser.reward.status == RewardStatus.PAID.value
        with db.session() as session:
            assert session.scalar(select(func.count(RewardClaim.id))) == 1

    def test_different_key_race_loses_status_swap(self, make_user, make_reward, monkeypatch, stale_once):
        user = make_user("winner@example.com")
        reward = make_reward(user.id)
        processor = ClaimProcessor()
        processor.claim(reward.id, user.id, "K1")

        monkeypatch.setattr(
            processor, "_owned_reward", stale_once(processor._owned_reward, self._approved_snapshot(reward))
        )

        with pytest.raises(InvalidState):
            processor.claim(reward.id, user.id, "K2")

        with db.session() as session:
            keys = list(session.scalars(select(RewardClaim.idempotency_key)))
            status = session.scalar(select(Reward.status).where(Reward.id == reward.id))
        assert keys == ["K1"]
        assert status == RewardStatus.PAID.value

    def test_tier_award_race_retries(self, make_user, add_verified_referrals, monkeypatch):
        referrer = make_user("referrer@example.com")
        add_verified_referrals(referrer.id, _timestamps(5))
        engine = RewardTierEngine()
        real_keys = engine._awarded_keys
        calls = {"count": 0}

        def _racing_keys(session, referrer_user_id):
            calls["count"] += 1
            if calls["count"] == 1:
                # A concurrent completion commits the same tier first
                RewardTierEngine()._award(referrer_user_id)
                return set()
            return real_keys(session, referrer_user_id)

        monkeypatch.setattr(engine, "_awarded_keys", _racing_keys)

        count, created = engine.award_for_referrer(referrer.id)

        assert count == 5
        assert created == []
        assert [reward.tier for reward in _rewards(referrer.id)] == [5]
