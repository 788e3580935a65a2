"""Tests for the fraud rules run at referral completion."""

from datetime import datetime, timedelta

from refloop.referral.hashing import hash_ip, hash_user_agent
from refloop.referral.models import Referral, ReferralClick, ReferralStatus
from refloop.referral.validator import (
    DISPOSABLE_EMAIL,
    DUPLICATE_DEVICE,
    IP_LIMIT_EXCEEDED,
    SELF_REFERRAL,
    ReferralValidator,
)
from refloop.storage.db import db

NOW = datetime(2026, 10, 19, 12, 0)
IP_HASH = hash_ip("192.0.2.10")
UA_HASH = hash_user_agent("Mozilla/5.0 (X11)")


def _validate(validator=None, referrer=1, referee=2, email="new@example.com", ip_hash=IP_HASH, ua_hash=UA_HASH):
    validator = validator or ReferralValidator()
    with db.session() as session:
        return validator.validate(
            session,
            referrer_user_id=referrer,
            referee_user_id=referee,
            referee_email=email,
            ip_hash=ip_hash,
            ua_hash=ua_hash,
            now=NOW,
        )


def _add_click(ip_hash: str, ua_hash: str, at: datetime) -> None:
    with db.session() as session:
        session.add(ReferralClick(code="ANY", ip_hash=ip_hash, ua_hash=ua_hash, created_at=at))


def _add_signups(ip_hash: str, n: int, at: datetime) -> None:
    with db.session() as session:
        for i in range(n):
            session.add(
                Referral(
                    code="ANY",
                    referrer_user_id=1,
                    referee_user_id=500 + i,
                    status=ReferralStatus.VERIFIED.value,
                    ip_hash=ip_hash,
                    ua_hash=f"ua-{i}",
                    created_at=at,
                    verified_at=at,
                )
            )


class TestReferralValidator:

    def test_clean_signup_is_valid(self):
        result = _validate()
        assert result.valid is True
        assert result.reason is None

    def test_self_referral(self):
        result = _validate(referrer=7, referee=7)
        assert result.valid is False
        assert result.reason == SELF_REFERRAL

    def test_self_referral_checked_before_email(self):
        result = _validate(referrer=7, referee=7, email="x@mailinator.com")
        assert result.reason == SELF_REFERRAL

    def test_disposable_email(self):
        result = _validate(email="someone@guerrillamail.com")
        assert result.reason == DISPOSABLE_EMAIL

    def test_duplicate_device_by_ip(self):
        _add_click(IP_HASH, "other-ua", NOW - timedelta(days=2))
        assert _validate().reason == DUPLICATE_DEVICE

    def test_duplicate_device_by_user_agent_only(self):
        _add_click("other-ip", UA_HASH, NOW - timedelta(days=6))
        assert _validate().reason == DUPLICATE_DEVICE

    def test_click_outside_window_ignored(self):
        _add_click(IP_HASH, UA_HASH, NOW - timedelta(days=8))
        assert _validate().valid is True

    def test_ip_signup_cap(self):
        _add_signups(IP_HASH, 3, NOW - timedelta(hours=3))
        assert _validate().reason == IP_LIMIT_EXCEEDED

    def test_ip_signups_below_cap(self):
        _add_signups(IP_HASH, 2, NOW - timedelta(hours=3))
        assert _validate().valid is True

    def test_ip_signups_older_than_a_day_ignored(self):
        _add_signups(IP_HASH, 3, NOW - timedelta(hours=25))
        assert _validate().valid is True

    def test_custom_limits(self):
        _add_signups(IP_HASH, 1, NOW - timedelta(hours=1))
        validator = ReferralValidator(max_signups_per_ip_24h=1)
        assert _validate(validator=validator).reason == IP_LIMIT_EXCEEDED
