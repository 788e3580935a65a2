"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
import tempfile
from datetime import datetime
from itertools import count
from pathlib import Path

# Minimal environment for tests, set before any refloop import
_TMP_DIR = tempfile.mkdtemp(prefix="refloop-tests-")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(_TMP_DIR) / 'test.db'}")
os.environ.setdefault("JWT_SECRET_KEY", "test_jwt_secret_key_for_testing_only_0000")
os.environ.setdefault("REFERRAL_SALT", "test-salt")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("APP_BASE_URL", "https://refloop.test")

# Add src to PYTHONPATH
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from refloop.auth.local import LocalAuthService
from refloop.auth.models import UserAccount
from refloop.referral.models import Referral, ReferralCode, ReferralStatus
from refloop.referral.rate_limit import referral_limiters
from refloop.storage.db import db

_referee_ids = count(100_000)


@pytest.fixture(autouse=True)
def clean_database():
    """Fresh schema and empty rate-limit counters for every test."""
    db.reset_schema()
    referral_limiters.reset()
    yield
    referral_limiters.reset()


@pytest.fixture
def make_user():
    """Factory creating user accounts."""

    def _make(email: str, name: str | None = None, verified: bool = True) -> UserAccount:
        with db.session() as session:
            user = UserAccount(email=email.lower(), name=name, email_verified=verified)
            session.add(user)
            session.flush()
            return user

    return _make


@pytest.fixture
def make_code():
    """Factory attaching a fixed referral code to a user."""

    def _make(user_id: int, code: str) -> ReferralCode:
        with db.session() as session:
            referral_code = ReferralCode(user_id=user_id, code=code)
            session.add(referral_code)
            session.flush()
            return referral_code

    return _make


@pytest.fixture
def add_verified_referrals():
    """Insert verified referrals for a referrer at the given timestamps."""

    def _add(referrer_id: int, timestamps: list[datetime], code: str = "TESTCODE") -> None:
        with db.session() as session:
            for ts in timestamps:
                session.add(
                    Referral(
                        code=code,
                        referrer_user_id=referrer_id,
                        referee_user_id=next(_referee_ids),
                        status=ReferralStatus.VERIFIED.value,
                        created_at=ts,
                        verified_at=ts,
                    )
                )

    return _add


@pytest.fixture
def auth_headers():
    """Bearer headers for a user."""
    service = LocalAuthService()

    def _headers(user: UserAccount) -> dict[str, str]:
        return {"Authorization": f"Bearer {service.create_access_token(user)}"}

    return _headers


@pytest.fixture
def client():
    """FastAPI test client."""
    from fastapi.testclient import TestClient

    from refloop.api.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def cron_headers():
    return {"X-Cron-Secret": os.environ["CRON_SECRET"]}


@pytest.fixture
def stale_once():
    """Wrap a lookup so its first call returns an out-of-date answer.

    Simulates a concurrent writer landing between a check and the insert
    that follows it.
    """

    def _wrap(real, stale_value):
        calls = {"count": 0}

        def _lookup(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                return stale_value
            return real(*args, **kwargs)

        return _lookup

    return _wrap
