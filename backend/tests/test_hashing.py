"""Tests for fingerprint hashing and the small referral helpers."""

import hashlib
from datetime import datetime
from types import SimpleNamespace

from refloop.referral.hashing import (
    CODE_ALPHABET,
    generate_referral_code,
    get_client_ip,
    hash_ip,
    hash_user_agent,
    hash_with_salt,
    is_disposable_email,
    is_trusted_proxy,
    iso_week_bounds,
    iso_week_id,
    mask_email,
    normalize_code,
    previous_month_bounds,
)


class TestHashing:
    """Salted one-way fingerprints."""

    def test_hash_is_sha256_of_value_plus_salt(self):
        expected = hashlib.sha256(b"1.2.3.4pepper").hexdigest()
        assert hash_with_salt("1.2.3.4", "pepper") == expected

    def test_hash_is_deterministic(self):
        assert hash_ip("10.0.0.1") == hash_ip("10.0.0.1")

    def test_salt_changes_hash(self):
        assert hash_with_salt("10.0.0.1", "a") != hash_with_salt("10.0.0.1", "b")

    def test_uses_configured_salt(self):
        assert hash_user_agent("Mozilla/5.0") == hash_with_salt("Mozilla/5.0", "test-salt")

    def test_raw_value_not_in_hash(self):
        assert "10.0.0.1" not in hash_ip("10.0.0.1")


class TestCodes:

    def test_code_length_and_alphabet(self):
        code = generate_referral_code()
        assert len(code) == 8
        assert set(code) <= set(CODE_ALPHABET)

    def test_alphabet_has_no_ambiguous_letters(self):
        for letter in "ILOU":
            assert letter not in CODE_ALPHABET

    def test_normalize_code(self):
        assert normalize_code("  ab12cd34 ") == "AB12CD34"
        assert normalize_code(None) == ""


class TestCalendar:
    """ISO weeks and month windows."""

    def test_iso_week_id(self):
        assert iso_week_id(datetime(2026, 10, 19, 12, 0)) == "2026-W43"

    def test_iso_week_id_year_boundary(self):
        # Jan 1st 2027 is a Friday, still ISO week 53 of 2026
        assert iso_week_id(datetime(2027, 1, 1)) == "2026-W53"

    def test_iso_week_bounds_start_monday(self):
        start, end = iso_week_bounds(datetime(2026, 10, 22, 15, 30))
        assert start == datetime(2026, 10, 19)
        assert end == datetime(2026, 10, 26)

    def test_previous_month_bounds(self):
        key, start, end = previous_month_bounds(datetime(2026, 10, 1, 1, 0))
        assert key == "2026-09"
        assert start == datetime(2026, 9, 1)
        assert end == datetime(2026, 10, 1)

    def test_previous_month_bounds_january(self):
        key, start, end = previous_month_bounds(datetime(2027, 1, 15))
        assert key == "2026-12"
        assert start == datetime(2026, 12, 1)
        assert end == datetime(2027, 1, 1)


class TestEmails:

    def test_disposable_domain(self):
        assert is_disposable_email("bot@mailinator.com") is True

    def test_disposable_domain_case_insensitive(self):
        assert is_disposable_email("bot@YopMail.COM") is True

    def test_regular_domain(self):
        assert is_disposable_email("alice@example.com") is False

    def test_malformed_email_not_disposable(self):
        assert is_disposable_email("not-an-email") is False

    def test_mask_email(self):
        assert mask_email("alice@example.com") == "ali***@example.com"

    def test_mask_missing_email(self):
        assert mask_email(None) == "Anonymous"

    def test_mask_short_local_part(self):
        assert mask_email("bo@example.com") == "bo***@example.com"
        assert mask_email("abc@example.com") == "abc***@example.com"


def _request(peer, headers=None):
    return SimpleNamespace(
        client=SimpleNamespace(host=peer) if peer else None,
        headers={key.lower(): value for key, value in (headers or {}).items()},
    )


class TestClientIp:
    """Forwarding headers count only when the direct peer is a trusted proxy."""

    def test_untrusted_peer_ignores_forwarded_for(self):
        request = _request("203.0.113.50", {"X-Forwarded-For": "1.2.3.4"})
        assert get_client_ip(request) == "203.0.113.50"

    def test_trusted_proxy_uses_first_forwarded_hop(self):
        request = _request("127.0.0.1", {"X-Forwarded-For": "198.51.100.7, 10.0.0.2"})
        assert get_client_ip(request) == "198.51.100.7"

    def test_trusted_proxy_falls_back_to_real_ip(self):
        request = _request("127.0.0.1", {"X-Real-IP": "198.51.100.8"})
        assert get_client_ip(request) == "198.51.100.8"

    def test_trusted_cidr(self):
        request = _request("10.4.0.9", {"X-Forwarded-For": "198.51.100.9"})
        assert get_client_ip(request, trusted_proxies=["10.0.0.0/8"]) == "198.51.100.9"

    def test_wildcard_trusts_every_peer(self):
        request = _request("203.0.113.50", {"X-Forwarded-For": "198.51.100.10"})
        assert get_client_ip(request, trusted_proxies=["*"]) == "198.51.100.10"

    def test_non_ip_peer_is_untrusted(self):
        request = _request("testclient", {"X-Forwarded-For": "1.2.3.4"})
        assert get_client_ip(request) == "testclient"

    def test_no_peer(self):
        assert get_client_ip(_request(None)) == "127.0.0.1"

    def test_invalid_entry_is_skipped(self):
        assert is_trusted_proxy("127.0.0.1", ["not-a-network", "127.0.0.1"]) is True
