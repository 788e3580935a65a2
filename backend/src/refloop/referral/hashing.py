"""Fingerprinting, code generation and small formatting helpers."""

import hashlib
import ipaddress
import secrets
from datetime import datetime, timedelta

from fastapi import Request

from refloop.logging_config import get_logger
from refloop.settings import settings

logger = get_logger(__name__)

# Crockford-style base32: no I, L, O, U
CODE_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
CODE_LENGTH = 8


def generate_referral_code(length: int = CODE_LENGTH) -> str:
    """Generate a random referral code, e.g. ``7KQ2M9XD``."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def hash_with_salt(value: str, salt: str) -> str:
    """Hex SHA-256 of ``value + salt``."""
    return hashlib.sha256((value + salt).encode("utf-8")).hexdigest()


def hash_ip(ip: str) -> str:
    return hash_with_salt(ip, settings.referral_salt)


def hash_user_agent(user_agent: str) -> str:
    return hash_with_salt(user_agent, settings.referral_salt)


def iso_week_id(moment: datetime | None = None) -> str:
    """ISO year-week identifier such as ``2026-W42``."""
    moment = moment or datetime.utcnow()
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def iso_week_bounds(moment: datetime | None = None) -> tuple[datetime, datetime]:
    """Start (Monday 00:00) and exclusive end of the ISO week containing ``moment``."""
    moment = moment or datetime.utcnow()
    start = datetime(moment.year, moment.month, moment.day) - timedelta(days=moment.weekday())
    return start, start + timedelta(days=7)


def previous_month_bounds(moment: datetime | None = None) -> tuple[str, datetime, datetime]:
    """Month key, start and exclusive end of the calendar month before ``moment``."""
    moment = moment or datetime.utcnow()
    end = datetime(moment.year, moment.month, 1)
    if moment.month == 1:
        start = datetime(moment.year - 1, 12, 1)
    else:
        start = datetime(moment.year, moment.month - 1, 1)
    return start.strftime("%Y-%m"), start, end


def email_domain(email: str | None) -> str | None:
    if not email or email.count("@") != 1:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


def is_disposable_email(email: str, domains: list[str] | None = None) -> bool:
    """Check the email's domain against the throwaway-provider list."""
    domain = email_domain(email)
    if domain is None:
        return False
    blocked = domains if domains is not None else settings.disposable_email_domains
    return domain in blocked


def mask_email(email: str | None) -> str:
    """Mask an email for public display: ``ali***@example.com``."""
    domain = email_domain(email)
    if domain is None:
        return "Anonymous"
    local = email.rsplit("@", 1)[0].strip()
    return f"{local[:3]}***@{domain}"


def is_trusted_proxy(host: str, trusted_proxies: list[str] | None = None) -> bool:
    trusted = settings.trusted_proxies if trusted_proxies is None else trusted_proxies
    if "*" in trusted:
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    for entry in trusted:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("trusted_proxy_invalid", entry=entry)
    return False


def get_client_ip(request: Request, trusted_proxies: list[str] | None = None) -> str:
    """Caller IP used for fingerprinting and rate limits.

    Forwarding headers are read only when the direct peer is a trusted proxy.
    """
    peer = request.client.host if request.client and request.client.host else None
    if peer is None:
        return "127.0.0.1"
    if not is_trusted_proxy(peer, trusted_proxies):
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")
