"""Application settings and configuration."""

import sys
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from refloop.referral.config import DEFAULT_DISPOSABLE_DOMAINS, DEFAULT_TIERS, ReferralTier

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}
_DEFAULT_REFERRAL_SALT = "default-salt"


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "refloop"
    env: str = "development"
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    allowed_origins: str = "http://localhost:3000"
    app_base_url: str = "http://localhost:3000"

    # JWT (tokens are issued by the identity provider)
    jwt_secret_key: str = "change-me-in-production"

    # Database
    database_url: str = "sqlite:///./refloop.db"

    # Secrets
    referral_salt: str = _DEFAULT_REFERRAL_SALT
    cron_secret: str | None = None

    # Rate Limiting (memory:// is per process, use redis://host:6379 when scaled out)
    rate_limit_storage_uri: str = "memory://"
    clicks_per_hour: int = Field(default=60, gt=0)
    completions_per_minute: int = Field(default=10, gt=0)

    # Peers whose X-Forwarded-For / X-Real-IP headers are honoured (IPs or CIDRs, "*" for any)
    trusted_proxies: list[str] = Field(default_factory=lambda: ["127.0.0.1", "::1"])

    # Fraud rules
    max_signups_per_ip_24h: int = Field(default=3, gt=0)
    duplicate_window_days: int = Field(default=7, ge=0)
    disposable_email_domains: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DISPOSABLE_DOMAINS)
    )

    # Retention
    click_retention_days: int = Field(default=90, gt=0)

    # Rewards
    referral_tiers: list[ReferralTier] = Field(default_factory=lambda: list(DEFAULT_TIERS))
    tier_award_mode: Literal["catch_up", "exact"] = "catch_up"
    monthly_prize_min_referrals: int = Field(default=100, gt=0)
    monthly_prize_amount_cents: int = Field(default=100000, ge=0)

    # Leaderboard
    leaderboard_limit: int = Field(default=100, gt=0)

    @field_validator("referral_tiers")
    @classmethod
    def _tiers_ascending(cls, tiers: list[ReferralTier]) -> list[ReferralTier]:
        thresholds = [tier.threshold for tier in tiers]
        if thresholds != sorted(set(thresholds)):
            raise ValueError("referral tier thresholds must be unique and ascending")
        return tiers

    @field_validator("disposable_email_domains")
    @classmethod
    def _lowercase_domains(cls, domains: list[str]) -> list[str]:
        return [domain.strip().lower() for domain in domains if domain.strip()]

    def referral_link(self, code: str) -> str:
        """Public signup link for a referral code."""
        return f"{self.app_base_url.rstrip('/')}/signup?ref={code}"


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    problems = []
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        problems.append("JWT_SECRET_KEY is insecure or too short (min 32 chars)")
    if settings.referral_salt == _DEFAULT_REFERRAL_SALT:
        problems.append("REFERRAL_SALT is still the default value")
    if not settings.cron_secret:
        problems.append("CRON_SECRET is not set")
    if problems:
        print(
            "\n❌  FATAL: " + "\n   ".join(problems) + "\n"
            "   Generate strong random values:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
