"""Static referral program configuration.

The tier table and throwaway-domain list are plain data validated by pydantic
when ``Settings`` loads; nothing here is mutated at runtime.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RewardType(str, Enum):
    """Kinds of rewards a referrer can unlock."""
    VOUCHER = "voucher"
    CASH = "cash"
    SUB = "sub"
    DEVICE = "device"
    EQUITY = "equity"


class ReferralTier(BaseModel):
    """Referral-count threshold and the reward it unlocks."""

    model_config = ConfigDict(frozen=True)

    threshold: int = Field(..., gt=0)
    type: RewardType
    amount_cents: int = Field(..., ge=0)
    description: str = Field(..., min_length=1)


DEFAULT_TIERS: tuple[ReferralTier, ...] = (
    ReferralTier(threshold=5, type=RewardType.VOUCHER, amount_cents=1000, description="$10 Amazon Gift Card"),
    ReferralTier(threshold=10, type=RewardType.VOUCHER, amount_cents=2500, description="$25 Amazon Gift Card"),
    ReferralTier(threshold=25, type=RewardType.SUB, amount_cents=6000, description="ChatGPT Pro (3 months)"),
    ReferralTier(threshold=50, type=RewardType.VOUCHER, amount_cents=10000, description="$100 Best Buy Gift Card"),
    ReferralTier(
        threshold=75,
        type=RewardType.SUB,
        amount_cents=19900,
        description="Best Buy Totaltech Membership (1 year)",
    ),
    ReferralTier(threshold=100, type=RewardType.DEVICE, amount_cents=24900, description="AirPods Pro 2"),
    ReferralTier(threshold=200, type=RewardType.DEVICE, amount_cents=120000, description="iPhone 16 Pro"),
    ReferralTier(
        threshold=500,
        type=RewardType.EQUITY,
        amount_cents=0,
        description="Marketing Lead + 5% Company Equity",
    ),
)

DEFAULT_DISPOSABLE_DOMAINS: tuple[str, ...] = (
    "10minutemail.com",
    "tempmail.org",
    "guerrillamail.com",
    "mailinator.com",
    "yopmail.com",
    "temp-mail.org",
)
