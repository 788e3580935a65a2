"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from refloop.api.rate_limit import limiter
from refloop.auth.middleware import require_auth, require_verified_user
from refloop.auth.models import UserAccount
from refloop.logging_config import get_logger
from refloop.referral.clicks import click_tracker
from refloop.referral.hashing import get_client_ip, get_user_agent
from refloop.referral.leaderboard import leaderboard_builder
from refloop.referral.rewards import claim_processor
from refloop.referral.service import referral_service

logger = get_logger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


# ==================== MODELS ====================


class TrackClickRequest(BaseModel):
    """Request to track a referral link click."""
    code: str = Field(..., min_length=1, max_length=64)


class CompleteReferralRequest(BaseModel):
    """Referral code the caller signed up with."""
    code: str = Field(..., min_length=1, max_length=64)


class RewardResponse(BaseModel):
    """Reward as shown to its owner."""
    id: int
    type: str
    amount_cents: int
    tier: int
    source: str
    status: str
    description: str | None = None
    created_at: str | None = None


class CompleteReferralResponse(BaseModel):
    """Outcome of a referral completion. ``rejected`` is not an error."""
    status: str
    reason: str | None = None
    total_referrals: int | None = None
    rewards_created: list[RewardResponse] = []


class NextTierReward(BaseModel):
    type: str
    amount_cents: int
    description: str


class NextTier(BaseModel):
    refs: int
    reward: NextTierReward


class ReferralSummaryResponse(BaseModel):
    """Referral dashboard numbers."""
    clicks: int
    verified_count: int
    earned_cents: int
    this_week_points: int
    next_tier: NextTier | None = None
    referral_code: str | None = None
    referral_link: str | None = None


class LeaderboardEntry(BaseModel):
    rank: int
    points: int
    masked_email: str


class LeaderboardResponse(BaseModel):
    period: str
    leaderboard: list[LeaderboardEntry]


class ClaimRewardRequest(BaseModel):
    """Request to claim an approved reward."""
    reward_id: int


class ClaimRewardResponse(BaseModel):
    """Claim record; ``replayed`` is true when the idempotency key was seen before."""
    claim_id: int
    replayed: bool
    reward: RewardResponse


class PublicInfoResponse(BaseModel):
    has_account: bool
    referral_code: str
    referral_link: str
    user_name: str


# ==================== ENDPOINTS ====================


@router.post("/click")
async def track_referral_click(request: Request, body: TrackClickRequest):
    """Track a click on a referral link.

    Called when someone visits a /signup?ref=CODE link. Limited per
    fingerprint; unknown codes are still logged.
    """
    click_tracker.record_click(
        code=body.code,
        ip=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return {"success": True}


@router.post("/complete", response_model=CompleteReferralResponse)
async def complete_referral(
    request: Request,
    body: CompleteReferralRequest,
    user: UserAccount = Depends(require_verified_user),
):
    """Attribute the (freshly verified) caller to a referral code."""
    outcome = referral_service.complete_referral(
        referee_user_id=user.id,
        referee_email=user.email,
        code=body.code,
        ip=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return CompleteReferralResponse(
        status=outcome.status,
        reason=outcome.reason,
        total_referrals=outcome.total_referrals,
        rewards_created=[RewardResponse(**reward.to_dict()) for reward in outcome.rewards_created],
    )


@router.get("/summary", response_model=ReferralSummaryResponse)
async def get_referral_summary(user: UserAccount = Depends(require_auth)):
    """Get referral statistics for current user.

    Includes:
    - Clicks on the referral link
    - Verified referrals and the next tier
    - Approved and paid reward value
    - This week's leaderboard points
    """
    return ReferralSummaryResponse(**referral_service.get_summary(user.id))


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: str = Query(default="week"),
    user: UserAccount = Depends(require_auth),
):
    """Weekly or all-time leaderboard with masked emails."""
    rows = leaderboard_builder.get_leaderboard(period)
    return LeaderboardResponse(
        period=period,
        leaderboard=[LeaderboardEntry(**row) for row in rows],
    )


@router.get("/rewards", response_model=list[RewardResponse])
async def list_rewards(user: UserAccount = Depends(require_auth)):
    """Rewards earned by the current user."""
    return [RewardResponse(**reward.to_dict()) for reward in claim_processor.list_rewards(user.id)]


@router.post("/claim", response_model=ClaimRewardResponse)
async def claim_reward(
    body: ClaimRewardRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user: UserAccount = Depends(require_auth),
):
    """Claim an approved reward.

    Retries with the same Idempotency-Key return the original claim.
    """
    result = claim_processor.claim(
        reward_id=body.reward_id,
        user_id=user.id,
        idempotency_key=idempotency_key,
    )
    return ClaimRewardResponse(
        claim_id=result.claim.id,
        replayed=result.replayed,
        reward=RewardResponse(**result.reward.to_dict()),
    )


@router.get("/public-info", response_model=PublicInfoResponse)
@limiter.limit("30/minute")
async def get_public_info(request: Request, email: str = Query(default="")):
    """Referral link for an existing account, looked up by email."""
    return PublicInfoResponse(**referral_service.get_public_info(email))
