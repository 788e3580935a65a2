"""Scheduler-only endpoints, authenticated with the X-Cron-Secret header."""

from fastapi import APIRouter, Depends

from refloop.auth.middleware import require_cron_secret
from refloop.logging_config import get_logger
from refloop.referral.clicks import click_tracker
from refloop.referral.leaderboard import leaderboard_builder
from refloop.referral.monthly import monthly_prize_selector
from refloop.referral.rewards import claim_processor

logger = get_logger(__name__)

router = APIRouter(
    prefix="/referrals",
    tags=["referrals-cron"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post("/rebuild-leaderboard")
async def rebuild_leaderboard():
    """Recalculate this ISO week's leaderboard."""
    summary = leaderboard_builder.rebuild()
    return {"success": True, **summary}


@router.post("/monthly-prizes")
async def compute_monthly_prize():
    """Select and grant the previous month's grand prize."""
    summary = monthly_prize_selector.compute()
    return {"success": True, **summary}


@router.post("/cleanup")
async def cleanup_old_clicks():
    """Remove referral clicks past the retention window."""
    summary = click_tracker.cleanup_old_clicks()
    return {"success": True, **summary}


@router.post("/rewards/{reward_id}/approve")
async def approve_reward(reward_id: int):
    """Approve a pending tier reward so its owner can claim it."""
    reward = claim_processor.approve(reward_id)
    return {"success": True, "reward": reward.to_dict()}
