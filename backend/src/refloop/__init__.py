"""refloop - referral tracking, fraud checks, rewards and leaderboards."""

__version__ = "1.0.0"
