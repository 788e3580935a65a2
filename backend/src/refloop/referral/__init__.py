"""Referral program core.

- Click tracking with salted fingerprints and per-fingerprint rate limits
- Fraud validation on signup completion
- Tiered rewards and idempotent reward claims
- Weekly leaderboard and monthly grand prize jobs

Import services from their modules (``refloop.referral.service`` etc.);
this package stays import-light because ``refloop.settings`` depends on
``refloop.referral.config``.
"""
