"""Weekly leaderboard rebuild and leaderboard reads."""

from datetime import datetime
from typing import Any, Literal

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from refloop.auth.models import UserAccount
from refloop.logging_config import get_logger
from refloop.referral.errors import Internal, ValidationError
from refloop.referral.hashing import iso_week_bounds, iso_week_id, mask_email
from refloop.referral.models import LeaderboardWeekEntry, Referral, ReferralStatus
from refloop.settings import settings
from refloop.storage.db import db

logger = get_logger(__name__)

Period = Literal["week", "all"]
PERIODS = ("week", "all")


def rank_referrers(
    session: Session,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[tuple[int, int, datetime]]:
    """Verified referral counts per referrer, best first.

    Ordering: count descending, then earliest verification, then user id,
    so repeated runs over the same data rank identically.

    Returns:
        (referrer_user_id, count, first_verified_at) tuples
    """
    first_verified = func.min(Referral.verified_at)
    count = func.count(Referral.id)
    stmt = select(Referral.referrer_user_id, count, first_verified).where(
        Referral.status == ReferralStatus.VERIFIED.value
    )
    if start is not None:
        stmt = stmt.where(Referral.verified_at >= start)
    if end is not None:
        stmt = stmt.where(Referral.verified_at < end)
    stmt = stmt.group_by(Referral.referrer_user_id).order_by(
        count.desc(), first_verified.asc(), Referral.referrer_user_id.asc()
    )
    return [(row[0], row[1], row[2]) for row in session.execute(stmt)]


class LeaderboardBuilder:
    """Builds and serves referral leaderboards."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def rebuild(self, now: datetime | None = None) -> dict[str, Any]:
        """Replace the current ISO week's leaderboard.

        The delete and the insert share one transaction, so readers never see
        an empty week mid-rebuild.

        Returns:
            Summary with week id, number of ranked users and the top entry
        """
        now = now or datetime.utcnow()
        week_id = iso_week_id(now)
        week_start, week_end = iso_week_bounds(now)

        try:
            with db.session() as session:
                ranked = rank_referrers(session, week_start, week_end)
                entries = [
                    LeaderboardWeekEntry(
                        week_id=week_id,
                        user_id=user_id,
                        points=points,
                        rank=position,
                        updated_at=now,
                    )
                    for position, (user_id, points, _) in enumerate(ranked, start=1)
                ]

                session.execute(
                    delete(LeaderboardWeekEntry).where(LeaderboardWeekEntry.week_id == week_id)
                )
                session.add_all(entries)
                session.flush()
        except SQLAlchemyError as e:
            self.logger.error("leaderboard_rebuild_failed", week_id=week_id, error=str(e))
            raise Internal("Leaderboard rebuild failed") from e

        top = entries[0] if entries else None
        self.logger.info("leaderboard_rebuilt", week_id=week_id, users_ranked=len(entries))
        return {
            "week_id": week_id,
            "users_ranked": len(entries),
            "top_user": (
                {"user_id": top.user_id, "points": top.points, "rank": top.rank} if top else None
            ),
        }

    def get_leaderboard(
        self,
        period: str = "week",
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Leaderboard rows for display with masked emails.

        Store failures degrade to an empty list.

        Raises:
            ValidationError: Unknown period
        """
        if period not in PERIODS:
            raise ValidationError('Invalid period. Use "week" or "all"')
        limit = limit or settings.leaderboard_limit

        try:
            with db.session() as session:
                if period == "week":
                    rows = self._week_rows(session, iso_week_id(now), limit)
                else:
                    rows = self._all_time_rows(session, limit)
        except SQLAlchemyError as e:
            self.logger.warning("leaderboard_read_failed", period=period, error=str(e))
            return []

        return [
            {"rank": rank, "points": points, "masked_email": mask_email(email)}
            for rank, points, email in rows
        ]

    @staticmethod
    def _week_rows(session: Session, week_id: str, limit: int) -> list[tuple[int, int, str | None]]:
        stmt = (
            select(LeaderboardWeekEntry.rank, LeaderboardWeekEntry.points, UserAccount.email)
            .outerjoin(UserAccount, UserAccount.id == LeaderboardWeekEntry.user_id)
            .where(LeaderboardWeekEntry.week_id == week_id)
            .order_by(LeaderboardWeekEntry.rank)
            .limit(limit)
        )
        return [(row[0], row[1], row[2]) for row in session.execute(stmt)]

    @staticmethod
    def _all_time_rows(session: Session, limit: int) -> list[tuple[int, int, str | None]]:
        ranked = rank_referrers(session)[:limit]
        user_ids = [user_id for user_id, _, _ in ranked]
        emails = dict(
            session.execute(
                select(UserAccount.id, UserAccount.email).where(UserAccount.id.in_(user_ids))
            ).all()
        ) if user_ids else {}
        return [
            (position, points, emails.get(user_id))
            for position, (user_id, points, _) in enumerate(ranked, start=1)
        ]


# Singleton instance
leaderboard_builder = LeaderboardBuilder()
