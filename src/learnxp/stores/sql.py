"""SQLAlchemy-backed ProgressStore."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learnxp.db.models import DailyGoalRecord, LedgerBadge, LedgerRecord
from learnxp.gamification.schemas import DailyGoal
from learnxp.progress.schemas import ActivityStats, ProgressLedger
from learnxp.time_utils import ensure_aware, utcnow

logger = logging.getLogger(__name__)


def ledger_from_record(row: LedgerRecord) -> ProgressLedger:
    return ProgressLedger(
        user_id=row.user_id,
        display_name=row.display_name,
        total_xp=row.total_xp,
        current_streak=row.current_streak,
        max_streak=row.max_streak,
        last_activity_at=ensure_aware(row.last_activity_at) if row.last_activity_at else None,
        badges=tuple(badge.badge_id for badge in row.badges),
        stats=ActivityStats(**(row.stats or {})),
        synced_xp=row.synced_xp,
        pending_xp=row.pending_xp,
        updated_at=ensure_aware(row.updated_at) if row.updated_at else None,
    )


def goal_from_record(row: DailyGoalRecord) -> DailyGoal:
    return DailyGoal(
        user_id=row.user_id,
        date=row.goal_date,
        quizzes_completed=row.quizzes_completed,
        quizzes_goal=row.quizzes_goal,
        xp_earned=row.xp_earned,
        xp_goal=row.xp_goal,
        archived=row.archived,
    )


class SqlProgressStore:
    """Persists ledgers and daily goals through an async session factory.

    Each call runs in its own session and commits before returning.
    SQLAlchemy errors propagate; the engine reports them as STORAGE.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def load_ledger(self, user_id: str) -> ProgressLedger | None:
        async with self.session_factory() as session:
            row = await session.get(LedgerRecord, user_id)
            return ledger_from_record(row) if row is not None else None

    async def save_ledger(self, ledger: ProgressLedger) -> None:
        async with self.session_factory() as session:
            row = await session.get(LedgerRecord, ledger.user_id)
            if row is None:
                row = LedgerRecord(user_id=ledger.user_id, badges=[])
                session.add(row)

            row.display_name = ledger.display_name
            row.total_xp = ledger.total_xp
            row.current_streak = ledger.current_streak
            row.max_streak = ledger.max_streak
            row.last_activity_at = ledger.last_activity_at
            row.stats = ledger.stats.model_dump()
            row.synced_xp = ledger.synced_xp
            row.pending_xp = ledger.pending_xp
            row.updated_at = ledger.updated_at or utcnow()

            # Keep earned_at for badges already stored; a reset drops them
            existing = {badge.badge_id: badge for badge in row.badges}
            badges: list[LedgerBadge] = []
            for position, badge_id in enumerate(ledger.badges):
                badge = existing.get(badge_id) or LedgerBadge(badge_id=badge_id, earned_at=utcnow())
                badge.position = position
                badges.append(badge)
            row.badges = badges

            await session.commit()

    async def load_daily_goal(self, user_id: str, day: date) -> DailyGoal | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DailyGoalRecord).where(
                    DailyGoalRecord.user_id == user_id,
                    DailyGoalRecord.goal_date == day,
                )
            )
            row = result.scalar_one_or_none()
            return goal_from_record(row) if row is not None else None

    async def save_daily_goal(self, goal: DailyGoal) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DailyGoalRecord).where(
                    DailyGoalRecord.user_id == goal.user_id,
                    DailyGoalRecord.goal_date == goal.date,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = DailyGoalRecord(user_id=goal.user_id, goal_date=goal.date)
                session.add(row)

            row.quizzes_completed = goal.quizzes_completed
            row.quizzes_goal = goal.quizzes_goal
            row.xp_earned = goal.xp_earned
            row.xp_goal = goal.xp_goal
            row.is_completed = goal.is_completed
            row.archived = goal.archived

            await session.commit()

    async def load_open_daily_goal_before(self, user_id: str, day: date) -> DailyGoal | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DailyGoalRecord)
                .where(
                    DailyGoalRecord.user_id == user_id,
                    DailyGoalRecord.goal_date < day,
                    DailyGoalRecord.archived.is_(False),
                )
                .order_by(DailyGoalRecord.goal_date.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return goal_from_record(row) if row is not None else None

    async def list_unsynced_user_ids(self) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(LedgerRecord.user_id)
                .where(LedgerRecord.pending_xp > 0)
                .order_by(LedgerRecord.user_id.asc())
            )
            return list(result.scalars())
