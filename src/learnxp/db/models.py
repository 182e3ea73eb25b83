"""ORM models for locally persisted progress.

Tables are portable between PostgreSQL (asyncpg, JSONB) and SQLite
(aiosqlite, plain JSON) so the same models back production and tests.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from learnxp.db.base import Base
from learnxp.time_utils import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Ledgers
# ---------------------------------------------------------------------------


class LedgerRecord(Base):
    """One row per user: the persisted ProgressLedger snapshot."""

    __tablename__ = "progress_ledgers"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stats: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    synced_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    pending_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    badges: Mapped[list[LedgerBadge]] = relationship(
        "LedgerBadge",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="LedgerBadge.position",
    )


class LedgerBadge(Base):
    """Badges held by a ledger. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "ledger_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="ledger_badges_user_id_badge_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("progress_ledgers.user_id", ondelete="CASCADE"), nullable=False
    )
    badge_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Daily goals
# ---------------------------------------------------------------------------


class DailyGoalRecord(Base):
    """One goal per user per local calendar day."""

    __tablename__ = "daily_goals"
    __table_args__ = (
        UniqueConstraint("user_id", "goal_date", name="daily_goals_user_id_goal_date_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    goal_date: Mapped[date] = mapped_column(Date, nullable=False)
    quizzes_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quizzes_goal: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_goal: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
