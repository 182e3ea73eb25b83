"""Pydantic models for the progress ledger."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from learnxp.progress.level_thresholds import level_for_xp, level_progress
from learnxp.time_utils import utcnow


class XpSource(str, Enum):
    """Where an XP grant came from."""

    QUIZ_COMPLETED = "quiz_completed"
    QUIZ_PERFECT = "quiz_perfect"
    CHAPTER_COMPLETED = "chapter_completed"
    BOOK_COMPLETED = "book_completed"
    DAILY_LOGIN = "daily_login"
    STREAK_BONUS = "streak_bonus"
    BADGE_EARNED = "badge_earned"
    DAILY_GOAL = "daily_goal"
    AI_CHALLENGE = "ai_challenge"

    @property
    def base_xp(self) -> int:
        return XP_SOURCE_BASE[self]


XP_SOURCE_BASE: dict[XpSource, int] = {
    XpSource.QUIZ_COMPLETED: 30,
    XpSource.QUIZ_PERFECT: 100,
    XpSource.CHAPTER_COMPLETED: 50,
    XpSource.BOOK_COMPLETED: 200,
    XpSource.DAILY_LOGIN: 10,
    XpSource.STREAK_BONUS: 25,
    XpSource.BADGE_EARNED: 50,
    XpSource.DAILY_GOAL: 40,
    XpSource.AI_CHALLENGE: 50,
}

# Rewards for rewards: no streak multiplier on these
NO_STREAK_BONUS_SOURCES = frozenset({
    XpSource.STREAK_BONUS,
    XpSource.BADGE_EARNED,
    XpSource.DAILY_GOAL,
})


# --- Stats ---


class ActivityStats(BaseModel):
    """Lifetime activity counters used by badge predicates."""

    model_config = ConfigDict(frozen=True)

    quizzes_completed: int = 0
    perfect_quizzes: int = 0
    chapters_completed: int = 0
    books_completed: int = 0
    ai_challenges: int = 0
    daily_goals_met: int = 0

    def after(self, source: XpSource) -> ActivityStats:
        """Counters after one more event from ``source``."""
        if source == XpSource.QUIZ_COMPLETED:
            return self.model_copy(update={"quizzes_completed": self.quizzes_completed + 1})
        if source == XpSource.QUIZ_PERFECT:
            # A perfect quiz is still a completed quiz
            return self.model_copy(update={
                "quizzes_completed": self.quizzes_completed + 1,
                "perfect_quizzes": self.perfect_quizzes + 1,
            })
        if source == XpSource.CHAPTER_COMPLETED:
            return self.model_copy(update={"chapters_completed": self.chapters_completed + 1})
        if source == XpSource.BOOK_COMPLETED:
            return self.model_copy(update={"books_completed": self.books_completed + 1})
        if source == XpSource.AI_CHALLENGE:
            return self.model_copy(update={"ai_challenges": self.ai_challenges + 1})
        if source == XpSource.DAILY_GOAL:
            return self.model_copy(update={"daily_goals_met": self.daily_goals_met + 1})
        return self

    def merged(self, other: ActivityStats) -> ActivityStats:
        """Field-wise max, for reconciling with a remote copy."""
        return ActivityStats(**{
            name: max(getattr(self, name), getattr(other, name))
            for name in ActivityStats.model_fields
        })


# --- Events ---


class XpEvent(BaseModel):
    """One XP-earning occurrence. Immutable; never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    amount: int
    source: XpSource
    description: str = ""
    occurred_at: datetime = Field(default_factory=utcnow)


class XpOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    xp_earned: int
    new_total_xp: int
    previous_level: int
    new_level: int
    leveled_up: bool
    streak_bonus: int = 0


# --- Ledger ---


class ProgressLedger(BaseModel):
    """A user's durable XP / level / streak / badge record.

    Snapshots are frozen: every transition produces a new instance via
    ``model_copy``. ``level`` is derived from ``total_xp`` and never stored
    independently.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str | None = None
    total_xp: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    max_streak: int = Field(default=0, ge=0)
    last_activity_at: datetime | None = None
    badges: tuple[str, ...] = ()
    stats: ActivityStats = Field(default_factory=ActivityStats)
    synced_xp: int = Field(default=0, ge=0)
    pending_xp: int = Field(default=0, ge=0)
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # Unique badge ids, first occurrence wins
        badges = data.get("badges")
        if badges is not None:
            data["badges"] = tuple(dict.fromkeys(badges))
        current = data.get("current_streak") or 0
        if (data.get("max_streak") or 0) < current:
            data["max_streak"] = current
        # Remote payloads may carry a stored level; it is always recomputed
        data.pop("level", None)
        return data

    @computed_field  # type: ignore[prop-decorator]
    @property
    def level(self) -> int:
        return level_for_xp(self.total_xp)

    @property
    def level_progress(self) -> float:
        return level_progress(self.total_xp)

    @property
    def unsynced(self) -> bool:
        return self.pending_xp > 0

    @classmethod
    def new(cls, user_id: str, display_name: str | None = None) -> ProgressLedger:
        """Fresh ledger with all counters zeroed."""
        return cls(user_id=user_id, display_name=display_name, updated_at=utcnow())


class StreakStatus(BaseModel):
    """Derived from ``last_activity_at`` and now; recomputed on every read."""

    model_config = ConfigDict(frozen=True)

    current_streak: int
    max_streak: int
    streak_broken: bool = False
    hours_until_lost: float = 0.0
    is_active_today: bool = False
