"""Pydantic models for badges and daily goals."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


# --- Badge ---


class BadgeCategory(str, Enum):
    STREAK = "streak"
    LEARNING = "learning"
    QUIZ = "quiz"
    ACHIEVEMENT = "achievement"
    SOCIAL = "social"


class BadgeRarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class Badge(BaseModel):
    """Catalog entry. Immutable, loaded from configuration."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    category: BadgeCategory = BadgeCategory.ACHIEVEMENT
    rarity: BadgeRarity = BadgeRarity.COMMON
    xp_reward: int = Field(default=0, ge=0)
    predicate_id: str
    trigger_type: str | None = None
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    sort_order: int = 0


class BadgeInfo(BaseModel):
    """Presentation projection of a badge for one user. Never persisted."""

    model_config = ConfigDict(frozen=True)

    badge: Badge
    is_earned: bool
    progress: float = Field(ge=0.0, le=1.0)


# --- Daily goal ---


class DailyGoal(BaseModel):
    """One user's target for one local calendar day."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    date: dt.date
    quizzes_completed: int = Field(default=0, ge=0)
    quizzes_goal: int = Field(default=3, ge=1)
    xp_earned: int = Field(default=0, ge=0)
    xp_goal: int = Field(default=100, ge=1)
    archived: bool = False

    @model_validator(mode="before")
    @classmethod
    def _drop_derived(cls, data: Any) -> Any:
        if isinstance(data, dict) and "is_completed" in data:
            data = {k: v for k, v in data.items() if k != "is_completed"}
        return data

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_completed(self) -> bool:
        # Either target suffices
        return self.quizzes_completed >= self.quizzes_goal or self.xp_earned >= self.xp_goal

    @property
    def quiz_progress(self) -> float:
        return min(1.0, self.quizzes_completed / self.quizzes_goal)

    @property
    def xp_progress(self) -> float:
        return min(1.0, self.xp_earned / self.xp_goal)

    @property
    def overall_progress(self) -> float:
        return max(self.quiz_progress, self.xp_progress)


class GoalUpdate(BaseModel):
    """A daily goal after one recorded activity."""

    model_config = ConfigDict(frozen=True)

    goal: DailyGoal
    just_completed: bool = False
