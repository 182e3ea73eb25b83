"""Pydantic models for leaderboards."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class LeaderboardScope(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    rank: int
    user_id: str
    display_name: str
    total_xp: int
    level: int
    current_streak: int = 0
    is_current_user: bool = False


class UserRankInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: LeaderboardScope
    rank: int
    total: int
    percentile: float
