"""Broadcast progress events over Redis pub/sub.

Activity feeds and overlays subscribe to the ``pubsub:*`` channels. The
publisher is fire-and-forget: with no Redis configured it does nothing,
and a failed publish is logged and never reaches the ledger.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from learnxp.progress.level_thresholds import level_title

if TYPE_CHECKING:
    from learnxp.gamification.schemas import Badge, DailyGoal
    from learnxp.progress.schemas import StreakStatus, XpOutcome, XpSource

logger = logging.getLogger(__name__)

CHANNEL_XP_GAINED = "pubsub:xp_gained"
CHANNEL_LEVEL_UP = "pubsub:level_up"
CHANNEL_BADGE_EARNED = "pubsub:badge_earned"
CHANNEL_STREAK_UPDATE = "pubsub:streak_update"
CHANNEL_DAILY_GOAL = "pubsub:daily_goal"


class ProgressEventPublisher:
    """Publishes JSON payloads for XP, level, badge, streak and goal events."""

    def __init__(self, redis: object | None = None) -> None:
        self.redis = redis
        self.failures = 0

    async def _publish(self, channel: str, payload: dict) -> bool:
        if self.redis is None:
            return False
        try:
            await self.redis.publish(channel, json.dumps(payload))  # type: ignore[union-attr]
        except Exception:
            self.failures += 1
            logger.warning("Failed to publish %s", channel, exc_info=True)
            return False
        return True

    async def xp_gained(self, user_id: str, outcome: XpOutcome, source: XpSource) -> None:
        await self._publish(CHANNEL_XP_GAINED, {
            "user_id": user_id,
            "source": source.value,
            "xp_earned": outcome.xp_earned,
            "streak_bonus": outcome.streak_bonus,
            "total_xp": outcome.new_total_xp,
        })
        if outcome.leveled_up:
            await self.level_up(user_id, outcome.previous_level, outcome.new_level)

    async def level_up(self, user_id: str, old_level: int, new_level: int) -> None:
        await self._publish(CHANNEL_LEVEL_UP, {
            "user_id": user_id,
            "old_level": old_level,
            "new_level": new_level,
            "title": level_title(new_level),
        })

    async def badge_earned(self, user_id: str, badge: Badge) -> None:
        await self._publish(CHANNEL_BADGE_EARNED, {
            "user_id": user_id,
            "badge_id": badge.id,
            "badge_name": badge.name,
            "rarity": badge.rarity.value,
            "xp_reward": badge.xp_reward,
        })

    async def streak_update(self, user_id: str, status: StreakStatus) -> None:
        await self._publish(CHANNEL_STREAK_UPDATE, {
            "user_id": user_id,
            "event": "streak_broken" if status.streak_broken else "streak_extended",
            "current_streak": status.current_streak,
            "max_streak": status.max_streak,
        })

    async def daily_goal(self, user_id: str, goal: DailyGoal) -> None:
        await self._publish(CHANNEL_DAILY_GOAL, {
            "user_id": user_id,
            "event": "daily_goal_completed",
            "date": goal.date.isoformat(),
            "quizzes_completed": goal.quizzes_completed,
            "xp_earned": goal.xp_earned,
        })
