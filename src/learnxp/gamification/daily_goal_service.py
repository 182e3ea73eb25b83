"""Daily goal tracking: one goal per user per local calendar day.

A goal is created lazily by the first activity of the day. Creating the
next day's goal archives the previous one, which is read-only from then
on. Days without activity get no goal.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from learnxp.errors import storage_error
from learnxp.gamification.schemas import DailyGoal, GoalUpdate
from learnxp.locks import KeyedLock
from learnxp.result import Error, ErrorKind, Result, Success
from learnxp.time_utils import local_date, utcnow

if TYPE_CHECKING:
    from learnxp.collaborators import ProgressStore
    from learnxp.notifications.publisher import ProgressEventPublisher

logger = logging.getLogger(__name__)


class DailyGoalTracker:
    """Tracks quizzes and XP against each user's goal for today."""

    def __init__(
        self,
        store: ProgressStore,
        *,
        timezone: str = "UTC",
        quizzes_goal: int = 3,
        xp_goal: int = 100,
        publisher: ProgressEventPublisher | None = None,
    ) -> None:
        self.store = store
        self.timezone = timezone
        self.defaults = (quizzes_goal, xp_goal)
        self.publisher = publisher
        self._current: dict[str, DailyGoal] = {}
        self._targets: dict[str, tuple[int, int]] = {}
        self._dirty: set[str] = set()
        self._locks = KeyedLock()

    def _day(self, now: datetime | None) -> date:
        return local_date(now or utcnow(), self.timezone)

    def _remember(self, goal: DailyGoal) -> None:
        cached = self._current.get(goal.user_id)
        if cached is None or goal.date >= cached.date:
            self._current[goal.user_id] = goal

    async def _archive_previous(self, user_id: str, day: date) -> None:
        """Archive the latest open goal before ``day``, however many idle days ago it was."""
        previous = await self.store.load_open_daily_goal_before(user_id, day)
        cached = self._current.get(user_id)
        if cached is not None and cached.date < day and not cached.archived:
            if previous is None or cached.date >= previous.date:
                previous = cached
        if previous is None:
            return
        await self.store.save_daily_goal(previous.model_copy(update={"archived": True}))
        self._dirty.discard(user_id)
        logger.debug("Archived daily goal %s for user %s", previous.date, user_id)

    async def _resolve(self, user_id: str, day: date, *, create: bool) -> DailyGoal | None:
        """The goal for ``day``. Caller holds the user's lock; store errors propagate."""
        cached = self._current.get(user_id)
        if cached is not None and cached.date == day:
            return cached

        goal = await self.store.load_daily_goal(user_id, day)
        if goal is None:
            if not create:
                return None
            await self._archive_previous(user_id, day)
            quizzes_goal, xp_goal = self._targets.get(user_id, self.defaults)
            goal = DailyGoal(user_id=user_id, date=day, quizzes_goal=quizzes_goal, xp_goal=xp_goal)
            await self.store.save_daily_goal(goal)

        self._remember(goal)
        return goal

    async def get_or_create_today_goal(self, user_id: str, now: datetime | None = None) -> Result[DailyGoal]:
        day = self._day(now)
        async with self._locks.hold(user_id):
            try:
                goal = await self._resolve(user_id, day, create=True)
            except Exception as exc:
                logger.warning("Failed to load daily goal for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading daily goal")
        return Success(goal)

    async def get_today_goal(self, user_id: str, now: datetime | None = None) -> Result[DailyGoal | None]:
        """Today's goal if there was activity today; never creates one."""
        day = self._day(now)
        async with self._locks.hold(user_id):
            try:
                goal = await self._resolve(user_id, day, create=False)
            except Exception as exc:
                logger.warning("Failed to load daily goal for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading daily goal")
        return Success(goal)

    async def today_xp(self, user_id: str, now: datetime | None = None) -> Result[int]:
        """XP earned today, as tracked by the day's goal."""
        result = await self.get_today_goal(user_id, now)
        if isinstance(result, Error):
            return result  # type: ignore[return-value]
        goal = result.data  # type: ignore[union-attr]
        return Success(goal.xp_earned if goal is not None else 0)

    async def record_quiz_completion(self, user_id: str, now: datetime | None = None) -> Result[GoalUpdate]:
        return await self.record_activity(user_id, quizzes=1, now=now)

    async def record_xp(self, user_id: str, amount: int, now: datetime | None = None) -> Result[GoalUpdate]:
        if amount <= 0:
            return Error(f"XP amount must be positive, got {amount}", kind=ErrorKind.VALIDATION)
        return await self.record_activity(user_id, xp=amount, now=now)

    async def record_activity(
        self,
        user_id: str,
        *,
        quizzes: int = 0,
        xp: int = 0,
        now: datetime | None = None,
    ) -> Result[GoalUpdate]:
        """Add quizzes and XP to today's goal in one step.

        ``just_completed`` is true only for the update that completes the goal.
        """
        if quizzes < 0 or xp < 0:
            return Error("Daily goal counters cannot decrease", kind=ErrorKind.VALIDATION)

        day = self._day(now)
        async with self._locks.hold(user_id):
            try:
                goal = await self._resolve(user_id, day, create=True)
            except Exception as exc:
                logger.warning("Failed to load daily goal for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading daily goal")
            if goal is None:
                return Error(f"No daily goal could be created for {day}", kind=ErrorKind.STORAGE)

            if goal.archived:
                return Error(f"Daily goal for {goal.date} is archived", kind=ErrorKind.VALIDATION)

            updated = goal.model_copy(update={
                "quizzes_completed": goal.quizzes_completed + quizzes,
                "xp_earned": goal.xp_earned + xp,
            })
            just_completed = updated.is_completed and not goal.is_completed
            self._remember(updated)
            self._dirty.add(user_id)
            failure = await asyncio.shield(self._save(updated))

        update = GoalUpdate(goal=updated, just_completed=just_completed)
        if just_completed:
            logger.info("Daily goal %s completed by user %s", updated.date, user_id)
            if self.publisher is not None:
                await self.publisher.daily_goal(user_id, updated)

        if failure is not None:
            return storage_error(failure, "Saving daily goal", partial=update)
        return Success(update)

    async def _save(self, goal: DailyGoal) -> Exception | None:
        try:
            await self.store.save_daily_goal(goal)
        except Exception as exc:
            logger.warning("Failed to save daily goal for user %s", goal.user_id, exc_info=True)
            return exc
        if self._current.get(goal.user_id) is goal:
            self._dirty.discard(goal.user_id)
        return None

    async def set_goal_targets(
        self,
        user_id: str,
        quizzes_goal: int,
        xp_goal: int,
        now: datetime | None = None,
    ) -> Result[DailyGoal | None]:
        """Change the user's targets from today on.

        Applies to today's goal if one exists; otherwise the next goal
        created picks them up.
        """
        if quizzes_goal < 1 or xp_goal < 1:
            return Error("Daily goal targets must be at least 1", kind=ErrorKind.VALIDATION)

        day = self._day(now)
        async with self._locks.hold(user_id):
            self._targets[user_id] = (quizzes_goal, xp_goal)
            try:
                goal = await self._resolve(user_id, day, create=False)
            except Exception as exc:
                logger.warning("Failed to load daily goal for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading daily goal")
            if goal is None or goal.archived:
                return Success(goal)

            updated = goal.model_copy(update={"quizzes_goal": quizzes_goal, "xp_goal": xp_goal})
            self._remember(updated)
            self._dirty.add(user_id)
            failure = await asyncio.shield(self._save(updated))

        if failure is not None:
            return storage_error(failure, "Saving daily goal", partial=updated)
        return Success(updated)

    async def flush_pending(self) -> Result[int]:
        """Retry saving goals whose last save failed."""
        flushed = 0
        failed: list[str] = []
        last_failure: Exception | None = None
        for user_id in list(self._dirty):
            async with self._locks.hold(user_id):
                goal = self._current.get(user_id)
                if goal is None or user_id not in self._dirty:
                    continue
                failure = await asyncio.shield(self._save(goal))
            if failure is None:
                flushed += 1
            else:
                failed.append(user_id)
                last_failure = failure

        if failed:
            return Error(
                f"Failed to save {len(failed)} daily goal(s)",
                kind=ErrorKind.STORAGE,
                cause=last_failure,
                partial=flushed,
            )
        return Success(flushed)
