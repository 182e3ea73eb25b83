"""Dict-backed ProgressStore for tests and offline use."""

from __future__ import annotations

import asyncio
from datetime import date

from learnxp.errors import StorageError
from learnxp.gamification.schemas import DailyGoal
from learnxp.progress.schemas import ProgressLedger


class InMemoryProgressStore:
    """Keeps ledgers and goals in dicts.

    ``fail_loads`` / ``fail_saves`` make the matching calls raise
    ``StorageError`` until cleared; ``delay`` makes every call yield to the
    event loop for that many seconds first.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.ledgers: dict[str, ProgressLedger] = {}
        self.goals: dict[tuple[str, date], DailyGoal] = {}
        self.delay = delay
        self.fail_loads = False
        self.fail_saves = False
        self.save_count = 0

    async def _io(self) -> None:
        await asyncio.sleep(self.delay)

    async def load_ledger(self, user_id: str) -> ProgressLedger | None:
        await self._io()
        if self.fail_loads:
            raise StorageError("ledger load failed")
        return self.ledgers.get(user_id)

    async def save_ledger(self, ledger: ProgressLedger) -> None:
        await self._io()
        if self.fail_saves:
            raise StorageError("ledger save failed")
        self.ledgers[ledger.user_id] = ledger
        self.save_count += 1

    async def load_daily_goal(self, user_id: str, day: date) -> DailyGoal | None:
        await self._io()
        if self.fail_loads:
            raise StorageError("daily goal load failed")
        return self.goals.get((user_id, day))

    async def save_daily_goal(self, goal: DailyGoal) -> None:
        await self._io()
        if self.fail_saves:
            raise StorageError("daily goal save failed")
        self.goals[(goal.user_id, goal.date)] = goal

    async def load_open_daily_goal_before(self, user_id: str, day: date) -> DailyGoal | None:
        await self._io()
        if self.fail_loads:
            raise StorageError("daily goal load failed")
        open_goals = [
            goal for (owner, goal_date), goal in self.goals.items()
            if owner == user_id and goal_date < day and not goal.archived
        ]
        return max(open_goals, key=lambda goal: goal.date, default=None)

    async def list_unsynced_user_ids(self) -> list[str]:
        await self._io()
        if self.fail_loads:
            raise StorageError("listing unsynced users failed")
        return sorted(user_id for user_id, ledger in self.ledgers.items() if ledger.unsynced)
