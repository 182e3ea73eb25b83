"""Interfaces of the engine's external collaborators.

The engine only ever talks to persistence and the remote source of truth
through these protocols. Implementations may raise; the engine turns
persistence failures into STORAGE errors and remote failures into
NETWORK / TIMEOUT / OFFLINE / ... errors.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from learnxp.competition.schemas import LeaderboardScope
    from learnxp.gamification.schemas import DailyGoal
    from learnxp.progress.schemas import ProgressLedger


@runtime_checkable
class ProgressStore(Protocol):
    """Local persistence for ledgers and daily goals."""

    async def load_ledger(self, user_id: str) -> ProgressLedger | None: ...

    async def save_ledger(self, ledger: ProgressLedger) -> None: ...

    async def load_daily_goal(self, user_id: str, day: date) -> DailyGoal | None: ...

    async def save_daily_goal(self, goal: DailyGoal) -> None: ...

    async def load_open_daily_goal_before(self, user_id: str, day: date) -> DailyGoal | None:
        """Most recent non-archived goal dated before ``day``."""
        ...

    async def list_unsynced_user_ids(self) -> list[str]: ...


@runtime_checkable
class RemoteProgressSource(Protocol):
    """Remote source of truth for progress and cohorts."""

    async def fetch_remote_ledger(self, user_id: str) -> ProgressLedger: ...

    async def push_xp_delta(self, user_id: str, delta: int, idempotency_key: str | None = None) -> int:
        """Send unacknowledged XP; returns the server's accepted total."""
        ...

    async def fetch_cohort(self, scope: LeaderboardScope) -> list[ProgressLedger]: ...
