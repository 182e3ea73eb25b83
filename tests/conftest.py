"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from learnxp.competition.schemas import LeaderboardScope
from learnxp.config import Settings
from learnxp.engine import GamificationEngine
from learnxp.errors import RemoteError
from learnxp.feeds.hub import FeedHub
from learnxp.gamification.catalog import BadgeCatalog
from learnxp.progress.ledger_service import ProgressLedgerService
from learnxp.progress.schemas import ProgressLedger
from learnxp.result import ErrorKind
from learnxp.stores.memory import InMemoryProgressStore

# Monday 2026-03-02 09:00 UTC
T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeRemote:
    """In-process RemoteProgressSource.

    ``failures`` is a list of exceptions raised, one per call, before any
    call succeeds. ``pushes`` records every accepted delta.
    """

    def __init__(self) -> None:
        self.ledgers: dict[str, ProgressLedger] = {}
        self.cohorts: dict[LeaderboardScope, list[ProgressLedger]] = {}
        self.failures: list[BaseException] = []
        self.pushes: list[tuple[str, int, str | None]] = []
        self.seen_keys: set[str] = set()
        self.calls = 0

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)

    async def fetch_remote_ledger(self, user_id: str) -> ProgressLedger:
        self._maybe_fail()
        ledger = self.ledgers.get(user_id)
        if ledger is None:
            raise RemoteError(f"no ledger for {user_id}", kind=ErrorKind.NOT_FOUND)
        return ledger

    async def push_xp_delta(self, user_id: str, delta: int, idempotency_key: str | None = None) -> int:
        self._maybe_fail()
        ledger = self.ledgers.get(user_id) or ProgressLedger(user_id=user_id)
        if idempotency_key is None or idempotency_key not in self.seen_keys:
            ledger = ledger.model_copy(update={"total_xp": ledger.total_xp + delta})
            self.ledgers[user_id] = ledger
            self.pushes.append((user_id, delta, idempotency_key))
            if idempotency_key is not None:
                self.seen_keys.add(idempotency_key)
        return ledger.total_xp

    async def fetch_cohort(self, scope: LeaderboardScope) -> list[ProgressLedger]:
        self._maybe_fail()
        return list(self.cohorts.get(scope, []))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        timezone="UTC",
        streak_grace_hours=None,
        streak_bonus_multiplier=0.1,
        daily_quiz_goal=3,
        daily_xp_goal=100,
        daily_goal_xp_reward=40,
        sync_backoff_base_seconds=1.0,
        sync_backoff_max_seconds=8.0,
        sync_max_attempts=4,
        feed_queue_size=16,
    )


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def store() -> InMemoryProgressStore:
    return InMemoryProgressStore()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def hub() -> FeedHub:
    return FeedHub(queue_size=16)


@pytest.fixture
def ledger_service(store: InMemoryProgressStore, hub: FeedHub) -> ProgressLedgerService:
    return ProgressLedgerService(store, hub=hub)


@pytest.fixture
def catalog() -> BadgeCatalog:
    return BadgeCatalog.from_seed()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest_asyncio.fixture
async def engine(store, remote, settings, sleeps):
    """Engine over the in-memory store and fake remote; sleeps are recorded, not awaited."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    eng = GamificationEngine(store, remote, settings=settings, sleep=fake_sleep)
    await eng.start()
    yield eng
    await eng.close()
