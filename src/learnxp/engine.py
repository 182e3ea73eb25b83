"""Gamification engine: the explicitly constructed entry point.

Wires the ledger, badge evaluator, daily goal tracker, leaderboard and
sync coordinator around one store, one remote and one feed hub:

    engine = await build_engine(settings)
    async with engine:
        result = await engine.complete_quiz("u1", correct=8, total_questions=10)

``record_activity`` runs one learning event through the whole pipeline:
XP (with streak bonus), streak, daily goal (and its reward), badges.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from learnxp.collaborators import ProgressStore, RemoteProgressSource
from learnxp.competition.leaderboard_service import LeaderboardService
from learnxp.competition.ranking import find_rank
from learnxp.competition.schemas import LeaderboardEntry, LeaderboardScope, UserRankInfo
from learnxp.config import Settings, get_settings
from learnxp.database import close_db, get_session_factory, init_db
from learnxp.feeds.hub import FeedHub, Subscription
from learnxp.gamification.badge_service import BadgeEvaluator
from learnxp.gamification.catalog import BadgeCatalog, load_catalog
from learnxp.gamification.daily_goal_service import DailyGoalTracker
from learnxp.gamification.schemas import Badge, BadgeInfo, DailyGoal, GoalUpdate
from learnxp.notifications.publisher import ProgressEventPublisher
from learnxp.progress.ledger_service import ProgressLedgerService
from learnxp.progress.rewards import quiz_source, quiz_xp
from learnxp.progress.schemas import (
    NO_STREAK_BONUS_SOURCES,
    ProgressLedger,
    StreakStatus,
    XpEvent,
    XpOutcome,
    XpSource,
)
from learnxp.progress.streaks import StreakPolicy
from learnxp.remote.http_client import HttpRemoteProgressSource
from learnxp.result import Error, ErrorKind, Result, Success, flat_map
from learnxp.stores.sql import SqlProgressStore
from learnxp.sync.backoff import BackoffPolicy
from learnxp.sync.coordinator import SyncCoordinator
from learnxp.time_utils import utcnow

logger = logging.getLogger(__name__)

QUIZ_SOURCES = frozenset({XpSource.QUIZ_COMPLETED, XpSource.QUIZ_PERFECT})


class ActivityOutcome(BaseModel):
    """Everything one learning event changed."""

    model_config = ConfigDict(frozen=True)

    xp: XpOutcome
    streak: StreakStatus | None = None
    goal: GoalUpdate | None = None
    goal_reward: XpOutcome | None = None
    badges: list[Badge] = Field(default_factory=list)


def _settle(result: Result[Any]) -> tuple[Any, Error | None]:
    """(value, error) where value is the Success data or an Error's partial."""
    if isinstance(result, Success):
        return result.data, None
    if isinstance(result, Error):
        return result.partial, result
    return None, None


class GamificationEngine:
    def __init__(
        self,
        store: ProgressStore,
        remote: RemoteProgressSource,
        *,
        settings: Settings | None = None,
        catalog: BadgeCatalog | None = None,
        publisher: ProgressEventPublisher | None = None,
        hub: FeedHub | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_close: list[Callable[[], Awaitable[Any]]] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.hub = hub or FeedHub(self.settings.feed_queue_size)
        self.publisher = publisher

        self.ledger = ProgressLedgerService(
            store,
            policy=StreakPolicy(self.settings.timezone, self.settings.streak_grace_hours),
            bonus_multiplier=self.settings.streak_bonus_multiplier,
            hub=self.hub,
            publisher=publisher,
        )
        self.badges = BadgeEvaluator(
            self.ledger,
            catalog or load_catalog(self.settings.badge_catalog_path),
            publisher=publisher,
        )
        self.goals = DailyGoalTracker(
            store,
            timezone=self.settings.timezone,
            quizzes_goal=self.settings.daily_quiz_goal,
            xp_goal=self.settings.daily_xp_goal,
            publisher=publisher,
        )
        self.leaderboard = LeaderboardService(remote, timezone=self.settings.timezone, hub=self.hub)
        self.sync_coordinator = SyncCoordinator(
            self.ledger,
            remote,
            goals=self.goals,
            hub=self.hub,
            backoff=BackoffPolicy.from_settings(self.settings),
            on_merged=self.badges.check_and_award_badges,
            sleep=sleep,
        )
        self._on_close = list(on_close or [])
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> GamificationEngine:
        if self._closed:
            msg = "GamificationEngine is closed"
            raise RuntimeError(msg)
        self._started = True
        logger.info("Gamification engine started (%d badges)", len(self.badges.catalog))
        return self

    async def close(self) -> None:
        """Flush unsaved state, end every feed and release collaborators."""
        if self._closed:
            return
        self._closed = True
        flushed = await self.sync_coordinator.flush_pending()
        if isinstance(flushed, Error):
            logger.warning("Unsaved progress at shutdown: %s", flushed.message)
        self.hub.close()
        for closer in self._on_close:
            await closer()
        logger.info("Gamification engine closed")

    async def __aenter__(self) -> GamificationEngine:
        return await self.start()

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Activity pipeline
    # ------------------------------------------------------------------

    async def record_activity(self, event: XpEvent) -> Result[ActivityOutcome]:
        """Run one event through XP, streak, daily goal and badges.

        A VALIDATION or load failure on the XP step stops the pipeline.
        Save failures do not: every step still runs on the in-memory state
        and the result is a STORAGE error carrying the ActivityOutcome.
        """
        xp_result = await self.ledger.add_xp(event)
        xp, failure = _settle(xp_result)
        if xp is None:
            return xp_result  # type: ignore[return-value]

        streak, streak_failure = _settle(await self.ledger.update_streak(event.user_id, now=event.occurred_at))
        failure = failure or streak_failure

        goal: GoalUpdate | None = None
        goal_reward: XpOutcome | None = None
        if event.source not in NO_STREAK_BONUS_SOURCES:
            goal, goal_failure = _settle(await self.goals.record_activity(
                event.user_id,
                quizzes=1 if event.source in QUIZ_SOURCES else 0,
                xp=xp.xp_earned,
                now=event.occurred_at,
            ))
            failure = failure or goal_failure

            if goal is not None and goal.just_completed and self.settings.daily_goal_xp_reward > 0:
                goal_reward, reward_failure = _settle(await self.ledger.add_xp(XpEvent(
                    user_id=event.user_id,
                    amount=self.settings.daily_goal_xp_reward,
                    source=XpSource.DAILY_GOAL,
                    description=f"Daily goal met for {goal.goal.date.isoformat()}",
                    occurred_at=event.occurred_at,
                )))
                failure = failure or reward_failure

        badges, badge_failure = _settle(await self.badges.check_and_award_badges(event.user_id, now=event.occurred_at))
        failure = failure or badge_failure

        outcome = ActivityOutcome(
            xp=xp,
            streak=streak,
            goal=goal,
            goal_reward=goal_reward,
            badges=badges or [],
        )
        if failure is not None:
            return Error(failure.message, kind=failure.kind, cause=failure.cause, partial=outcome)
        return Success(outcome)

    async def complete_quiz(
        self,
        user_id: str,
        correct: int,
        total_questions: int,
        now: datetime | None = None,
        description: str = "",
    ) -> Result[ActivityOutcome]:
        """Score a finished quiz and record it as an activity."""
        if total_questions <= 0 or correct < 0:
            return Error("A quiz needs at least one question", kind=ErrorKind.VALIDATION)
        return await self.record_activity(XpEvent(
            user_id=user_id,
            amount=quiz_xp(correct, total_questions),
            source=quiz_source(correct, total_questions),
            description=description or f"Quiz: {min(correct, total_questions)}/{total_questions}",
            occurred_at=now or utcnow(),
        ))

    # ------------------------------------------------------------------
    # Ledger reads
    # ------------------------------------------------------------------

    async def get_progress(self, user_id: str) -> Result[ProgressLedger]:
        return await self.ledger.get_progress(user_id)

    async def observe_progress(self, user_id: str) -> Subscription[ProgressLedger]:
        return await self.ledger.observe_progress(user_id)

    async def get_streak_status(self, user_id: str, now: datetime | None = None) -> Result[StreakStatus]:
        return await self.ledger.get_streak_status(user_id, now)

    async def reset_ledger(self, user_id: str) -> Result[ProgressLedger]:
        return await self.ledger.reset_ledger(user_id)

    # ------------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------------

    async def check_badges(self, user_id: str) -> Result[list[Badge]]:
        return await self.badges.check_and_award_badges(user_id)

    async def get_available_badges(self, user_id: str) -> Result[list[BadgeInfo]]:
        return await self.badges.get_available_badges(user_id)

    # ------------------------------------------------------------------
    # Leaderboards
    # ------------------------------------------------------------------

    async def get_leaderboard(
        self,
        scope: LeaderboardScope,
        current_user_id: str | None = None,
        limit: int | None = None,
    ) -> Result[list[LeaderboardEntry]]:
        return await self.leaderboard.get_leaderboard(scope, current_user_id=current_user_id, limit=limit)

    async def find_rank(self, scope: LeaderboardScope, user_id: str) -> Result[int]:
        board = await self.leaderboard.get_leaderboard(scope, current_user_id=user_id)
        if isinstance(board, Error):
            return Error(board.message, kind=board.kind, cause=board.cause)
        return flat_map(board, lambda entries: find_rank(entries, user_id))

    async def get_user_rank(self, scope: LeaderboardScope, user_id: str) -> Result[UserRankInfo]:
        return await self.leaderboard.get_user_rank(scope, user_id)

    async def observe_leaderboard(self, scope: LeaderboardScope) -> Subscription[list[LeaderboardEntry]]:
        return await self.leaderboard.observe_leaderboard(scope)

    # ------------------------------------------------------------------
    # Daily goals
    # ------------------------------------------------------------------

    async def get_daily_goal(self, user_id: str, now: datetime | None = None) -> Result[DailyGoal | None]:
        return await self.goals.get_today_goal(user_id, now)

    async def set_daily_goal(
        self,
        user_id: str,
        quizzes_goal: int,
        xp_goal: int,
        now: datetime | None = None,
    ) -> Result[DailyGoal | None]:
        return await self.goals.set_goal_targets(user_id, quizzes_goal, xp_goal, now)

    async def today_xp(self, user_id: str, now: datetime | None = None) -> Result[int]:
        return await self.goals.today_xp(user_id, now)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync(self, user_id: str, retry: bool = False) -> Result[ProgressLedger]:
        if retry:
            return await self.sync_coordinator.sync_with_retry(user_id)
        return await self.sync_coordinator.sync(user_id)

    def observe_sync(self, user_id: str) -> Subscription[ProgressLedger]:
        return self.sync_coordinator.observe_sync(user_id)

    async def flush_pending(self) -> Result[int]:
        return await self.sync_coordinator.flush_pending()


async def build_engine(
    settings: Settings | None = None,
    *,
    store: ProgressStore | None = None,
    remote: RemoteProgressSource | None = None,
    redis: object | None = None,
) -> GamificationEngine:
    """Engine backed by the SQL store and HTTP remote from ``settings``.

    Pass ``store`` or ``remote`` to use other collaborators; ``redis``
    enables pub/sub broadcasts. Resources created here are released by
    ``GamificationEngine.close``.
    """
    settings = settings or get_settings()
    on_close: list[Callable[[], Awaitable[Any]]] = []

    if store is None:
        await init_db(settings.database_url)
        store = SqlProgressStore(get_session_factory())
        on_close.append(close_db)
    if remote is None:
        http = HttpRemoteProgressSource.from_settings(settings)
        remote = http
        on_close.append(http.aclose)

    return GamificationEngine(
        store,
        remote,
        settings=settings,
        publisher=ProgressEventPublisher(redis),
        on_close=on_close,
    )
