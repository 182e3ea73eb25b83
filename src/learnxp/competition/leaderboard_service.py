"""Leaderboard service: cohort snapshots from the remote, ranked locally.

The last cohort fetched per scope is kept so a failed refresh can still
hand back stale entries (as ``Error.partial``, or ``Loading.partial`` on a
feed) instead of an empty board. An unreachable remote is never reported
as an empty leaderboard.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from learnxp.competition.ranking import find_rank, rank_cohort
from learnxp.competition.schemas import LeaderboardEntry, LeaderboardScope, UserRankInfo
from learnxp.errors import remote_error
from learnxp.feeds.hub import FeedHub, Subscription, leaderboard_key
from learnxp.progress.schemas import ProgressLedger
from learnxp.result import Error, Loading, Result, Success
from learnxp.time_utils import calculate_percentile, utcnow

if TYPE_CHECKING:
    from learnxp.collaborators import RemoteProgressSource

logger = logging.getLogger(__name__)


class LeaderboardService:
    def __init__(
        self,
        remote: RemoteProgressSource,
        *,
        timezone: str = "UTC",
        hub: FeedHub | None = None,
    ) -> None:
        self.remote = remote
        self.timezone = timezone
        self.hub = hub
        self._cohorts: dict[LeaderboardScope, list[ProgressLedger]] = {}

    async def _fetch_cohort(self, scope: LeaderboardScope) -> Result[list[ProgressLedger]]:
        try:
            cohort = list(await self.remote.fetch_cohort(scope))
        except Exception as exc:
            logger.warning("Failed to fetch %s cohort", scope.value, exc_info=True)
            return remote_error(exc, f"Fetching {scope.value} cohort")
        self._cohorts[scope] = cohort
        return Success(cohort)

    def _rank(
        self,
        cohort: list[ProgressLedger],
        scope: LeaderboardScope,
        now: datetime | None,
        current_user_id: str | None,
    ) -> list[LeaderboardEntry]:
        return rank_cohort(cohort, scope, now or utcnow(), current_user_id, self.timezone)

    def cached(
        self,
        scope: LeaderboardScope,
        current_user_id: str | None = None,
        now: datetime | None = None,
    ) -> Loading[list[LeaderboardEntry]]:
        """Last known board for ``scope`` as a Loading value (partial is None if never fetched)."""
        cohort = self._cohorts.get(scope)
        if cohort is None:
            return Loading()
        return Loading(partial=self._rank(cohort, scope, now, current_user_id))

    async def get_leaderboard(
        self,
        scope: LeaderboardScope,
        current_user_id: str | None = None,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> Result[list[LeaderboardEntry]]:
        """Fresh ranking for ``scope``. On failure the stale board rides along as ``partial``."""
        fetched = await self._fetch_cohort(scope)
        if isinstance(fetched, Error):
            stale = self.cached(scope, current_user_id, now).partial
            return Error(fetched.message, kind=fetched.kind, cause=fetched.cause, partial=stale)

        entries = self._rank(fetched.data, scope, now, current_user_id)  # type: ignore[union-attr]
        if limit is not None:
            entries = entries[:limit]
        return Success(entries)

    async def get_user_rank(
        self,
        scope: LeaderboardScope,
        user_id: str,
        now: datetime | None = None,
    ) -> Result[UserRankInfo]:
        board = await self.get_leaderboard(scope, current_user_id=user_id, now=now)
        if isinstance(board, Error):
            return Error(board.message, kind=board.kind, cause=board.cause)
        entries = board.data  # type: ignore[union-attr]

        rank = find_rank(entries, user_id)
        if isinstance(rank, Error):
            return rank  # type: ignore[return-value]
        position = rank.data  # type: ignore[union-attr]
        return Success(UserRankInfo(
            scope=scope,
            rank=position,
            total=len(entries),
            percentile=calculate_percentile(position, len(entries)),
        ))

    async def refresh(self, scope: LeaderboardScope, now: datetime | None = None) -> Result[list[LeaderboardEntry]]:
        """Refetch ``scope`` and push the result to its feed."""
        result = await self.get_leaderboard(scope, now=now)
        if self.hub is not None:
            self.hub.publish(leaderboard_key(scope.value), result)
        return result

    async def observe_leaderboard(self, scope: LeaderboardScope) -> Subscription[list[LeaderboardEntry]]:
        """Feed of the scope's board: Loading (with the stale board, if any), then every refresh.

        Entries on a shared feed never carry ``is_current_user``.
        """
        if self.hub is None:
            msg = "observe_leaderboard needs a FeedHub"
            raise RuntimeError(msg)
        key = leaderboard_key(scope.value)
        sub = self.hub.subscribe(key, stale=self.cached(scope).partial)
        try:
            await self.refresh(scope)
        except BaseException:
            sub.cancel()
            raise
        return sub
