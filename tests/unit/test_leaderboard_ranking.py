"""Leaderboard tests: deterministic ordering, scope windows, stale fallback."""

from datetime import timedelta

import pytest

from learnxp.competition.leaderboard_service import LeaderboardService
from learnxp.competition.ranking import find_rank, in_scope, rank_cohort, window_start
from learnxp.competition.schemas import LeaderboardScope
from learnxp.errors import RemoteError
from learnxp.progress.schemas import ProgressLedger
from learnxp.result import Error, ErrorKind, Loading, Success

ALL_TIME = LeaderboardScope.ALL_TIME
WEEKLY = LeaderboardScope.WEEKLY
MONTHLY = LeaderboardScope.MONTHLY


def _ledger(user_id, xp, last=None, name=None):
    return ProgressLedger(user_id=user_id, total_xp=xp, last_activity_at=last, display_name=name)


class TestRankCohort:
    """Ordering and rank assignment."""

    def test_sorted_by_xp_then_user_id(self, t0):
        cohort = [_ledger("carol", 100), _ledger("bob", 300), _ledger("alice", 100), _ledger("dave", 50)]
        entries = rank_cohort(cohort, ALL_TIME, t0)
        assert [e.user_id for e in entries] == ["bob", "alice", "carol", "dave"]
        assert [e.rank for e in entries] == [1, 2, 3, 4]

    def test_ties_are_deterministic(self, t0):
        cohort = [_ledger(f"u{i}", 100) for i in range(6)]
        first = rank_cohort(cohort, ALL_TIME, t0)
        second = rank_cohort(list(reversed(cohort)), ALL_TIME, t0)
        assert first == second

    def test_duplicate_user_keeps_highest_xp(self, t0):
        entries = rank_cohort([_ledger("a", 10), _ledger("a", 40), _ledger("b", 20)], ALL_TIME, t0)
        assert [(e.user_id, e.total_xp) for e in entries] == [("a", 40), ("b", 20)]

    def test_display_name_fallback(self, t0):
        entries = rank_cohort([_ledger("a", 10, name="Ada"), _ledger("b", 5)], ALL_TIME, t0)
        assert entries[0].display_name == "Ada"
        assert entries[1].display_name == "Learner-b"

    def test_current_user_flagged(self, t0):
        entries = rank_cohort([_ledger("a", 10), _ledger("b", 5)], ALL_TIME, t0, current_user_id="b")
        assert [e.is_current_user for e in entries] == [False, True]

    def test_level_derived(self, t0):
        entries = rank_cohort([_ledger("a", 1500)], ALL_TIME, t0)
        assert entries[0].level == 5

    def test_empty_cohort(self, t0):
        assert rank_cohort([], WEEKLY, t0) == []


class TestScopes:
    """Weekly and monthly windows filter by last activity."""

    def test_week_starts_monday(self, t0):
        # t0 is a Monday at 09:00
        assert window_start(WEEKLY, t0) == t0.replace(hour=0)
        assert window_start(WEEKLY, t0 + timedelta(days=3)) == t0.replace(hour=0)
        assert window_start(ALL_TIME, t0) is None

    def test_month_start(self, t0):
        assert window_start(MONTHLY, t0) == t0.replace(day=1, hour=0)

    def test_weekly_excludes_inactive(self, t0):
        cohort = [
            _ledger("active", 10, last=t0),
            _ledger("last_week", 500, last=t0 - timedelta(days=1)),
            _ledger("never", 900),
        ]
        entries = rank_cohort(cohort, WEEKLY, t0 + timedelta(days=1))
        assert [e.user_id for e in entries] == ["active"]

    def test_monthly_includes_earlier_this_month(self, t0):
        ledger = _ledger("a", 10, last=t0 - timedelta(days=1))
        assert in_scope(ledger, MONTHLY, t0)
        assert not in_scope(ledger, WEEKLY, t0)

    def test_all_time_includes_never_active(self, t0):
        assert in_scope(_ledger("a", 0), ALL_TIME, t0)


class TestFindRank:
    def test_found(self, t0):
        entries = rank_cohort([_ledger("a", 10), _ledger("b", 5)], ALL_TIME, t0)
        assert find_rank(entries, "b") == Success(2)

    def test_not_found(self, t0):
        entries = rank_cohort([_ledger("a", 10)], ALL_TIME, t0)
        result = find_rank(entries, "zed")
        assert isinstance(result, Error)
        assert result.kind == ErrorKind.NOT_FOUND


class TestLeaderboardService:
    """Fetching, limits, stale fallback, and rank info."""

    @pytest.mark.asyncio
    async def test_get_leaderboard_with_limit(self, remote, t0):
        remote.cohorts[ALL_TIME] = [_ledger(f"u{i}", i * 10) for i in range(10)]
        service = LeaderboardService(remote)
        result = await service.get_leaderboard(ALL_TIME, now=t0, limit=3)
        assert [e.user_id for e in result.data] == ["u9", "u8", "u7"]

    @pytest.mark.asyncio
    async def test_unreachable_remote_is_not_an_empty_board(self, remote, t0):
        remote.failures.append(ConnectionError("refused"))
        service = LeaderboardService(remote)
        result = await service.get_leaderboard(ALL_TIME, now=t0)
        assert isinstance(result, Error)
        assert result.kind == ErrorKind.NETWORK
        assert result.partial is None

    @pytest.mark.asyncio
    async def test_failed_refresh_carries_stale_board(self, remote, t0):
        remote.cohorts[ALL_TIME] = [_ledger("a", 10)]
        service = LeaderboardService(remote)
        await service.get_leaderboard(ALL_TIME, now=t0)

        remote.failures.append(RemoteError("busy", kind=ErrorKind.SERVER))
        result = await service.get_leaderboard(ALL_TIME, now=t0)
        assert result.kind == ErrorKind.SERVER
        assert [e.user_id for e in result.partial] == ["a"]

    @pytest.mark.asyncio
    async def test_cached(self, remote, t0):
        service = LeaderboardService(remote)
        assert service.cached(ALL_TIME) == Loading()
        remote.cohorts[ALL_TIME] = [_ledger("a", 10)]
        await service.get_leaderboard(ALL_TIME, now=t0)
        assert [e.user_id for e in service.cached(ALL_TIME, now=t0).partial] == ["a"]

    @pytest.mark.asyncio
    async def test_user_rank(self, remote, t0):
        remote.cohorts[ALL_TIME] = [_ledger(f"u{i}", i * 10) for i in range(1, 5)]
        service = LeaderboardService(remote)
        result = await service.get_user_rank(ALL_TIME, "u3", now=t0)
        assert result.data.rank == 2
        assert result.data.total == 4
        assert result.data.percentile == 50.0

    @pytest.mark.asyncio
    async def test_user_rank_outside_window(self, remote, t0):
        remote.cohorts[WEEKLY] = [_ledger("a", 10, last=t0)]
        service = LeaderboardService(remote)
        result = await service.get_user_rank(WEEKLY, "b", now=t0)
        assert result.kind == ErrorKind.NOT_FOUND


class TestLeaderboardFeed:
    @pytest.mark.asyncio
    async def test_feed_starts_with_stale_board(self, remote, hub, t0):
        remote.cohorts[ALL_TIME] = [_ledger("a", 10)]
        service = LeaderboardService(remote, hub=hub)
        await service.get_leaderboard(ALL_TIME, now=t0)
        remote.cohorts[ALL_TIME] = [_ledger("a", 10), _ledger("b", 20)]

        sub = await service.observe_leaderboard(ALL_TIME)
        try:
            first = await sub.get(timeout=1)
            assert isinstance(first, Loading)
            assert [e.user_id for e in first.partial] == ["a"]
            fresh = await sub.get(timeout=1)
            assert [e.user_id for e in fresh.data] == ["b", "a"]
        finally:
            sub.cancel()

    @pytest.mark.asyncio
    async def test_failed_refresh_reaches_feed(self, remote, hub):
        remote.failures.append(ConnectionError("refused"))
        service = LeaderboardService(remote, hub=hub)
        sub = await service.observe_leaderboard(ALL_TIME)
        try:
            assert await sub.get(timeout=1) == Loading()
            failed = await sub.get(timeout=1)
            assert isinstance(failed, Error)
        finally:
            sub.cancel()
