"""Deterministic leaderboard ranking.

Ledgers ranked by total_xp DESC, then user_id ASC as the tiebreaker, so
re-ranking the same cohort always yields the same order. Ranks are dense
row positions 1..N. Nothing here mutates a ledger.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from learnxp.competition.schemas import LeaderboardEntry, LeaderboardScope
from learnxp.progress.schemas import ProgressLedger
from learnxp.result import Error, ErrorKind, Result, Success
from learnxp.time_utils import ensure_aware, get_month_start, get_week_start


def window_start(scope: LeaderboardScope, now: datetime, tz: str = "UTC") -> datetime | None:
    """Start of the scope's activity window; None for all-time."""
    if scope == LeaderboardScope.WEEKLY:
        return get_week_start(now, tz)
    if scope == LeaderboardScope.MONTHLY:
        return get_month_start(now, tz)
    return None


def in_scope(ledger: ProgressLedger, scope: LeaderboardScope, now: datetime, tz: str = "UTC") -> bool:
    start = window_start(scope, now, tz)
    if start is None:
        return True
    if ledger.last_activity_at is None:
        return False
    return ensure_aware(ledger.last_activity_at) >= start


def display_name_for(ledger: ProgressLedger) -> str:
    return ledger.display_name or f"Learner-{ledger.user_id}"


def rank_cohort(
    cohort: Iterable[ProgressLedger],
    scope: LeaderboardScope,
    now: datetime,
    current_user_id: str | None = None,
    tz: str = "UTC",
) -> list[LeaderboardEntry]:
    """Rank the in-scope part of a cohort snapshot.

    Duplicate user ids keep the entry with the most XP.
    """
    best: dict[str, ProgressLedger] = {}
    for ledger in cohort:
        if not in_scope(ledger, scope, now, tz):
            continue
        seen = best.get(ledger.user_id)
        if seen is None or ledger.total_xp > seen.total_xp:
            best[ledger.user_id] = ledger

    ordered = sorted(best.values(), key=lambda ledger: (-ledger.total_xp, ledger.user_id))

    return [
        LeaderboardEntry(
            rank=idx + 1,
            user_id=ledger.user_id,
            display_name=display_name_for(ledger),
            total_xp=ledger.total_xp,
            level=ledger.level,
            current_streak=ledger.current_streak,
            is_current_user=ledger.user_id == current_user_id,
        )
        for idx, ledger in enumerate(ordered)
    ]


def find_rank(entries: list[LeaderboardEntry], user_id: str) -> Result[int]:
    """1-based rank of ``user_id``, or NOT_FOUND if the user is outside the window."""
    for entry in entries:
        if entry.user_id == user_id:
            return Success(entry.rank)
    return Error(f"User {user_id} is not ranked in this leaderboard", kind=ErrorKind.NOT_FOUND)
