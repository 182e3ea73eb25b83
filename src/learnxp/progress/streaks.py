"""Streak state machine: NoActivity -> ActiveToday -> GracePeriod -> Broken.

Pure functions of (ledger, now, policy); the ledger service applies the
result under the user's lock. Nothing here reads the clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from learnxp.progress.schemas import ProgressLedger, StreakStatus
from learnxp.time_utils import ensure_aware, local_date, start_of_day


@dataclass(frozen=True)
class StreakPolicy:
    """When a missed day breaks a streak.

    With ``grace_hours`` unset the grace window runs to the end of the
    calendar day after the last activity. Otherwise it is the last
    activity plus 24h plus ``grace_hours``. The deadline itself is still
    within grace.
    """

    timezone: str = "UTC"
    grace_hours: float | None = None

    def deadline(self, last_activity_at: datetime) -> datetime:
        last = ensure_aware(last_activity_at)
        if self.grace_hours is None:
            day = local_date(last, self.timezone)
            return start_of_day(day + timedelta(days=2), self.timezone)
        return last + timedelta(hours=24 + self.grace_hours)

    def is_lapsed(self, last_activity_at: datetime, now: datetime) -> bool:
        return ensure_aware(now) > self.deadline(last_activity_at)


@dataclass(frozen=True)
class StreakTransition:
    current_streak: int
    max_streak: int
    last_activity_at: datetime | None
    streak_broken: bool
    is_active_today: bool
    changed: bool


def advance_streak(ledger: ProgressLedger, now: datetime, policy: StreakPolicy) -> StreakTransition:
    """Apply one activity at ``now`` to the ledger's streak counters.

    An activity after the grace window lapsed resets ``current_streak`` to 0
    and reports ``streak_broken``. That returning day does not count toward
    the new streak: later activity on the same day is a no-op, and the
    streak reaches 1 on the next consecutive day.
    """
    now = ensure_aware(now)
    last = ledger.last_activity_at

    if last is None:
        return StreakTransition(
            current_streak=1,
            max_streak=max(ledger.max_streak, 1),
            last_activity_at=now,
            streak_broken=False,
            is_active_today=True,
            changed=True,
        )

    today = local_date(now, policy.timezone)
    last_day = local_date(last, policy.timezone)

    # Same day, or an event stamped before the last recorded activity
    if today <= last_day:
        return StreakTransition(
            current_streak=ledger.current_streak,
            max_streak=ledger.max_streak,
            last_activity_at=last,
            streak_broken=False,
            is_active_today=today == last_day,
            changed=False,
        )

    if policy.is_lapsed(last, now):
        return StreakTransition(
            current_streak=0,
            max_streak=ledger.max_streak,
            last_activity_at=now,
            streak_broken=True,
            is_active_today=True,
            changed=True,
        )

    current = ledger.current_streak + 1
    return StreakTransition(
        current_streak=current,
        max_streak=max(ledger.max_streak, current),
        last_activity_at=now,
        streak_broken=False,
        is_active_today=True,
        changed=True,
    )


def effective_streak(ledger: ProgressLedger, now: datetime, policy: StreakPolicy) -> int:
    """The streak as it stands at ``now``: zero once the grace window lapsed."""
    if ledger.last_activity_at is None:
        return 0
    if policy.is_lapsed(ledger.last_activity_at, now):
        return 0
    return ledger.current_streak


def streak_status(ledger: ProgressLedger, now: datetime, policy: StreakPolicy) -> StreakStatus:
    """Read-only status at ``now``. ``hours_until_lost`` is never stored."""
    now = ensure_aware(now)
    last = ledger.last_activity_at
    if last is None:
        return StreakStatus(current_streak=0, max_streak=ledger.max_streak)

    if policy.is_lapsed(last, now):
        return StreakStatus(
            current_streak=0,
            max_streak=ledger.max_streak,
            streak_broken=ledger.current_streak > 0,
            hours_until_lost=0.0,
            is_active_today=False,
        )

    remaining = (policy.deadline(last) - now).total_seconds() / 3600
    return StreakStatus(
        current_streak=ledger.current_streak,
        max_streak=ledger.max_streak,
        streak_broken=False,
        hours_until_lost=max(0.0, remaining),
        is_active_today=local_date(now, policy.timezone) == local_date(last, policy.timezone),
    )
