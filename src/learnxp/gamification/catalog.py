"""Badge catalog: badge definitions plus the eligibility rules behind them.

Seed badges carry a ``trigger_type`` and ``trigger_config``; the catalog
turns each into a pure rule over the ledger. Custom badges register their
own rule under the badge's ``predicate_id``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from learnxp.gamification.schemas import Badge
from learnxp.gamification.seed import BADGE_SEED_DATA
from learnxp.progress.schemas import ActivityStats, ProgressLedger

logger = logging.getLogger(__name__)

Predicate = Callable[[ProgressLedger, ActivityStats], bool]
ProgressFn = Callable[[ProgressLedger, ActivityStats], float]

# trigger_type -> the counter a threshold is compared against
_TRIGGER_COUNTERS: dict[str, Callable[[ProgressLedger, ActivityStats], int]] = {
    "streak_days": lambda ledger, stats: ledger.current_streak,
    "level": lambda ledger, stats: ledger.level,
    "quiz_count": lambda ledger, stats: stats.quizzes_completed,
    "perfect_quiz_count": lambda ledger, stats: stats.perfect_quizzes,
    "chapter_count": lambda ledger, stats: stats.chapters_completed,
    "book_count": lambda ledger, stats: stats.books_completed,
    "ai_challenge_count": lambda ledger, stats: stats.ai_challenges,
    "daily_goal_count": lambda ledger, stats: stats.daily_goals_met,
    "total_xp": lambda ledger, stats: ledger.total_xp,
}


@dataclass(frozen=True)
class EligibilityRule:
    check: Predicate
    progress: ProgressFn | None = None


def threshold_rule(trigger_type: str, threshold: int) -> EligibilityRule:
    """Rule that holds once a counter reaches ``threshold``."""
    counter = _TRIGGER_COUNTERS[trigger_type]
    required = max(1, threshold)

    def check(ledger: ProgressLedger, stats: ActivityStats) -> bool:
        return counter(ledger, stats) >= required

    def progress(ledger: ProgressLedger, stats: ActivityStats) -> float:
        return min(1.0, counter(ledger, stats) / required)

    return EligibilityRule(check=check, progress=progress)


def badge_from_seed(data: dict) -> Badge:
    return Badge(
        id=data["slug"],
        name=data["name"],
        description=data.get("description", ""),
        category=data.get("category", "achievement"),
        rarity=data.get("rarity", "common"),
        xp_reward=data.get("xp_reward", 0),
        predicate_id=data.get("predicate_id", data["slug"]),
        trigger_type=data.get("trigger_type"),
        trigger_config=data.get("trigger_config", {}),
        sort_order=data.get("sort_order", 0),
    )


class BadgeCatalog:
    """Read-only set of badges with one eligibility rule per predicate id."""

    def __init__(self, badges: Iterable[Badge], rules: dict[str, EligibilityRule] | None = None) -> None:
        self._badges: dict[str, Badge] = {}
        for badge in sorted(badges, key=lambda b: b.sort_order):
            if badge.id in self._badges:
                msg = f"Duplicate badge id: {badge.id}"
                raise ValueError(msg)
            self._badges[badge.id] = badge
        self._rules: dict[str, EligibilityRule] = dict(rules or {})

        for badge in self._badges.values():
            if badge.predicate_id in self._rules or badge.trigger_type is None:
                continue
            if badge.trigger_type not in _TRIGGER_COUNTERS:
                logger.warning("Unknown trigger type %s for badge %s", badge.trigger_type, badge.id)
                continue
            threshold = int(badge.trigger_config.get("threshold", 1))
            self._rules[badge.predicate_id] = threshold_rule(badge.trigger_type, threshold)

    @classmethod
    def from_seed(cls, seed: list[dict] | None = None) -> BadgeCatalog:
        return cls(badge_from_seed(item) for item in (BADGE_SEED_DATA if seed is None else seed))

    @property
    def badges(self) -> list[Badge]:
        return list(self._badges.values())

    def get(self, badge_id: str) -> Badge | None:
        return self._badges.get(badge_id)

    def register_rule(self, predicate_id: str, check: Predicate, progress: ProgressFn | None = None) -> None:
        """Attach a custom eligibility rule. Replaces any existing rule for the id."""
        self._rules[predicate_id] = EligibilityRule(check=check, progress=progress)

    def rule_for(self, badge: Badge) -> EligibilityRule | None:
        return self._rules.get(badge.predicate_id)

    def is_eligible(self, badge: Badge, ledger: ProgressLedger) -> bool:
        rule = self.rule_for(badge)
        if rule is None:
            return False
        try:
            return bool(rule.check(ledger, ledger.stats))
        except Exception:
            logger.warning("Badge rule %s failed", badge.predicate_id, exc_info=True)
            return False

    def progress_for(self, badge: Badge, ledger: ProgressLedger) -> float:
        """Progress toward ``badge`` in [0, 1]; 1.0 once earned."""
        if badge.id in ledger.badges:
            return 1.0
        rule = self.rule_for(badge)
        if rule is None:
            return 0.0
        if rule.progress is None:
            return 1.0 if self.is_eligible(badge, ledger) else 0.0
        try:
            value = float(rule.progress(ledger, ledger.stats))
        except Exception:
            logger.warning("Badge progress %s failed", badge.predicate_id, exc_info=True)
            return 0.0
        return min(1.0, max(0.0, value))

    def __len__(self) -> int:
        return len(self._badges)

    def __contains__(self, badge_id: object) -> bool:
        return badge_id in self._badges


def load_catalog(path: str | Path | None = None) -> BadgeCatalog:
    """Catalog from a JSON file in seed format, or the built-in seed."""
    if path is None:
        return BadgeCatalog.from_seed()
    with Path(path).open(encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        msg = f"Badge catalog {path} must be a JSON list"
        raise ValueError(msg)
    logger.info("Loaded %d badges from %s", len(data), path)
    return BadgeCatalog.from_seed(data)
