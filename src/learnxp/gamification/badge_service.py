"""Badge evaluation and award with duplicate prevention.

Awarding goes through the ledger service, which holds the user's lock for
the badge insert and again for the badge XP grant. The evaluator itself
holds no lock, so it can call back into the ledger freely.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from learnxp.gamification.catalog import BadgeCatalog
from learnxp.gamification.schemas import Badge, BadgeInfo
from learnxp.progress.schemas import XpEvent, XpSource
from learnxp.result import Error, ErrorKind, Result, Success
from learnxp.time_utils import utcnow

if TYPE_CHECKING:
    from learnxp.notifications.publisher import ProgressEventPublisher
    from learnxp.progress.ledger_service import ProgressLedgerService

logger = logging.getLogger(__name__)


class BadgeEvaluator:
    """Evaluates catalog badges against a user's ledger."""

    def __init__(
        self,
        ledger: ProgressLedgerService,
        catalog: BadgeCatalog,
        publisher: ProgressEventPublisher | None = None,
    ) -> None:
        self.ledger = ledger
        self.catalog = catalog
        self.publisher = publisher

    async def check_and_award_badges(self, user_id: str, now: datetime | None = None) -> Result[list[Badge]]:
        """Award every badge the user now qualifies for and does not hold.

        Badge XP can unlock further badges (level badges), so evaluation
        repeats until nothing new qualifies. Calling again straight after
        returns ``Success([])``.

        A failed save does not stop the evaluation: the award is already
        committed in memory. The result is then a STORAGE error whose
        ``partial`` lists every badge awarded.
        """
        awarded: list[Badge] = []
        storage_failure: Error | None = None

        while True:
            snapshot = await self.ledger.get_progress(user_id)
            if isinstance(snapshot, Error):
                return Error(snapshot.message, kind=snapshot.kind, cause=snapshot.cause, partial=awarded)
            ledger = snapshot.data  # type: ignore[union-attr]

            candidates = [
                badge for badge in self.catalog.badges
                if badge.id not in ledger.badges and self.catalog.is_eligible(badge, ledger)
            ]
            if not candidates:
                break

            for badge in candidates:
                result = await self.ledger.award_badge(user_id, badge.id)
                if isinstance(result, Error):
                    if result.partial is not True:
                        return Error(result.message, kind=result.kind, cause=result.cause, partial=awarded)
                    storage_failure = result
                elif not result.data:
                    # Awarded by a concurrent evaluation
                    continue

                awarded.append(badge)
                logger.info("Badge %s awarded to user %s", badge.id, user_id)

                if badge.xp_reward > 0:
                    xp = await self.ledger.add_xp(XpEvent(
                        user_id=user_id,
                        amount=badge.xp_reward,
                        source=XpSource.BADGE_EARNED,
                        description=f'Earned badge: "{badge.name}"',
                        occurred_at=now or utcnow(),
                    ))
                    if isinstance(xp, Error):
                        if xp.partial is None:
                            return Error(xp.message, kind=xp.kind, cause=xp.cause, partial=awarded)
                        storage_failure = xp

                if self.publisher is not None:
                    await self.publisher.badge_earned(user_id, badge)

        if storage_failure is not None:
            return Error(
                storage_failure.message,
                kind=ErrorKind.STORAGE,
                cause=storage_failure.cause,
                partial=awarded,
            )
        return Success(awarded)

    async def get_available_badges(self, user_id: str) -> Result[list[BadgeInfo]]:
        """Every catalog badge with earned flag and progress for this user."""
        snapshot = await self.ledger.get_progress(user_id)
        if isinstance(snapshot, Error):
            return snapshot  # type: ignore[return-value]
        ledger = snapshot.data  # type: ignore[union-attr]
        return Success([
            BadgeInfo(
                badge=badge,
                is_earned=badge.id in ledger.badges,
                progress=self.catalog.progress_for(badge, ledger),
            )
            for badge in self.catalog.badges
        ])
