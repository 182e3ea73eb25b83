"""Progress ledger service: XP, levels and streaks per user.

The service keeps an arena of ledger snapshots keyed by user id. Every
transition runs under that user's lock: load, compute, commit to the
arena, persist. The arena commit never awaits, so readers see either the
old snapshot or the new one. Persistence is shielded from the caller's
cancellation. A failed save leaves the new snapshot committed and marked
dirty until ``flush_pending`` stores it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from learnxp.errors import storage_error
from learnxp.feeds.hub import FeedHub, Subscription, progress_key
from learnxp.locks import KeyedLock
from learnxp.progress.rewards import streak_bonus
from learnxp.progress.schemas import ProgressLedger, StreakStatus, XpEvent, XpOutcome
from learnxp.progress.streaks import StreakPolicy, advance_streak, effective_streak, streak_status
from learnxp.result import Error, ErrorKind, Result, Success
from learnxp.time_utils import ensure_aware, utcnow

if TYPE_CHECKING:
    from learnxp.collaborators import ProgressStore
    from learnxp.notifications.publisher import ProgressEventPublisher

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    ledger: ProgressLedger
    dirty: bool = False


class ProgressLedgerService:
    """Single writer for every user's ProgressLedger."""

    def __init__(
        self,
        store: ProgressStore,
        *,
        policy: StreakPolicy | None = None,
        bonus_multiplier: float = 0.1,
        hub: FeedHub | None = None,
        publisher: ProgressEventPublisher | None = None,
    ) -> None:
        self.store = store
        self.policy = policy or StreakPolicy()
        self.bonus_multiplier = bonus_multiplier
        self.hub = hub
        self.publisher = publisher
        self._slots: dict[str, _Slot] = {}
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------------

    async def _load(self, user_id: str) -> ProgressLedger:
        """Current snapshot; a user the store has never seen starts zeroed.

        Caller holds the user's lock. Store exceptions propagate.
        """
        slot = self._slots.get(user_id)
        if slot is not None:
            return slot.ledger
        ledger = await self.store.load_ledger(user_id)
        if ledger is None:
            ledger = ProgressLedger.new(user_id)
        self._slots[user_id] = _Slot(ledger)
        return ledger

    def _commit(self, ledger: ProgressLedger) -> _Slot:
        slot = self._slots.get(ledger.user_id)
        if slot is None:
            slot = self._slots[ledger.user_id] = _Slot(ledger, dirty=True)
        else:
            slot.ledger = ledger
            slot.dirty = True
        return slot

    async def _persist(self, slot: _Slot, ledger: ProgressLedger) -> Exception | None:
        try:
            await self.store.save_ledger(ledger)
        except Exception as exc:
            logger.warning("Failed to save ledger for user %s", ledger.user_id, exc_info=True)
            return exc
        # A newer snapshot may have been committed while this one was saving
        slot.dirty = slot.ledger is not ledger
        return None

    async def _commit_and_persist(self, ledger: ProgressLedger) -> Exception | None:
        slot = self._commit(ledger)
        return await asyncio.shield(self._persist(slot, ledger))

    def _publish_progress(self, ledger: ProgressLedger) -> None:
        if self.hub is not None:
            self.hub.publish(progress_key(ledger.user_id), Success(ledger))

    # ------------------------------------------------------------------
    # XP
    # ------------------------------------------------------------------

    async def add_xp(self, event: XpEvent) -> Result[XpOutcome]:
        """Grant XP for one event, plus the streak bonus it earns.

        The bonus is based on the streak as it stands when the event
        happened; a lapsed streak earns nothing.
        """
        if event.amount <= 0:
            return Error(f"XP amount must be positive, got {event.amount}", kind=ErrorKind.VALIDATION)
        if not event.user_id:
            return Error("XP event has no user id", kind=ErrorKind.VALIDATION)

        async with self._locks.hold(event.user_id):
            try:
                ledger = await self._load(event.user_id)
            except Exception as exc:
                logger.warning("Failed to load ledger for user %s", event.user_id, exc_info=True)
                return storage_error(exc, "Loading ledger")

            now = ensure_aware(event.occurred_at)
            streak = effective_streak(ledger, now, self.policy)
            bonus = streak_bonus(event.amount, streak, self.bonus_multiplier, event.source)
            earned = event.amount + bonus

            updated = ledger.model_copy(update={
                "total_xp": ledger.total_xp + earned,
                "pending_xp": ledger.pending_xp + earned,
                "stats": ledger.stats.after(event.source),
                "updated_at": utcnow(),
            })
            outcome = XpOutcome(
                xp_earned=earned,
                new_total_xp=updated.total_xp,
                previous_level=ledger.level,
                new_level=updated.level,
                leveled_up=updated.level > ledger.level,
                streak_bonus=bonus,
            )
            failure = await self._commit_and_persist(updated)

        if outcome.leveled_up:
            logger.info("User %s reached level %d", event.user_id, outcome.new_level)
        self._publish_progress(updated)
        if self.publisher is not None:
            await self.publisher.xp_gained(event.user_id, outcome, event.source)

        if failure is not None:
            return storage_error(failure, "Saving ledger", partial=outcome)
        return Success(outcome)

    # ------------------------------------------------------------------
    # Streaks
    # ------------------------------------------------------------------

    async def update_streak(self, user_id: str, now: datetime | None = None) -> Result[StreakStatus]:
        """Record activity at ``now`` against the user's streak."""
        now = ensure_aware(now or utcnow())

        async with self._locks.hold(user_id):
            try:
                ledger = await self._load(user_id)
            except Exception as exc:
                logger.warning("Failed to load ledger for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading ledger")

            transition = advance_streak(ledger, now, self.policy)
            updated = ledger
            failure = None
            if transition.changed:
                updated = ledger.model_copy(update={
                    "current_streak": transition.current_streak,
                    "max_streak": transition.max_streak,
                    "last_activity_at": transition.last_activity_at,
                    "updated_at": utcnow(),
                })
                failure = await self._commit_and_persist(updated)

        status = streak_status(updated, now, self.policy).model_copy(update={
            "streak_broken": transition.streak_broken,
            "is_active_today": transition.is_active_today,
        })

        if transition.changed:
            if transition.streak_broken:
                logger.info("Streak broken for user %s (best %d)", user_id, updated.max_streak)
            self._publish_progress(updated)
            if self.publisher is not None:
                await self.publisher.streak_update(user_id, status)

        if failure is not None:
            return storage_error(failure, "Saving ledger", partial=status)
        return Success(status)

    async def get_streak_status(self, user_id: str, now: datetime | None = None) -> Result[StreakStatus]:
        """Streak status at ``now``. Never stored; ``hours_until_lost`` is fresh on every read."""
        now = ensure_aware(now or utcnow())
        result = await self.get_progress(user_id)
        if not isinstance(result, Success):
            return result  # type: ignore[return-value]
        return Success(streak_status(result.data, now, self.policy))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_progress(self, user_id: str) -> Result[ProgressLedger]:
        async with self._locks.hold(user_id):
            try:
                ledger = await self._load(user_id)
            except Exception as exc:
                logger.warning("Failed to load ledger for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading ledger")
        return Success(ledger)

    async def observe_progress(self, user_id: str) -> Subscription[ProgressLedger]:
        """Feed of the user's ledger: Loading, the current snapshot, then every change."""
        if self.hub is None:
            msg = "observe_progress needs a FeedHub"
            raise RuntimeError(msg)
        key = progress_key(user_id)
        sub = self.hub.subscribe(key)
        try:
            self.hub.publish(key, await self.get_progress(user_id))
        except BaseException:
            sub.cancel()
            raise
        return sub

    def dirty_user_ids(self) -> list[str]:
        """Users whose latest snapshot has not reached the store."""
        return [user_id for user_id, slot in self._slots.items() if slot.dirty]

    def unsynced_user_ids(self) -> list[str]:
        """Users in the arena holding XP the server has not acknowledged."""
        return [user_id for user_id, slot in self._slots.items() if slot.ledger.unsynced]

    # ------------------------------------------------------------------
    # Other transitions
    # ------------------------------------------------------------------

    async def award_badge(self, user_id: str, badge_id: str) -> Result[bool]:
        """Add ``badge_id`` to the ledger. Success(False) if it was already there."""
        async with self._locks.hold(user_id):
            try:
                ledger = await self._load(user_id)
            except Exception as exc:
                logger.warning("Failed to load ledger for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading ledger")
            if badge_id in ledger.badges:
                return Success(False)
            updated = ledger.model_copy(update={
                "badges": (*ledger.badges, badge_id),
                "updated_at": utcnow(),
            })
            failure = await self._commit_and_persist(updated)

        self._publish_progress(updated)
        if failure is not None:
            return storage_error(failure, "Saving ledger", partial=True)
        return Success(True)

    async def apply_merge(
        self,
        user_id: str,
        merge: Callable[[ProgressLedger], ProgressLedger],
    ) -> Result[ProgressLedger]:
        """Replace the ledger with ``merge(current)`` atomically.

        Used by sync to fold remote state into whatever the ledger holds at
        the moment of the merge. An unchanged result is not re-saved.
        """
        async with self._locks.hold(user_id):
            try:
                ledger = await self._load(user_id)
            except Exception as exc:
                logger.warning("Failed to load ledger for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading ledger")
            merged = merge(ledger)
            if merged == ledger:
                return Success(ledger)
            failure = await self._commit_and_persist(merged)

        self._publish_progress(merged)
        if failure is not None:
            return storage_error(failure, "Saving ledger", partial=merged)
        return Success(merged)

    async def reset_ledger(self, user_id: str) -> Result[ProgressLedger]:
        """Zero every counter. The only way ``total_xp`` ever goes down."""
        async with self._locks.hold(user_id):
            try:
                ledger = await self._load(user_id)
            except Exception as exc:
                logger.warning("Failed to load ledger for user %s", user_id, exc_info=True)
                return storage_error(exc, "Loading ledger")
            fresh = ProgressLedger.new(user_id, display_name=ledger.display_name)
            failure = await self._commit_and_persist(fresh)

        logger.info("Ledger reset for user %s", user_id)
        self._publish_progress(fresh)
        if failure is not None:
            return storage_error(failure, "Saving ledger", partial=fresh)
        return Success(fresh)

    async def flush_pending(self) -> Result[int]:
        """Retry saving every dirty snapshot. Success carries the number saved."""
        flushed = 0
        failed: list[str] = []
        last_failure: Exception | None = None

        for user_id in self.dirty_user_ids():
            async with self._locks.hold(user_id):
                slot = self._slots.get(user_id)
                if slot is None or not slot.dirty:
                    continue
                failure = await asyncio.shield(self._persist(slot, slot.ledger))
            if failure is None:
                flushed += 1
            else:
                failed.append(user_id)
                last_failure = failure

        if failed:
            return Error(
                f"Failed to save {len(failed)} ledger(s): {', '.join(failed)}",
                kind=ErrorKind.STORAGE,
                cause=last_failure,
                partial=flushed,
            )
        if flushed:
            logger.info("Flushed %d pending ledger(s)", flushed)
        return Success(flushed)
