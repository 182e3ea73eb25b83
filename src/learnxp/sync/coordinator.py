"""Sync coordinator: reconcile local ledgers with the remote source of truth.

Optimistic merge. The ledger tracks ``synced_xp`` (the server total as
of the last sync) and ``pending_xp`` (local XP the server has not
acknowledged). On sync:

1. Fetch the remote ledger. A user the remote has never seen (NOT_FOUND)
   syncs against an empty ledger.
2. If ``pending_xp > 0`` push it with the idempotency key
   ``sync:<user_id>:<synced_xp>:<pending_xp>`` and take the accepted
   total. A retried push of the same delta reuses the key, so the server
   never applies it twice.
3. Merge under the user's lock: ``total = max(local_now, accepted +
   xp_added_during_sync)``, max of the max-streaks, the streak with the
   later activity wins, badges unioned.

The local ledger is not touched until every remote call has succeeded,
so a failed sync leaves it exactly as it was. Retries are driven by the
caller through ``sync_with_retry``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from learnxp.errors import RemoteError, remote_error, storage_error
from learnxp.feeds.hub import FeedHub, Subscription, sync_key
from learnxp.progress.schemas import ProgressLedger
from learnxp.result import Error, ErrorKind, Loading, Result, Success, get_or_default, is_transient
from learnxp.sync.backoff import BackoffPolicy
from learnxp.time_utils import utcnow

if TYPE_CHECKING:
    from learnxp.collaborators import RemoteProgressSource
    from learnxp.gamification.daily_goal_service import DailyGoalTracker
    from learnxp.progress.ledger_service import ProgressLedgerService

logger = logging.getLogger(__name__)


def merge_remote(
    current: ProgressLedger,
    remote: ProgressLedger,
    accepted_total: int,
    pushed_pending: int,
) -> ProgressLedger:
    """Fold a remote ledger into ``current``.

    ``pushed_pending`` is the pending XP the sync accounted for; anything
    added locally since stays pending.
    """
    added_during_sync = max(0, current.pending_xp - pushed_pending)
    total = max(current.total_xp, accepted_total + added_during_sync)

    current_streak = current.current_streak
    last_activity_at = current.last_activity_at
    if remote.last_activity_at is not None and (
        last_activity_at is None or remote.last_activity_at > last_activity_at
    ):
        current_streak = remote.current_streak
        last_activity_at = remote.last_activity_at

    merged = current.model_copy(update={
        "display_name": current.display_name or remote.display_name,
        "total_xp": total,
        "synced_xp": accepted_total,
        "pending_xp": added_during_sync,
        "current_streak": current_streak,
        "max_streak": max(current.max_streak, remote.max_streak, current_streak),
        "last_activity_at": last_activity_at,
        "badges": current.badges + tuple(b for b in remote.badges if b not in current.badges),
        "stats": current.stats.merged(remote.stats),
    })
    if merged == current:
        return current
    return merged.model_copy(update={"updated_at": utcnow()})


class SyncCoordinator:
    """Runs syncs on demand and reports them on the ``sync:<user_id>`` feed."""

    def __init__(
        self,
        ledger: ProgressLedgerService,
        remote: RemoteProgressSource,
        *,
        goals: DailyGoalTracker | None = None,
        hub: FeedHub | None = None,
        backoff: BackoffPolicy | None = None,
        on_merged: Callable[[str], Awaitable[Any]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.ledger = ledger
        self.remote = remote
        self.goals = goals
        self.hub = hub
        self.backoff = backoff or BackoffPolicy()
        self.on_merged = on_merged
        self._sleep = sleep

    def _emit(self, user_id: str, result: Result[ProgressLedger]) -> None:
        if self.hub is not None:
            self.hub.publish(sync_key(user_id), result)

    def observe_sync(self, user_id: str) -> Subscription[ProgressLedger]:
        if self.hub is None:
            msg = "observe_sync needs a FeedHub"
            raise RuntimeError(msg)
        return self.hub.subscribe(sync_key(user_id))

    async def sync(self, user_id: str) -> Result[ProgressLedger]:
        """One sync attempt. Success carries the merged ledger."""
        local = await self.ledger.get_progress(user_id)
        if isinstance(local, Error):
            self._emit(user_id, local)
            return local
        snapshot: ProgressLedger = local.data  # type: ignore[union-attr]
        self._emit(user_id, Loading(partial=snapshot))

        try:
            remote = await self.remote.fetch_remote_ledger(user_id)
        except RemoteError as exc:
            if exc.kind != ErrorKind.NOT_FOUND:
                logger.warning("Failed to fetch remote ledger for user %s", user_id, exc_info=True)
                return self._fail(user_id, remote_error(exc, "Fetching remote ledger"), snapshot)
            logger.info("User %s unknown to the remote, syncing as first activity", user_id)
            remote = ProgressLedger.new(user_id)
        except Exception as exc:
            logger.warning("Failed to fetch remote ledger for user %s", user_id, exc_info=True)
            return self._fail(user_id, remote_error(exc, "Fetching remote ledger"), snapshot)

        pending = snapshot.pending_xp
        if pending > 0:
            # Same key for the same unacknowledged delta; the server applies it once
            idempotency_key = f"sync:{user_id}:{snapshot.synced_xp}:{pending}"
            try:
                accepted = await self.remote.push_xp_delta(user_id, pending, idempotency_key=idempotency_key)
            except Exception as exc:
                logger.warning("Failed to push %d XP for user %s", pending, user_id, exc_info=True)
                failed = remote_error(exc, "Pushing XP delta")
                return self._fail(user_id, failed, snapshot)
            logger.info("Pushed %d XP for user %s, server total %d", pending, user_id, accepted)
        else:
            accepted = remote.total_xp

        merge = functools.partial(merge_remote, remote=remote, accepted_total=accepted, pushed_pending=pending)
        result = await self.ledger.apply_merge(user_id, merge)
        if isinstance(result, Error):
            self._emit(user_id, result)
            return result

        merged: ProgressLedger = result.data  # type: ignore[union-attr]
        if merged != snapshot and self.on_merged is not None:
            await self.on_merged(user_id)
            refreshed = await self.ledger.get_progress(user_id)
            if isinstance(refreshed, Success):
                result = refreshed

        self._emit(user_id, result)
        return result

    def _fail(self, user_id: str, failed: Error, snapshot: ProgressLedger) -> Error[ProgressLedger]:
        result: Error[ProgressLedger] = Error(failed.message, kind=failed.kind, cause=failed.cause, partial=snapshot)
        self._emit(user_id, result)
        return result

    async def sync_with_retry(self, user_id: str, policy: BackoffPolicy | None = None) -> Result[ProgressLedger]:
        """Sync, backing off between attempts on transient failures only.

        Cancelling the caller cancels the pending sleep or the attempt in
        flight; the ledger is never left half-merged.
        """
        policy = policy or self.backoff
        attempt = 1
        while True:
            result = await self.sync(user_id)
            if not isinstance(result, Error) or not is_transient(result.kind):
                return result
            if attempt >= policy.max_attempts:
                logger.warning("Sync for user %s gave up after %d attempts: %s", user_id, attempt, result.message)
                return result
            delay = policy.delay(attempt)
            logger.info("Sync for user %s failed (%s), retrying in %.1fs", user_id, result.kind.value, delay)
            await self._sleep(delay)
            attempt += 1

    async def pending_user_ids(self) -> Result[list[str]]:
        """Users with XP not yet acknowledged by the server, from the store and the arena."""
        try:
            stored = await self.ledger.store.list_unsynced_user_ids()
        except Exception as exc:
            logger.warning("Failed to list unsynced users", exc_info=True)
            return storage_error(exc, "Listing unsynced users")
        return Success(list(dict.fromkeys([*stored, *self.ledger.unsynced_user_ids()])))

    async def sync_pending(
        self,
        policy: BackoffPolicy | None = None,
    ) -> Result[dict[str, Result[ProgressLedger]]]:
        """Sync every user with unacknowledged XP. One user's failure does not stop the rest."""
        users = await self.pending_user_ids()
        if isinstance(users, Error):
            return users  # type: ignore[return-value]
        results: dict[str, Result[ProgressLedger]] = {}
        for user_id in users.data:  # type: ignore[union-attr]
            results[user_id] = await self.sync_with_retry(user_id, policy)
        return Success(results)

    async def flush_pending(self) -> Result[int]:
        """Retry local saves that failed earlier (ledgers, then daily goals)."""
        results = [await self.ledger.flush_pending()]
        if self.goals is not None:
            results.append(await self.goals.flush_pending())

        flushed = sum(_flushed_count(result) for result in results)
        failed = next((result for result in results if isinstance(result, Error)), None)
        if failed is not None:
            return Error(failed.message, kind=ErrorKind.STORAGE, cause=failed.cause, partial=flushed)
        return Success(flushed)


def _flushed_count(result: Result[int]) -> int:
    if isinstance(result, Error):
        return result.partial or 0
    return get_or_default(result, 0)
