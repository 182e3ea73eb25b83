"""Tests for the progress ledger service: XP grants, streaks, persistence failures."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from learnxp.progress.ledger_service import ProgressLedgerService
from learnxp.progress.level_thresholds import xp_threshold
from learnxp.progress.schemas import ProgressLedger, XpEvent, XpSource
from learnxp.result import Error, ErrorKind, Loading, Success
from learnxp.stores.memory import InMemoryProgressStore


def _event(user_id="u1", amount=10, source=XpSource.CHAPTER_COMPLETED, at=None):
    kwargs = {"user_id": user_id, "amount": amount, "source": source}
    if at is not None:
        kwargs["occurred_at"] = at
    return XpEvent(**kwargs)


class TestAddXp:
    """XP grants and their outcomes."""

    @pytest.mark.asyncio
    async def test_grant_on_unknown_user_starts_from_zero(self, ledger_service, t0):
        result = await ledger_service.add_xp(_event(amount=30, at=t0))
        assert isinstance(result, Success)
        assert result.data.xp_earned == 30
        assert result.data.new_total_xp == 30
        assert result.data.previous_level == 1
        assert not result.data.leveled_up

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, ledger_service, store):
        result = await ledger_service.add_xp(_event(amount=0))
        assert isinstance(result, Error)
        assert result.kind == ErrorKind.VALIDATION
        assert store.save_count == 0

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, ledger_service):
        result = await ledger_service.add_xp(_event(amount=-5))
        assert isinstance(result, Error)
        assert result.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_crossing_threshold_levels_up(self, ledger_service, store, t0):
        store.ledgers["u1"] = ProgressLedger(user_id="u1", total_xp=xp_threshold(5) - 1)
        result = await ledger_service.add_xp(_event(amount=1, at=t0))
        outcome = result.data
        assert outcome.previous_level == 4
        assert outcome.new_level == 5
        assert outcome.leveled_up

    @pytest.mark.asyncio
    async def test_streak_bonus_applied(self, ledger_service, store, t0):
        store.ledgers["u1"] = ProgressLedger(
            user_id="u1", current_streak=3, last_activity_at=t0 - timedelta(days=1),
        )
        result = await ledger_service.add_xp(_event(amount=50, at=t0))
        assert result.data.streak_bonus == 15
        assert result.data.xp_earned == 65

    @pytest.mark.asyncio
    async def test_lapsed_streak_earns_no_bonus(self, ledger_service, store, t0):
        store.ledgers["u1"] = ProgressLedger(
            user_id="u1", current_streak=3, last_activity_at=t0 - timedelta(days=3),
        )
        result = await ledger_service.add_xp(_event(amount=50, at=t0))
        assert result.data.streak_bonus == 0

    @pytest.mark.asyncio
    async def test_stats_and_pending_updated(self, ledger_service, t0):
        await ledger_service.add_xp(_event(amount=30, source=XpSource.QUIZ_PERFECT, at=t0))
        ledger = (await ledger_service.get_progress("u1")).data
        assert ledger.stats.quizzes_completed == 1
        assert ledger.stats.perfect_quizzes == 1
        assert ledger.pending_xp == 30
        assert ledger.unsynced

    @pytest.mark.asyncio
    async def test_publisher_notified(self, store, t0):
        publisher = AsyncMock()
        service = ProgressLedgerService(store, publisher=publisher)
        await service.add_xp(_event(amount=10, at=t0))
        publisher.xp_gained.assert_awaited_once()
        args = publisher.xp_gained.await_args.args
        assert args[0] == "u1"
        assert args[2] == XpSource.CHAPTER_COMPLETED


class TestConcurrency:
    """Per-user serialization and cancellation."""

    @pytest.mark.asyncio
    async def test_concurrent_grants_are_not_lost(self):
        store = InMemoryProgressStore(delay=0.001)
        service = ProgressLedgerService(store)
        results = await asyncio.gather(*(service.add_xp(_event(amount=10)) for _ in range(50)))
        assert all(isinstance(r, Success) for r in results)
        assert (await service.get_progress("u1")).data.total_xp == 500
        assert store.ledgers["u1"].total_xp == 500
        assert sorted(r.data.new_total_xp for r in results) == list(range(10, 510, 10))

    @pytest.mark.asyncio
    async def test_users_do_not_block_each_other(self):
        store = InMemoryProgressStore(delay=0.001)
        service = ProgressLedgerService(store)
        await asyncio.gather(*(
            service.add_xp(_event(user_id=f"u{i % 5}", amount=10)) for i in range(25)
        ))
        for i in range(5):
            assert store.ledgers[f"u{i}"].total_xp == 50

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_lock_leaves_no_trace(self):
        store = InMemoryProgressStore(delay=0.05)
        service = ProgressLedgerService(store)
        first = asyncio.create_task(service.add_xp(_event(amount=10)))
        second = asyncio.create_task(service.add_xp(_event(amount=99)))
        await asyncio.sleep(0.01)
        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second
        assert isinstance(await first, Success)
        assert (await service.get_progress("u1")).data.total_xp == 10

    @pytest.mark.asyncio
    async def test_cancel_during_save_still_persists(self):
        store = InMemoryProgressStore(delay=0.05)
        service = ProgressLedgerService(store)
        task = asyncio.create_task(service.add_xp(_event(amount=10)))
        # Load takes 0.05s; cancel lands inside the save
        await asyncio.sleep(0.075)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.1)
        assert store.ledgers["u1"].total_xp == 10
        assert service.dirty_user_ids() == []


class TestStorageFailures:
    """Failed saves keep the computed value and leave it for flush_pending."""

    @pytest.mark.asyncio
    async def test_save_failure_returns_partial_outcome(self, ledger_service, store, t0):
        store.fail_saves = True
        result = await ledger_service.add_xp(_event(amount=25, at=t0))
        assert isinstance(result, Error)
        assert result.kind == ErrorKind.STORAGE
        assert result.partial.new_total_xp == 25
        assert ledger_service.dirty_user_ids() == ["u1"]
        # Committed in memory even though the save failed
        assert (await ledger_service.get_progress("u1")).data.total_xp == 25

    @pytest.mark.asyncio
    async def test_flush_pending_saves_dirty_snapshots(self, ledger_service, store, t0):
        store.fail_saves = True
        await ledger_service.add_xp(_event(amount=25, at=t0))

        failed = await ledger_service.flush_pending()
        assert isinstance(failed, Error)
        assert failed.partial == 0

        store.fail_saves = False
        flushed = await ledger_service.flush_pending()
        assert flushed == Success(1)
        assert store.ledgers["u1"].total_xp == 25
        assert ledger_service.dirty_user_ids() == []

    @pytest.mark.asyncio
    async def test_load_failure_is_storage_error(self, ledger_service, store):
        store.fail_loads = True
        result = await ledger_service.add_xp(_event(amount=10))
        assert isinstance(result, Error)
        assert result.kind == ErrorKind.STORAGE
        assert result.partial is None

    @pytest.mark.asyncio
    async def test_streak_save_failure_carries_status(self, ledger_service, store, t0):
        store.fail_saves = True
        result = await ledger_service.update_streak("u1", now=t0)
        assert isinstance(result, Error)
        assert result.partial.current_streak == 1


class TestStreaks:
    """update_streak and get_streak_status through the service."""

    @pytest.mark.asyncio
    async def test_eight_consecutive_days(self, ledger_service, t0):
        for day in range(8):
            result = await ledger_service.update_streak("u1", now=t0 + timedelta(days=day))
        assert result.data.current_streak == 8
        assert result.data.max_streak == 8
        assert result.data.is_active_today

    @pytest.mark.asyncio
    async def test_same_day_does_not_save(self, ledger_service, store, t0):
        await ledger_service.update_streak("u1", now=t0)
        saves = store.save_count
        result = await ledger_service.update_streak("u1", now=t0 + timedelta(hours=3))
        assert result.data.current_streak == 1
        assert store.save_count == saves

    @pytest.mark.asyncio
    async def test_gap_breaks_streak(self, ledger_service, t0):
        await ledger_service.update_streak("u1", now=t0)
        await ledger_service.update_streak("u1", now=t0 + timedelta(days=1))
        result = await ledger_service.update_streak("u1", now=t0 + timedelta(days=4))
        assert result.data.current_streak == 0
        assert result.data.max_streak == 2
        assert result.data.streak_broken

    @pytest.mark.asyncio
    async def test_status_is_recomputed_on_read(self, ledger_service, t0):
        await ledger_service.update_streak("u1", now=t0)
        first = await ledger_service.get_streak_status("u1", now=t0)
        later = await ledger_service.get_streak_status("u1", now=t0 + timedelta(hours=10))
        assert first.data.hours_until_lost - later.data.hours_until_lost == pytest.approx(10.0)


class TestOtherTransitions:
    @pytest.mark.asyncio
    async def test_award_badge_once(self, ledger_service):
        assert await ledger_service.award_badge("u1", "quiz_first") == Success(True)
        assert await ledger_service.award_badge("u1", "quiz_first") == Success(False)
        ledger = (await ledger_service.get_progress("u1")).data
        assert ledger.badges == ("quiz_first",)

    @pytest.mark.asyncio
    async def test_unchanged_merge_is_not_saved(self, ledger_service, store):
        await ledger_service.get_progress("u1")
        saves = store.save_count
        result = await ledger_service.apply_merge("u1", lambda ledger: ledger)
        assert isinstance(result, Success)
        assert store.save_count == saves

    @pytest.mark.asyncio
    async def test_reset_keeps_display_name(self, ledger_service, store, t0):
        store.ledgers["u1"] = ProgressLedger(user_id="u1", display_name="Ada", total_xp=900, badges=("level_5",))
        result = await ledger_service.reset_ledger("u1")
        assert result.data.total_xp == 0
        assert result.data.badges == ()
        assert result.data.display_name == "Ada"
        assert store.ledgers["u1"].total_xp == 0


class TestProgressFeed:
    @pytest.mark.asyncio
    async def test_loading_then_snapshot_then_changes(self, ledger_service, t0):
        sub = await ledger_service.observe_progress("u1")
        try:
            assert isinstance(await sub.get(timeout=1), Loading)
            first = await sub.get(timeout=1)
            assert first.data.total_xp == 0

            await ledger_service.add_xp(_event(amount=40, at=t0))
            update = await sub.get(timeout=1)
            assert update.data.total_xp == 40
        finally:
            sub.cancel()

    @pytest.mark.asyncio
    async def test_observe_without_hub_raises(self, store):
        service = ProgressLedgerService(store)
        with pytest.raises(RuntimeError):
            await service.observe_progress("u1")
