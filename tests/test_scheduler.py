"""Tests for the polling reminder scheduler."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from remindbot.errors import StoreError
from remindbot.models.reminder import REMINDERS_BY_OWNER, REMINDERS_BY_TIME, index_time, time_key
from remindbot.scheduler.reminder import JOB_ID, ReminderScheduler, TickReport, setup_scheduler
from tests.conftest import START


@pytest.fixture
def scheduler(repository, notifier, clock):
    return setup_scheduler(repository, notifier, clock)


async def remaining_entries(store):
    return (
        await store.scan_prefix((REMINDERS_BY_OWNER,)),
        await store.scan_prefix((REMINDERS_BY_TIME,)),
    )


class TestTick:
    async def test_dispatches_due_reminder_once(self, scheduler, repository, notifier, clock, store):
        reminder = await repository.create(123, "water plants in 30 minutes")
        clock.advance(minutes=30)

        report = await scheduler.tick()

        notifier.send.assert_awaited_once_with(123, "🔔 Reminder: water plants")
        assert report == TickReport(sent=1)
        assert await repository.find_by_id(123, reminder.id) is None
        assert await remaining_entries(store) == ([], [])

    async def test_second_tick_sends_nothing(self, scheduler, repository, notifier, clock):
        await repository.create(1, "ping in 1 minute")
        clock.advance(minutes=5)

        await scheduler.tick()
        report = await scheduler.tick()

        assert notifier.send.await_count == 1
        assert report == TickReport()

    async def test_future_reminder_untouched(self, scheduler, repository, notifier, store):
        reminder = await repository.create(1, "later in 1 hour")

        report = await scheduler.tick()

        notifier.send.assert_not_awaited()
        assert report == TickReport()
        owners, times = await remaining_entries(store)
        assert [value["id"] for _, value in owners] == [reminder.id]
        assert [value["reminder_id"] for _, value in times] == [reminder.id]

    async def test_orphan_is_removed_without_notification(self, scheduler, notifier, store):
        orphan_key = (REMINDERS_BY_TIME, index_time(START - timedelta(days=1)), "orphan-reminder-id")
        await store.set_many([(orphan_key, {"owner_id": 456, "reminder_id": "orphan-reminder-id"})])

        report = await scheduler.tick()

        notifier.send.assert_not_awaited()
        assert report == TickReport(orphans=1)
        assert await remaining_entries(store) == ([], [])

    async def test_stale_time_entry_for_live_reminder(self, scheduler, repository, notifier, store):
        # Time entry moved into the past by hand, the real one stays in the future
        reminder = await repository.create(123, "Test Reminder 1 tomorrow at 10")
        await store.set_many([
            (time_key(START - timedelta(days=365), reminder.id), {"owner_id": 123, "reminder_id": reminder.id}),
        ])

        await scheduler.tick()

        notifier.send.assert_awaited_once_with(123, "🔔 Reminder: Test Reminder 1")
        assert await remaining_entries(store) == ([], [])

    async def test_due_reminders_processed_chronologically(self, scheduler, repository, notifier, clock):
        await repository.create(2, "second in 2 hours")
        await repository.create(1, "first in 1 hour")
        await repository.create(3, "not yet in 5 hours")
        clock.advance(hours=3)

        report = await scheduler.tick()

        assert notifier.send.await_args_list == [
            call(1, "🔔 Reminder: first"),
            call(2, "🔔 Reminder: second"),
        ]
        assert report.sent == 2

    async def test_notifier_failure_does_not_stop_tick(self, scheduler, repository, notifier, clock, store):
        notifier.send.side_effect = [Exception("Forbidden: bot was blocked by the user"), None]
        await repository.create(1, "blocked in 1 hour")
        await repository.create(2, "fine in 2 hours")
        clock.advance(hours=2)

        report = await scheduler.tick()

        assert notifier.send.await_count == 2
        assert report == TickReport(sent=1, failed=1)
        # Consumed regardless of the send outcome
        assert await remaining_entries(store) == ([], [])

    async def test_storage_error_on_one_entry_is_isolated(self, notifier):
        reminder = MagicMock(id="r2", owner_id=2, text="second")
        repository = MagicMock()
        repository.find_due = AsyncMock(return_value=[
            (("reminders_by_time", "t1", "r1"), 1, "r1"),
            (("reminders_by_time", "t2", "r2"), 2, "r2"),
        ])
        repository.find_by_id = AsyncMock(side_effect=[StoreError("database is locked"), reminder])
        repository.delete_dispatched = AsyncMock()
        scheduler = ReminderScheduler(repository, notifier, clock=lambda: START)

        report = await scheduler.tick()

        assert report == TickReport(sent=1, errors=1)
        notifier.send.assert_awaited_once_with(2, "🔔 Reminder: second")
        repository.delete_dispatched.assert_awaited_once_with(reminder, ("reminders_by_time", "t2", "r2"))

    async def test_scan_failure_is_logged_not_raised(self, notifier):
        repository = MagicMock()
        repository.find_due = AsyncMock(side_effect=StoreError("connection refused"))
        scheduler = ReminderScheduler(repository, notifier, clock=lambda: START)

        report = await scheduler.tick()

        assert report == TickReport(errors=1)
        notifier.send.assert_not_awaited()

    async def test_overlapping_tick_is_skipped(self, scheduler, repository, notifier, clock):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(owner_id, message):
            started.set()
            await release.wait()

        notifier.send.side_effect = slow_send
        await repository.create(1, "slow in 1 minute")
        clock.advance(minutes=1)

        first = asyncio.create_task(scheduler.tick())
        await started.wait()

        second = await scheduler.tick()
        assert second.skipped

        release.set()
        assert (await first).sent == 1
        assert notifier.send.await_count == 1


class TestConcreteScenario:
    async def test_add_list_dispatch(self, service, repository, notifier, clock):
        scheduler = setup_scheduler(repository, notifier, clock)

        await service.add_reminder(1, "buy milk tomorrow at 9")
        assert await service.get_reminders_list(1) == "1. buy milk (2 января 2024 г., 9:00)"

        # Exactly at the due time
        clock.advance(hours=30)
        await scheduler.tick()

        notifier.send.assert_awaited_once_with(1, "🔔 Reminder: buy milk")
        assert await service.get_reminders_list(1) == "No reminders in the list"


class TestCatchUp:
    async def test_dispatches_overdue_and_keeps_future(self, scheduler, repository, notifier, clock, store):
        overdue = await repository.create(1, "missed in 10 minutes")
        future = await repository.create(2, "upcoming in 2 days")
        # Time entry lost in a partial failure; the primary record survives
        await store.delete_many([time_key(overdue.due_at, overdue.id)])
        clock.advance(hours=1)

        report = await scheduler.catch_up()

        assert report == TickReport(sent=1)
        notifier.send.assert_awaited_once_with(1, "🔔 Reminder: missed")
        assert await repository.find_by_id(1, overdue.id) is None
        assert await repository.find_by_id(2, future.id) == future

    async def test_failed_send_still_consumes(self, scheduler, repository, notifier, clock):
        notifier.send.side_effect = Exception("timed out")
        reminder = await repository.create(1, "missed in 10 minutes")
        clock.advance(hours=1)

        report = await scheduler.catch_up()

        assert report == TickReport(failed=1)
        assert await repository.find_by_id(1, reminder.id) is None

    async def test_scan_failure_is_logged_not_raised(self, notifier):
        repository = MagicMock()
        repository.find_all = AsyncMock(side_effect=StoreError("connection refused"))
        scheduler = ReminderScheduler(repository, notifier, clock=lambda: START)

        assert await scheduler.catch_up() == TickReport(errors=1)


class TestLifecycle:
    async def test_start_registers_single_instance_interval_job(self, scheduler):
        scheduler.start(2500)
        try:
            job = scheduler.scheduler.get_job(JOB_ID)
            assert job is not None
            assert job.trigger.interval == timedelta(seconds=2.5)
            assert job.max_instances == 1
            assert scheduler.scheduler.running
        finally:
            await scheduler.shutdown()

        assert not scheduler.scheduler.running

    async def test_shutdown_waits_for_in_flight_tick(self, scheduler, repository, notifier, clock):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_send(owner_id, message):
            started.set()
            await release.wait()

        notifier.send.side_effect = slow_send
        await repository.create(1, "slow in 1 minute")
        clock.advance(minutes=1)
        scheduler.start()

        tick = asyncio.create_task(scheduler.tick())
        await started.wait()
        stopping = asyncio.create_task(scheduler.shutdown())
        await asyncio.sleep(0)
        assert not stopping.done()

        release.set()
        await stopping
        assert tick.done()
        assert (await tick).sent == 1
        assert not scheduler.scheduler.running

    async def test_tick_queued_before_shutdown_does_not_run(self, scheduler, repository, notifier, clock):
        reminder = await repository.create(1, "late in 1 minute")
        clock.advance(minutes=1)
        scheduler.start()

        # Handed to the event loop but not yet running
        queued = asyncio.create_task(scheduler.tick())
        await scheduler.shutdown()

        assert (await queued).skipped
        assert (await scheduler.tick()).skipped
        notifier.send.assert_not_awaited()
        assert await repository.find_by_id(1, reminder.id) == reminder

    async def test_shutdown_when_not_started(self, scheduler):
        await scheduler.shutdown()
        assert not scheduler.scheduler.running
