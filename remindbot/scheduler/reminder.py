import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, NamedTuple, Optional, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from remindbot.db.reminder_repository import ReminderRepository, utc_now
from remindbot.db.store import Key
from remindbot.models.reminder import Reminder, time_key

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 5000
JOB_ID = "dispatch_due_reminders"


class Notifier(Protocol):
    async def send(self, owner_id: int, message: str) -> None:
        ...


class TickReport(NamedTuple):
    """Outcome of one pass over due reminders."""
    sent: int = 0
    failed: int = 0  # Send failed, reminder consumed anyway
    orphans: int = 0
    errors: int = 0  # Entries skipped because of a storage error
    skipped: bool = False  # Another pass was still running


def reminder_message(reminder: Reminder) -> str:
    return f"🔔 Reminder: {reminder.text}"


class ReminderScheduler:
    """
    Polls the time index and dispatches due reminders.

    Holds no reminder state of its own: every tick scans the store, so there is
    nothing to rebuild after a restart. Delivery is a single best-effort
    attempt; a reminder whose send fails is still deleted.
    """

    def __init__(
        self,
        repository: ReminderRepository,
        notifier: Notifier,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the scheduler.

        Args:
            repository: Reminder repository
            notifier: Anything with an async send(owner_id, message)
            clock: Returns the current aware UTC datetime
        """
        self.repository = repository
        self.notifier = notifier
        self.clock = clock
        self.scheduler = AsyncIOScheduler()
        self._busy = asyncio.Lock()
        self._stopping = False

    def start(self, interval_ms: int = DEFAULT_INTERVAL_MS):
        """Start polling every interval_ms milliseconds."""
        self._stopping = False
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=interval_ms / 1000),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Reminder scheduler started. Polling every {interval_ms / 1000} seconds.")

    async def shutdown(self):
        """Stop scheduling ticks and let an in-flight one finish."""
        # Ticks already handed to the event loop but not yet running must not start
        self._stopping = True
        if not self.scheduler.running:
            return

        self.scheduler.pause()
        async with self._busy:
            self.scheduler.shutdown(wait=False)
        logger.info("Reminder scheduler shutdown")

    async def tick(self) -> TickReport:
        """Dispatch every reminder due at or before now. Never raises."""
        return await self._exclusive("tick", self._dispatch_due)

    async def catch_up(self) -> TickReport:
        """
        Dispatch every stored reminder that is already past due.

        Run once at startup. Walks the primary index of all owners rather than
        the time index, so records whose time entry went missing are caught too.
        Future reminders are left to the regular ticks.
        """
        return await self._exclusive("catch-up", self._dispatch_overdue)

    async def _exclusive(self, name: str, run: Callable[[], Awaitable[TickReport]]) -> TickReport:
        if self._stopping:
            logger.debug(f"Skipping reminder {name}: scheduler is shutting down")
            return TickReport(skipped=True)
        if self._busy.locked():
            logger.warning(f"Skipping reminder {name}: previous pass still running")
            return TickReport(skipped=True)

        async with self._busy:
            try:
                report = await run()
            except Exception as e:
                # Storage failure while scanning; the next tick starts over
                logger.error(f"Error during reminder {name}: {str(e)}")
                return TickReport(errors=1)

        if report.sent or report.failed or report.orphans or report.errors:
            logger.info(
                f"Reminder {name}: sent={report.sent} failed={report.failed} "
                f"orphans={report.orphans} errors={report.errors}"
            )
        return report

    async def _dispatch_due(self) -> TickReport:
        now = self.clock()
        sent = failed = orphans = errors = 0

        for key, owner_id, reminder_id in await self.repository.find_due(now):
            try:
                reminder = await self.repository.find_by_id(owner_id, reminder_id)
                if reminder is None:
                    logger.warning(f"Orphaned reminder found in time index, deleting: {key}")
                    await self.repository.delete_index_entry(key)
                    orphans += 1
                    continue

                if await self._dispatch(reminder, key):
                    sent += 1
                else:
                    failed += 1
            except Exception as e:
                logger.error(f"Error processing reminder {reminder_id} for owner {owner_id}: {str(e)}")
                errors += 1

        return TickReport(sent=sent, failed=failed, orphans=orphans, errors=errors)

    async def _dispatch_overdue(self) -> TickReport:
        now = self.clock()
        sent = failed = errors = 0

        overdue = [reminder for reminder in await self.repository.find_all() if reminder.due_at <= now]
        for reminder in sorted(overdue, key=lambda reminder: reminder.due_at):
            try:
                if await self._dispatch(reminder):
                    sent += 1
                else:
                    failed += 1
            except Exception as e:
                logger.error(f"Error processing reminder {reminder.id} for owner {reminder.owner_id}: {str(e)}")
                errors += 1

        return TickReport(sent=sent, failed=failed, errors=errors)

    async def _dispatch(self, reminder: Reminder, index_key: Optional[Key] = None) -> bool:
        """
        Send a reminder, then delete it whatever the outcome of the send.

        Returns:
            True if the notifier accepted the message
        """
        try:
            await self.notifier.send(reminder.owner_id, reminder_message(reminder))
            logger.info(f"Sent reminder {reminder.id} to owner {reminder.owner_id}")
            delivered = True
        except Exception as e:
            logger.error(f"Failed to send reminder {reminder.id}: {str(e)}")
            delivered = False

        await self.repository.delete_dispatched(
            reminder, index_key or time_key(reminder.due_at, reminder.id)
        )
        return delivered


def setup_scheduler(
    repository: ReminderRepository,
    notifier: Notifier,
    clock: Callable[[], datetime] = utc_now
) -> ReminderScheduler:
    """
    Set up the reminder scheduler.

    Args:
        repository: Reminder repository
        notifier: Notifier used for every dispatch
        clock: Returns the current aware UTC datetime

    Returns:
        Configured ReminderScheduler
    """
    return ReminderScheduler(repository, notifier, clock)
