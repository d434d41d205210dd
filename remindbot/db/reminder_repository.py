import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from remindbot.db.store import Key, KVStore
from remindbot.errors import ParseError
from remindbot.models.reminder import (
    REMINDERS_BY_OWNER, REMINDERS_BY_TIME, Reminder, index_time, owner_key, time_key
)
from remindbot.services.due_time import (
    DEFAULT_LOCALE, DEFAULT_TZ_OFFSET_HOURS, DueTimeParser,
    format_due_at, parse_due_time, strip_spans
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_last_id_ns = 0


def new_reminder_id() -> str:
    """
    Generate a reminder ID that sorts in creation order.

    A nanosecond stamp, forced to increase within the process, followed by
    random hex so IDs from different processes do not collide.
    """
    global _last_id_ns
    _last_id_ns = max(time.time_ns(), _last_id_ns + 1)
    return f"{_last_id_ns:016x}{uuid.uuid4().hex[:16]}"


class ReminderRepository:
    """
    Reads and writes reminders.

    Every reminder lives under two keys that are always written and removed
    in the same commit: the primary entry (owner, id) holding the record and
    the time index entry (due_at, id) pointing back at it.
    """

    def __init__(
        self,
        store: KVStore,
        parser: DueTimeParser = parse_due_time,
        clock: Callable[[], datetime] = utc_now,
        tz_offset_hours: float = DEFAULT_TZ_OFFSET_HOURS,
        locale: str = DEFAULT_LOCALE
    ):
        self.store = store
        self.parser = parser
        self.clock = clock
        self.tz_offset_hours = tz_offset_hours
        self.locale = locale

    async def create(self, owner_id: int, raw_text: str) -> Reminder:
        """
        Create a reminder from free text.

        Args:
            owner_id: Owner (chat) ID
            raw_text: Reminder text including the due time expression

        Returns:
            Created reminder

        Raises:
            ParseError: No future due time could be resolved from the text
        """
        now = self.clock()
        parsed = self.parser(raw_text, now, self.tz_offset_hours)
        if parsed is None:
            raise ParseError(raw_text)
        if parsed.due_at <= now:
            raise ParseError(raw_text, f"Due time {parsed.due_at.isoformat()} is not in the future")

        reminder = Reminder(
            id=new_reminder_id(),
            owner_id=owner_id,
            text=strip_spans(raw_text, parsed.spans) or raw_text.strip(),
            due_at=parsed.due_at,
            due_at_display=format_due_at(parsed.due_at, self.tz_offset_hours, self.locale),
            created_at=now
        )

        await self.store.commit(sets=[
            (owner_key(owner_id, reminder.id), reminder.model_dump(mode="json")),
            (time_key(reminder.due_at, reminder.id), {"owner_id": owner_id, "reminder_id": reminder.id}),
        ])
        logger.info(f"Created reminder {reminder.id} for owner {owner_id} due at {reminder.due_at.isoformat()}")

        return reminder

    async def find_by_owner(self, owner_id: int) -> List[Reminder]:
        """Get all reminders of an owner, oldest first. IDs break ties in creation order."""
        entries = await self.store.scan_prefix((REMINDERS_BY_OWNER, owner_id))
        reminders = [Reminder.model_validate(value) for _, value in entries]
        return sorted(reminders, key=lambda reminder: (reminder.created_at, reminder.id))

    async def find_all(self) -> List[Reminder]:
        """Get every reminder across all owners."""
        entries = await self.store.scan_prefix((REMINDERS_BY_OWNER,))
        return [Reminder.model_validate(value) for _, value in entries]

    async def find_by_id(self, owner_id: int, reminder_id: str) -> Optional[Reminder]:
        value = await self.store.get(owner_key(owner_id, reminder_id))
        return Reminder.model_validate(value) if value is not None else None

    async def find_due(self, now: datetime) -> List[Tuple[Key, int, str]]:
        """
        Scan the time index for entries due at or before now.

        Returns:
            (index key, owner ID, reminder ID) in chronological order
        """
        entries = await self.store.scan_range((REMINDERS_BY_TIME,), index_time(now))
        return [(key, value["owner_id"], value["reminder_id"]) for key, value in entries]

    async def delete(self, owner_id: int, reminder_id: str) -> bool:
        """
        Delete a reminder and its time index entry.

        Returns:
            True if reminder was deleted, False if it did not exist
        """
        reminder = await self.find_by_id(owner_id, reminder_id)
        if not reminder:
            return False

        await self.store.delete_many([
            owner_key(owner_id, reminder_id),
            time_key(reminder.due_at, reminder_id),
        ])
        return True

    async def delete_dispatched(self, reminder: Reminder, index_key: Key) -> None:
        """
        Delete a reminder together with the time index entry it was found through.

        The scanned key normally equals the reminder's own time key; when it
        does not, both are removed in the same commit.
        """
        await self.store.delete_many([
            owner_key(reminder.owner_id, reminder.id),
            time_key(reminder.due_at, reminder.id),
            index_key,
        ])

    async def delete_all(self, owner_id: int) -> int:
        """
        Delete every reminder of an owner, both index entries each, in one commit.

        Returns:
            Number of reminders deleted
        """
        reminders = await self.find_by_owner(owner_id)
        keys = []
        for reminder in reminders:
            keys.append(owner_key(owner_id, reminder.id))
            keys.append(time_key(reminder.due_at, reminder.id))

        await self.store.delete_many(keys)
        if reminders:
            logger.info(f"Deleted {len(reminders)} reminders for owner {owner_id}")
        return len(reminders)

    async def delete_index_entry(self, key: Key) -> None:
        """Delete a single time index entry."""
        await self.store.delete_many([key])
