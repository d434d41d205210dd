import logging
from typing import List, Optional

from remindbot.db.reminder_repository import ReminderRepository
from remindbot.models.reminder import Reminder

logger = logging.getLogger(__name__)

EMPTY_LIST_TEXT = "No reminders in the list"


def format_reminder(reminder: Reminder) -> str:
    return f"{reminder.text} ({reminder.due_at_display})"


def format_reminders_list(reminders: List[Reminder]) -> str:
    """Render reminders as a numbered list, 1-indexed, in the given order."""
    if not reminders:
        return EMPTY_LIST_TEXT
    return "\n".join(
        f"{i}. {format_reminder(reminder)}" for i, reminder in enumerate(reminders, 1)
    )


class ReminderService:
    def __init__(self, repository: ReminderRepository):
        self.repository = repository

    async def add_reminder(self, owner_id: int, text: str) -> Reminder:
        """
        Add a reminder. One attempt per call; ParseError propagates to the caller.

        Args:
            owner_id: Owner (chat) ID
            text: Reminder text including the due time expression

        Returns:
            Created reminder
        """
        return await self.repository.create(owner_id, text)

    async def get_reminders(self, owner_id: int) -> List[Reminder]:
        return await self.repository.find_by_owner(owner_id)

    async def get_reminders_list(self, owner_id: int) -> str:
        """Get the owner's reminders as text, in creation order."""
        reminders = await self.get_reminders(owner_id)
        return format_reminders_list(reminders)

    async def delete_reminder(self, owner_id: int, reminder_id: str) -> Optional[Reminder]:
        """
        Delete a reminder.

        Returns:
            The deleted reminder, or None if it was not found
        """
        reminder = await self.repository.find_by_id(owner_id, reminder_id)
        if not reminder:
            return None

        # A concurrent delete (user or scheduler) may win the race
        if not await self.repository.delete(owner_id, reminder.id):
            return None

        logger.info(f"Deleted reminder {reminder.id} for owner {owner_id}")
        return reminder

    async def delete_reminder_at(self, owner_id: int, position: int) -> Optional[Reminder]:
        """
        Delete the reminder at a 1-based position of the owner's list.

        Returns:
            The deleted reminder, or None if the position is out of range
        """
        reminders = await self.get_reminders(owner_id)
        if position < 1 or position > len(reminders):
            return None
        return await self.delete_reminder(owner_id, reminders[position - 1].id)

    async def clear_reminders(self, owner_id: int) -> int:
        """Delete all reminders of an owner. Returns how many were deleted."""
        return await self.repository.delete_all(owner_id)
