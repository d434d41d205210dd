from datetime import datetime, timezone
from pydantic import BaseModel, field_validator

from remindbot.db.store import Key

# Primary index: (REMINDERS_BY_OWNER, owner_id, reminder_id) -> Reminder
REMINDERS_BY_OWNER = "reminders_by_owner"
# Time index: (REMINDERS_BY_TIME, due_at_iso, reminder_id) -> {"owner_id", "reminder_id"}
REMINDERS_BY_TIME = "reminders_by_time"


class Reminder(BaseModel):
    """Reminder record stored in the primary index."""

    id: str
    owner_id: int
    text: str  # The reminder message, without the date expression
    due_at: datetime  # When to send the reminder (UTC)
    due_at_display: str  # due_at rendered for the user
    created_at: datetime

    @field_validator("due_at", "created_at")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def __repr__(self):
        return f"<Reminder {self.id}: {self.text[:20]}{'...' if len(self.text) > 20 else ''}>"


def index_time(moment: datetime) -> str:
    """Render a moment as a fixed-width UTC ISO-8601 string that sorts chronologically."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def owner_key(owner_id: int, reminder_id: str) -> Key:
    return (REMINDERS_BY_OWNER, owner_id, reminder_id)


def time_key(due_at: datetime, reminder_id: str) -> Key:
    return (REMINDERS_BY_TIME, index_time(due_at), reminder_id)
