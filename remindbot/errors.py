class ReminderError(Exception):
    """Base class for reminder errors."""


class ParseError(ReminderError):
    """The due-time text could not be resolved to a future timestamp."""

    def __init__(self, text: str, message: str = None):
        self.text = text
        super().__init__(message or f"Could not resolve a future time from {text!r}")


class StoreError(ReminderError):
    """A storage operation failed."""
