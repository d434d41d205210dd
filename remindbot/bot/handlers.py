import logging
import re

from telegram import Update, BotCommand
from telegram.ext import Application, CommandHandler, ContextTypes

from remindbot.errors import ParseError, ReminderError
from remindbot.services.reminder_service import ReminderService, format_reminder, format_reminders_list, EMPTY_LIST_TEXT

logger = logging.getLogger(__name__)

ADD_REMINDER_PROMPT = "Please provide a reminder to add. It should be in the future"
DELETE_REMINDER_PROMPT = "Please provide a reminder number to delete."
FAILURE_TEXT = "Something went wrong, please try again later"

BOT_COMMANDS = [
    BotCommand("start", "Start the bot"),
    BotCommand("help", "Show available commands"),
    BotCommand("addreminder", "Add reminder to the list"),
    BotCommand("deletereminder", "Delete reminder from the list"),
    BotCommand("reminders", "Open reminders list"),
    BotCommand("clearreminders", "Clear all reminders"),
]


def get_reminder_service(context: ContextTypes.DEFAULT_TYPE) -> ReminderService:
    return context.bot_data["reminder_service"]


def is_valid_reminder_index(text: str, max_index: int) -> bool:
    """Check that text is a 1-based position within a list of max_index items."""
    return bool(re.fullmatch(r'\d+', text or "")) and 0 < int(text) <= max_index


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /start command."""
    await update.message.reply_text("Welcome! Up and running.")


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /help command."""
    await update.message.reply_text(
        "There is a list of all available commands:\n\n"
        + "\n".join(f"/{command.command} - {command.description}" for command in BOT_COMMANDS)
    )


async def add_reminder_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /addreminder command. The reminder text follows the command."""
    text = " ".join(context.args or [])
    if not text:
        await update.message.reply_text(ADD_REMINDER_PROMPT)
        return

    service = get_reminder_service(context)
    try:
        reminder = await service.add_reminder(update.effective_chat.id, text)
    except ParseError:
        await update.message.reply_text(ADD_REMINDER_PROMPT)
        return
    except ReminderError as e:
        logger.error(f"Error adding reminder for chat {update.effective_chat.id}: {str(e)}")
        await update.message.reply_text(FAILURE_TEXT)
        return

    await update.message.reply_text(f"Reminder: {format_reminder(reminder)} successfully added")


async def reminders_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /reminders command."""
    service = get_reminder_service(context)
    try:
        text = await service.get_reminders_list(update.effective_chat.id)
    except ReminderError as e:
        logger.error(f"Error listing reminders for chat {update.effective_chat.id}: {str(e)}")
        text = FAILURE_TEXT
    await update.message.reply_text(text)


async def delete_reminder_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /deletereminder command. The reminder number follows the command."""
    try:
        await _delete_reminder(update, context)
    except ReminderError as e:
        logger.error(f"Error deleting reminder for chat {update.effective_chat.id}: {str(e)}")
        await update.message.reply_text(FAILURE_TEXT)


async def _delete_reminder(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    service = get_reminder_service(context)
    owner_id = update.effective_chat.id
    reminders = await service.get_reminders(owner_id)

    if not reminders:
        await update.message.reply_text(EMPTY_LIST_TEXT)
        return

    position = " ".join(context.args or [])
    if not is_valid_reminder_index(position, len(reminders)):
        await update.message.reply_text(
            f"{format_reminders_list(reminders)}\n\n{DELETE_REMINDER_PROMPT}"
        )
        return

    reminder = await service.delete_reminder_at(owner_id, int(position))
    if reminder:
        await update.message.reply_text(f"Reminder: {format_reminder(reminder)} successfully deleted")
    else:
        await update.message.reply_text("Reminder not found")


async def clear_reminders_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the /clearreminders command."""
    service = get_reminder_service(context)
    try:
        await service.clear_reminders(update.effective_chat.id)
    except ReminderError as e:
        logger.error(f"Error clearing reminders for chat {update.effective_chat.id}: {str(e)}")
        await update.message.reply_text(FAILURE_TEXT)
        return
    await update.message.reply_text("All reminders cleared")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log errors raised by handlers."""
    logger.error(f"Exception while handling an update: {context.error}")


def setup_handlers(bot_app: Application, reminder_service: ReminderService) -> None:
    """
    Set up command handlers for the bot.

    Args:
        bot_app: Telegram application
        reminder_service: Service the handlers operate on
    """
    bot_app.bot_data["reminder_service"] = reminder_service

    bot_app.add_handler(CommandHandler("start", start_command))
    bot_app.add_handler(CommandHandler("help", help_command))
    bot_app.add_handler(CommandHandler("addreminder", add_reminder_command))
    bot_app.add_handler(CommandHandler("reminders", reminders_command))
    bot_app.add_handler(CommandHandler("deletereminder", delete_reminder_command))
    bot_app.add_handler(CommandHandler("clearreminders", clear_reminders_command))

    bot_app.add_error_handler(error_handler)
