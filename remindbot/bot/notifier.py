import logging
from telegram import Bot

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends reminder messages through the Telegram Bot API."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, owner_id: int, message: str) -> None:
        """
        Send a message to an owner's chat.

        Raises whatever the Bot API raises; the caller decides what a failure means.
        """
        await self.bot.send_message(chat_id=owner_id, text=message)
        logger.debug(f"Sent message to chat {owner_id}")
