from fastapi import FastAPI, Request, BackgroundTasks
from telegram import Update
from telegram.ext import Application
import os
import asyncio
import logging
from dotenv import load_dotenv

from remindbot.db.database import init_db
from remindbot.db.store import KVStore
from remindbot.db.reminder_repository import ReminderRepository
from remindbot.services.due_time import DEFAULT_LOCALE, DEFAULT_TZ_OFFSET_HOURS
from remindbot.services.reminder_service import ReminderService
from remindbot.scheduler.reminder import DEFAULT_INTERVAL_MS, setup_scheduler
from remindbot.bot.handlers import BOT_COMMANDS, setup_handlers
from remindbot.bot.notifier import TelegramNotifier

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO
)
logger = logging.getLogger(__name__)

# Get environment variables
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
WEBHOOK_URL = os.getenv("WEBHOOK_URL")
REMINDER_POLL_INTERVAL_MS = int(os.getenv("REMINDER_POLL_INTERVAL_MS", DEFAULT_INTERVAL_MS))
REMINDER_TZ_OFFSET_HOURS = float(os.getenv("REMINDER_TZ_OFFSET_HOURS", DEFAULT_TZ_OFFSET_HOURS))
REMINDER_LOCALE = os.getenv("REMINDER_LOCALE", DEFAULT_LOCALE)

if not TELEGRAM_BOT_TOKEN:
    raise RuntimeError("Missing required environment variable: TELEGRAM_BOT_TOKEN")

# Initialize FastAPI app
app = FastAPI(title="Reminder Telegram Bot")

# Initialize telegram bot application
bot_app = Application.builder().token(TELEGRAM_BOT_TOKEN).build()

# Reminder core
reminder_repository = ReminderRepository(
    KVStore(),
    tz_offset_hours=REMINDER_TZ_OFFSET_HOURS,
    locale=REMINDER_LOCALE
)
reminder_service = ReminderService(reminder_repository)
reminder_scheduler = setup_scheduler(reminder_repository, TelegramNotifier(bot_app.bot))

# Setup handlers
setup_handlers(bot_app, reminder_service)

@app.on_event("startup")
async def startup_event():
    """Initialize database, catch up on missed reminders and start the scheduler."""
    await init_db()
    await bot_app.initialize()
    await bot_app.bot.set_my_commands(BOT_COMMANDS)

    # Reminders that fell due while the process was down
    await reminder_scheduler.catch_up()
    reminder_scheduler.start(REMINDER_POLL_INTERVAL_MS)

    # Set webhook for telegram bot if WEBHOOK_URL is provided
    if WEBHOOK_URL:
        await bot_app.bot.set_webhook(url=f"{WEBHOOK_URL}/telegram/webhook")
        await bot_app.start()
        logger.info(f"Webhook set to {WEBHOOK_URL}/telegram/webhook")
    else:
        logger.warning("WEBHOOK_URL not provided, running in polling mode")

        async def start_polling():
            await bot_app.start()
            await bot_app.updater.start_polling()

        asyncio.create_task(start_polling())

@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown scheduler on application shutdown."""
    await reminder_scheduler.shutdown()
    if WEBHOOK_URL:
        await bot_app.bot.delete_webhook()
    elif bot_app.updater.running:
        await bot_app.updater.stop()
    if bot_app.running:
        await bot_app.stop()
    await bot_app.shutdown()

@app.post("/telegram/webhook")
async def telegram_webhook(request: Request, background_tasks: BackgroundTasks):
    """Handle telegram webhook requests."""
    data = await request.json()
    logger.debug(f"Received webhook: {data}")

    # Process update in background
    background_tasks.add_task(process_update, data)

    return {"status": "ok"}

async def process_update(data: dict):
    """Process telegram update."""
    update = Update.de_json(data=data, bot=bot_app.bot)
    await bot_app.process_update(update)

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("remindbot.main:app", host="0.0.0.0", port=8000)
