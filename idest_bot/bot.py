"""Main entry point for Idest Bot."""
import asyncio
import logging
import sys
from pathlib import Path

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage

from .config import settings
from .core import database

# Import handlers
from .handlers import assignments, attempt, results, start


def setup_logging():
    """Console plus file logging, level from settings."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        Path(settings.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
    # aiohttp access noise
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


async def main():
    """Main function to start the bot."""
    logger.info("Starting Idest Bot...")

    if not settings.BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN is not set")

    # Initialize database
    logger.info("Initializing database at %s", settings.DATABASE_PATH)
    db = await database.init_database(settings.DATABASE_PATH)
    database.db = db  # Set global instance

    # Initialize bot and dispatcher
    bot = Bot(token=settings.BOT_TOKEN)
    storage = MemoryStorage()
    dp = Dispatcher(storage=storage)

    # Register routers
    dp.include_router(start.router)
    dp.include_router(attempt.router)
    dp.include_router(assignments.router)
    dp.include_router(results.router)

    logger.info("Bot handlers registered successfully")

    # Start polling
    try:
        logger.info("Starting bot polling...")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types()
        )
    except Exception as e:
        logger.error("Error during polling: %s", e)
        raise
    finally:
        # Cleanup
        await bot.session.close()
        if db:
            await db.close()
        logger.info("Bot stopped")


def run():
    """Console script entry point."""
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error("Fatal error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    run()
