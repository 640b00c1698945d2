"""
Homebase — Entry Point.

Single entry point: `python main.py` starts the Telegram bot and its
reminder scheduler.
"""

import logging

from homebase.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from homebase.bot.telegram_bot import main

if __name__ == "__main__":
    main()
