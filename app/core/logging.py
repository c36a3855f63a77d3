from __future__ import annotations

import logging
from logging import Logger

from .config import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ROOT_LOGGER = "box_admin_bot"

# Libraries that log every request, update or job run at INFO
CHATTY_LOGGERS = ("httpx", "aiogram.event", "apscheduler.executors.default")


def configure_logging(section: str | None = None) -> Logger:
    """
    Set up logging for the bot and return its logger.

    Safe to call from every module at import time: the root handler is only
    installed once. With `section`, a child logger is returned, so records
    read as ``box_admin_bot.members``, ``box_admin_bot.digest`` and so on.

    Outside local development the per-update and per-request chatter of
    aiogram, httpx and APScheduler is kept at WARNING.
    """

    settings = get_settings()
    level = logging.DEBUG if settings.is_debug else logging.INFO

    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.is_debug else logging.WARNING)

    logger = logging.getLogger(ROOT_LOGGER)
    return logger.getChild(section) if section else logger
