import logging
from typing import List

import notifiers.logging

from mrcoverage import config

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s - %(message)s"


def get_log_handlers(logger: logging.Logger) -> List[logging.Handler]:
    """Forward warnings and errors to Telegram when a bot token is configured."""
    if config.TELEGRAM_TOKEN is None:
        return []
    handler = notifiers.logging.NotificationHandler(
        "telegram",
        defaults={
            "token": config.TELEGRAM_TOKEN,
            "chat_id": config.TELEGRAM_CHAT_ID,
        },
    )
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter("[mrcoverage] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    return [handler]


def configure_logging() -> logging.Logger:
    logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)
    logging.getLogger().setLevel(config.OVERRIDE_LOGGING)
    logger = logging.getLogger("mrcoverage")
    logger.setLevel(config.OVERRIDE_LOGGING)
    get_log_handlers(logger)
    return logger
