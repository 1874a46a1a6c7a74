# Copyright (c) 2025 sprowii
import logging
import os
from logging.handlers import TimedRotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging() -> logging.Logger:
    logging.basicConfig(
        format=LOG_FORMAT,
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    logger = logging.getLogger("vkmod")

    log_dir = os.getenv("LOG_DIR")
    if log_dir and not any(isinstance(h, TimedRotatingFileHandler) for h in logger.handlers):
        os.makedirs(log_dir, exist_ok=True)
        handler = TimedRotatingFileHandler(
            os.path.join(log_dir, "vkmod.log"),
            when="midnight",
            backupCount=14,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger


log = configure_logging()
