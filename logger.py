"""
Logging configuration for the shop backend.

All modules log through children of the "shop" logger.
"""
import logging
import sys

from config import LOG_LEVEL

logger = logging.getLogger("shop")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """Child of the "shop" logger, or the root "shop" logger when no name is given."""
    if name:
        return logging.getLogger(f"shop.{name}")
    return logger
