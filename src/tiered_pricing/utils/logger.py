"""
Shared logger utility for the pricing tool.
"""
import logging
from typing import Optional


def get_logger(name: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Return a logger with a standard stream handler attached.

    The level comes from settings unless given explicitly.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    if level is None:
        from ..config.settings import get_settings
        level = get_settings().log_level
    logger.setLevel(level.upper())
    return logger
