"""
Console logging for the orchestrator.

All modules log through children of the ``layer_orchestrator`` logger
(``logging.getLogger(__name__)``), so a single colored console handler
configured here covers the whole package.

Usage:
    from layer_orchestrator.logger import setup_logger, configure_logger

    setup_logger(debug_mode=False)
    configure_logger("debug")  # e.g. from --log-level
"""

import logging
import sys
import traceback

from colorlog import ColoredFormatter

import layer_orchestrator.constants as CONSTANTS

LOGGER_NAME = "layer_orchestrator"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logger(debug_mode: bool = False) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(logging.DEBUG)

        formatter = ColoredFormatter(
            "%(log_color)s[%(levelname)s] %(message)s",
            log_colors={
                "DEBUG":    "cyan",
                "INFO":     "green",
                "WARNING":  "yellow",
                "ERROR":    "red",
                "CRITICAL": "red,bg_white",
            }
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def configure_logger(level: str) -> logging.Logger:
    """
    Re-apply the log level chosen on the CLI or in the config file.

    Args:
        level: One of "debug", "info", "warn", "error"

    Raises:
        ValueError: If the level name is not recognized
    """
    if level not in _LEVELS:
        raise ValueError(
            f"Invalid log level: {level}. Must be one of: {', '.join(CONSTANTS.LOG_LEVELS)}"
        )
    logger = setup_logger(debug_mode=level == "debug")
    logger.setLevel(_LEVELS[level])
    return logger


def get_debug_mode() -> bool:
    return logging.getLogger(LOGGER_NAME).isEnabledFor(logging.DEBUG)


def print_stack_trace():
    """Log the current stack trace if debug mode is enabled."""
    if get_debug_mode():
        logging.getLogger(LOGGER_NAME).error(traceback.format_exc())


def truncate(text: str, limit: int = CONSTANTS.LOG_OUTPUT_LIMIT) -> str:
    """Shorten captured command output before it goes into a log line."""
    if text is None:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + f"... [{len(text) - limit} more chars]"


logger = setup_logger(debug_mode=False)
