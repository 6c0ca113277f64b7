"""Shared utility functions for the Finance Intake project."""

import logging
from datetime import UTC, datetime
from pathlib import Path

import colorlog


ROOT_LOGGER = "finance-intake"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project.

    Loggers below ``finance-intake`` propagate to the package logger, which owns the console handler (and the file
    handler added by ``setup_logging``).
    """
    logger = logging.getLogger(name)
    if name.startswith(f"{ROOT_LOGGER}."):
        get_logger(ROOT_LOGGER)
        return logger
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def ensure_dir(path: str | Path) -> None:
    """Ensure a directory exists (like mkdir -p)."""
    Path(path).mkdir(parents=True, exist_ok=True)


def utcnow_iso() -> str:
    """Get the current UTC time as an ISO8601 string."""
    return datetime.now(UTC).isoformat()
