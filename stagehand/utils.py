"""
Utility functions for stagehand.

Includes logging setup and the retry backoff policy used by the stager.
"""

import json
import logging
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for pretty output
console = Console(stderr=True)


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "pretty",
    log_file: Optional[Path] = None,
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for stagehand.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        log_file: Optional path to a log file
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("stagehand")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())
        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class ExponentialBackoff:
    """
    Bounded exponential backoff.

    next_backoff() returns the delay in seconds before the next retry, or None
    once max_retries delays have been handed out. Delays grow by `multiplier`
    and are jittered by +/- `randomization` of the current interval.

    Each instance is single-use: create a new one per operation.
    """

    def __init__(
        self,
        initial_interval: float = 5.0,
        max_retries: int = 4,
        multiplier: float = 1.5,
        randomization: float = 0.5,
        max_interval: float = 1000.0,
        rng: Optional[random.Random] = None,
    ):
        if initial_interval < 0:
            raise ValueError("initial_interval must be >= 0")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not 0 <= randomization < 1:
            raise ValueError("randomization must be in [0, 1)")
        self.initial_interval = initial_interval
        self.max_retries = max_retries
        self.multiplier = multiplier
        self.randomization = randomization
        self.max_interval = max_interval
        self._rng = rng or random.Random()
        self._retries = 0

    @property
    def retries(self) -> int:
        """Number of delays handed out so far."""
        return self._retries

    def next_backoff(self) -> Optional[float]:
        if self._retries >= self.max_retries:
            return None
        interval = min(
            self.initial_interval * (self.multiplier ** self._retries),
            self.max_interval,
        )
        self._retries += 1
        if self.randomization:
            delta = self.randomization * interval
            interval = self._rng.uniform(interval - delta, interval + delta)
        return interval
