"""Logging setup for the quiz taker."""
import logging

from rich.logging import RichHandler


def configure_logging(level: str = "WARNING") -> logging.Logger:
    """Route log records through rich and return the package logger."""
    logging.basicConfig(
        level=level,
        format="%(name)s | %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    return logging.getLogger("quiz_taker")
