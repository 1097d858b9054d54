"""Console logging for the ReceiptFlow CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from receiptflow.config import LoggingConfig


def configure_logging(config: LoggingConfig | None = None, console: Console | None = None) -> logging.Logger:
    """Attach a RichHandler to the ``receiptflow`` logger.

    Safe to call more than once; the handler is replaced, not duplicated.
    """
    config = config or LoggingConfig()
    logger = logging.getLogger("receiptflow")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter(config.format))
    logger.addHandler(handler)
    logger.setLevel(config.level.upper())
    return logger
