"""Logging setup for fleetctl."""

import logging
import sys
from enum import Enum
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "fleetctl"
PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class LogLevel(str, Enum):
    """Log level enumeration."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def numeric(self) -> int:
        return logging.getLevelName(self.value.upper())


def _make_handler(rich_output: bool) -> logging.Handler:
    if rich_output:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%H:%M:%S"))
    return handler


def setup_logging(level: LogLevel = LogLevel.WARNING, rich_output: bool = True) -> logging.Logger:
    """Send fleetctl log records to stderr.

    Only the ``fleetctl`` logger tree is configured. Calling this again
    replaces the previous handler, so each CLI invocation starts clean.

    Args:
        level: Minimum level to emit
        rich_output: Render through Rich instead of plain text

    Returns:
        The package root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    logger.addHandler(_make_handler(rich_output))
    logger.setLevel(level.numeric)
    logger.propagate = False

    # asyncio reports unretrieved task exceptions at ERROR; debug chatter is noise
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``fleetctl`` tree, e.g. ``get_logger(__name__)``."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class StructuredLogger:
    """Logger that appends bound ``key=value`` fields to each message.

    Example:
        log = StructuredLogger(__name__).bind(target="srv-1")
        log.info("Stage finished", stage="node")
        # Stage finished target=srv-1 stage=node
    """

    def __init__(self, name: str, fields: dict[str, Any] | None = None):
        self._logger = get_logger(name)
        self._fields = fields or {}

    def bind(self, **fields: Any) -> "StructuredLogger":
        """New logger carrying these fields in addition to the current ones."""
        return StructuredLogger(self._logger.name, {**self._fields, **fields})

    def _log(self, level: int, message: str, fields: dict[str, Any], exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        merged = {**self._fields, **fields}
        if merged:
            message = message + " " + " ".join(f"{k}={v}" for k, v in merged.items())
        self._logger.log(level, message, exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    def exception(self, message: str, **fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, message, fields, exc_info=True)
