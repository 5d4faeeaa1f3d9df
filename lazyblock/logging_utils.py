# lazyblock/logging_utils.py

"""Logging helpers shared across lazyblock."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import IO, TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .block import Block

PACKAGE_LOGGER = "lazyblock"
DEFAULT_FORMAT = "%(levelname)s %(name)s: %(message)s"

_handler: Optional[logging.Handler] = None


def configure_logging(
    level: Union[str, int] = "INFO",
    *,
    log_file: Optional[Union[str, Path]] = None,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """Send lazyblock records to stderr (or a file) at the given level.

    Only the package logger is touched; the application's root configuration
    is left alone. Calling again replaces the handler installed by the
    previous call.

    Args:
        level: Logging level name or integer value.
        log_file: Write to this file instead of a stream.
        stream: Stream for the handler when no file is given (default stderr).

    Returns:
        The ``lazyblock`` logger.
    """
    global _handler

    log_level = level if isinstance(level, int) else logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level {level!r}")

    disable_logging()
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_path)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(log_level)
    logger.addHandler(handler)
    _handler = handler
    return logger


def disable_logging() -> None:
    """Remove the handler installed by configure_logging() and reset the level."""
    global _handler

    if _handler is None:
        return
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.removeHandler(_handler)
    _handler.close()
    _handler = None
    logger.setLevel(logging.NOTSET)


def log_parameter_summary(
    logger: logging.Logger,
    block: "Block",
    *,
    level: int = logging.INFO,
    indent: str = "  ",
) -> None:
    """Log one aligned line per qualified parameter of a block tree."""

    if not logger.isEnabledFor(level):
        return

    params = block.get_parameters()
    logger.log(level, "%s: %d parameter(s)", type(block).__name__, len(params))
    width = max((len(name) for name in params), default=0)
    for name, param in params.items():
        shape = param.shape if param.is_initialized() else "uninitialized"
        initializer = type(param.effective_initializer).__name__
        logger.log(level, "%s- %s : %s [%s]", indent, name.ljust(width), shape, initializer)
