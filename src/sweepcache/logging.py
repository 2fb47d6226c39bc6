"""
Structured logging for the file cache.

Provides:
- Context variables for sweep_id and strategy (using contextvars)
- JSONFormatter for machine-readable logs to file
- RichHandler for pretty console output
- ContextLogger wrapper that attaches context to all log calls
- setup_logging() that configures both file and console handlers
- Context manager log_context() for scoped context
- get_logger() factory
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.text import Text

ROOT_LOGGER_NAME = "sweepcache"

# Context variables for structured logging
_sweep_id_var: ContextVar[str | None] = ContextVar("sweep_id", default=None)
_strategy_var: ContextVar[str | None] = ContextVar("strategy", default=None)


def get_sweep_id() -> str | None:
    """Get the current sweep ID from context."""
    return _sweep_id_var.get()


def get_strategy() -> str | None:
    """Get the current eviction strategy from context."""
    return _strategy_var.get()


@contextmanager
def log_context(
    sweep_id: str | None = None,
    strategy: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Args:
        sweep_id: Sweep ID to set in context.
        strategy: Eviction strategy ("ttl" or "lru") to set in context.

    Yields:
        None. Context variables are set for the duration of the context.
    """
    old_sweep_id = _sweep_id_var.get()
    old_strategy = _strategy_var.get()

    try:
        if sweep_id is not None:
            _sweep_id_var.set(sweep_id)
        if strategy is not None:
            _strategy_var.set(strategy)
        yield
    finally:
        _sweep_id_var.set(old_sweep_id)
        _strategy_var.set(old_strategy)


def _context_fields() -> dict[str, str]:
    fields: dict[str, str] = {}
    sweep_id = get_sweep_id()
    strategy = get_strategy()
    if sweep_id:
        fields["sweep_id"] = sweep_id
    if strategy:
        fields["strategy"] = strategy
    return fields


class JSONFormatter(logging.Formatter):
    """JSON formatter for machine-readable log files.

    Produces JSON Lines format with structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_obj.update(_context_fields())

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class ContextRichHandler(RichHandler):
    """Rich handler that includes sweep context in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        """Override to add context prefix."""
        level_text = super().get_level_text(record)

        parts: list[str] = []
        sweep_id = get_sweep_id()
        strategy = get_strategy()

        if sweep_id:
            parts.append(f"[dim]{sweep_id[-8:]}[/dim]")
        if strategy:
            parts.append(f"[cyan]{strategy.upper()}[/cyan]")

        if parts:
            prefix = " ".join(parts)
            return Text.from_markup(f"{level_text} {prefix}")

        return level_text

    def render_message(self, record: logging.LogRecord, message: str) -> Any:
        """Append keyword context (key=value) to the console message."""
        extra = getattr(record, "extra", None)
        if extra:
            fields = " ".join(
                f"{k}={escape(str(v))}" for k, v in extra.items() if k not in ("sweep_id", "strategy")
            )
            if fields:
                message = f"{message} [dim]{fields}[/dim]"
        return super().render_message(record, message)


class ContextLogger:
    """Logger wrapper that attaches sweep context to every record.

    Keyword arguments become structured fields:
    ``logger.info("Cleaned files", count=3)``.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, *args: Any, **fields: Any) -> None:
        fields.update(_context_fields())
        self._logger.log(level, msg, *args, extra={"extra": fields})

    def debug(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **fields)

    def info(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.INFO, msg, *args, **fields)

    def warning(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log(logging.WARNING, msg, *args, **fields)


_setup_done: bool = False


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with JSON file handler and rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)  # Log everything to file
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=True,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    # Keep cache records out of the host application's root logger
    root_logger.propagate = False

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return ContextLogger(logging.getLogger(name))
