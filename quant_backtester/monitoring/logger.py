"""
Structured logging for backtest runs.

Provides:
- JSON and human-readable log formats
- Log categories for the simulation components
- Run-scoped correlation IDs and simulated-time context
- Rotating file handlers
- TRACE level logging for per-bar and per-fill detail
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from uuid import uuid4

from quant_backtester.core.data_types import Bar, Fill


# =============================================================================
# TRACE Level Logging (below DEBUG)
# =============================================================================

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
    """Log a message at TRACE level.

    TRACE is for replay detail too noisy for DEBUG: every bar received,
    every queued event, every fill booked.
    """
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore[attr-defined]


class LogCategory(str, Enum):
    """Log categories for the backtest components."""

    SYSTEM = "SYSTEM"
    DATA = "DATA"
    STRATEGY = "STRATEGY"
    EXECUTION = "EXECUTION"
    PORTFOLIO = "PORTFOLIO"
    ANALYTICS = "ANALYTICS"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    TEXT = "text"


# Record attributes copied into structured output when present
_CONTEXT_FIELDS = ("correlation_id", "symbol", "order_id", "strategy", "sim_time")


def _context_value(record: logging.LogRecord, name: str) -> Any:
    value = getattr(record, name, None)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, category: LogCategory = LogCategory.SYSTEM) -> None:
        """Initialize the formatter.

        Args:
            category: Category used for records that carry none.
        """
        super().__init__()
        self.category = category

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a single JSON line."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "category": getattr(record, "category", self.category.value),
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in _CONTEXT_FIELDS:
            value = _context_value(record, name)
            if value:
                log_data[name] = value

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data["extra_data"] = extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development."""

    def __init__(self, category: LogCategory = LogCategory.SYSTEM) -> None:
        super().__init__()
        self.category = category

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as human-readable text."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        category = getattr(record, "category", self.category.value)

        parts = [
            timestamp,
            f"[{record.levelname:8s}]",
            f"[{category:9s}]",
        ]

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            parts.append(f"[{correlation_id[:8]}]")
        sim_time = _context_value(record, "sim_time")
        if sim_time:
            parts.append(f"[t={sim_time}]")
        symbol = getattr(record, "symbol", None)
        if symbol:
            parts.append(f"[{symbol}]")

        parts.append(record.getMessage())

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            parts.append(f"| {extra_data}")

        message = " ".join(parts)
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that stamps category, run ID and bound context."""

    def __init__(
        self,
        logger: logging.Logger,
        category: LogCategory = LogCategory.SYSTEM,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the context logger.

        Args:
            logger: Base logger instance.
            category: Log category.
            correlation_id: Run identifier shared by all records of a run.
            context: Fields (symbol, order_id, strategy, sim_time, ...) added
                to every record.
        """
        super().__init__(logger, {})
        self.category = category
        self.correlation_id = correlation_id or str(uuid4())
        self.context = dict(context or {})

    def process(
        self,
        msg: str,
        kwargs: dict[str, Any],
    ) -> tuple[str, dict[str, Any]]:
        """Add category, correlation ID and bound context to the record."""
        extra = dict(self.context)
        extra.update(kwargs.get("extra", {}))
        extra["category"] = self.category.value
        extra["correlation_id"] = self.correlation_id
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLogger":
        """Create a logger with additional bound context.

        Known fields (``symbol``, ``order_id``, ``strategy``, ``sim_time``)
        become record attributes; anything else is grouped under
        ``extra_data``.
        """
        merged = dict(self.context)
        extra_data = dict(merged.get("extra_data", {}))
        for key, value in context.items():
            if value is None:
                continue
            if key in _CONTEXT_FIELDS:
                merged[key] = value
            else:
                extra_data[key] = value
        if extra_data:
            merged["extra_data"] = extra_data
        return ContextLogger(self.logger, self.category, self.correlation_id, merged)

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log a message at TRACE level."""
        self.log(TRACE, msg, *args, **kwargs)


def setup_logging(
    level: str = "INFO",
    log_format: LogFormat = LogFormat.TEXT,
    log_file: Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Set up logging for a backtest process.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json or text).
        log_file: Optional log file path.
        max_bytes: Size at which the log file rotates.
        backup_count: Number of rotated files to keep.
    """
    root_logger = logging.getLogger()
    resolved = logging.getLevelName(level.upper())
    root_logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    root_logger.handlers.clear()

    formatter: logging.Formatter
    if LogFormat(log_format) == LogFormat.JSON:
        formatter = JsonFormatter()
    else:
        formatter = TextFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


@lru_cache(maxsize=32)
def get_logger(
    name: str,
    category: LogCategory = LogCategory.SYSTEM,
    correlation_id: str | None = None,
) -> ContextLogger:
    """Get a context logger for a component.

    Args:
        name: Logger name.
        category: Log category.
        correlation_id: Optional correlation ID.

    Returns:
        ContextLogger instance.
    """
    return ContextLogger(logging.getLogger(name), category, correlation_id)


# =============================================================================
# TRACE Level Convenience Functions
# =============================================================================


def log_trace(
    category: LogCategory,
    message: str,
    **kwargs: Any,
) -> None:
    """Log a trace-level message for replay debugging.

    Args:
        category: Log category.
        message: Log message.
        **kwargs: Additional context data.
    """
    logger = get_logger(f"quant_backtester.{category.value.lower()}", category)
    logger.log(TRACE, message, extra={"extra_data": kwargs})


def trace_bar(bar: Bar) -> None:
    """Trace-log a bar entering the replay."""
    log_trace(
        LogCategory.DATA,
        f"Bar: {bar.symbol} O={bar.open} H={bar.high} L={bar.low} C={bar.close} V={bar.volume}",
        symbol=bar.symbol,
        sim_time=bar.timestamp.isoformat(),
    )


def trace_fill(fill: Fill) -> None:
    """Trace-log a fill booked by the ledger."""
    log_trace(
        LogCategory.EXECUTION,
        f"Fill: {fill.side.value} {fill.quantity} {fill.symbol} @ {fill.price}",
        fill_id=fill.fill_id,
        order_id=fill.order_id,
        commission=str(fill.commission),
        slippage=str(fill.slippage),
    )
