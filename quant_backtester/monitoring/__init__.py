"""
Monitoring module.

Provides structured logging with run correlation IDs and TRACE level
replay diagnostics.
"""

from .logger import (
    TRACE,
    ContextLogger,
    JsonFormatter,
    LogCategory,
    LogFormat,
    TextFormatter,
    get_logger,
    log_trace,
    setup_logging,
    trace_bar,
    trace_fill,
)

__all__ = [
    "TRACE",
    "ContextLogger",
    "JsonFormatter",
    "LogCategory",
    "LogFormat",
    "TextFormatter",
    "get_logger",
    "log_trace",
    "setup_logging",
    "trace_bar",
    "trace_fill",
]
