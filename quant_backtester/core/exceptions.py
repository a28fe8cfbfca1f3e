"""
Custom exception hierarchy for the backtest engine.

Provides a structured exception hierarchy for different error categories:
- Configuration errors (invalid parameters, missing keys, unreadable files)
- Data errors (no bars in range, malformed input frames)
- Execution errors (insufficient cash, oversell, unsupported orders)
- Integrity errors (events processed out of chronological order)

Every fatal error carries enough context (symbol, timestamp, quantities) in
``details`` to reproduce the failing scenario from the same input data.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class BacktestError(Exception):
    """Base exception for all backtest engine errors.

    All custom exceptions in the package inherit from this class.
    Provides structured error information including error code, message,
    and additional context.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Optional error code for programmatic handling.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def __str__(self) -> str:
        """Return formatted error string."""
        if self.details:
            return f"[{self.error_code}] {self.message} - Details: {self.details}"
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(BacktestError):
    """Base exception for configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid.

    Examples:
        - Negative commission fee or basis points
        - Maximum fee below the minimum fee
        - Start date after end date, non-positive initial capital
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        value: Any = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if value is not None:
            details["value"] = str(value)
        if expected:
            details["expected"] = expected
        super().__init__(message, details=details, **kwargs)
        self.config_key = config_key
        self.value = value
        self.expected = expected


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration key is missing."""

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, details=details, **kwargs)
        self.config_key = config_key


class ConfigParseError(ConfigurationError):
    """Raised when a configuration file cannot be parsed."""

    def __init__(
        self,
        message: str,
        config_file: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if config_file:
            details["config_file"] = config_file
        super().__init__(message, details=details, **kwargs)
        self.config_file = config_file


# =============================================================================
# Data Errors
# =============================================================================


class DataError(BacktestError):
    """Base exception for data-related errors."""

    pass


class DataNotFoundError(DataError):
    """Raised when requested market data is not available.

    Examples:
        - Symbol unknown to the data provider
        - No bars inside the requested date range
    """

    def __init__(
        self,
        message: str,
        symbol: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if symbol:
            details["symbol"] = symbol
        if start is not None:
            details["start"] = _timestamp(start)
        if end is not None:
            details["end"] = _timestamp(end)
        super().__init__(message, details=details, **kwargs)
        self.symbol = symbol
        self.start = start
        self.end = end


class DataValidationError(DataError):
    """Raised when input data fails validation checks.

    Examples:
        - Missing OHLCV column in a DataFrame
        - Bars not sorted by timestamp
    """

    def __init__(
        self,
        message: str,
        symbol: str | None = None,
        field_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if symbol:
            details["symbol"] = symbol
        if field_name:
            details["field_name"] = field_name
        super().__init__(message, details=details, **kwargs)
        self.symbol = symbol
        self.field_name = field_name


# =============================================================================
# Execution Errors
# =============================================================================


class ExecutionError(BacktestError):
    """Base exception for execution-related errors.

    Execution errors are fatal for the run: skipping a fill silently would
    break cash reconciliation.
    """

    pass


class InsufficientFundsError(ExecutionError):
    """Raised when a buy fill costs more than the available cash."""

    def __init__(
        self,
        message: str,
        required: Any = None,
        available: Any = None,
        symbol: str | None = None,
        timestamp: datetime | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if required is not None:
            details["required"] = str(required)
        if available is not None:
            details["available"] = str(available)
        if symbol:
            details["symbol"] = symbol
        if timestamp is not None:
            details["timestamp"] = _timestamp(timestamp)
        super().__init__(message, details=details, **kwargs)
        self.required = required
        self.available = available
        self.symbol = symbol
        self.timestamp = timestamp


class OversellError(ExecutionError):
    """Raised when a sell fill exceeds the held quantity (or nothing is held)."""

    def __init__(
        self,
        message: str,
        requested: int | None = None,
        held: int | None = None,
        symbol: str | None = None,
        timestamp: datetime | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if requested is not None:
            details["requested"] = requested
        if held is not None:
            details["held"] = held
        if symbol:
            details["symbol"] = symbol
        if timestamp is not None:
            details["timestamp"] = _timestamp(timestamp)
        super().__init__(message, details=details, **kwargs)
        self.requested = requested
        self.held = held
        self.symbol = symbol
        self.timestamp = timestamp


class UnsupportedOrderTypeError(ExecutionError):
    """Raised when the fill simulator receives an order type it cannot price."""

    def __init__(
        self,
        message: str,
        order_type: str | None = None,
        order_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if order_type:
            details["order_type"] = order_type
        if order_id:
            details["order_id"] = order_id
        super().__init__(message, details=details, **kwargs)
        self.order_type = order_type
        self.order_id = order_id


class InvalidOrderError(ExecutionError):
    """Raised when an order cannot be executed against the given bar."""

    def __init__(
        self,
        message: str,
        order_id: str | None = None,
        reason: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if order_id:
            details["order_id"] = order_id
        if reason:
            details["reason"] = reason
        super().__init__(message, details=details, **kwargs)
        self.order_id = order_id
        self.reason = reason


# =============================================================================
# Integrity Errors
# =============================================================================


class LookAheadBiasError(BacktestError):
    """Raised when events were (or would be) processed out of time order.

    A decreasing timestamp between two consecutive events means a decision
    could have used information from the future. Never corrected silently.
    """

    def __init__(
        self,
        message: str,
        previous_timestamp: datetime | None = None,
        current_timestamp: datetime | None = None,
        index: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if previous_timestamp is not None:
            details["previous_timestamp"] = _timestamp(previous_timestamp)
        if current_timestamp is not None:
            details["current_timestamp"] = _timestamp(current_timestamp)
        if index is not None:
            details["index"] = index
        super().__init__(message, details=details, **kwargs)
        self.previous_timestamp = previous_timestamp
        self.current_timestamp = current_timestamp
        self.index = index
