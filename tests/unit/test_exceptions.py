"""
Unit tests for core/exceptions.py
"""

from datetime import datetime
from decimal import Decimal

import pytest

from quant_backtester.core.exceptions import (
    BacktestError,
    ConfigParseError,
    ConfigurationError,
    DataError,
    DataNotFoundError,
    DataValidationError,
    ExecutionError,
    InsufficientFundsError,
    InvalidConfigError,
    InvalidOrderError,
    LookAheadBiasError,
    MissingConfigError,
    OversellError,
    UnsupportedOrderTypeError,
)


class TestBacktestError:
    """Tests for base BacktestError."""

    def test_basic_error(self):
        """Test basic error creation."""
        error = BacktestError("Something went wrong")
        assert str(error) == "[BacktestError] Something went wrong"
        assert error.message == "Something went wrong"
        assert error.error_code == "BacktestError"

    def test_error_with_code_and_details(self):
        """Test error with custom code and details."""
        error = BacktestError("Failed", error_code="BT001", details={"count": 3})
        assert "[BT001]" in str(error)
        assert "Details:" in str(error)
        assert error.details["count"] == 3

    def test_to_dict(self):
        """Test conversion to dictionary."""
        error = BacktestError("Test error", error_code="TEST001", details={"foo": "bar"})
        d = error.to_dict()
        assert d["error_type"] == "BacktestError"
        assert d["error_code"] == "TEST001"
        assert d["message"] == "Test error"
        assert d["details"]["foo"] == "bar"


class TestConfigurationErrors:
    """Tests for configuration errors."""

    def test_invalid_config_error(self):
        """Test InvalidConfigError details."""
        error = InvalidConfigError(
            "Bad value",
            config_key="initial_capital",
            value=Decimal("-1"),
            expected="> 0",
        )
        assert isinstance(error, ConfigurationError)
        assert error.details["config_key"] == "initial_capital"
        assert error.details["value"] == "-1"
        assert error.details["expected"] == "> 0"

    def test_missing_and_parse_errors(self):
        """Test MissingConfigError and ConfigParseError."""
        missing = MissingConfigError("Missing", config_key="backtest.symbols")
        parse = ConfigParseError("Broken", config_file="backtest.yaml")
        assert missing.config_key == "backtest.symbols"
        assert parse.details["config_file"] == "backtest.yaml"
        assert isinstance(parse, BacktestError)


class TestDataErrors:
    """Tests for data-related errors."""

    def test_data_not_found_error(self):
        """Test DataNotFoundError serializes its date range."""
        error = DataNotFoundError(
            "No data in specified date range",
            symbol="AAPL",
            start=datetime(2024, 1, 1),
            end=datetime(2024, 2, 1),
        )
        assert isinstance(error, DataError)
        assert error.details["symbol"] == "AAPL"
        assert error.details["start"] == "2024-01-01T00:00:00"
        assert error.details["end"] == "2024-02-01T00:00:00"

    def test_data_validation_error(self):
        """Test DataValidationError."""
        error = DataValidationError("Missing column", symbol="MSFT", field_name="close")
        assert error.field_name == "close"
        assert error.details["symbol"] == "MSFT"


class TestExecutionErrors:
    """Tests for execution errors."""

    def test_insufficient_funds_error(self):
        """Test InsufficientFundsError carries amounts as strings."""
        error = InsufficientFundsError(
            "Insufficient funds",
            required=Decimal("5000"),
            available=Decimal("1000"),
            symbol="AAPL",
        )
        assert isinstance(error, ExecutionError)
        assert error.required == Decimal("5000")
        assert error.details["required"] == "5000"
        assert error.details["available"] == "1000"

    def test_oversell_error(self):
        """Test OversellError."""
        error = OversellError("Oversell", requested=150, held=100, symbol="AAPL")
        assert error.details["requested"] == 150
        assert error.details["held"] == 100

    def test_order_errors(self):
        """Test UnsupportedOrderTypeError and InvalidOrderError."""
        unsupported = UnsupportedOrderTypeError("Unsupported", order_type="TRAILING", order_id="ORD-1")
        invalid = InvalidOrderError("Invalid", order_id="ORD-2", reason="symbol_mismatch")
        assert unsupported.details == {"order_type": "TRAILING", "order_id": "ORD-1"}
        assert invalid.reason == "symbol_mismatch"
        assert isinstance(invalid, ExecutionError)


class TestLookAheadBiasError:
    """Tests for LookAheadBiasError."""

    def test_details(self):
        """Test both timestamps and the index are reported."""
        error = LookAheadBiasError(
            "Events out of chronological order",
            previous_timestamp=datetime(2024, 1, 3),
            current_timestamp=datetime(2024, 1, 2),
            index=4,
        )
        assert error.details["index"] == 4
        assert error.details["previous_timestamp"] == "2024-01-03T00:00:00"
        assert error.current_timestamp == datetime(2024, 1, 2)

    def test_catchable_as_base(self):
        """Test every custom error is a BacktestError."""
        with pytest.raises(BacktestError):
            raise LookAheadBiasError("out of order")
