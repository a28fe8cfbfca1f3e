"""
Core layer of the backtester.

Contains type definitions, exceptions and the event scheduler shared by
all simulation components.
"""

from .data_types import (
    Bar,
    Signal,
    Order,
    Fill,
    Position,
    Trade,
    EquityCurvePoint,
    OrderSide,
    OrderType,
    TimeInForce,
    SignalAction,
    PositionSide,
    ExitReason,
)
from .exceptions import (
    BacktestError,
    ConfigurationError,
    InvalidConfigError,
    MissingConfigError,
    ConfigParseError,
    DataError,
    DataNotFoundError,
    DataValidationError,
    ExecutionError,
    InsufficientFundsError,
    OversellError,
    UnsupportedOrderTypeError,
    InvalidOrderError,
    LookAheadBiasError,
)
from .events import BacktestEvent, EventPriority, EventScheduler, EventType

__all__ = [
    # Data types
    "Bar",
    "Signal",
    "Order",
    "Fill",
    "Position",
    "Trade",
    "EquityCurvePoint",
    "OrderSide",
    "OrderType",
    "TimeInForce",
    "SignalAction",
    "PositionSide",
    "ExitReason",
    # Exceptions
    "BacktestError",
    "ConfigurationError",
    "InvalidConfigError",
    "MissingConfigError",
    "ConfigParseError",
    "DataError",
    "DataNotFoundError",
    "DataValidationError",
    "ExecutionError",
    "InsufficientFundsError",
    "OversellError",
    "UnsupportedOrderTypeError",
    "InvalidOrderError",
    "LookAheadBiasError",
    # Events
    "BacktestEvent",
    "EventPriority",
    "EventScheduler",
    "EventType",
]
