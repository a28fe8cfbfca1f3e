"""
Pydantic models and type definitions for the backtest engine.

Defines strict type contracts for all data flowing through a simulation:
price bars, strategy signals, orders, fills, positions, closed trades and
equity curve points. Every record is immutable; state changes produce new
instances.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _str_or_none(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


class OrderSide(str, Enum):
    """Order side enum."""

    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    """Order type enum."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP = "STOP"
    STOP_LIMIT = "STOP_LIMIT"


class TimeInForce(str, Enum):
    """Time in force enum."""

    DAY = "DAY"
    GTC = "GTC"  # Good Till Cancelled
    IOC = "IOC"  # Immediate or Cancel


class SignalAction(str, Enum):
    """Strategy decision for a bar."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class PositionSide(str, Enum):
    """Position side enum."""

    LONG = "LONG"
    SHORT = "SHORT"


class ExitReason(str, Enum):
    """Why a position (or part of it) was closed."""

    SIGNAL = "SIGNAL"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    END_OF_BACKTEST = "END_OF_BACKTEST"


def _check_order_prices(
    order_type: OrderType,
    limit_price: Decimal | None,
    stop_price: Decimal | None,
) -> None:
    """Validate that an order type carries the prices it needs."""
    if order_type == OrderType.LIMIT and limit_price is None:
        raise ValueError("Limit orders require a limit price")
    if order_type == OrderType.STOP and stop_price is None:
        raise ValueError("Stop orders require a stop price")
    if order_type == OrderType.STOP_LIMIT and (limit_price is None or stop_price is None):
        raise ValueError("Stop-limit orders require both limit and stop prices")


class Bar(BaseModel):
    """OHLCV bar with strict validation.

    One bar per symbol per time step; ordering by timestamp is the
    simulation clock.
    """

    symbol: str = Field(..., min_length=1, max_length=10, description="Ticker symbol")
    timestamp: datetime = Field(..., description="Bar timestamp")
    open: Decimal = Field(..., gt=0, description="Open price")
    high: Decimal = Field(..., gt=0, description="High price")
    low: Decimal = Field(..., gt=0, description="Low price")
    close: Decimal = Field(..., gt=0, description="Close price")
    volume: int = Field(..., ge=0, description="Trading volume")

    model_config = ConfigDict(frozen=True)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        return v.upper().strip()

    @model_validator(mode="after")
    def validate_ohlc_relationship(self) -> "Bar":
        """Validate OHLC relationship: low <= open,close <= high."""
        if self.low > self.open or self.low > self.close:
            raise ValueError(f"Low price ({self.low}) must be <= open ({self.open}) and close ({self.close})")
        if self.high < self.open or self.high < self.close:
            raise ValueError(f"High price ({self.high}) must be >= open ({self.open}) and close ({self.close})")
        return self

    @property
    def mid(self) -> Decimal:
        """Midpoint of the bar range."""
        return (self.high + self.low) / 2

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with serializable types."""
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": self.volume,
        }


class Signal(BaseModel):
    """Trading decision emitted by a strategy for one bar."""

    symbol: str = Field(..., min_length=1, max_length=10, description="Ticker symbol")
    action: SignalAction = Field(..., description="BUY, SELL or HOLD")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Confidence (0.0 to 1.0)")
    reasons: list[str] = Field(default_factory=list, description="Human-readable rationale")
    strategy: str = Field(default="", description="Strategy that produced the signal")
    timestamp: datetime | None = Field(default=None, description="Signal time (defaults to the bar time)")
    quantity: int | None = Field(default=None, gt=0, description="Explicit order size in shares")
    order_type: OrderType = Field(default=OrderType.MARKET, description="Order type to submit")
    limit_price: Decimal | None = Field(default=None, gt=0, description="Limit price")
    stop_price: Decimal | None = Field(default=None, gt=0, description="Stop price")
    stop_loss: Decimal | None = Field(default=None, gt=0, description="Protective stop for the new position")
    take_profit: Decimal | None = Field(default=None, gt=0, description="Profit target for the new position")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional metadata")

    model_config = ConfigDict(frozen=True)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        return v.upper().strip()

    @model_validator(mode="after")
    def validate_prices(self) -> "Signal":
        """Validate that the requested order type has its prices."""
        if self.action != SignalAction.HOLD:
            _check_order_prices(self.order_type, self.limit_price, self.stop_price)
        return self

    def is_actionable(self, min_confidence: float = 0.0) -> bool:
        """Check if the signal should be turned into an order."""
        return self.action != SignalAction.HOLD and self.confidence >= min_confidence

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "strategy": self.strategy,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "quantity": self.quantity,
            "order_type": self.order_type.value,
            "limit_price": _str_or_none(self.limit_price),
            "stop_price": _str_or_none(self.stop_price),
            "stop_loss": _str_or_none(self.stop_loss),
            "take_profit": _str_or_none(self.take_profit),
            "metadata": self.metadata,
        }


class Order(BaseModel):
    """Order submitted to the fill simulator. Consumed exactly once."""

    order_id: str = Field(default_factory=_new_id, min_length=1, description="Order identifier")
    symbol: str = Field(..., min_length=1, max_length=10, description="Ticker symbol")
    side: OrderSide = Field(..., description="Order side (BUY/SELL)")
    quantity: int = Field(..., gt=0, description="Order quantity in shares")
    order_type: OrderType = Field(default=OrderType.MARKET, description="Order type")
    limit_price: Decimal | None = Field(default=None, gt=0, description="Limit price")
    stop_price: Decimal | None = Field(default=None, gt=0, description="Stop price")
    time_in_force: TimeInForce = Field(default=TimeInForce.DAY, description="Time in force")
    created_at: datetime = Field(default_factory=_utcnow, description="Order creation time")
    strategy: str = Field(default="", description="Attributed strategy name")
    exit_reason: ExitReason | None = Field(default=None, description="Reason for a closing order")

    model_config = ConfigDict(frozen=True)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        return v.upper().strip()

    @model_validator(mode="after")
    def validate_order_prices(self) -> "Order":
        """Validate order prices based on order type."""
        _check_order_prices(self.order_type, self.limit_price, self.stop_price)
        return self

    @property
    def is_buy(self) -> bool:
        """Check if the order buys."""
        return self.side == OrderSide.BUY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "order_type": self.order_type.value,
            "limit_price": _str_or_none(self.limit_price),
            "stop_price": _str_or_none(self.stop_price),
            "time_in_force": self.time_in_force.value,
            "created_at": self.created_at.isoformat(),
            "strategy": self.strategy,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        }


class Fill(BaseModel):
    """Execution of an order. The only input that changes the ledger."""

    fill_id: str = Field(default_factory=_new_id, min_length=1, description="Fill identifier")
    order_id: str = Field(..., min_length=1, description="Order that was executed")
    symbol: str = Field(..., min_length=1, max_length=10, description="Ticker symbol")
    side: OrderSide = Field(..., description="Fill side")
    quantity: int = Field(..., gt=0, description="Executed quantity")
    price: Decimal = Field(..., gt=0, description="Execution price (slippage included)")
    commission: Decimal = Field(default=ZERO, ge=0, description="Commission charged")
    slippage: Decimal = Field(default=ZERO, ge=0, description="Slippage cost in dollars")
    timestamp: datetime = Field(..., description="Execution time")
    strategy: str = Field(default="", description="Attributed strategy name")
    exit_reason: ExitReason | None = Field(default=None, description="Reason for a closing fill")

    model_config = ConfigDict(frozen=True)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        return v.upper().strip()

    @property
    def notional(self) -> Decimal:
        """Quantity times execution price."""
        return self.quantity * self.price

    @property
    def total_cost(self) -> Decimal:
        """Commission plus slippage."""
        return self.commission + self.slippage

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return {
            "fill_id": self.fill_id,
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": str(self.price),
            "commission": str(self.commission),
            "slippage": str(self.slippage),
            "timestamp": self.timestamp.isoformat(),
            "strategy": self.strategy,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        }


class Position(BaseModel):
    """Open position in one symbol.

    ``entry_value`` is the sum of quantity times execution price for the
    shares still held; ``entry_commission`` and ``entry_slippage`` are the
    entry costs still attributed to them. Both shrink pro rata on partial
    closes so that closed and open pieces always add up to what was paid.
    """

    symbol: str = Field(..., min_length=1, max_length=10, description="Ticker symbol")
    side: PositionSide = Field(default=PositionSide.LONG, description="Position side")
    quantity: int = Field(..., gt=0, description="Shares held")
    avg_entry_price: Decimal = Field(..., gt=0, description="Volume-weighted average entry price")
    entry_value: Decimal = Field(..., ge=0, description="Quantity x entry price of held shares")
    current_price: Decimal = Field(..., gt=0, description="Latest mark price")
    market_value: Decimal = Field(..., description="Quantity x mark price")
    unrealized_pnl: Decimal = Field(default=ZERO, description="Market value minus cost basis")
    realized_pnl: Decimal = Field(default=ZERO, description="P&L realized by partial closes")
    entry_commission: Decimal = Field(default=ZERO, ge=0, description="Entry commission of held shares")
    entry_slippage: Decimal = Field(default=ZERO, ge=0, description="Entry slippage of held shares")
    opened_at: datetime = Field(..., description="Time of the opening fill")
    last_updated: datetime = Field(..., description="Time of the last fill or mark")
    stop_loss: Decimal | None = Field(default=None, gt=0, description="Protective stop level")
    take_profit: Decimal | None = Field(default=None, gt=0, description="Profit target level")
    max_adverse_excursion: Decimal = Field(default=ZERO, description="Worst unrealized P&L seen")
    max_favorable_excursion: Decimal = Field(default=ZERO, description="Best unrealized P&L seen")

    model_config = ConfigDict(frozen=True)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        return v.upper().strip()

    @property
    def cost_basis(self) -> Decimal:
        """Cash paid for the held shares, commission included."""
        return self.entry_value + self.entry_commission

    @property
    def unrealized_pnl_pct(self) -> float:
        """Get unrealized P&L as percentage of cost basis."""
        if self.cost_basis == 0:
            return 0.0
        return float(self.unrealized_pnl / self.cost_basis) * 100

    def update_price(self, new_price: Decimal, timestamp: datetime) -> "Position":
        """Return a copy marked at ``new_price`` with excursions tracked."""
        market_value = self.quantity * new_price
        unrealized_pnl = market_value - self.cost_basis
        return self.model_copy(
            update={
                "current_price": new_price,
                "market_value": market_value,
                "unrealized_pnl": unrealized_pnl,
                "last_updated": timestamp,
                "max_adverse_excursion": min(self.max_adverse_excursion, unrealized_pnl),
                "max_favorable_excursion": max(self.max_favorable_excursion, unrealized_pnl),
            }
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "avg_entry_price": str(self.avg_entry_price),
            "current_price": str(self.current_price),
            "cost_basis": str(self.cost_basis),
            "market_value": str(self.market_value),
            "unrealized_pnl": str(self.unrealized_pnl),
            "realized_pnl": str(self.realized_pnl),
            "entry_commission": str(self.entry_commission),
            "entry_slippage": str(self.entry_slippage),
            "opened_at": self.opened_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "stop_loss": _str_or_none(self.stop_loss),
            "take_profit": _str_or_none(self.take_profit),
            "max_adverse_excursion": str(self.max_adverse_excursion),
            "max_favorable_excursion": str(self.max_favorable_excursion),
        }


class Trade(BaseModel):
    """Closed round trip (full or partial close of a position).

    ``net_pnl`` is the cash actually gained or lost. ``gross_pnl`` is the
    result before commission and slippage.
    """

    trade_id: str = Field(..., min_length=1, description="Trade identifier")
    symbol: str = Field(..., min_length=1, max_length=10, description="Ticker symbol")
    side: PositionSide = Field(default=PositionSide.LONG, description="Side of the closed position")
    quantity: int = Field(..., gt=0, description="Shares closed")
    entry_time: datetime
    exit_time: datetime
    entry_price: Decimal = Field(..., gt=0, description="Average entry price")
    exit_price: Decimal = Field(..., gt=0, description="Exit execution price")
    exit_reason: ExitReason = Field(default=ExitReason.SIGNAL)
    gross_pnl: Decimal
    commission: Decimal = Field(default=ZERO, ge=0, description="Entry share plus exit commission")
    slippage: Decimal = Field(default=ZERO, ge=0, description="Entry share plus exit slippage")
    net_pnl: Decimal
    return_pct: float = Field(..., description="Net P&L as percent of capital invested")
    holding_period_days: int = Field(..., ge=0)
    max_adverse_excursion: Decimal = Field(default=ZERO)
    max_favorable_excursion: Decimal = Field(default=ZERO)
    strategy: str = ""

    model_config = ConfigDict(frozen=True)

    @property
    def total_costs(self) -> Decimal:
        """Commission plus slippage."""
        return self.commission + self.slippage

    @property
    def is_winner(self) -> bool:
        """Check if the trade made money after costs."""
        return self.net_pnl > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return {
            "trade_id": self.trade_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "entry_price": str(self.entry_price),
            "exit_price": str(self.exit_price),
            "exit_reason": self.exit_reason.value,
            "gross_pnl": str(self.gross_pnl),
            "commission": str(self.commission),
            "slippage": str(self.slippage),
            "total_costs": str(self.total_costs),
            "net_pnl": str(self.net_pnl),
            "return_pct": self.return_pct,
            "holding_period_days": self.holding_period_days,
            "max_adverse_excursion": str(self.max_adverse_excursion),
            "max_favorable_excursion": str(self.max_favorable_excursion),
            "strategy": self.strategy,
        }


class EquityCurvePoint(BaseModel):
    """Portfolio valuation recorded once per simulated step."""

    timestamp: datetime
    equity: Decimal = Field(..., description="Cash plus market value of positions")
    cash: Decimal
    positions_value: Decimal
    daily_return: float = Field(default=0.0, description="Return versus the previous step")
    cumulative_return: float = Field(default=0.0, description="Return versus initial capital")
    drawdown: float = Field(default=0.0, le=0.0, description="Decline from running peak (<= 0)")

    model_config = ConfigDict(frozen=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with JSON-serializable types."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "equity": str(self.equity),
            "cash": str(self.cash),
            "positions_value": str(self.positions_value),
            "daily_return": self.daily_return,
            "cumulative_return": self.cumulative_return,
            "drawdown": self.drawdown,
        }
