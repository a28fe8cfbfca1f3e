"""
Portfolio ledger for backtesting.

Single source of truth for cash, open positions, closed trades and the
equity time series. The bookkeeping is expressed as pure transitions over an
immutable ``LedgerState``:

- ``apply_fill(state, fill)`` books one execution
- ``mark_to_market(state, prices, timestamp)`` revalues positions and
  produces the equity curve point for a step

``PortfolioLedger`` wraps those transitions for the replay loop and keeps the
append-only equity curve. Every cash movement originates from a fill, so
``equity == cash + sum(position.market_value)`` holds at all times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from quant_backtester.core.data_types import (
    ZERO,
    EquityCurvePoint,
    ExitReason,
    Fill,
    OrderSide,
    Position,
    PositionSide,
    Trade,
)
from quant_backtester.core.exceptions import (
    InsufficientFundsError,
    InvalidConfigError,
    OversellError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerState:
    """Immutable snapshot of the portfolio books.

    ``positions`` is never mutated in place; transitions build a new mapping.
    """

    initial_capital: Decimal
    cash: Decimal
    positions: Mapping[str, Position] = field(default_factory=dict)
    closed_trades: tuple[Trade, ...] = ()
    total_commission: Decimal = ZERO
    total_slippage: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    peak_equity: Decimal | None = None
    last_equity: Decimal | None = None

    @property
    def market_value(self) -> Decimal:
        """Mark-to-market value of all open positions."""
        return sum((p.market_value for p in self.positions.values()), ZERO)

    @property
    def equity(self) -> Decimal:
        """Cash plus market value of positions."""
        return self.cash + self.market_value

    @property
    def unrealized_pnl(self) -> Decimal:
        """Unrealized P&L across open positions."""
        return sum((p.unrealized_pnl for p in self.positions.values()), ZERO)


def initial_state(initial_capital: Decimal) -> LedgerState:
    """Create the opening state of a ledger.

    Raises:
        InvalidConfigError: If the initial capital is not positive.
    """
    capital = Decimal(str(initial_capital))
    if capital <= 0:
        raise InvalidConfigError(
            "Initial capital must be positive",
            config_key="initial_capital",
            value=capital,
            expected="> 0",
        )
    return LedgerState(initial_capital=capital, cash=capital)


def apply_fill(state: LedgerState, fill: Fill) -> LedgerState:
    """Book a fill and return the resulting state.

    BUY fills debit ``quantity * price + commission``; slippage is already
    part of the execution price and is tracked for attribution only. SELL
    fills credit ``quantity * price - commission`` and append a Trade.

    Args:
        state: Current ledger state (left untouched).
        fill: Execution to book.

    Returns:
        New ledger state.

    Raises:
        InsufficientFundsError: If a buy costs more than the available cash.
        OversellError: If a sell exceeds the held quantity.
    """
    if fill.side == OrderSide.BUY:
        return _apply_buy(state, fill)
    return _apply_sell(state, fill)


def _apply_buy(state: LedgerState, fill: Fill) -> LedgerState:
    notional = fill.notional
    outlay = notional + fill.commission
    if outlay > state.cash:
        raise InsufficientFundsError(
            f"Insufficient funds to buy {fill.quantity} {fill.symbol}: "
            f"required {outlay}, available {state.cash}",
            required=outlay,
            available=state.cash,
            symbol=fill.symbol,
            timestamp=fill.timestamp,
        )

    existing = state.positions.get(fill.symbol)
    if existing is None:
        position = Position(
            symbol=fill.symbol,
            side=PositionSide.LONG,
            quantity=fill.quantity,
            avg_entry_price=fill.price,
            entry_value=notional,
            current_price=fill.price,
            market_value=notional,
            unrealized_pnl=-fill.commission,
            entry_commission=fill.commission,
            entry_slippage=fill.slippage,
            opened_at=fill.timestamp,
            last_updated=fill.timestamp,
            max_adverse_excursion=-fill.commission,
        )
    else:
        quantity = existing.quantity + fill.quantity
        entry_value = existing.entry_value + notional
        entry_commission = existing.entry_commission + fill.commission
        market_value = quantity * fill.price
        position = existing.model_copy(
            update={
                "quantity": quantity,
                "avg_entry_price": entry_value / quantity,
                "entry_value": entry_value,
                "entry_commission": entry_commission,
                "entry_slippage": existing.entry_slippage + fill.slippage,
                "current_price": fill.price,
                "market_value": market_value,
                "unrealized_pnl": market_value - entry_value - entry_commission,
                "last_updated": fill.timestamp,
            }
        )

    positions = dict(state.positions)
    positions[fill.symbol] = position
    return replace(
        state,
        cash=state.cash - outlay,
        positions=positions,
        total_commission=state.total_commission + fill.commission,
        total_slippage=state.total_slippage + fill.slippage,
    )


def _apply_sell(state: LedgerState, fill: Fill) -> LedgerState:
    position = state.positions.get(fill.symbol)
    held = position.quantity if position is not None else 0
    if position is None or fill.quantity > held:
        raise OversellError(
            f"Cannot sell {fill.quantity} {fill.symbol}: holding {held}",
            requested=fill.quantity,
            held=held,
            symbol=fill.symbol,
            timestamp=fill.timestamp,
        )

    full_close = fill.quantity == position.quantity
    if full_close:
        released_value = position.entry_value
        released_commission = position.entry_commission
        released_slippage = position.entry_slippage
        fraction = Decimal("1")
    else:
        fraction = Decimal(fill.quantity) / Decimal(position.quantity)
        released_value = position.avg_entry_price * fill.quantity
        released_commission = position.entry_commission * fraction
        released_slippage = position.entry_slippage * fraction

    proceeds = fill.notional - fill.commission
    net_pnl = proceeds - released_value - released_commission
    commission = released_commission + fill.commission
    slippage = released_slippage + fill.slippage
    invested = released_value + released_commission
    return_pct = float(net_pnl / invested * 100) if invested > 0 else 0.0
    holding_days = max((fill.timestamp - position.opened_at).days, 0)

    trade = Trade(
        trade_id=f"TRD-{len(state.closed_trades) + 1:06d}",
        symbol=fill.symbol,
        side=position.side,
        quantity=fill.quantity,
        entry_time=position.opened_at,
        exit_time=fill.timestamp,
        entry_price=position.avg_entry_price,
        exit_price=fill.price,
        exit_reason=fill.exit_reason or ExitReason.SIGNAL,
        gross_pnl=net_pnl + commission + slippage,
        commission=commission,
        slippage=slippage,
        net_pnl=net_pnl,
        return_pct=return_pct,
        holding_period_days=holding_days,
        max_adverse_excursion=min(position.max_adverse_excursion * fraction, net_pnl),
        max_favorable_excursion=max(position.max_favorable_excursion * fraction, net_pnl),
        strategy=fill.strategy,
    )

    positions = dict(state.positions)
    if full_close:
        del positions[fill.symbol]
    else:
        remaining = position.quantity - fill.quantity
        entry_value = position.entry_value - released_value
        entry_commission = position.entry_commission - released_commission
        market_value = remaining * position.current_price
        remaining_fraction = 1 - fraction
        positions[fill.symbol] = position.model_copy(
            update={
                "quantity": remaining,
                "entry_value": entry_value,
                "entry_commission": entry_commission,
                "entry_slippage": position.entry_slippage - released_slippage,
                "market_value": market_value,
                "unrealized_pnl": market_value - entry_value - entry_commission,
                "realized_pnl": position.realized_pnl + net_pnl,
                "max_adverse_excursion": position.max_adverse_excursion * remaining_fraction,
                "max_favorable_excursion": position.max_favorable_excursion * remaining_fraction,
                "last_updated": fill.timestamp,
            }
        )

    return replace(
        state,
        cash=state.cash + proceeds,
        positions=positions,
        closed_trades=state.closed_trades + (trade,),
        total_commission=state.total_commission + fill.commission,
        total_slippage=state.total_slippage + fill.slippage,
        realized_pnl=state.realized_pnl + net_pnl,
    )


def with_exit_levels(
    state: LedgerState,
    symbol: str,
    stop_loss: Decimal | None = None,
    take_profit: Decimal | None = None,
) -> LedgerState:
    """Attach protective stop / profit target levels to an open position."""
    position = state.positions.get(symbol)
    if position is None or (stop_loss is None and take_profit is None):
        return state
    update: dict[str, Any] = {}
    if stop_loss is not None:
        update["stop_loss"] = stop_loss
    if take_profit is not None:
        update["take_profit"] = take_profit
    positions = dict(state.positions)
    positions[symbol] = position.model_copy(update=update)
    return replace(state, positions=positions)


def mark_to_market(
    state: LedgerState,
    prices: Mapping[str, Decimal],
    timestamp: datetime,
) -> tuple[LedgerState, EquityCurvePoint]:
    """Revalue positions and build the equity curve point for a step.

    Positions without a price in ``prices`` keep their previous mark.

    Args:
        state: Current ledger state.
        prices: Latest price per symbol.
        timestamp: Time of the step.

    Returns:
        Tuple of (new state, equity curve point).
    """
    positions = {
        symbol: position.update_price(prices[symbol], timestamp) if symbol in prices else position
        for symbol, position in state.positions.items()
    }
    positions_value = sum((p.market_value for p in positions.values()), ZERO)
    equity = state.cash + positions_value

    previous = state.last_equity if state.last_equity is not None else state.initial_capital
    daily_return = float((equity - previous) / previous) if previous > 0 else 0.0
    cumulative_return = float((equity - state.initial_capital) / state.initial_capital)

    peak = equity if state.peak_equity is None else max(state.peak_equity, equity)
    drawdown = float((equity - peak) / peak) if peak > 0 else 0.0

    point = EquityCurvePoint(
        timestamp=timestamp,
        equity=equity,
        cash=state.cash,
        positions_value=positions_value,
        daily_return=daily_return,
        cumulative_return=cumulative_return,
        drawdown=min(drawdown, 0.0),
    )
    return replace(state, positions=positions, peak_equity=peak, last_equity=equity), point


class PortfolioLedger:
    """Stateful facade over the pure ledger transitions.

    The only component allowed to change cash or positions. No I/O.
    """

    def __init__(self, initial_capital: Decimal = Decimal("100000")) -> None:
        """Initialize the ledger.

        Args:
            initial_capital: Starting cash, must be positive.

        Raises:
            InvalidConfigError: If the initial capital is not positive.
        """
        self._state = initial_state(initial_capital)
        self._equity_curve: list[EquityCurvePoint] = []

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def process_fill(self, fill: Fill) -> Trade | None:
        """Book a fill.

        Returns:
            The Trade created when the fill closes (part of) a position.
        """
        previous = self._state
        self._state = apply_fill(previous, fill)

        logger.debug(
            f"Booked {fill.side.value} {fill.quantity} {fill.symbol} @ {fill.price}, "
            f"cash {previous.cash} -> {self._state.cash}"
        )
        if len(self._state.closed_trades) > len(previous.closed_trades):
            return self._state.closed_trades[-1]
        return None

    def update_position_prices(
        self,
        prices: Mapping[str, Decimal],
        timestamp: datetime,
    ) -> EquityCurvePoint:
        """Mark positions to market and record the step's equity point."""
        self._state, point = mark_to_market(self._state, prices, timestamp)
        self._equity_curve.append(point)
        return point

    def set_exit_levels(
        self,
        symbol: str,
        stop_loss: Decimal | None = None,
        take_profit: Decimal | None = None,
    ) -> None:
        """Attach stop-loss / take-profit levels to an open position."""
        self._state = with_exit_levels(self._state, symbol, stop_loss, take_profit)

    def reset(self) -> None:
        """Return to the opening state."""
        self._state = initial_state(self._state.initial_capital)
        self._equity_curve = []

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def initial_capital(self) -> Decimal:
        return self._state.initial_capital

    @property
    def cash(self) -> Decimal:
        return self._state.cash

    @property
    def equity(self) -> Decimal:
        return self._state.equity

    @property
    def market_value(self) -> Decimal:
        return self._state.market_value

    @property
    def unrealized_pnl(self) -> Decimal:
        return self._state.unrealized_pnl

    @property
    def realized_pnl(self) -> Decimal:
        return self._state.realized_pnl

    @property
    def total_pnl(self) -> Decimal:
        return self.realized_pnl + self.unrealized_pnl

    @property
    def leverage(self) -> float:
        """Gross exposure divided by equity."""
        equity = self.equity
        if equity <= 0:
            return 0.0
        return float(self.market_value / equity)

    @property
    def positions(self) -> dict[str, Position]:
        return dict(self._state.positions)

    def get_position(self, symbol: str) -> Position | None:
        return self._state.positions.get(symbol.upper())

    def has_position(self, symbol: str) -> bool:
        return symbol.upper() in self._state.positions

    @property
    def closed_trades(self) -> list[Trade]:
        return list(self._state.closed_trades)

    @property
    def equity_curve(self) -> list[EquityCurvePoint]:
        return list(self._equity_curve)

    @property
    def transaction_costs(self) -> dict[str, Decimal]:
        """Running commission and slippage totals."""
        return {
            "commission": self._state.total_commission,
            "slippage": self._state.total_slippage,
            "total": self._state.total_commission + self._state.total_slippage,
        }

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the current books."""
        return {
            "cash": str(self.cash),
            "equity": str(self.equity),
            "market_value": str(self.market_value),
            "realized_pnl": str(self.realized_pnl),
            "unrealized_pnl": str(self.unrealized_pnl),
            "total_pnl": str(self.total_pnl),
            "leverage": self.leverage,
            "positions": {s: p.to_dict() for s, p in self._state.positions.items()},
            "closed_trades": len(self._state.closed_trades),
            "transaction_costs": {k: str(v) for k, v in self.transaction_costs.items()},
        }
