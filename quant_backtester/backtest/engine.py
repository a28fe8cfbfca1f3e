"""
Backtesting engine module.

Event-driven replay of a strategy over historical bars:
- Market data, signal, order and fill events ordered by the EventScheduler
- Fills simulated by the FillSimulator with pluggable cost models
- Cash and positions booked by the PortfolioLedger
- Results analysed by the PerformanceAnalyzer

The strategy only ever receives bars up to and including the current
simulated instant. Its methods may be plain functions or coroutines.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from quant_backtester.backtest.analyzer import (
    BacktestStatistics,
    DrawdownPoint,
    PerformanceAnalyzer,
    PerformanceMetrics,
    StatisticalTests,
)
from quant_backtester.backtest.costs import (
    BaseCommissionModel,
    BaseSlippageModel,
    NoSlippage,
    ZeroCommission,
)
from quant_backtester.backtest.data import DataProvider
from quant_backtester.backtest.ledger import PortfolioLedger
from quant_backtester.backtest.simulator import FillSimulator, FillSimulatorConfig
from quant_backtester.core.data_types import (
    Bar,
    EquityCurvePoint,
    ExitReason,
    Fill,
    Order,
    OrderSide,
    OrderType,
    Position,
    Signal,
    SignalAction,
    Trade,
)
from quant_backtester.core.events import BacktestEvent, EventScheduler, EventType
from quant_backtester.core.exceptions import DataNotFoundError, InvalidConfigError
from quant_backtester.monitoring.logger import ContextLogger, LogCategory, trace_bar, trace_fill

logger = logging.getLogger(__name__)


@dataclass
class BacktestConfig:
    """Configuration for backtesting."""

    symbols: list[str]
    start_date: datetime
    end_date: datetime
    initial_capital: Decimal = Decimal("100000")

    # Execution model
    commission_model: BaseCommissionModel = field(default_factory=ZeroCommission)
    slippage_model: BaseSlippageModel = field(default_factory=NoSlippage)
    fill_on_close: bool = True  # False = signals fill at the next bar's open
    reject_partial_fills: bool = True
    max_order_size_pct: Decimal = Decimal("0.10")  # Of bar volume

    # Position sizing
    position_size_pct: Decimal = Decimal("0.95")  # Of cash per entry
    allow_pyramiding: bool = False
    min_confidence: float = 0.0

    close_positions_at_end: bool = True
    history_window: int = 500
    avg_volume_lookback_days: int = 20
    periods_per_year: int = 252

    def __post_init__(self) -> None:
        if not self.symbols:
            raise InvalidConfigError(
                "At least one symbol is required",
                config_key="symbols",
                expected="non-empty list",
            )
        self.symbols = [s.upper().strip() for s in self.symbols]

        if self.start_date > self.end_date:
            raise InvalidConfigError(
                f"Start date {self.start_date} is after end date {self.end_date}",
                config_key="start_date",
                value=self.start_date,
                expected="<= end_date",
            )

        self.initial_capital = Decimal(str(self.initial_capital))
        if self.initial_capital <= 0:
            raise InvalidConfigError(
                "Initial capital must be positive",
                config_key="initial_capital",
                value=self.initial_capital,
                expected="> 0",
            )

        self.position_size_pct = Decimal(str(self.position_size_pct))
        if not 0 < self.position_size_pct <= 1:
            raise InvalidConfigError(
                "position_size_pct must be in (0, 1]",
                config_key="position_size_pct",
                value=self.position_size_pct,
                expected="0 < value <= 1",
            )

        for key in ("history_window", "avg_volume_lookback_days", "periods_per_year"):
            if getattr(self, key) < 1:
                raise InvalidConfigError(
                    f"{key} must be at least 1",
                    config_key=key,
                    value=getattr(self, key),
                    expected=">= 1",
                )

        # Validates max_order_size_pct
        self.simulator_config()

    def simulator_config(self) -> FillSimulatorConfig:
        """Build the fill simulator configuration."""
        return FillSimulatorConfig(
            commission_model=self.commission_model,
            slippage_model=self.slippage_model,
            fill_on_close=self.fill_on_close,
            reject_partial_fills=self.reject_partial_fills,
            max_order_size_pct=self.max_order_size_pct,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbols": list(self.symbols),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "initial_capital": str(self.initial_capital),
            "commission_model": self.commission_model.describe(),
            "slippage_model": self.slippage_model.describe(),
            "fill_on_close": self.fill_on_close,
            "reject_partial_fills": self.reject_partial_fills,
            "max_order_size_pct": str(self.max_order_size_pct),
            "position_size_pct": str(self.position_size_pct),
            "allow_pyramiding": self.allow_pyramiding,
            "min_confidence": self.min_confidence,
            "close_positions_at_end": self.close_positions_at_end,
            "history_window": self.history_window,
            "avg_volume_lookback_days": self.avg_volume_lookback_days,
            "periods_per_year": self.periods_per_year,
        }


class Strategy(ABC):
    """Abstract base class for trading strategies.

    Any hook may be declared ``async``; the engine awaits it.
    """

    @property
    def name(self) -> str:
        """Strategy name used for attribution."""
        return self.__class__.__name__

    def initialize(self) -> Any:
        """Called once before the first bar."""
        return None

    @abstractmethod
    def on_bar(self, symbol: str, bar: Bar, history: list[Bar]) -> Any:
        """Decide on the latest bar.

        Args:
            symbol: Symbol of the bar.
            bar: Latest bar.
            history: Recent bars of the symbol, oldest first, ending with ``bar``.

        Returns:
            A Signal, or None for no decision (or an awaitable of either).
        """

    def on_fill(self, fill: Fill) -> Any:
        """Called when one of the strategy's orders is filled."""
        return None

    def finalize(self) -> Any:
        """Called once after the last bar."""
        return None


class ErrorSeverity(str, Enum):
    """Severity of a problem recorded during a run."""

    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class BacktestErrorRecord:
    """Non-fatal problem recorded during a run."""

    timestamp: datetime
    severity: ErrorSeverity
    message: str
    symbol: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "message": self.message,
            "symbol": self.symbol,
            "details": self.details,
        }


@dataclass
class BacktestResult:
    """Outcome of a backtest run."""

    run_id: str
    config: BacktestConfig
    strategy_name: str
    execution_time_seconds: float
    metrics: PerformanceMetrics
    trades: list[Trade]
    equity_curve: list[EquityCurvePoint]
    drawdown_curve: list[DrawdownPoint]
    statistics: BacktestStatistics
    statistical_tests: StatisticalTests
    errors: list[BacktestErrorRecord] = field(default_factory=list)
    open_positions: list[Position] = field(default_factory=list)
    final_cash: Decimal = Decimal("0")
    final_equity: Decimal = Decimal("0")

    @property
    def has_errors(self) -> bool:
        """Check if any ERROR or CRITICAL record was produced."""
        return any(e.severity != ErrorSeverity.WARNING for e in self.errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "run_id": self.run_id,
            "config": self.config.to_dict(),
            "strategy_name": self.strategy_name,
            "execution_time_seconds": self.execution_time_seconds,
            "metrics": self.metrics.to_dict(),
            "trades": [t.to_dict() for t in self.trades],
            "equity_curve": [p.to_dict() for p in self.equity_curve],
            "drawdown_curve": [d.to_dict() for d in self.drawdown_curve],
            "statistics": self.statistics.to_dict(),
            "statistical_tests": self.statistical_tests.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "open_positions": [p.to_dict() for p in self.open_positions],
            "final_cash": str(self.final_cash),
            "final_equity": str(self.final_equity),
        }

    def summary(self) -> str:
        """Get a printable summary of the run."""
        header = (
            f"Backtest {self.strategy_name} on {', '.join(self.config.symbols)}\n"
            f"Initial capital: {self.config.initial_capital}  Final equity: {self.final_equity}\n"
            f"Execution time: {self.execution_time_seconds:.3f}s  "
            f"Warnings: {sum(e.severity == ErrorSeverity.WARNING for e in self.errors)}  "
            f"Errors: {sum(e.severity != ErrorSeverity.WARNING for e in self.errors)}"
        )
        return header + self.metrics.summary()


class BacktestEngine:
    """Event-driven backtesting engine.

    Every run owns its ledger, scheduler and simulators, so independent
    engines can run concurrently.
    """

    def __init__(
        self,
        config: BacktestConfig,
        data_provider: DataProvider,
        strategy: Strategy,
    ) -> None:
        """Initialize backtesting engine.

        Args:
            config: Backtest configuration.
            data_provider: Source of historical bars.
            strategy: Trading strategy to test.
        """
        self.config = config
        self.data_provider = data_provider
        self.strategy = strategy
        self.analyzer = PerformanceAnalyzer(periods_per_year=config.periods_per_year)
        self._reset()

    def _reset(self) -> None:
        """Create fresh per-run state."""
        self.run_id = str(uuid4())
        self.ledger = PortfolioLedger(self.config.initial_capital)
        self.scheduler = EventScheduler()

        fill_ids = itertools.count(1)
        sim_config = self.config.simulator_config()
        self.simulator = FillSimulator(sim_config, fill_ids=fill_ids)
        self._liquidation_simulator = FillSimulator(
            replace(sim_config, fill_on_close=True, reject_partial_fills=False),
            fill_ids=fill_ids,
        )

        self._order_ids = itertools.count(1)
        self._history: dict[str, deque[Bar]] = {}
        self._last_bars: dict[str, Bar] = {}
        self._reserved_cash: dict[str, Decimal] = {}
        self._deferred_signals: dict[str, list[Signal]] = {}
        self._in_flight: dict[str, Order] = {}
        self._exit_levels: dict[str, tuple[Decimal | None, Decimal | None]] = {}
        self._errors: list[BacktestErrorRecord] = []
        self._current_time: datetime | None = None
        self._liquidated = False

        self._log = ContextLogger(logger, LogCategory.SYSTEM, self.run_id)
        self._strategy_log = ContextLogger(logger, LogCategory.STRATEGY, self.run_id)
        self._execution_log = ContextLogger(logger, LogCategory.EXECUTION, self.run_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> BacktestResult:
        """Run the backtest to completion.

        Returns:
            BacktestResult with metrics, trades and the equity curve.

        Raises:
            DataNotFoundError: If no bars exist in the date range.
            ExecutionError: If the simulator rejects an order or the ledger
                rejects a fill (for example insufficient funds).
        """
        return asyncio.run(self.run_async())

    async def run_async(self) -> BacktestResult:
        """Run the backtest inside an existing event loop."""
        self._reset()
        started = time.perf_counter()
        self._log.info(
            f"Starting backtest {self.strategy.name} on {self.config.symbols} "
            f"from {self.config.start_date} to {self.config.end_date}"
        )

        await self._call_strategy("initialize")

        bars = self._load_data()
        self.scheduler.push_many(
            BacktestEvent(EventType.MARKET_DATA, bar.timestamp, data=bar, symbol=bar.symbol)
            for bar in bars
        )

        await self._drain()

        dropped = sum(len(signals) for signals in self._deferred_signals.values())
        if dropped:
            self._log.debug(f"{dropped} signal(s) from the last bar never reached a next bar")

        await self._call_strategy("finalize")
        self.scheduler.validate_chronological_order()

        result = self._build_result(time.perf_counter() - started)
        self._log.info(
            f"Backtest completed: {len(bars)} bars, {len(result.trades)} trades, "
            f"final equity {result.final_equity}, {len(result.errors)} recorded issue(s)"
        )
        return result

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _load_data(self) -> list[Bar]:
        """Load bars for every configured symbol inside the date range."""
        start, end = self.config.start_date, self.config.end_date
        all_bars: list[Bar] = []

        for symbol in self.config.symbols:
            try:
                bars = self.data_provider.get_historical_data(symbol, start, end)
            except DataNotFoundError as e:
                self._record(ErrorSeverity.WARNING, f"No data for {symbol}: {e.message}", symbol=symbol)
                continue

            bars = [bar for bar in bars if start <= bar.timestamp <= end]
            if not bars:
                self._record(ErrorSeverity.WARNING, f"No data for {symbol} in date range", symbol=symbol)
                continue

            self._history[symbol] = deque(maxlen=self.config.history_window)
            all_bars.extend(bars)
            self._log.debug(f"Loaded {len(bars)} bars for {symbol}")

        if not all_bars:
            raise DataNotFoundError("No data in specified date range", start=start, end=end)
        return all_bars

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        """Process events until the queue is empty, marking once per step."""
        while True:
            event = self.scheduler.pop()
            if event is None:
                break

            self._current_time = event.timestamp
            await self._dispatch(event)

            upcoming = self.scheduler.peek()
            if upcoming is None and self.config.close_positions_at_end and not self._liquidated:
                self._liquidated = True
                self._schedule_liquidation(event.timestamp)
                upcoming = self.scheduler.peek()

            if upcoming is None or upcoming.timestamp != event.timestamp:
                self._mark_to_market(event.timestamp)

    async def _dispatch(self, event: BacktestEvent) -> None:
        if event.event_type == EventType.MARKET_DATA:
            await self._on_market_data(event.data)
        elif event.event_type == EventType.SIGNAL:
            self._on_signal(event.data, event.timestamp)
        elif event.event_type == EventType.ORDER:
            self._on_order(event.data)
        elif event.event_type == EventType.FILL:
            await self._on_fill(event.data)

    async def _on_market_data(self, bar: Bar) -> None:
        trace_bar(bar)
        symbol = bar.symbol
        self._last_bars[symbol] = bar
        history = self._history.setdefault(symbol, deque(maxlen=self.config.history_window))
        history.append(bar)

        self._check_exits(bar)

        if not self.config.fill_on_close:
            for signal in self._deferred_signals.pop(symbol, []):
                self._submit_signal(signal, reference_price=bar.open, timestamp=bar.timestamp)

        signal = await self._call_strategy("on_bar", symbol, bar, list(history), symbol=symbol)
        if signal is None:
            return
        if not isinstance(signal, Signal):
            self._record(
                ErrorSeverity.WARNING,
                f"Strategy returned {type(signal).__name__} instead of a Signal",
                symbol=symbol,
            )
            return
        if signal.is_actionable(self.config.min_confidence):
            if signal.timestamp is None:
                signal = signal.model_copy(update={"timestamp": bar.timestamp})
            self.scheduler.push(BacktestEvent(EventType.SIGNAL, bar.timestamp, data=signal, symbol=signal.symbol))

    def _on_signal(self, signal: Signal, timestamp: datetime) -> None:
        bar = self._last_bars.get(signal.symbol)
        if bar is None:
            self._record(
                ErrorSeverity.WARNING,
                f"Signal for {signal.symbol} without market data",
                symbol=signal.symbol,
            )
            return

        if self.config.fill_on_close:
            self._submit_signal(signal, reference_price=bar.close, timestamp=timestamp)
        else:
            self._deferred_signals.setdefault(signal.symbol, []).append(signal)

    def _on_order(self, order: Order) -> None:
        bar = self._last_bars[order.symbol]
        if bar.timestamp != order.created_at:
            # Latest known bar of the symbol, repriced at the order instant
            bar = bar.model_copy(update={"timestamp": order.created_at})
        simulator = (
            self._liquidation_simulator
            if order.exit_reason == ExitReason.END_OF_BACKTEST
            else self.simulator
        )
        fill = simulator.simulate_fill(order, bar, avg_volume=self._average_volume(order.symbol, order.created_at))
        if fill is None:
            self._in_flight.pop(order.order_id, None)
            self._reserved_cash.pop(order.order_id, None)
            self._exit_levels.pop(order.order_id, None)
            self._execution_log.with_context(symbol=order.symbol, order_id=order.order_id).debug(
                f"Order {order.order_id} not filled on {bar.timestamp}"
            )
            return
        self.scheduler.push(BacktestEvent(EventType.FILL, fill.timestamp, data=fill, symbol=fill.symbol))

    async def _on_fill(self, fill: Fill) -> None:
        self._in_flight.pop(fill.order_id, None)
        self._reserved_cash.pop(fill.order_id, None)
        levels = self._exit_levels.pop(fill.order_id, None)

        trade = self.ledger.process_fill(fill)
        trace_fill(fill)

        if levels is not None:
            self.ledger.set_exit_levels(fill.symbol, *levels)

        log = self._execution_log.with_context(symbol=fill.symbol, order_id=fill.order_id, sim_time=fill.timestamp)
        if trade is not None:
            log.info(
                f"Closed {trade.quantity} {trade.symbol} ({trade.exit_reason.value}): "
                f"net P&L {trade.net_pnl:.2f} ({trade.return_pct:.2f}%)"
            )
        else:
            log.debug(f"Opened {fill.quantity} {fill.symbol} @ {fill.price}")

        await self._call_strategy("on_fill", fill, symbol=fill.symbol)

    def _mark_to_market(self, timestamp: datetime) -> None:
        prices = {symbol: bar.close for symbol, bar in self._last_bars.items()}
        self.ledger.update_position_prices(prices, timestamp)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def _next_order_id(self) -> str:
        return f"ORD-{next(self._order_ids):06d}"

    def _in_flight_quantity(self, symbol: str, side: OrderSide) -> int:
        return sum(o.quantity for o in self._in_flight.values() if o.symbol == symbol and o.side == side)

    def _available_to_sell(self, symbol: str) -> int:
        position = self.ledger.get_position(symbol)
        held = position.quantity if position is not None else 0
        return held - self._in_flight_quantity(symbol, OrderSide.SELL)

    def _submit(self, order: Order) -> None:
        self._in_flight[order.order_id] = order
        self.scheduler.push(BacktestEvent(EventType.ORDER, order.created_at, data=order, symbol=order.symbol))

    def _submit_signal(self, signal: Signal, reference_price: Decimal, timestamp: datetime) -> None:
        """Size a signal and submit the resulting order."""
        symbol = signal.symbol

        if signal.action == SignalAction.BUY:
            exposed = self.ledger.has_position(symbol) or self._in_flight_quantity(symbol, OrderSide.BUY) > 0
            if exposed and not self.config.allow_pyramiding:
                self._strategy_log.with_context(symbol=symbol).debug(f"Buy signal ignored: already long {symbol}")
                return
            quantity = signal.quantity or self._size_buy(symbol, reference_price, timestamp)
            if quantity <= 0:
                self._record(
                    ErrorSeverity.WARNING,
                    f"Buy signal for {symbol} could not be sized: cash {self._free_cash()} at price {reference_price}",
                    symbol=symbol,
                )
                return
            side = OrderSide.BUY
            exit_reason = None
        else:
            available = self._available_to_sell(symbol)
            if available <= 0:
                self._strategy_log.with_context(symbol=symbol).debug(f"Sell signal ignored: no {symbol} to sell")
                return
            quantity = min(signal.quantity, available) if signal.quantity else available
            side = OrderSide.SELL
            exit_reason = ExitReason.SIGNAL

        order = Order(
            order_id=self._next_order_id(),
            symbol=symbol,
            side=side,
            quantity=quantity,
            order_type=signal.order_type,
            limit_price=signal.limit_price,
            stop_price=signal.stop_price,
            created_at=timestamp,
            strategy=signal.strategy or self.strategy.name,
            exit_reason=exit_reason,
        )
        if side == OrderSide.BUY:
            self._reserved_cash[order.order_id] = self._estimate_outlay(order, reference_price)
            if signal.stop_loss is not None or signal.take_profit is not None:
                self._exit_levels[order.order_id] = (signal.stop_loss, signal.take_profit)
        self._submit(order)

    def _size_buy(self, symbol: str, reference_price: Decimal, timestamp: datetime) -> int:
        """Shares affordable with the configured fraction of free cash.

        Free cash excludes the estimated outlay of buys still in flight. The
        size is trimmed until the estimated outlay, costs included, fits it.
        """
        free_cash = self._free_cash()
        budget = free_cash * self.config.position_size_pct
        if reference_price <= 0 or budget <= 0:
            return 0
        quantity = int((budget / reference_price).to_integral_value(rounding=ROUND_DOWN))
        if quantity <= 0:
            return 0

        order = Order(symbol=symbol, side=OrderSide.BUY, quantity=quantity, created_at=timestamp)
        while True:
            outlay = self._estimate_outlay(order, reference_price)
            if outlay <= free_cash:
                return order.quantity
            quantity = min(
                order.quantity - 1,
                int((order.quantity * free_cash / outlay).to_integral_value(rounding=ROUND_DOWN)),
            )
            if quantity <= 0:
                return 0
            order = order.model_copy(update={"quantity": quantity})

    def _estimate_outlay(self, order: Order, reference_price: Decimal) -> Decimal:
        """Cash a buy order is expected to need at ``reference_price``."""
        bar = self._last_bars[order.symbol]
        avg_volume = self._average_volume(order.symbol, order.created_at)
        rate = self.config.slippage_model.calculate_rate(order, bar, avg_volume)
        price = reference_price * (1 + max(rate, Decimal("0")))
        return order.quantity * price + self.config.commission_model.calculate(order, price)

    def _free_cash(self) -> Decimal:
        return self.ledger.cash - sum(self._reserved_cash.values(), Decimal("0"))

    def _average_volume(self, symbol: str, as_of: datetime) -> float:
        """Trailing average volume from bars up to ``as_of``."""
        return float(
            self.data_provider.get_average_volume(symbol, self.config.avg_volume_lookback_days, as_of=as_of)
        )

    def _check_exits(self, bar: Bar) -> None:
        """Submit stop-loss / take-profit exits for positions opened earlier."""
        position = self.ledger.get_position(bar.symbol)
        if position is None or position.opened_at >= bar.timestamp:
            return
        available = self._available_to_sell(bar.symbol)
        if available <= 0:
            return

        if position.stop_loss is not None and bar.low <= position.stop_loss:
            order_type, reason = OrderType.STOP, ExitReason.STOP_LOSS
            prices = {"stop_price": position.stop_loss}
        elif position.take_profit is not None and bar.high >= position.take_profit:
            order_type, reason = OrderType.LIMIT, ExitReason.TAKE_PROFIT
            prices = {"limit_price": position.take_profit}
        else:
            return

        self._execution_log.with_context(symbol=bar.symbol, sim_time=bar.timestamp).info(
            f"{reason.value} triggered for {bar.symbol}"
        )
        self._submit(
            Order(
                order_id=self._next_order_id(),
                symbol=bar.symbol,
                side=OrderSide.SELL,
                quantity=available,
                order_type=order_type,
                created_at=bar.timestamp,
                strategy=self.strategy.name,
                exit_reason=reason,
                **prices,
            )
        )

    def _schedule_liquidation(self, timestamp: datetime) -> None:
        """Sell every open position at its last close at the end of the run."""
        for symbol in self.ledger.positions:
            available = self._available_to_sell(symbol)
            if available <= 0:
                continue
            self._submit(
                Order(
                    order_id=self._next_order_id(),
                    symbol=symbol,
                    side=OrderSide.SELL,
                    quantity=available,
                    created_at=timestamp,
                    strategy=self.strategy.name,
                    exit_reason=ExitReason.END_OF_BACKTEST,
                )
            )
            self._log.debug(f"Liquidating {available} {symbol} at end of backtest")

    # ------------------------------------------------------------------
    # Strategy calls and error records
    # ------------------------------------------------------------------

    async def _call_strategy(self, hook: str, *args: Any, symbol: str | None = None) -> Any:
        """Invoke a strategy hook, awaiting it when it returns an awaitable.

        Exceptions raised by the strategy are recorded and do not stop the run.
        """
        try:
            result = getattr(self.strategy, hook)(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            self._strategy_log.with_context(symbol=symbol, sim_time=self._current_time).error(
                f"Strategy {self.strategy.name}.{hook} failed: {e}", exc_info=True
            )
            self._record(
                ErrorSeverity.ERROR,
                f"Strategy {hook} failed: {e}",
                symbol=symbol,
                details={"hook": hook, "exception": type(e).__name__},
            )
            return None

    def _record(
        self,
        severity: ErrorSeverity,
        message: str,
        symbol: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        timestamp = self._current_time or self.config.start_date
        record = BacktestErrorRecord(timestamp, severity, message, symbol, details or {})
        self._errors.append(record)
        if severity == ErrorSeverity.WARNING:
            self._log.with_context(symbol=symbol).warning(message)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _build_result(self, elapsed: float) -> BacktestResult:
        equity_curve = self.ledger.equity_curve
        trades = self.ledger.closed_trades
        costs = self.ledger.transaction_costs
        capital = self.config.initial_capital

        metrics = self.analyzer.calculate_metrics(
            equity_curve,
            trades,
            capital,
            total_commission=costs["commission"],
            total_slippage=costs["slippage"],
        )
        statistics = self.analyzer.calculate_statistics(
            equity_curve,
            trades,
            capital,
            total_commission=costs["commission"],
            total_slippage=costs["slippage"],
        )

        return BacktestResult(
            run_id=self.run_id,
            config=self.config,
            strategy_name=self.strategy.name,
            execution_time_seconds=elapsed,
            metrics=metrics,
            trades=trades,
            equity_curve=equity_curve,
            drawdown_curve=self.analyzer.calculate_drawdowns(equity_curve),
            statistics=statistics,
            statistical_tests=self.analyzer.calculate_statistical_tests(equity_curve, capital),
            errors=list(self._errors),
            open_positions=list(self.ledger.positions.values()),
            final_cash=self.ledger.cash,
            final_equity=self.ledger.equity,
        )
