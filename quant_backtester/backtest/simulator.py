"""
Fill simulation module for backtesting.

Turns one order plus the current price bar into zero or one fill:
- MARKET orders at the bar close (or open) with slippage applied
- LIMIT orders filled conservatively when the bar trades through the limit
- STOP and STOP_LIMIT orders triggered by the bar range
- Optional liquidity cap as a fraction of bar volume

A missing fill (limit not reached, stop not triggered, liquidity cap hit)
is an expected outcome and is returned as ``None``, never raised.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterator

from quant_backtester.backtest.costs import (
    BaseCommissionModel,
    BaseSlippageModel,
    NoSlippage,
    ZeroCommission,
)
from quant_backtester.core.data_types import ZERO, Bar, Fill, Order, OrderSide, OrderType
from quant_backtester.core.exceptions import (
    InvalidConfigError,
    InvalidOrderError,
    UnsupportedOrderTypeError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FillSimulatorConfig:
    """Configuration for the fill simulator."""

    commission_model: BaseCommissionModel = field(default_factory=ZeroCommission)
    slippage_model: BaseSlippageModel = field(default_factory=NoSlippage)
    fill_on_close: bool = True  # False = fill at the bar open
    reject_partial_fills: bool = True  # Reject orders above the liquidity cap
    max_order_size_pct: Decimal = Decimal("0.10")  # Of bar volume

    def __post_init__(self) -> None:
        pct = Decimal(str(self.max_order_size_pct))
        if pct <= 0 or pct > 1:
            raise InvalidConfigError(
                "max_order_size_pct must be in (0, 1]",
                config_key="max_order_size_pct",
                value=self.max_order_size_pct,
                expected="0 < value <= 1",
            )
        object.__setattr__(self, "max_order_size_pct", pct)


class FillSimulator:
    """Simulates order execution against OHLCV bars."""

    def __init__(
        self,
        config: FillSimulatorConfig | None = None,
        fill_ids: Iterator[int] | None = None,
    ) -> None:
        """Initialize the fill simulator.

        Args:
            config: Execution assumptions and cost models.
            fill_ids: Sequence numbering the fills; simulators sharing one
                sequence never issue the same fill ID.
        """
        self.config = config or FillSimulatorConfig()
        self._fill_ids = fill_ids if fill_ids is not None else itertools.count(1)

    def simulate_fill(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None = None,
        spread: Decimal | None = None,
    ) -> Fill | None:
        """Simulate execution of an order against a bar.

        Args:
            order: Order to execute.
            bar: Current bar of the order's symbol.
            avg_volume: Average daily volume for volume-based slippage.
            spread: Explicit bid-ask spread (fraction of price) if known.

        Returns:
            The fill, or None when the order does not execute on this bar.

        Raises:
            InvalidOrderError: If the bar belongs to another symbol.
            UnsupportedOrderTypeError: If the order type cannot be simulated.
        """
        if order.symbol != bar.symbol:
            raise InvalidOrderError(
                f"Order for {order.symbol} cannot execute against {bar.symbol} bar",
                order_id=order.order_id,
                reason="symbol_mismatch",
            )

        if order.order_type == OrderType.MARKET:
            return self._simulate_market(order, bar, avg_volume, spread)
        if order.order_type == OrderType.LIMIT:
            return self._simulate_limit(order, bar)
        if order.order_type == OrderType.STOP:
            return self._simulate_stop(order, bar, avg_volume, spread)
        if order.order_type == OrderType.STOP_LIMIT:
            return self._simulate_stop_limit(order, bar)

        raise UnsupportedOrderTypeError(
            f"Unsupported order type: {order.order_type}",
            order_type=str(order.order_type),
            order_id=order.order_id,
        )

    def _exceeds_liquidity(self, order: Order, bar: Bar) -> bool:
        if not self.config.reject_partial_fills:
            return False
        max_quantity = bar.volume * self.config.max_order_size_pct
        if order.quantity > max_quantity:
            logger.debug(
                f"Order {order.order_id} rejected: {order.quantity} shares exceeds "
                f"{self.config.max_order_size_pct:.0%} of bar volume {bar.volume}"
            )
            return True
        return False

    def _simulate_market(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None,
        spread: Decimal | None,
    ) -> Fill | None:
        if self._exceeds_liquidity(order, bar):
            return None
        base_price = bar.close if self.config.fill_on_close else bar.open
        return self._fill_with_slippage(order, bar, base_price, avg_volume, spread)

    def _simulate_limit(self, order: Order, bar: Bar) -> Fill | None:
        limit_price = order.limit_price
        if limit_price is None:
            raise InvalidOrderError(
                "Limit order requires limit price",
                order_id=order.order_id,
                reason="missing_limit_price",
            )

        if order.side == OrderSide.BUY:
            if bar.low > limit_price:
                logger.debug(f"Limit buy {order.order_id} not reached: low {bar.low} > {limit_price}")
                return None
            fill_price = min(limit_price, bar.close)
        else:
            if bar.high < limit_price:
                logger.debug(f"Limit sell {order.order_id} not reached: high {bar.high} < {limit_price}")
                return None
            fill_price = max(limit_price, bar.close)

        return self._build_fill(order, bar, fill_price, slippage=ZERO)

    def _stop_triggered(self, order: Order, bar: Bar) -> bool:
        stop_price = order.stop_price
        if stop_price is None:
            raise InvalidOrderError(
                "Stop order requires stop price",
                order_id=order.order_id,
                reason="missing_stop_price",
            )
        if order.side == OrderSide.BUY:
            return bar.high >= stop_price
        return bar.low <= stop_price

    def _simulate_stop(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None,
        spread: Decimal | None,
    ) -> Fill | None:
        if not self._stop_triggered(order, bar):
            logger.debug(f"Stop {order.order_id} not triggered at {order.stop_price}")
            return None
        if self._exceeds_liquidity(order, bar):
            return None

        # Worse of stop and close for the order's side
        if order.side == OrderSide.BUY:
            base_price = max(order.stop_price, bar.close)
        else:
            base_price = min(order.stop_price, bar.close)
        return self._fill_with_slippage(order, bar, base_price, avg_volume, spread)

    def _simulate_stop_limit(self, order: Order, bar: Bar) -> Fill | None:
        if not self._stop_triggered(order, bar):
            logger.debug(f"Stop-limit {order.order_id} not triggered at {order.stop_price}")
            return None
        return self._simulate_limit(order, bar)

    def _fill_with_slippage(
        self,
        order: Order,
        bar: Bar,
        base_price: Decimal,
        avg_volume: float | None,
        spread: Decimal | None,
    ) -> Fill:
        rate = self.config.slippage_model.calculate_rate(order, bar, avg_volume, spread)
        fill_price = base_price * (1 + rate)
        if fill_price <= 0:
            raise InvalidOrderError(
                f"Slippage rate {rate} leaves no positive fill price for {order.order_id} on {order.symbol}",
                order_id=order.order_id,
                reason="non_positive_fill_price",
                details={
                    "symbol": order.symbol,
                    "timestamp": bar.timestamp.isoformat(),
                    "quantity": order.quantity,
                    "base_price": str(base_price),
                    "rate": str(rate),
                },
            )
        slippage_cost = abs(base_price * rate) * order.quantity
        return self._build_fill(order, bar, fill_price, slippage=slippage_cost)

    def _build_fill(
        self,
        order: Order,
        bar: Bar,
        fill_price: Decimal,
        slippage: Decimal,
    ) -> Fill:
        commission = self.config.commission_model.calculate(order, fill_price)
        fill = Fill(
            fill_id=f"FIL-{next(self._fill_ids):06d}",
            order_id=order.order_id,
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=fill_price,
            commission=commission,
            slippage=slippage,
            timestamp=bar.timestamp,
            strategy=order.strategy,
            exit_reason=order.exit_reason,
        )
        logger.debug(
            f"Filled {order.order_id}: {order.side.value} {order.quantity} {order.symbol} "
            f"@ {fill_price} (commission {commission}, slippage {slippage})"
        )
        return fill
