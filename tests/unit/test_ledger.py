"""
Unit tests for backtest/ledger.py
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from quant_backtester.backtest.ledger import (
    PortfolioLedger,
    apply_fill,
    initial_state,
    mark_to_market,
)
from quant_backtester.core.data_types import ExitReason, Fill, OrderSide
from quant_backtester.core.exceptions import (
    InsufficientFundsError,
    InvalidConfigError,
    OversellError,
)

T0 = datetime(2024, 1, 2, 16, 0)


def _fill(
    side: OrderSide,
    quantity: int,
    price: str,
    day: int = 0,
    commission: str = "0",
    slippage: str = "0",
    symbol: str = "AAPL",
    exit_reason: ExitReason | None = None,
) -> Fill:
    return Fill(
        order_id=f"ORD-{side.value}-{day}",
        symbol=symbol,
        side=side,
        quantity=quantity,
        price=Decimal(price),
        commission=Decimal(commission),
        slippage=Decimal(slippage),
        timestamp=T0 + timedelta(days=day),
        exit_reason=exit_reason,
    )


class TestBuyFills:
    """Tests for booking buy fills."""

    def test_buy_opens_position(self):
        """Test a buy debits cash and opens a position."""
        ledger = PortfolioLedger(Decimal("100000"))
        trade = ledger.process_fill(_fill(OrderSide.BUY, 100, "50"))

        position = ledger.get_position("AAPL")
        assert trade is None
        assert ledger.cash == Decimal("95000")
        assert position.quantity == 100
        assert position.avg_entry_price == Decimal("50")
        assert ledger.equity == Decimal("100000")

    def test_buy_with_costs(self):
        """Test $5 commission on a 50.05 fill debits 5,010."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50.05", commission="5", slippage="5"))

        assert ledger.cash == Decimal("94990")
        assert ledger.get_position("AAPL").cost_basis == Decimal("5010")
        assert ledger.transaction_costs == {
            "commission": Decimal("5"),
            "slippage": Decimal("5"),
            "total": Decimal("10"),
        }

    def test_insufficient_funds(self):
        """Test a buy above cash raises and leaves the books untouched."""
        ledger = PortfolioLedger(Decimal("1000"))

        with pytest.raises(InsufficientFundsError) as exc_info:
            ledger.process_fill(_fill(OrderSide.BUY, 100, "50"))

        assert exc_info.value.required == Decimal("5000")
        assert ledger.cash == Decimal("1000")
        assert not ledger.has_position("AAPL")

    def test_adding_averages_entry_price(self):
        """Test volume-weighted average entry price."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50", day=0))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "60", day=1))

        position = ledger.get_position("AAPL")
        assert position.quantity == 200
        assert position.avg_entry_price == Decimal("55")
        assert position.opened_at == T0
        assert ledger.cash == Decimal("89000")


class TestSellFills:
    """Tests for booking sell fills."""

    def test_round_trip_profit(self):
        """Test BUY 100 @ 50 then SELL 100 @ 55 with no costs."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50", day=0))
        trade = ledger.process_fill(_fill(OrderSide.SELL, 100, "55", day=5))

        assert trade.gross_pnl == Decimal("500")
        assert trade.net_pnl == Decimal("500")
        assert trade.return_pct == pytest.approx(10.0)
        assert trade.holding_period_days == 5
        assert trade.exit_reason == ExitReason.SIGNAL
        assert trade.trade_id == "TRD-000001"
        assert ledger.cash == Decimal("100500")
        assert not ledger.has_position("AAPL")
        assert ledger.closed_trades == [trade]

    def test_round_trip_at_same_price(self):
        """Test a zero-cost round trip at an unchanged price leaves cash unchanged."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50", day=0))
        trade = ledger.process_fill(_fill(OrderSide.SELL, 100, "50", day=1))

        assert ledger.cash == Decimal("100000")
        assert trade.net_pnl == Decimal("0")
        assert len(ledger.closed_trades) == 1

    def test_costs_reduce_net_pnl(self):
        """Test commissions and slippage in gross versus net P&L."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50.05", commission="5", slippage="5"))
        trade = ledger.process_fill(_fill(OrderSide.SELL, 100, "54.95", day=3, commission="5", slippage="5"))

        # proceeds 5495 - 5 = 5490; paid 5005 + 5 = 5010
        assert trade.net_pnl == Decimal("480")
        assert trade.commission == Decimal("10")
        assert trade.slippage == Decimal("10")
        assert trade.gross_pnl == Decimal("500")
        assert ledger.cash == Decimal("100480")

    def test_oversell_raises_without_mutation(self):
        """Test selling more than held."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50"))
        before = ledger.state

        with pytest.raises(OversellError) as exc_info:
            ledger.process_fill(_fill(OrderSide.SELL, 150, "55", day=1))

        assert exc_info.value.held == 100
        assert ledger.state is before
        assert ledger.get_position("AAPL").quantity == 100

    def test_sell_without_position(self):
        """Test selling a symbol that is not held."""
        ledger = PortfolioLedger(Decimal("100000"))
        with pytest.raises(OversellError):
            ledger.process_fill(_fill(OrderSide.SELL, 1, "55"))

    def test_partial_closes_reconcile_cash(self):
        """Test partial closes allocate entry commission pro rata."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50", commission="10"))

        first = ledger.process_fill(_fill(OrderSide.SELL, 40, "60", day=1))
        position = ledger.get_position("AAPL")
        assert first.net_pnl == Decimal("396")
        assert first.commission == Decimal("4")
        assert position.quantity == 60
        assert position.entry_commission == Decimal("6")
        assert position.realized_pnl == Decimal("396")

        second = ledger.process_fill(_fill(OrderSide.SELL, 60, "40", day=2))
        assert second.net_pnl == Decimal("-606")
        assert ledger.cash == Decimal("99790")
        assert ledger.realized_pnl == first.net_pnl + second.net_pnl
        assert ledger.cash - ledger.initial_capital == ledger.realized_pnl

    def test_exit_reason_carried_to_trade(self):
        """Test the fill's exit reason is recorded on the trade."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 10, "50"))
        trade = ledger.process_fill(_fill(OrderSide.SELL, 10, "45", day=1, exit_reason=ExitReason.STOP_LOSS))
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.net_pnl == Decimal("-50")


class TestMarkToMarket:
    """Tests for price updates and the equity curve."""

    def test_equity_point_per_update(self):
        """Test one equity point per update, even without positions."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.update_position_prices({}, T0)
        ledger.update_position_prices({}, T0 + timedelta(days=1))

        assert len(ledger.equity_curve) == 2
        assert all(p.equity == Decimal("100000") for p in ledger.equity_curve)

    def test_cash_conservation(self):
        """Test equity == cash + positions value at every point."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50", commission="1"))
        ledger.process_fill(_fill(OrderSide.BUY, 50, "20", symbol="MSFT"))
        for day, (aapl, msft) in enumerate([("51", "19"), ("48", "22"), ("55", "21")]):
            ledger.update_position_prices({"AAPL": Decimal(aapl), "MSFT": Decimal(msft)}, T0 + timedelta(days=day))

        for point in ledger.equity_curve:
            assert point.equity == point.cash + point.positions_value
        assert ledger.equity == ledger.cash + ledger.market_value

    def test_returns_and_drawdown(self):
        """Test daily return, cumulative return and drawdown."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 1000, "50"))
        ledger.update_position_prices({"AAPL": Decimal("60")}, T0)
        ledger.update_position_prices({"AAPL": Decimal("54")}, T0 + timedelta(days=1))

        first, second = ledger.equity_curve
        assert first.equity == Decimal("110000")
        assert first.daily_return == pytest.approx(0.10)
        assert first.drawdown == 0.0
        assert second.equity == Decimal("104000")
        assert second.daily_return == pytest.approx(-6000 / 110000)
        assert second.cumulative_return == pytest.approx(0.04)
        assert second.drawdown == pytest.approx(-6000 / 110000)

    def test_unrealized_and_total_pnl(self):
        """Test total P&L equals equity change."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50", commission="5"))
        ledger.process_fill(_fill(OrderSide.SELL, 50, "52", day=1, commission="5"))
        ledger.update_position_prices({"AAPL": Decimal("53")}, T0 + timedelta(days=1))

        assert ledger.unrealized_pnl == Decimal("147.5")
        assert ledger.total_pnl == ledger.equity - ledger.initial_capital

    def test_missing_price_keeps_mark(self):
        """Test positions without a new price keep their previous mark."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50"))
        ledger.update_position_prices({"MSFT": Decimal("10")}, T0)
        assert ledger.get_position("AAPL").current_price == Decimal("50")


class TestPureTransitions:
    """Tests for the functional ledger core."""

    def test_apply_fill_returns_new_state(self):
        """Test apply_fill leaves its input untouched."""
        state = initial_state(Decimal("100000"))
        new_state = apply_fill(state, _fill(OrderSide.BUY, 100, "50"))

        assert state.cash == Decimal("100000")
        assert dict(state.positions) == {}
        assert new_state.cash == Decimal("95000")
        assert "AAPL" in new_state.positions

    def test_mark_to_market_is_pure(self):
        """Test mark_to_market returns a point without changing its input."""
        state = apply_fill(initial_state(Decimal("100000")), _fill(OrderSide.BUY, 100, "50"))
        new_state, point = mark_to_market(state, {"AAPL": Decimal("55")}, T0)

        assert state.positions["AAPL"].current_price == Decimal("50")
        assert new_state.positions["AAPL"].current_price == Decimal("55")
        assert point.equity == Decimal("100500")

    def test_initial_capital_must_be_positive(self):
        """Test the ledger rejects non-positive capital."""
        with pytest.raises(InvalidConfigError):
            PortfolioLedger(Decimal("0"))


class TestLedgerAccessors:
    """Tests for accessors and helpers."""

    def test_exit_levels(self):
        """Test stop-loss and take-profit attach to the position."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50"))
        ledger.set_exit_levels("AAPL", stop_loss=Decimal("45"), take_profit=Decimal("60"))

        position = ledger.get_position("aapl")
        assert position.stop_loss == Decimal("45")
        assert position.take_profit == Decimal("60")

    def test_exit_levels_ignored_without_position(self):
        """Test exit levels for a flat symbol are a no-op."""
        ledger = PortfolioLedger(Decimal("100000"))
        before = ledger.state
        ledger.set_exit_levels("AAPL", stop_loss=Decimal("45"))
        assert ledger.state is before

    def test_leverage_and_snapshot(self):
        """Test leverage and serializable snapshot."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50"))

        assert ledger.leverage == pytest.approx(0.05)
        snapshot = ledger.snapshot()
        assert snapshot["cash"] == "95000"
        assert "AAPL" in snapshot["positions"]

    def test_reset(self):
        """Test reset returns to the opening state."""
        ledger = PortfolioLedger(Decimal("100000"))
        ledger.process_fill(_fill(OrderSide.BUY, 100, "50"))
        ledger.update_position_prices({"AAPL": Decimal("51")}, T0)
        ledger.reset()

        assert ledger.cash == Decimal("100000")
        assert ledger.positions == {}
        assert ledger.equity_curve == []
