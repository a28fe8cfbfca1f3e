"""
Unit tests for core/data_types.py
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from quant_backtester.core.data_types import (
    Bar,
    EquityCurvePoint,
    Fill,
    Order,
    OrderSide,
    OrderType,
    Position,
    Signal,
    SignalAction,
)


class TestBar:
    """Tests for Bar."""

    def test_valid_bar(self, sample_bar):
        """Test bar creation and midpoint."""
        assert sample_bar.symbol == "AAPL"
        assert sample_bar.mid == Decimal("49.5")

    def test_symbol_normalized(self):
        """Test symbol is upper-cased and stripped."""
        bar = Bar(
            symbol=" msft ",
            timestamp=datetime(2024, 1, 2),
            open=Decimal("10"),
            high=Decimal("11"),
            low=Decimal("9"),
            close=Decimal("10"),
            volume=100,
        )
        assert bar.symbol == "MSFT"

    def test_low_above_close_rejected(self):
        """Test OHLC relationship validation."""
        with pytest.raises(ValidationError, match="Low price"):
            Bar(
                symbol="AAPL",
                timestamp=datetime(2024, 1, 2),
                open=Decimal("10"),
                high=Decimal("11"),
                low=Decimal("10.5"),
                close=Decimal("10"),
                volume=100,
            )

    def test_non_positive_price_rejected(self):
        """Test prices must be positive."""
        with pytest.raises(ValidationError):
            Bar(
                symbol="AAPL",
                timestamp=datetime(2024, 1, 2),
                open=Decimal("0"),
                high=Decimal("1"),
                low=Decimal("0"),
                close=Decimal("1"),
                volume=100,
            )

    def test_immutable(self, sample_bar):
        """Test bars cannot be mutated."""
        with pytest.raises(ValidationError):
            sample_bar.close = Decimal("1")


class TestSignal:
    """Tests for Signal."""

    def test_hold_is_not_actionable(self):
        """Test HOLD never produces an order."""
        signal = Signal(symbol="AAPL", action=SignalAction.HOLD)
        assert not signal.is_actionable()

    def test_min_confidence(self):
        """Test confidence threshold."""
        signal = Signal(symbol="AAPL", action=SignalAction.BUY, confidence=0.4, reasons=["rsi < 30"])
        assert signal.is_actionable()
        assert not signal.is_actionable(min_confidence=0.5)
        assert signal.to_dict()["reasons"] == ["rsi < 30"]

    def test_limit_signal_requires_price(self):
        """Test a LIMIT signal needs its limit price."""
        with pytest.raises(ValidationError, match="Limit orders require a limit price"):
            Signal(symbol="AAPL", action=SignalAction.BUY, order_type=OrderType.LIMIT)


class TestOrder:
    """Tests for Order."""

    def test_quantity_must_be_positive(self):
        """Test zero quantity is rejected."""
        with pytest.raises(ValidationError):
            Order(symbol="AAPL", side=OrderSide.BUY, quantity=0)

    def test_stop_limit_requires_both_prices(self):
        """Test STOP_LIMIT validation."""
        with pytest.raises(ValidationError, match="Stop-limit"):
            Order(
                symbol="AAPL",
                side=OrderSide.SELL,
                quantity=10,
                order_type=OrderType.STOP_LIMIT,
                stop_price=Decimal("45"),
            )

    def test_to_dict(self, buy_order):
        """Test serialization."""
        d = buy_order.to_dict()
        assert d["side"] == "BUY"
        assert d["order_type"] == "MARKET"
        assert d["limit_price"] is None
        assert buy_order.is_buy


class TestFill:
    """Tests for Fill."""

    def test_notional_and_costs(self):
        """Test notional and total cost."""
        fill = Fill(
            order_id="ORD-1",
            symbol="AAPL",
            side=OrderSide.BUY,
            quantity=100,
            price=Decimal("50.05"),
            commission=Decimal("5"),
            slippage=Decimal("5"),
            timestamp=datetime(2024, 1, 2),
        )
        assert fill.notional == Decimal("5005.00")
        assert fill.total_cost == Decimal("10")

    def test_negative_commission_rejected(self):
        """Test commission cannot be negative."""
        with pytest.raises(ValidationError):
            Fill(
                order_id="ORD-1",
                symbol="AAPL",
                side=OrderSide.BUY,
                quantity=1,
                price=Decimal("1"),
                commission=Decimal("-1"),
                timestamp=datetime(2024, 1, 2),
            )


class TestPosition:
    """Tests for Position."""

    def _position(self) -> Position:
        opened = datetime(2024, 1, 2)
        return Position(
            symbol="AAPL",
            quantity=100,
            avg_entry_price=Decimal("50"),
            entry_value=Decimal("5000"),
            current_price=Decimal("50"),
            market_value=Decimal("5000"),
            entry_commission=Decimal("5"),
            opened_at=opened,
            last_updated=opened,
        )

    def test_cost_basis_includes_commission(self):
        """Test cost basis."""
        assert self._position().cost_basis == Decimal("5005")

    def test_update_price_tracks_excursions(self):
        """Test marking updates P&L and MAE/MFE without mutating the original."""
        position = self._position()
        later = position.opened_at + timedelta(days=1)

        down = position.update_price(Decimal("48"), later)
        up = down.update_price(Decimal("53"), later + timedelta(days=1))

        assert position.current_price == Decimal("50")
        assert down.unrealized_pnl == Decimal("-205")
        assert up.unrealized_pnl == Decimal("295")
        assert up.max_adverse_excursion == Decimal("-205")
        assert up.max_favorable_excursion == Decimal("295")
        assert up.unrealized_pnl_pct == pytest.approx(295 / 5005 * 100)


class TestEquityCurvePoint:
    """Tests for EquityCurvePoint."""

    def test_drawdown_must_not_be_positive(self):
        """Test drawdown is constrained to <= 0."""
        with pytest.raises(ValidationError):
            EquityCurvePoint(
                timestamp=datetime(2024, 1, 2),
                equity=Decimal("100"),
                cash=Decimal("100"),
                positions_value=Decimal("0"),
                drawdown=0.1,
            )
