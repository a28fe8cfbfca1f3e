"""
Pytest fixtures for the Quant Backtester tests.
"""

import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from quant_backtester.core.data_types import Bar, Order, OrderSide, OrderType  # noqa: E402

START = datetime(2024, 1, 2, 16, 0, 0)


def build_bar(
    symbol: str = "AAPL",
    day: int = 0,
    open: str | Decimal = "50",
    high: str | Decimal | None = None,
    low: str | Decimal | None = None,
    close: str | Decimal | None = None,
    volume: int = 1_000_000,
) -> Bar:
    """Build a daily bar ``day`` days after the test start date."""
    open_ = Decimal(str(open))
    close_ = Decimal(str(close)) if close is not None else open_
    high_ = Decimal(str(high)) if high is not None else max(open_, close_)
    low_ = Decimal(str(low)) if low is not None else min(open_, close_)
    return Bar(
        symbol=symbol,
        timestamp=START + timedelta(days=day),
        open=open_,
        high=high_,
        low=low_,
        close=close_,
        volume=volume,
    )


def build_series(symbol: str, closes: list[str | float], volume: int = 1_000_000) -> list[Bar]:
    """Build consecutive daily bars where each bar opens at the previous close."""
    bars = []
    previous = Decimal(str(closes[0]))
    for day, close in enumerate(closes):
        close_ = Decimal(str(close))
        bars.append(build_bar(symbol, day, open=previous, close=close_, volume=volume))
        previous = close_
    return bars


@pytest.fixture
def make_bar():
    """Factory for bars."""
    return build_bar


@pytest.fixture
def make_series():
    """Factory for daily bar series."""
    return build_series


@pytest.fixture
def sample_bar():
    """Sample AAPL bar: O=49 H=51 L=48 C=50, 1M shares."""
    return build_bar("AAPL", 0, open="49", high="51", low="48", close="50")


@pytest.fixture
def buy_order():
    """Market order buying 100 AAPL."""
    return Order(
        order_id="ORD-TEST-BUY",
        symbol="AAPL",
        side=OrderSide.BUY,
        quantity=100,
        order_type=OrderType.MARKET,
        created_at=START,
    )


@pytest.fixture
def sell_order():
    """Market order selling 100 AAPL."""
    return Order(
        order_id="ORD-TEST-SELL",
        symbol="AAPL",
        side=OrderSide.SELL,
        quantity=100,
        order_type=OrderType.MARKET,
        created_at=START,
    )
