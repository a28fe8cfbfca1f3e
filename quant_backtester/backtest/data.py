"""
Market data providers for backtesting.

The engine only depends on the ``DataProvider`` interface; the concrete
providers here serve bars held in memory or in pandas DataFrames.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Sequence

import numpy as np
import pandas as pd
from pydantic import ValidationError

from quant_backtester.core.data_types import Bar
from quant_backtester.core.exceptions import DataNotFoundError, DataValidationError

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ("open", "high", "low", "close", "volume")


class DataProvider(ABC):
    """Abstract source of historical bars."""

    @abstractmethod
    def get_historical_data(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
    ) -> list[Bar]:
        """Get the bars of a symbol between ``start`` and ``end`` inclusive.

        Returns:
            Bars ordered by timestamp.
        """

    @abstractmethod
    def get_average_volume(
        self,
        symbol: str,
        lookback_days: int = 20,
        as_of: datetime | None = None,
    ) -> float:
        """Get the average daily volume over the trailing ``lookback_days`` bars.

        Args:
            symbol: Ticker symbol.
            lookback_days: Number of trailing bars to average.
            as_of: Only bars stamped at or before this instant are used. The
                whole dataset is used when omitted.
        """


def _average_volume(bars: Sequence[Bar], lookback_days: int, as_of: datetime | None) -> float:
    if as_of is not None:
        bars = [bar for bar in bars if bar.timestamp <= as_of]
    if not bars or lookback_days <= 0:
        return 0.0
    return float(np.mean([bar.volume for bar in bars[-lookback_days:]]))


class InMemoryDataProvider(DataProvider):
    """Data provider over pre-built Bar lists."""

    def __init__(self, bars_by_symbol: Mapping[str, Sequence[Bar]]) -> None:
        """Initialize the provider.

        Args:
            bars_by_symbol: Bars per symbol, in any order.
        """
        self._bars = {
            symbol.upper(): sorted(bars, key=lambda b: b.timestamp)
            for symbol, bars in bars_by_symbol.items()
        }

    def get_symbols(self) -> list[str]:
        """Get list of symbols."""
        return list(self._bars)

    def _get_bars(self, symbol: str) -> list[Bar]:
        bars = self._bars.get(symbol.upper())
        if bars is None:
            raise DataNotFoundError(f"No data for symbol {symbol}", symbol=symbol)
        return bars

    def get_historical_data(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
    ) -> list[Bar]:
        return [bar for bar in self._get_bars(symbol) if start <= bar.timestamp <= end]

    def get_average_volume(
        self,
        symbol: str,
        lookback_days: int = 20,
        as_of: datetime | None = None,
    ) -> float:
        return _average_volume(self._get_bars(symbol), lookback_days, as_of)


class PandasDataProvider(DataProvider):
    """Data provider using pandas DataFrames.

    Each frame is indexed by timestamp and carries open, high, low, close and
    volume columns (lower or capitalized names).
    """

    def __init__(self, data: Mapping[str, pd.DataFrame]) -> None:
        """Initialize pandas data provider.

        Args:
            data: Dictionary mapping symbols to DataFrames with OHLCV data.

        Raises:
            DataValidationError: If a frame lacks an OHLCV column.
        """
        self._data = {symbol.upper(): self._prepare_frame(symbol.upper(), df) for symbol, df in data.items()}

    @staticmethod
    def _prepare_frame(symbol: str, df: pd.DataFrame) -> pd.DataFrame:
        """Normalize column names and sort the frame by timestamp."""
        frame = df.rename(columns={c: str(c).lower() for c in df.columns})
        for column in OHLCV_COLUMNS:
            if column not in frame.columns:
                raise DataValidationError(
                    f"Missing column '{column}' for {symbol}",
                    symbol=symbol,
                    field_name=column,
                )
        frame.index = pd.to_datetime(frame.index)
        return frame.sort_index()

    def get_symbols(self) -> list[str]:
        """Get list of symbols."""
        return list(self._data)

    def _get_frame(self, symbol: str) -> pd.DataFrame:
        frame = self._data.get(symbol.upper())
        if frame is None:
            raise DataNotFoundError(f"No data for symbol {symbol}", symbol=symbol)
        return frame

    def _to_bars(self, symbol: str, frame: pd.DataFrame) -> list[Bar]:
        bars = []
        for timestamp, row in frame.iterrows():
            try:
                # Round to 8 decimal places to keep Decimal prices exact
                bars.append(
                    Bar(
                        symbol=symbol,
                        timestamp=timestamp.to_pydatetime(),
                        open=Decimal(str(round(float(row["open"]), 8))),
                        high=Decimal(str(round(float(row["high"]), 8))),
                        low=Decimal(str(round(float(row["low"]), 8))),
                        close=Decimal(str(round(float(row["close"]), 8))),
                        volume=int(row["volume"]),
                    )
                )
            except (ValidationError, ValueError) as e:
                raise DataValidationError(
                    f"Invalid bar for {symbol} at {timestamp}: {e}",
                    symbol=symbol,
                ) from e
        return bars

    def get_historical_data(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
    ) -> list[Bar]:
        frame = self._get_frame(symbol)
        window = frame[(frame.index >= pd.Timestamp(start)) & (frame.index <= pd.Timestamp(end))]
        bars = self._to_bars(symbol.upper(), window)
        logger.debug(f"Loaded {len(bars)} bars for {symbol} between {start} and {end}")
        return bars

    def get_average_volume(
        self,
        symbol: str,
        lookback_days: int = 20,
        as_of: datetime | None = None,
    ) -> float:
        frame = self._get_frame(symbol)
        if as_of is not None:
            frame = frame[frame.index <= pd.Timestamp(as_of)]
        if frame.empty or lookback_days <= 0:
            return 0.0
        return float(frame["volume"].tail(lookback_days).mean())
