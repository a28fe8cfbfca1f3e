"""
Quant Backtester - Event-Driven Strategy Backtesting Engine

Replays trading strategies over historical OHLCV bars with realistic
fills and transaction costs, exact cash and position bookkeeping, and
standardized performance analytics.
"""

__version__ = "0.1.0"
__author__ = "AlphaTrade"
