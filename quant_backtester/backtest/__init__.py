"""
Backtesting engine module.

Provides event-driven replay, fill simulation with pluggable commission
and slippage models, portfolio bookkeeping, and performance analytics.
"""
