"""
Performance analytics module for backtesting.

Provides stateless performance analysis of a completed run:
- Return metrics (total, CAGR)
- Risk-adjusted metrics (volatility, Sharpe, Sortino, Calmar)
- Drawdown analysis (depth, duration, drawdown curve)
- Trade analysis (win rate, profit factor, payoff, expectancy, streaks)
- Per-step statistics and statistical significance tests
- Visualization support

Rates (returns, drawdowns, win rate) are fractions; trade-level percentages
(``avg_win_pct``, ``expectancy_pct``) are in percent like ``Trade.return_pct``.
Degenerate input never raises: it yields zeroed records.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from quant_backtester.core.data_types import EquityCurvePoint, Trade

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365
DAYS_PER_MONTH = 30.44


@dataclass
class PerformanceMetrics:
    """Standardized metrics record of a backtest.

    ``avg_loss`` and ``largest_loss`` are negative dollar amounts,
    ``gross_loss`` is the positive magnitude of all losses and
    ``max_drawdown`` is the most negative drawdown fraction.
    """

    # Returns
    total_return: float = 0.0
    total_return_dollars: float = 0.0
    cagr: float = 0.0
    trading_days: int = 0

    # Risk
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_duration_days: int = 0

    # Trades
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    avg_win_pct: float = 0.0
    avg_loss_pct: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: float = 0.0
    payoff_ratio: float = 0.0
    expectancy: float = 0.0
    expectancy_pct: float = 0.0
    avg_holding_period_days: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    # Costs
    total_commission: float = 0.0
    total_slippage: float = 0.0
    total_costs: float = 0.0

    start_date: datetime | None = None
    end_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["start_date"] = self.start_date.isoformat() if self.start_date else None
        data["end_date"] = self.end_date.isoformat() if self.end_date else None
        return data

    def summary(self) -> str:
        """Get a summary string of key metrics."""
        period = ""
        if self.start_date and self.end_date:
            period = f" ({self.start_date.date()} to {self.end_date.date()})"
        return f"""
Performance Summary{period}
{'=' * 60}
Total Return:      {self.total_return:>10.2%}
CAGR:              {self.cagr:>10.2%}
Sharpe Ratio:      {self.sharpe_ratio:>10.2f}
Sortino Ratio:     {self.sortino_ratio:>10.2f}
Calmar Ratio:      {self.calmar_ratio:>10.2f}
Max Drawdown:      {self.max_drawdown:>10.2%}
Volatility:        {self.volatility:>10.2%}
Win Rate:          {self.win_rate:>10.2%}
Profit Factor:     {self.profit_factor:>10.2f}
Total Trades:      {self.total_trades:>10d}
Total Costs:       {self.total_costs:>10.2f}
{'=' * 60}
"""


@dataclass
class DrawdownPoint:
    """Drawdown of one equity curve point."""

    timestamp: datetime
    equity: float
    peak: float
    drawdown: float
    duration_days: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "equity": self.equity,
            "peak": self.peak,
            "drawdown": self.drawdown,
            "duration_days": self.duration_days,
        }


@dataclass
class BacktestStatistics:
    """Per-step and per-trade descriptive statistics."""

    trading_days: int = 0
    avg_daily_return: float = 0.0
    daily_return_std: float = 0.0
    best_day: float = 0.0
    worst_day: float = 0.0
    positive_days: int = 0
    negative_days: int = 0
    avg_win_duration_days: float = 0.0
    avg_loss_duration_days: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    total_commission: float = 0.0
    total_slippage: float = 0.0
    avg_trades_per_month: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class StatisticalTests:
    """Statistical significance of the per-step returns."""

    returns_tstat: float = 0.0
    returns_pvalue: float = 1.0
    skewness: float = 0.0
    kurtosis: float = 0.0
    jarque_bera_stat: float = 0.0
    jarque_bera_pvalue: float = 1.0
    is_normal: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def _finite(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


class PerformanceAnalyzer:
    """Computes performance metrics from an equity curve and a trade log.

    Holds only configuration; every method is a pure function of its inputs.
    """

    def __init__(self, periods_per_year: int = 252) -> None:
        """Initialize performance analyzer.

        Args:
            periods_per_year: Trading periods per year (252 for daily bars).
        """
        self.periods_per_year = periods_per_year

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate_metrics(
        self,
        equity_curve: Sequence[EquityCurvePoint],
        trades: Sequence[Trade],
        initial_capital: Decimal | float,
        total_commission: Decimal | float = 0,
        total_slippage: Decimal | float = 0,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> PerformanceMetrics:
        """Generate the metrics record.

        Args:
            equity_curve: One point per simulated step, in time order.
            trades: Closed trades.
            initial_capital: Starting cash.
            total_commission: Commission paid over the run.
            total_slippage: Slippage cost over the run.
            start_date: Start of the period (defaults to the first point).
            end_date: End of the period (defaults to the last point).

        Returns:
            PerformanceMetrics; all zeros for empty input.
        """
        metrics = PerformanceMetrics()
        self._fill_trade_metrics(metrics, trades)

        metrics.total_commission = float(total_commission)
        metrics.total_slippage = float(total_slippage)
        metrics.total_costs = metrics.total_commission + metrics.total_slippage

        capital = float(initial_capital)
        if not equity_curve or capital <= 0:
            return metrics

        start = start_date or equity_curve[0].timestamp
        end = end_date or equity_curve[-1].timestamp
        metrics.start_date = start
        metrics.end_date = end

        final_equity = float(equity_curve[-1].equity)
        metrics.total_return = final_equity / capital - 1
        metrics.total_return_dollars = final_equity - capital

        calendar_days = max((end - start).days, 0)
        metrics.trading_days = calendar_days * self.periods_per_year // DAYS_PER_YEAR
        metrics.cagr = self._cagr(final_equity / capital, metrics.trading_days)

        returns = self._step_returns(equity_curve, capital)
        metrics.volatility = self._volatility(returns)
        metrics.sharpe_ratio = self._sharpe(returns, metrics.volatility)
        metrics.sortino_ratio = self._sortino(returns)

        drawdowns = self.calculate_drawdowns(equity_curve)
        metrics.max_drawdown = min(d.drawdown for d in drawdowns)
        metrics.max_drawdown_duration_days = max(d.duration_days for d in drawdowns)
        if metrics.max_drawdown < 0:
            metrics.calmar_ratio = metrics.cagr / abs(metrics.max_drawdown)

        logger.debug(
            f"Metrics: return {metrics.total_return:.4f}, sharpe {metrics.sharpe_ratio:.2f}, "
            f"max drawdown {metrics.max_drawdown:.4f}, trades {metrics.total_trades}"
        )
        return metrics

    def calculate_drawdowns(
        self,
        equity_curve: Sequence[EquityCurvePoint],
    ) -> list[DrawdownPoint]:
        """Calculate the drawdown curve.

        The duration of a point is the number of days since the running peak
        was last set (reached or exceeded).
        """
        points: list[DrawdownPoint] = []
        peak = 0.0
        peak_time: datetime | None = None

        for point in equity_curve:
            equity = float(point.equity)
            if peak_time is None or equity >= peak:
                peak = equity
                peak_time = point.timestamp
            drawdown = (equity - peak) / peak if peak > 0 else 0.0
            points.append(
                DrawdownPoint(
                    timestamp=point.timestamp,
                    equity=equity,
                    peak=peak,
                    drawdown=drawdown,
                    duration_days=max((point.timestamp - peak_time).days, 0),
                )
            )
        return points

    def calculate_statistics(
        self,
        equity_curve: Sequence[EquityCurvePoint],
        trades: Sequence[Trade],
        initial_capital: Decimal | float,
        total_commission: Decimal | float = 0,
        total_slippage: Decimal | float = 0,
    ) -> BacktestStatistics:
        """Calculate per-step and per-trade descriptive statistics."""
        statistics = BacktestStatistics(
            total_commission=float(total_commission),
            total_slippage=float(total_slippage),
        )

        pnls = [float(t.net_pnl) for t in trades]
        statistics.max_consecutive_wins, statistics.max_consecutive_losses = self._longest_streaks(pnls)

        win_durations = [t.holding_period_days for t in trades if t.net_pnl > 0]
        loss_durations = [t.holding_period_days for t in trades if t.net_pnl < 0]
        statistics.avg_win_duration_days = float(np.mean(win_durations)) if win_durations else 0.0
        statistics.avg_loss_duration_days = float(np.mean(loss_durations)) if loss_durations else 0.0

        capital = float(initial_capital)
        if not equity_curve or capital <= 0:
            return statistics

        returns = self._step_returns(equity_curve, capital)
        statistics.trading_days = len(equity_curve)
        statistics.avg_daily_return = float(np.mean(returns))
        statistics.daily_return_std = float(np.std(returns, ddof=1)) if len(returns) > 1 else 0.0
        statistics.best_day = float(np.max(returns))
        statistics.worst_day = float(np.min(returns))
        statistics.positive_days = int(np.sum(returns > 0))
        statistics.negative_days = int(np.sum(returns < 0))

        calendar_days = (equity_curve[-1].timestamp - equity_curve[0].timestamp).days
        months = calendar_days / DAYS_PER_MONTH
        statistics.avg_trades_per_month = len(trades) / months if months > 0 else float(len(trades))
        return statistics

    def calculate_statistical_tests(
        self,
        equity_curve: Sequence[EquityCurvePoint],
        initial_capital: Decimal | float,
    ) -> StatisticalTests:
        """Test whether per-step returns differ from zero and are normal."""
        capital = float(initial_capital)
        if len(equity_curve) < 3 or capital <= 0:
            return StatisticalTests()

        returns = self._step_returns(equity_curve, capital)
        if np.std(returns) == 0:
            return StatisticalTests()

        t_stat, p_value = stats.ttest_1samp(returns, 0)
        jb_stat, jb_pvalue = stats.jarque_bera(returns)
        jb_pvalue = _finite(jb_pvalue, 1.0)

        return StatisticalTests(
            returns_tstat=_finite(t_stat),
            returns_pvalue=_finite(p_value, 1.0),
            skewness=_finite(stats.skew(returns)),
            kurtosis=_finite(stats.kurtosis(returns)),
            jarque_bera_stat=_finite(jb_stat),
            jarque_bera_pvalue=jb_pvalue,
            is_normal=bool(jb_pvalue > 0.05),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _step_returns(
        self,
        equity_curve: Sequence[EquityCurvePoint],
        initial_capital: float,
    ) -> np.ndarray:
        """Per-step returns; the first step is measured against initial capital."""
        equity = np.array([float(p.equity) for p in equity_curve], dtype=float)
        previous = np.concatenate(([initial_capital], equity[:-1]))
        with np.errstate(divide="ignore", invalid="ignore"):
            returns = np.where(previous > 0, equity / previous - 1, 0.0)
        return returns

    def _cagr(self, growth: float, trading_days: int) -> float:
        years = trading_days / self.periods_per_year
        if years <= 0:
            return 0.0
        if growth <= 0:
            return -1.0
        return float(growth ** (1 / years) - 1)

    def _volatility(self, returns: np.ndarray) -> float:
        if len(returns) < 2:
            return 0.0
        return _finite(np.std(returns, ddof=1) * np.sqrt(self.periods_per_year))

    def _sharpe(self, returns: np.ndarray, volatility: float) -> float:
        if volatility == 0 or len(returns) == 0:
            return 0.0
        return _finite(np.mean(returns) * self.periods_per_year / volatility)

    def _sortino(self, returns: np.ndarray) -> float:
        negative = returns[returns < 0]
        if len(negative) == 0:
            return 0.0
        downside = np.sqrt(np.mean(negative ** 2)) * np.sqrt(self.periods_per_year)
        if downside == 0:
            return 0.0
        return _finite(np.mean(returns) * self.periods_per_year / downside)

    def _fill_trade_metrics(
        self,
        metrics: PerformanceMetrics,
        trades: Sequence[Trade],
    ) -> None:
        """Calculate trade-based metrics in place."""
        if not trades:
            return

        pnls = [float(t.net_pnl) for t in trades]
        winning = [t for t in trades if t.net_pnl > 0]
        losing = [t for t in trades if t.net_pnl < 0]
        win_pnls = [float(t.net_pnl) for t in winning]
        loss_pnls = [float(t.net_pnl) for t in losing]

        metrics.total_trades = len(trades)
        metrics.winning_trades = len(winning)
        metrics.losing_trades = len(losing)
        metrics.win_rate = len(winning) / len(trades)

        metrics.avg_win = float(np.mean(win_pnls)) if win_pnls else 0.0
        metrics.avg_loss = float(np.mean(loss_pnls)) if loss_pnls else 0.0
        metrics.avg_win_pct = float(np.mean([t.return_pct for t in winning])) if winning else 0.0
        metrics.avg_loss_pct = float(np.mean([t.return_pct for t in losing])) if losing else 0.0
        metrics.largest_win = max(win_pnls) if win_pnls else 0.0
        metrics.largest_loss = min(loss_pnls) if loss_pnls else 0.0

        metrics.gross_profit = sum(win_pnls)
        metrics.gross_loss = abs(sum(loss_pnls))
        if metrics.gross_loss > 0:
            metrics.profit_factor = metrics.gross_profit / metrics.gross_loss
        if metrics.avg_loss < 0:
            metrics.payoff_ratio = metrics.avg_win / abs(metrics.avg_loss)

        metrics.expectancy = float(np.mean(pnls))
        metrics.expectancy_pct = float(np.mean([t.return_pct for t in trades]))
        metrics.avg_holding_period_days = float(np.mean([t.holding_period_days for t in trades]))
        metrics.max_consecutive_wins, metrics.max_consecutive_losses = self._longest_streaks(pnls)

    def _longest_streaks(self, pnls: Sequence[float]) -> tuple[int, int]:
        """Longest runs of winning and losing trades.

        A zero-P&L trade neither extends nor resets a streak.
        """
        max_wins = max_losses = 0
        wins = losses = 0

        for pnl in pnls:
            if pnl > 0:
                wins += 1
                losses = 0
            elif pnl < 0:
                losses += 1
                wins = 0
            else:
                continue
            max_wins = max(max_wins, wins)
            max_losses = max(max_losses, losses)

        return max_wins, max_losses


class VisualizationData:
    """Prepares data for visualization."""

    @staticmethod
    def get_equity_curve_data(
        equity_curve: Sequence[EquityCurvePoint],
    ) -> pd.DataFrame:
        """Get equity curve data for plotting."""
        data = [
            {
                "timestamp": p.timestamp,
                "equity": float(p.equity),
                "cash": float(p.cash),
                "positions_value": float(p.positions_value),
                "daily_return": p.daily_return,
                "cumulative_return": p.cumulative_return,
                "drawdown": p.drawdown,
            }
            for p in equity_curve
        ]
        return pd.DataFrame(data)

    @staticmethod
    def get_drawdown_data(
        drawdowns: Sequence[DrawdownPoint],
    ) -> pd.DataFrame:
        """Get drawdown data for plotting."""
        return pd.DataFrame([d.to_dict() | {"timestamp": d.timestamp} for d in drawdowns])

    @staticmethod
    def get_monthly_returns(
        equity_curve: Sequence[EquityCurvePoint],
    ) -> pd.DataFrame:
        """Get monthly returns as a year x month table."""
        if len(equity_curve) < 2:
            return pd.DataFrame()

        df = pd.DataFrame(
            {"timestamp": [p.timestamp for p in equity_curve], "equity": [float(p.equity) for p in equity_curve]}
        )
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        df = df.set_index("timestamp")

        monthly = df["equity"].resample("ME").last()
        monthly_returns = monthly.pct_change().dropna().to_frame()
        monthly_returns["year"] = monthly_returns.index.year
        monthly_returns["month"] = monthly_returns.index.month

        return monthly_returns.pivot(index="year", columns="month", values="equity")

    @staticmethod
    def get_trade_distribution_data(
        trades: Sequence[Trade],
    ) -> pd.DataFrame:
        """Get trade P&L distribution data."""
        data = []
        for trade in trades:
            data.append({
                "symbol": trade.symbol,
                "net_pnl": float(trade.net_pnl),
                "return_pct": trade.return_pct,
                "holding_period_days": trade.holding_period_days,
                "exit_reason": trade.exit_reason.value,
            })
        return pd.DataFrame(data)
