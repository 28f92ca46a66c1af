"""
Performance Metrics Calculator

Summary statistics for a backtest run: trade stats, drawdown, Sharpe ratio
and linearly extrapolated ROI projections.
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional
from loguru import logger

# Crypto perpetuals trade every day of the year
PERIODS_PER_YEAR = 365


class PerformanceMetrics:
    """
    Calculate performance metrics for a backtest.

    Metrics include:
    - Returns (total profit, weekly/monthly/annualized ROI)
    - Risk (max drawdown, Sharpe ratio on daily equity)
    - Trading (win rate, avg profit/loss, profit factor)
    """

    def __init__(
        self,
        equity_curve: pd.DataFrame,
        trades: pd.DataFrame,
        initial_balance: float,
        period_days: Optional[float] = None,
    ):
        """
        Initialize metrics calculator.

        Args:
            equity_curve: DataFrame with an ``equity`` column over a DatetimeIndex
            trades: DataFrame of closed trades with ``profit`` column
            initial_balance: Starting balance
            period_days: Elapsed span used for ROI projections
                (default: span of the equity curve)
        """
        self.equity_curve = equity_curve
        self.trades = trades
        self.initial_balance = initial_balance

        if period_days is None and len(equity_curve) > 1:
            period_days = (equity_curve.index[-1] - equity_curve.index[0]).total_seconds() / 86400
        self.period_days = period_days or 0.0

        logger.debug(f"Initialized performance metrics: {len(trades)} trades")

    def calculate_all_metrics(self) -> Dict:
        """
        Calculate all performance metrics.

        Returns:
            Dictionary with all metrics
        """
        metrics = {}
        metrics.update(self.calculate_return_metrics())
        metrics.update(self.calculate_risk_metrics())
        metrics.update(self.calculate_trading_metrics())
        return metrics

    def calculate_return_metrics(self) -> Dict:
        """Total profit and ROI projections extrapolated linearly over the elapsed span."""
        if len(self.equity_curve) > 0:
            final = float(self.equity_curve['equity'].iloc[-1])
        else:
            final = self.initial_balance

        total_profit = final - self.initial_balance
        total_return = total_profit / self.initial_balance if self.initial_balance > 0 else 0.0

        if self.period_days > 0:
            daily = total_return / self.period_days
        else:
            daily = 0.0

        return {
            'final_balance': final,
            'total_profit': total_profit,
            'total_return': total_return,
            'weekly_roi': daily * 7,
            'monthly_roi': daily * 30,
            'annualized_roi': daily * PERIODS_PER_YEAR,
        }

    def calculate_risk_metrics(self) -> Dict:
        """Max drawdown in [0, 1] and Sharpe ratio from daily equity."""
        if len(self.equity_curve) == 0:
            return {'max_drawdown': 0.0, 'sharpe_ratio': 0.0}

        equity = self.equity_curve['equity']
        peak = equity.cummax()
        drawdown = ((peak - equity) / peak).where(peak > 0, 0.0).clip(0.0, 1.0)

        daily_equity = equity.resample('D').last().dropna()
        daily_returns = daily_equity.pct_change().dropna()
        if len(daily_returns) > 1 and daily_returns.std() > 0:
            sharpe = daily_returns.mean() / daily_returns.std() * np.sqrt(PERIODS_PER_YEAR)
        else:
            sharpe = 0.0

        return {
            'max_drawdown': float(drawdown.max()),
            'sharpe_ratio': float(sharpe),
        }

    def calculate_trading_metrics(self) -> Dict:
        """Calculate trading-specific metrics."""
        if len(self.trades) == 0:
            return {
                'total_trades': 0,
                'win_rate': 0.0,
                'avg_profit': 0.0,
                'avg_loss': 0.0,
                'profit_factor': 0.0,
            }

        profits = self.trades['profit']
        winners = profits[profits > 0]
        losers = profits[profits <= 0]

        gross_profit = winners.sum()
        gross_loss = abs(losers.sum())

        return {
            'total_trades': len(profits),
            'win_rate': len(winners) / len(profits),
            'avg_profit': float(winners.mean()) if len(winners) else 0.0,
            'avg_loss': float(abs(losers.mean())) if len(losers) else 0.0,
            'profit_factor': float(gross_profit / gross_loss) if gross_loss > 0 else 0.0,
        }


def print_metrics_report(metrics: Dict):
    """Print formatted metrics report."""
    print("\n" + "=" * 60)
    print("BACKTEST PERFORMANCE")
    print("=" * 60)

    print("\n  RETURNS:")
    print(f"    Final Balance:    {metrics['final_balance']:,.2f} USDT")
    print(f"    Total Profit:     {metrics['total_profit']:+,.2f} USDT")
    print(f"    Weekly ROI:       {metrics['weekly_roi']*100:.2f}%")
    print(f"    Monthly ROI:      {metrics['monthly_roi']*100:.2f}%")
    print(f"    Annualized ROI:   {metrics['annualized_roi']*100:.2f}%")

    print("\n  TRADES:")
    print(f"    Total Trades:     {metrics['total_trades']}")
    print(f"    Win Rate:         {metrics['win_rate']*100:.1f}%")
    print(f"    Avg Profit:       {metrics['avg_profit']:.2f} USDT")
    print(f"    Avg Loss:         {metrics['avg_loss']:.2f} USDT")
    print(f"    Profit Factor:    {metrics['profit_factor']:.2f}")

    print("\n  RISK:")
    print(f"    Max Drawdown:     {metrics['max_drawdown']*100:.2f}%")
    print(f"    Sharpe Ratio:     {metrics['sharpe_ratio']:.2f}")

    print("\n" + "=" * 60)
