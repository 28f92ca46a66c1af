#!/usr/bin/env python3
"""
Run a backtest of a strategy profile on stored 3m candles.

Usage:
    python scripts/run_backtest.py --symbol ETH --start 2024-01-01 --end 2024-03-01
    python scripts/run_backtest.py --symbol BTC --start 2024-01-01 --end 2024-02-01 \\
        --balance 500 --strategy ema_hunter_conservative --plot
"""

import sys
import argparse
from datetime import datetime
from pathlib import Path

# Setup paths
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from loguru import logger

from ema_hunter.analytics import print_metrics_report
from ema_hunter.backtesting import BacktestRequest, BacktestSimulator
from ema_hunter.errors import BacktestError
from ema_hunter.live import PaperExchange
from ema_hunter.risk import TransactionCostModel
from ema_hunter.utils.config import get_config
from ema_hunter.utils.helpers import parse_date
from ema_hunter.utils.logger import setup_logger


def plot_equity_curve(result, output_path: Path):
    """Plot equity curve with drawdown shading"""
    equity = result.equity_frame()
    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(14, 10), sharex=True)

    ax1.plot(equity.index, equity['equity'], label='Equity', linewidth=2)
    ax1.axhline(result.initial_balance, color='gray', linestyle=':', alpha=0.5, label='Initial Balance')
    ax1.set_ylabel('Equity (USDT)', fontsize=12)
    ax1.set_title(
        f'{result.symbol} - {result.initial_balance:.0f} -> {result.final_balance:.0f} USDT '
        f'({result.total_trades} trades)',
        fontsize=14,
        fontweight='bold'
    )
    ax1.legend(loc='upper left')
    ax1.grid(True, alpha=0.3)

    ax2.fill_between(equity.index, equity['drawdown'] * 100, 0, color='red', alpha=0.3, label='Drawdown')
    ax2.set_ylabel('Drawdown (%)', fontsize=12)
    ax2.set_xlabel('Date', fontsize=12)
    ax2.set_title(f'Drawdown - Max: {result.max_drawdown*100:.2f}%', fontsize=12)
    ax2.grid(True, alpha=0.3)
    ax2.invert_yaxis()

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    logger.success(f"Saved equity curve: {output_path}")
    plt.close()


def main():
    config = get_config()

    parser = argparse.ArgumentParser(description='EMA Hunter Backtest')
    parser.add_argument('--symbol', type=str, required=True, help='Coin key (e.g. ETH)')
    parser.add_argument('--start', type=str, required=True, help='Start date (YYYY-MM-DD)')
    parser.add_argument('--end', type=str, required=True, help='End date (YYYY-MM-DD)')
    parser.add_argument('--balance', type=float, default=config.initial_balance,
                        help='Initial balance in USDT')
    parser.add_argument('--strategy', type=str, default=config.active_strategy_name,
                        choices=config.strategy_names, help='Strategy profile')
    parser.add_argument('--data-dir', type=str, default=str(config.data_dir),
                        help='Directory with {COIN}_3m candle files')
    parser.add_argument('--plot', action='store_true', help='Save an equity curve PNG')
    args = parser.parse_args()

    setup_logger()

    strategy = config.get_strategy_config(args.strategy)
    cost_model = TransactionCostModel(config.taker_fee_rate)
    history = PaperExchange(
        instruments=config.get_instruments(),
        data_dir=args.data_dir,
        cost_model=cost_model,
        lower_timeframe=config.lower_timeframe,
        higher_timeframe=config.higher_timeframe,
    )
    simulator = BacktestSimulator(
        history,
        cost_model=cost_model,
        lower_timeframe=config.lower_timeframe,
        higher_timeframe=config.higher_timeframe,
        window_bars=config.candle_count,
        curve_points=config.curve_points,
    )

    request = BacktestRequest(
        symbol=args.symbol,
        start=parse_date(args.start),
        end=parse_date(args.end),
        initial_balance=args.balance,
        strategy=strategy,
    )

    try:
        result = simulator.run(request)
    except BacktestError as e:
        logger.error(f"Backtest failed: {e}")
        sys.exit(1)

    print_metrics_report(result.to_dict())

    stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    reports_dir = config.reports_dir
    trades_file = reports_dir / f"trades_{args.symbol}_{stamp}.csv"
    equity_file = reports_dir / f"equity_{args.symbol}_{stamp}.csv"
    result.trades_frame().to_csv(trades_file, index=False)
    result.equity_frame().to_csv(equity_file)
    logger.success(f"Saved {trades_file.name} and {equity_file.name} to {reports_dir}")

    if args.plot:
        plot_equity_curve(result, reports_dir / f"equity_{args.symbol}_{stamp}.png")


if __name__ == '__main__':
    main()
