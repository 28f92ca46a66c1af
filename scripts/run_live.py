#!/usr/bin/env python3
"""Entry point for the trading loop.

Usage:
    # Paper trading (default) with the active strategy
    python scripts/run_live.py

    # Paper trading with another strategy profile and balance
    python scripts/run_live.py --strategy ema_hunter_conservative --capital 500

    # One status refresh, then exit
    python scripts/run_live.py --status

    # List available strategy profiles
    python scripts/run_live.py --list-strategies
"""
import sys
import argparse
import json
from pathlib import Path

# Setup paths
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from loguru import logger

from ema_hunter.errors import CredentialMissing
from ema_hunter.live import PaperExchange, TradeJournal, TradingLoopScheduler
from ema_hunter.risk import TransactionCostModel
from ema_hunter.utils.config import get_config
from ema_hunter.utils.helpers import format_currency, format_percentage
from ema_hunter.utils.logger import setup_logger


def list_strategies(config):
    print("\nAvailable strategies:")
    print(f"{'Profile':<28} {'Lev':<5} {'Risk':<8} {'BE ROI':<8} {'Symbols'}")
    print("-" * 70)
    for name in config.strategy_names:
        s = config.get_strategy_config(name)
        marker = '*' if name == config.active_strategy_name else ' '
        print(f"{marker}{name:<27} {s.leverage:<5g} {format_percentage(s.risk_fraction, 0):<8} "
              f"{format_percentage(s.breakeven_trigger_roi, 1):<8} {', '.join(s.enabled_symbols)}")
    print(f"\nInstruments: {', '.join(config.get_instruments())}")


def main():
    config = get_config()

    parser = argparse.ArgumentParser(description='EMA Hunter Trading Loop')
    parser.add_argument('--strategy', type=str, default=config.active_strategy_name,
                        choices=config.strategy_names,
                        help='Strategy profile (default: active profile in strategies.yaml)')
    parser.add_argument('--capital', type=float, default=config.initial_balance,
                        help='Paper account balance in USDT')
    parser.add_argument('--symbols', type=str, nargs='+',
                        help='Override the strategy symbol list (e.g. BTC ETH)')
    parser.add_argument('--status', action='store_true',
                        help='Refresh once, print status and exit')
    parser.add_argument('--list-strategies', action='store_true',
                        help='List available strategy profiles')
    parser.add_argument('--data-dir', type=str, default=str(config.data_dir),
                        help='Directory with {COIN}_3m candle files')
    args = parser.parse_args()

    if args.list_strategies:
        list_strategies(config)
        return

    setup_logger()

    try:
        config.exchange_credentials()
    except CredentialMissing as e:
        logger.error(str(e))
        sys.exit(1)
    if not config.simulation:
        logger.warning("No exchange adapter bundled, trading on the paper exchange")

    strategy = config.get_strategy_config(args.strategy)
    cost_model = TransactionCostModel(config.taker_fee_rate)
    exchange = PaperExchange(
        instruments=config.get_instruments(),
        initial_balance=args.capital,
        data_dir=args.data_dir,
        cost_model=cost_model,
        lower_timeframe=config.lower_timeframe,
        higher_timeframe=config.higher_timeframe,
        candle_count=config.candle_count,
        fast_period=strategy.fast_period,
        slow_period=strategy.slow_period,
    )
    scheduler = TradingLoopScheduler(
        market=exchange,
        account=exchange,
        orders=exchange,
        strategy=strategy,
        symbols=args.symbols,
        cost_model=cost_model,
        journal=TradeJournal(str(config.journal_file)),
        tick_seconds=config.tick_seconds,
        max_workers=config.max_workers,
        log_buffer=config.log_buffer_size,
    )

    if args.status:
        scheduler.tick()
        print(json.dumps(scheduler.status(), indent=2, default=str))
        return

    logger.info("=" * 60)
    logger.info("EMA HUNTER - TRADING LOOP")
    logger.info("=" * 60)
    logger.info(f"Strategy: {strategy.name} ({args.strategy})")
    logger.info(f"Capital: {format_currency(args.capital)}")
    logger.info(f"Symbols: {', '.join(scheduler.context.symbols)}")
    logger.info("Press Ctrl+C to stop")

    scheduler.run()

    trades = exchange.closed_trades
    logger.info(f"Stopped. Closed fills: {len(trades)}, cash: {format_currency(exchange.cash_balance)}")


if __name__ == '__main__':
    main()
