"""Backtesting module for EMA Hunter."""

from .simulator import (
    BacktestRequest,
    BacktestResult,
    BacktestSimulator,
    BacktestSnapshot,
    BacktestState,
    BacktestTrade,
)

__all__ = [
    'BacktestRequest',
    'BacktestResult',
    'BacktestSimulator',
    'BacktestSnapshot',
    'BacktestState',
    'BacktestTrade',
]
