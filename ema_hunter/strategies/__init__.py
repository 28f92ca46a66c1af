"""Indicator and signal modules for EMA Hunter."""

from . import indicators
from .signal_analyzer import EntrySignal, TrendResult, analyze_entry, analyze_trend, hard_stop_price

__all__ = [
    'indicators',
    'TrendResult',
    'EntrySignal',
    'analyze_trend',
    'analyze_entry',
    'hard_stop_price',
]
