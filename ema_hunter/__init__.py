"""EMA Hunter: EMA trend-following assistant for USDT perpetual swaps."""

__version__ = "0.1.0"
