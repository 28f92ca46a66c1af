"""
Helper utilities for EMA Hunter
"""

from decimal import ROUND_HALF_UP, Decimal

import pandas as pd


def format_currency(amount: float, currency: str = "USDT") -> str:
    """Format amount as currency"""
    return f"{amount:,.2f} {currency}"


def format_percentage(value: float, decimals: int = 2) -> str:
    """Format value as percentage"""
    return f"{value * 100:.{decimals}f}%"


def parse_date(value) -> pd.Timestamp:
    """Parse a date string or datetime to a UTC timestamp (naive input is taken as UTC)"""
    ts = pd.to_datetime(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize('UTC')
    return ts.tz_convert('UTC')


def step_decimals(step: float) -> int:
    """Number of decimal places in a lot or tick step (0.01 -> 2, 1 -> 0)"""
    text = f"{step:.10f}".rstrip('0')
    return len(text.split('.')[1]) if '.' in text else 0


def round_to_step(value: float, step: float) -> float:
    """
    Round a price or size to the nearest multiple of an exchange step.

    Args:
        value: Raw value
        step: Tick or lot size (e.g. 0.01)

    Returns:
        Rounded value with no float noise beyond the step's precision
    """
    if step <= 0:
        return value
    return round(round(value / step) * step, step_decimals(step))


def round_half_up(value: float, precision: int) -> float:
    """Round to ``precision`` decimals with halves going up (0.25 -> 0.3), like exchange size strings"""
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


TIMEFRAME_OFFSETS = {
    '1m': '1min', '3m': '3min', '5m': '5min', '15m': '15min', '30m': '30min',
    '1H': '1h', '2H': '2h', '4H': '4h', '1D': '1D',
}


def timeframe_to_offset(timeframe: str) -> str:
    """
    Map an exchange bar label to a pandas offset alias.

    Args:
        timeframe: Exchange bar label (e.g. '3m', '1H')

    Returns:
        pandas offset alias (e.g. '3min', '1h')
    """
    if timeframe not in TIMEFRAME_OFFSETS:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return TIMEFRAME_OFFSETS[timeframe]


def timeframe_to_timedelta(timeframe: str) -> pd.Timedelta:
    """Bar length of an exchange timeframe label"""
    return pd.Timedelta(timeframe_to_offset(timeframe))
