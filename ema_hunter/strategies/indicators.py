"""
Technical Indicators

Vectorized EMA calculations over candle DataFrames.
"""

import pandas as pd


def ema(data: pd.Series, period: int) -> pd.Series:
    """
    Exponential Moving Average.

    Seeded with the first sample, then EMA[i] = x[i]*k + EMA[i-1]*(1-k)
    with k = 2/(period+1).

    Args:
        data: Price series
        period: EMA period

    Returns:
        EMA series, same length and index as ``data``
    """
    if period < 1:
        raise ValueError(f"EMA period must be >= 1, got {period}")
    return data.astype(float).ewm(span=period, adjust=False).mean()


def enrich_with_ema(
    candles: pd.DataFrame,
    fast_period: int = 15,
    slow_period: int = 60,
) -> pd.DataFrame:
    """
    Return a copy of ``candles`` with ``ema_fast`` and ``ema_slow`` columns.

    Args:
        candles: OHLCV DataFrame, ascending
        fast_period: Fast EMA period (default: 15)
        slow_period: Slow EMA period (default: 60)

    Returns:
        Enriched DataFrame
    """
    df = candles.copy()
    if len(df) == 0:
        df['ema_fast'] = pd.Series(dtype=float)
        df['ema_slow'] = pd.Series(dtype=float)
        return df

    df['ema_fast'] = ema(df['close'], fast_period)
    df['ema_slow'] = ema(df['close'], slow_period)
    return df


def resample_ohlcv(candles: pd.DataFrame, rule: str) -> pd.DataFrame:
    """
    Aggregate lower-timeframe candles into a higher timeframe.

    Args:
        candles: OHLCV DataFrame with DatetimeIndex
        rule: pandas offset alias (e.g. '1h')

    Returns:
        Resampled OHLCV DataFrame labelled by bar open time; empty bars dropped
    """
    agg = {
        'open': 'first',
        'high': 'max',
        'low': 'min',
        'close': 'last',
        'volume': 'sum',
    }
    return candles[list(agg)].resample(rule, label='left', closed='left').agg(agg).dropna(subset=['close'])


def completed_bars(candles: pd.DataFrame, as_of: pd.Timestamp, bar_length: pd.Timedelta) -> pd.DataFrame:
    """
    Drop bars that have not closed by ``as_of``.

    Bars are labelled by open time, so a bar is complete once
    ``open + bar_length <= as_of``.
    """
    if len(candles) == 0:
        return candles
    return candles[candles.index + bar_length <= as_of]
