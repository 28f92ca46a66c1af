"""
Signal Analyzer

Two-stage rule engine:
1. Trend: higher-timeframe (1H) close vs fast/slow EMA
2. Entry: lower-timeframe (3m) fast/slow EMA cross state, aligned with trend

Both stages are pure functions of the candle frames passed in.
"""

from dataclasses import dataclass
from typing import Optional

import pandas as pd

from ..models import Action, Trend

MIN_TREND_BARS = 60
MIN_ENTRY_BARS = 2


@dataclass(frozen=True)
class TrendResult:
    """Outcome of the trend stage."""
    direction: Trend
    description: str
    used_proxy: bool = False


@dataclass(frozen=True)
class EntrySignal:
    """Outcome of the entry stage."""
    signal: bool
    action: Action
    stop_loss_price: Optional[float]
    reason: str


def _has_ema(frame: Optional[pd.DataFrame]) -> bool:
    if frame is None or len(frame) == 0:
        return False
    if 'ema_fast' not in frame.columns or 'ema_slow' not in frame.columns:
        return False
    last = frame.iloc[-1]
    return not (pd.isna(last['ema_fast']) or pd.isna(last['ema_slow']))


def _classify(price: float, fast: float, slow: float, tolerance: float) -> Trend:
    band = abs(slow) * tolerance
    if price > slow + band and fast > slow + band:
        return Trend.UP
    if price < slow - band and fast < slow - band:
        return Trend.DOWN
    return Trend.NEUTRAL


def analyze_trend(
    higher_tf: Optional[pd.DataFrame],
    lower_tf: Optional[pd.DataFrame] = None,
    tolerance: float = 0.0,
    min_bars: int = MIN_TREND_BARS,
) -> TrendResult:
    """
    Classify the higher-timeframe trend.

    UP when close > slow EMA and fast EMA > slow EMA, DOWN when mirrored,
    NEUTRAL otherwise. ``tolerance`` is a relative dead-band around the slow
    EMA applied to both comparisons.

    When the higher timeframe has fewer than ``min_bars`` bars or no EMA,
    the lower timeframe's slow EMA against price is used as a proxy; the
    proxy needs ``min_bars`` lower-timeframe bars as well.

    Args:
        higher_tf: Higher-timeframe candles enriched with EMAs
        lower_tf: Lower-timeframe candles enriched with EMAs (proxy source)
        tolerance: Relative dead-band (0.001 = 0.1%)
        min_bars: Minimum bar count for a non-neutral label

    Returns:
        TrendResult
    """
    if higher_tf is not None and len(higher_tf) >= min_bars and _has_ema(higher_tf):
        last = higher_tf.iloc[-1]
        direction = _classify(last['close'], last['ema_fast'], last['ema_slow'], tolerance)
        labels = {Trend.UP: "1H uptrend", Trend.DOWN: "1H downtrend", Trend.NEUTRAL: "1H ranging"}
        return TrendResult(direction, labels[direction])

    if lower_tf is not None and len(lower_tf) >= min_bars and _has_ema(lower_tf):
        last = lower_tf.iloc[-1]
        price, slow = last['close'], last['ema_slow']
        band = abs(slow) * tolerance
        if price > slow + band:
            direction = Trend.UP
        elif price < slow - band:
            direction = Trend.DOWN
        else:
            direction = Trend.NEUTRAL
        return TrendResult(
            direction,
            f"1H data insufficient, lower-timeframe slow EMA proxy: {direction.value}",
            used_proxy=True,
        )

    if higher_tf is not None and len(higher_tf) >= min_bars:
        return TrendResult(Trend.NEUTRAL, "Indicators still warming up")
    return TrendResult(Trend.NEUTRAL, "Insufficient data")


def hard_stop_price(price: float, action: Action, leverage: float, stop_loss_roi: float) -> float:
    """
    Leverage-normalized stop: the price at which margin ROI reaches -stop_loss_roi.

    Args:
        price: Entry price
        action: BUY or SELL
        leverage: Position leverage
        stop_loss_roi: Maximum tolerated loss as fraction of margin

    Returns:
        Stop-loss trigger price
    """
    offset = stop_loss_roi / leverage
    if action is Action.BUY:
        return price * (1 - offset)
    return price * (1 + offset)


def analyze_entry(
    lower_tf: Optional[pd.DataFrame],
    trend: Trend,
    price: float,
    leverage: float,
    initial_stop_loss_roi: float,
) -> EntrySignal:
    """
    Look for a lower-timeframe entry aligned with the trend.

    BUY requires trend UP and fast EMA above slow EMA; SELL requires trend
    DOWN and fast EMA below slow EMA.

    Args:
        lower_tf: Lower-timeframe candles enriched with EMAs
        trend: Result of the trend stage
        price: Current price
        leverage: Strategy leverage
        initial_stop_loss_roi: Hard stop as fraction of margin

    Returns:
        EntrySignal (signal=False with HOLD when nothing fires)
    """
    if lower_tf is None or len(lower_tf) < MIN_ENTRY_BARS:
        return EntrySignal(False, Action.HOLD, None, "Waiting for 3m candles")
    if not _has_ema(lower_tf):
        return EntrySignal(False, Action.HOLD, None, "3m indicators warming up")

    last = lower_tf.iloc[-1]
    bullish = last['ema_fast'] > last['ema_slow']

    if trend is Trend.UP and bullish:
        stop = hard_stop_price(price, Action.BUY, leverage, initial_stop_loss_roi)
        return EntrySignal(True, Action.BUY, stop, "3m bullish cross aligned with 1H uptrend")
    if trend is Trend.DOWN and not bullish:
        stop = hard_stop_price(price, Action.SELL, leverage, initial_stop_loss_roi)
        return EntrySignal(True, Action.SELL, stop, "3m bearish cross aligned with 1H downtrend")

    if trend is Trend.NEUTRAL:
        return EntrySignal(False, Action.HOLD, None, "No 1H trend, standing aside")
    return EntrySignal(False, Action.HOLD, None, "Waiting for 3m cross to confirm 1H trend")
