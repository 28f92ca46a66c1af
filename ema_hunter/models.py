"""
Domain models for EMA Hunter.

Collaborator payloads (exchange-shaped dicts with string fields) are mapped
into these types at the boundary via the ``from_payload`` constructors, so
the trading core only ever sees validated, typed values.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .errors import DataUnavailable
from .utils.helpers import step_decimals

CANDLE_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


class Action(Enum):
    """Decision actions"""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    CLOSE = "CLOSE"
    UPDATE_TPSL = "UPDATE_TPSL"


class Side(Enum):
    """Position sides (long/short hedge mode)"""
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG

    @classmethod
    def from_action(cls, action: Action) -> "Side":
        if action is Action.BUY:
            return cls.LONG
        if action is Action.SELL:
            return cls.SHORT
        raise ValueError(f"Action {action.value} does not open a position")


class Trend(Enum):
    """Higher-timeframe trend labels"""
    UP = "UP"
    DOWN = "DOWN"
    NEUTRAL = "NEUTRAL"


class DecisionSource(Enum):
    """Where a decision came from"""
    RULES = "RULES"
    ADVISORY = "ADVISORY"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None


def candles_to_frame(candles: List[Candle]) -> pd.DataFrame:
    """
    Convert a list of candles into an ascending OHLCV DataFrame.

    Args:
        candles: Candles in any order

    Returns:
        DataFrame indexed by UTC timestamp with columns open, high, low,
        close, volume (plus ema_fast/ema_slow when every candle carries them)
    """
    if not candles:
        return pd.DataFrame(columns=CANDLE_COLUMNS, index=pd.DatetimeIndex([], tz='UTC'))

    rows = sorted(candles, key=lambda c: c.timestamp)
    df = pd.DataFrame(
        {col: [getattr(c, col) for c in rows] for col in CANDLE_COLUMNS},
        index=pd.DatetimeIndex([pd.Timestamp(c.timestamp) for c in rows]),
    )
    if df.index.tz is None:
        df.index = df.index.tz_localize('UTC')

    if all(c.ema_fast is not None and c.ema_slow is not None for c in rows):
        df['ema_fast'] = [c.ema_fast for c in rows]
        df['ema_slow'] = [c.ema_slow for c in rows]

    return df


@dataclass(frozen=True)
class InstrumentMeta:
    """Exchange lot and price constraints for one perpetual contract."""
    symbol: str
    contract_value: float
    tick_size: float
    lot_size: float
    min_size: float
    tradable_state: str = "live"
    list_time: Optional[datetime] = None

    @property
    def lot_precision(self) -> int:
        """Decimal places allowed in an order size."""
        return step_decimals(self.lot_size)

    @property
    def price_precision(self) -> int:
        """Decimal places allowed in a price."""
        return step_decimals(self.tick_size)

    @property
    def is_tradable(self) -> bool:
        return self.tradable_state == "live"

    @classmethod
    def from_payload(cls, payload: Dict, symbol: Optional[str] = None) -> "InstrumentMeta":
        """
        Map an exchange instrument record (instId, ctVal, tickSz, lotSz, minSz).

        ``symbol`` overrides instId when the caller keys instruments by coin.
        """
        try:
            list_ms = payload.get('listTime')
            return cls(
                symbol=symbol or payload['instId'],
                contract_value=float(payload['ctVal']),
                tick_size=float(payload['tickSz']),
                lot_size=float(payload['lotSz']),
                min_size=float(payload['minSz']),
                tradable_state=payload.get('state', 'live'),
                list_time=(
                    datetime.fromtimestamp(int(list_ms) / 1000, tz=timezone.utc)
                    if list_ms else None
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(payload.get('instId', '?'), f"bad instrument payload: {e}")


@dataclass
class PositionSnapshot:
    """An open position as reported by the account provider."""
    symbol: str
    side: Side
    size: float
    avg_price: float
    unrealized_roi: float
    leverage: float
    unrealized_pnl: float = 0.0
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None

    @property
    def key(self) -> Tuple[str, Side]:
        return (self.symbol, self.side)

    @property
    def is_open(self) -> bool:
        return self.size > 0

    @classmethod
    def from_payload(cls, payload: Dict, symbol: Optional[str] = None) -> "PositionSnapshot":
        """Map an exchange position record (instId, posSide, pos, avgPx, uplRatio, lever)."""
        symbol = symbol or payload.get('instId', '?')
        try:
            size = float(payload['pos'])
            side_raw = payload.get('posSide', 'net')
            if side_raw == 'net':
                side = Side.LONG if size >= 0 else Side.SHORT
            else:
                side = Side(side_raw)

            def _opt(key: str) -> Optional[float]:
                value = payload.get(key)
                return float(value) if value not in (None, '', '0') else None

            return cls(
                symbol=symbol,
                side=side,
                size=abs(size),
                avg_price=float(payload['avgPx']),
                unrealized_roi=float(payload.get('uplRatio') or 0),
                leverage=float(payload.get('lever') or payload.get('leverage') or 1),
                unrealized_pnl=float(payload.get('upl') or 0),
                stop_loss_price=_opt('slTriggerPx'),
                take_profit_price=_opt('tpTriggerPx'),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(symbol, f"bad position payload: {e}")


@dataclass
class AccountSnapshot:
    """Account equity and open positions."""
    equity: float
    available_equity: float
    positions: List[PositionSnapshot] = field(default_factory=list)
    timestamp: Optional[datetime] = None

    def position_for(self, symbol: str, side: Optional[Side] = None) -> Optional[PositionSnapshot]:
        """First open position on a symbol, optionally restricted to one side."""
        for pos in self.positions_for(symbol):
            if side is None or pos.side is side:
                return pos
        return None

    def positions_for(self, symbol: str) -> List[PositionSnapshot]:
        """All open positions on a symbol; both sides in hedge mode."""
        return [p for p in self.positions if p.symbol == symbol and p.is_open]

    @property
    def open_positions(self) -> List[PositionSnapshot]:
        return [p for p in self.positions if p.is_open]


@dataclass
class MarketSnapshot:
    """Everything the decision engine needs to know about one symbol."""
    symbol: str
    price: float
    higher_tf: pd.DataFrame
    lower_tf: pd.DataFrame
    funding_rate: float = 0.0
    open_interest: float = 0.0
    bids: List[Tuple[float, float]] = field(default_factory=list)
    asks: List[Tuple[float, float]] = field(default_factory=list)
    timestamp: Optional[datetime] = None


@dataclass
class StrategyConfig:
    """Strategy parameters. Mutated only between scheduler iterations."""
    name: str = "EMA Hunter"
    leverage: float = 20.0
    risk_fraction: float = 0.15
    initial_stop_loss_roi: float = 0.05
    breakeven_trigger_roi: float = 0.078
    trailing_callback_ratio: float = 0.005
    empty_scan_interval_sec: float = 15.0
    holding_scan_interval_sec: float = 10.0
    max_concurrent_positions: int = 3
    prompt_text: str = ""
    enabled_symbols: List[str] = field(default_factory=lambda: ["BTC", "ETH", "SOL"])
    take_profit_rois: List[float] = field(default_factory=lambda: [0.05, 0.08, 0.12])
    take_profit_fractions: List[float] = field(default_factory=lambda: [0.30, 0.30, 0.20])
    fast_period: int = 15
    slow_period: int = 60
    trend_tolerance: float = 0.0

    def __post_init__(self):
        if self.leverage <= 0:
            raise ValueError(f"leverage must be positive, got {self.leverage}")
        if not 0 < self.risk_fraction <= 1:
            raise ValueError(f"risk_fraction must be in (0, 1], got {self.risk_fraction}")
        if len(self.take_profit_rois) != len(self.take_profit_fractions):
            raise ValueError("take_profit_rois and take_profit_fractions must have equal length")
        if sorted(self.take_profit_rois) != list(self.take_profit_rois):
            raise ValueError("take_profit_rois must be ascending")
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be shorter than slow_period")

    @classmethod
    def from_dict(cls, data: Dict) -> "StrategyConfig":
        """Build from a strategies.yaml entry, ignoring unknown keys."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Decision:
    """One trading decision for one symbol. Created fresh every scan."""
    symbol: str
    action: Action
    reasoning: str
    size_contracts: float = 0.0
    leverage: float = 1.0
    stop_loss_price: Optional[float] = None
    trend: Trend = Trend.NEUTRAL
    side: Optional[Side] = None
    source: DecisionSource = DecisionSource.RULES
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_actionable(self) -> bool:
        return self.action is not Action.HOLD

    def to_dict(self) -> Dict:
        return {
            'symbol': self.symbol,
            'action': self.action.value,
            'size': self.size_contracts,
            'leverage': self.leverage,
            'stop_loss': self.stop_loss_price,
            'trend': self.trend.value,
            'side': self.side.value if self.side else None,
            'source': self.source.value,
            'reasoning': self.reasoning,
            'timestamp': self.timestamp.isoformat(),
        }
