"""Paper exchange for offline trading. No real orders placed.

Replays stored 3m candles (parquet or CSV under ``data_dir``) one bar per
market snapshot request, and keeps virtual hedge-mode positions with
attached stop-loss, take-profit legs and trailing stops. Implements every
provider interface so the live loop and the backtester can run without
network access.
"""
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
from loguru import logger

from ..errors import DataUnavailable
from ..models import AccountSnapshot, CANDLE_COLUMNS, InstrumentMeta, MarketSnapshot, PositionSnapshot, Side
from ..risk.transaction_costs import TransactionCostModel
from ..strategies.indicators import completed_bars, enrich_with_ema, resample_ohlcv
from ..utils.helpers import parse_date, timeframe_to_offset, timeframe_to_timedelta
from .exchange_interface import (
    AccountDataProvider, HistoricalDataProvider, MarketDataProvider,
    OrderExecutionProvider, OrderRequest, OrderResult,
)


@dataclass
class PaperPosition:
    """One virtual position side with its pending exits."""
    symbol: str
    side: Side
    size: float
    entry_price: float
    leverage: float
    stop_loss: Optional[float] = None
    take_profits: List[Tuple[float, float]] = field(default_factory=list)
    trailing: Optional[Dict] = None
    realized_pnl: float = 0.0


class PaperExchange(MarketDataProvider, AccountDataProvider, OrderExecutionProvider, HistoricalDataProvider):
    """File-backed simulated exchange."""

    def __init__(
        self,
        instruments: Dict[str, InstrumentMeta],
        initial_balance: float = 1000.0,
        data_dir: str = "data/candles",
        cost_model: Optional[TransactionCostModel] = None,
        lower_timeframe: str = "3m",
        higher_timeframe: str = "1H",
        candle_count: int = 300,
        fast_period: int = 15,
        slow_period: int = 60,
        frames: Optional[Dict[str, pd.DataFrame]] = None,
    ):
        self.instruments = dict(instruments)
        self.initial_balance = initial_balance
        self.cash_balance = initial_balance
        self.data_dir = Path(data_dir)
        self.cost_model = cost_model or TransactionCostModel()
        self.lower_timeframe = lower_timeframe
        self.higher_timeframe = higher_timeframe
        self.candle_count = candle_count
        self.fast_period = fast_period
        self.slow_period = slow_period

        self.positions: Dict[Tuple[str, Side], PaperPosition] = {}
        self.closed_trades: List[Dict] = []
        self.leverage: Dict[str, float] = {}

        self._candle_cache: Dict[str, pd.DataFrame] = {}
        self._cursor: Dict[str, int] = {}
        self._lock = threading.RLock()

        for symbol, frame in (frames or {}).items():
            self._candle_cache[f"{symbol}_{lower_timeframe}"] = self._normalize(frame)

    # ------------------------------------------------------------------ data

    def _normalize(self, df: pd.DataFrame) -> pd.DataFrame:
        if not isinstance(df.index, pd.DatetimeIndex):
            for col in ('timestamp', 'time'):
                if col in df.columns:
                    df = df.set_index(pd.to_datetime(df[col], utc=True)).drop(columns=[col])
                    break
        if df.index.tz is None:
            df.index = df.index.tz_localize('UTC')
        return df[CANDLE_COLUMNS].astype(float).sort_index()

    def _load_candles(self, symbol: str, timeframe: str) -> Optional[pd.DataFrame]:
        cache_key = f"{symbol}_{timeframe}"
        if cache_key not in self._candle_cache:
            for suffix, reader in (('.parquet', pd.read_parquet), ('.csv', pd.read_csv)):
                path = self.data_dir / f"{symbol}_{timeframe}{suffix}"
                if path.exists():
                    logger.debug(f"Loading candles from {path}")
                    self._candle_cache[cache_key] = self._normalize(reader(path))
                    break
            else:
                return None
        return self._candle_cache[cache_key]

    def _lower(self, symbol: str) -> pd.DataFrame:
        df = self._load_candles(symbol, self.lower_timeframe)
        if df is None or len(df) == 0:
            raise DataUnavailable(symbol, f"no {self.lower_timeframe} candles in {self.data_dir}")
        return df

    def current_bar(self, symbol: str) -> pd.Series:
        """Bar at the replay cursor, without advancing."""
        df = self._lower(symbol)
        idx = self._cursor.get(symbol, min(self.candle_count, len(df) - 1))
        return df.iloc[idx]

    def advance(self, symbol: str) -> pd.Series:
        """Move the replay cursor one bar forward and settle pending exits on it."""
        with self._lock:
            df = self._lower(symbol)
            if symbol not in self._cursor:
                idx = min(self.candle_count, len(df) - 1)
            else:
                idx = self._cursor[symbol] + 1
            if idx >= len(df):
                raise DataUnavailable(symbol, "paper replay finished")
            self._cursor[symbol] = idx
            bar = df.iloc[idx]
            self._settle_bar(symbol, bar)
            return bar

    def get_market_snapshot(self, symbol: str) -> MarketSnapshot:
        bar = self.advance(symbol)
        df = self._lower(symbol)
        idx = self._cursor[symbol]
        as_of = df.index[idx] + timeframe_to_timedelta(self.lower_timeframe)

        lower = df.iloc[max(0, idx + 1 - self.candle_count):idx + 1]
        higher = completed_bars(
            resample_ohlcv(df.iloc[:idx + 1], timeframe_to_offset(self.higher_timeframe)),
            as_of,
            timeframe_to_timedelta(self.higher_timeframe),
        ).tail(self.candle_count)

        instrument = self.instruments.get(symbol)
        tick = instrument.tick_size if instrument else 0.0
        price = float(bar['close'])
        return MarketSnapshot(
            symbol=symbol,
            price=price,
            higher_tf=enrich_with_ema(higher, self.fast_period, self.slow_period),
            lower_tf=enrich_with_ema(lower, self.fast_period, self.slow_period),
            bids=[(price - tick, float(bar['volume']))],
            asks=[(price + tick, float(bar['volume']))],
            timestamp=df.index[idx].to_pydatetime(),
        )

    def get_instrument(self, symbol: str) -> Optional[InstrumentMeta]:
        return self.instruments.get(symbol)

    def get_history(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> Optional[pd.DataFrame]:
        df = self._load_candles(symbol, timeframe)
        if df is None and timeframe != self.lower_timeframe:
            lower = self._load_candles(symbol, self.lower_timeframe)
            if lower is not None:
                df = resample_ohlcv(lower, timeframe_to_offset(timeframe))
        if df is None:
            return None
        window = df[(df.index >= parse_date(start)) & (df.index <= parse_date(end))]
        return window if len(window) else None

    # ------------------------------------------------------------------ account

    def _mark(self, pos: PaperPosition) -> Tuple[float, float]:
        """Unrealized P&L and ROI on margin at the cursor price."""
        price = float(self.current_bar(pos.symbol)['close'])
        ct_val = self.instruments[pos.symbol].contract_value
        pnl = (price - pos.entry_price) * pos.size * ct_val * pos.side.sign
        margin = pos.entry_price * pos.size * ct_val / pos.leverage
        return pnl, (pnl / margin if margin else 0.0)

    def get_account(self) -> AccountSnapshot:
        with self._lock:
            snapshots = []
            equity = self.cash_balance
            for pos in self.positions.values():
                pnl, roi = self._mark(pos)
                equity += pnl
                tp = min((p for p, _ in pos.take_profits), default=None, key=lambda p: abs(p - pos.entry_price))
                snapshots.append(PositionSnapshot(
                    symbol=pos.symbol, side=pos.side, size=pos.size, avg_price=pos.entry_price,
                    unrealized_roi=roi, leverage=pos.leverage, unrealized_pnl=pnl,
                    stop_loss_price=pos.stop_loss, take_profit_price=tp,
                ))
            return AccountSnapshot(
                equity=equity,
                available_equity=equity,
                positions=snapshots,
                timestamp=datetime.now(timezone.utc),
            )

    # ------------------------------------------------------------------ orders

    def set_leverage(self, symbol: str, leverage: float, side: Side) -> OrderResult:
        if symbol not in self.instruments:
            return OrderResult(success=False, error=f"Unknown instrument {symbol}")
        self.leverage[symbol] = leverage
        return OrderResult(success=True)

    def place_market_order(self, request: OrderRequest) -> OrderResult:
        with self._lock:
            symbol = request.symbol
            if symbol not in self.instruments:
                return OrderResult(success=False, error=f"Unknown instrument {symbol}")
            try:
                price = float(self.current_bar(symbol)['close'])
            except DataUnavailable as e:
                return OrderResult(success=False, error=str(e))

            key = (symbol, request.side)
            pos = self.positions.get(key)
            if request.reduce_only:
                if pos is None:
                    return OrderResult(success=False, error=f"No {request.side.value} position on {symbol}")
                self._close(pos, min(request.size, pos.size), price, "Reduce")
                return OrderResult(success=True, order_id=self._order_id(), fill_price=price,
                                   filled_size=request.size)

            ct_val = self.instruments[symbol].contract_value
            self.cash_balance -= self.cost_model.fee(price * request.size * ct_val)
            if pos is None:
                pos = PaperPosition(symbol, request.side, request.size, price, self.leverage.get(symbol, 1.0))
                self.positions[key] = pos
            else:
                total = pos.size + request.size
                pos.entry_price = (pos.entry_price * pos.size + price * request.size) / total
                pos.size = total
            if request.stop_loss_price is not None:
                pos.stop_loss = request.stop_loss_price

            order_id = self._order_id()
            logger.debug(f"Paper fill {order_id}: {request.side.value} {request.size} {symbol} @ {price}")
            return OrderResult(success=True, order_id=order_id, fill_price=price, filled_size=request.size)

    def place_conditional_order(self, symbol: str, side: Side, size: float,
                                take_profit_price: Optional[float] = None,
                                stop_loss_price: Optional[float] = None) -> OrderResult:
        with self._lock:
            pos = self.positions.get((symbol, side))
            if pos is None:
                return OrderResult(success=False, error=f"No {side.value} position on {symbol}")
            if stop_loss_price is not None:
                pos.stop_loss = stop_loss_price
            if take_profit_price is not None:
                pos.take_profits.append((take_profit_price, size))
            return OrderResult(success=True, order_id=self._order_id())

    def cancel_conditional_orders(self, symbol: str, side: Side, stop_loss_only: bool = True) -> OrderResult:
        with self._lock:
            pos = self.positions.get((symbol, side))
            if pos is None:
                return OrderResult(success=False, error=f"No {side.value} position on {symbol}")
            pos.stop_loss = None
            if not stop_loss_only:
                pos.take_profits.clear()
                pos.trailing = None
            return OrderResult(success=True)

    def place_trailing_stop(self, symbol: str, side: Side, size: float,
                            activation_price: float, callback_ratio: float) -> OrderResult:
        with self._lock:
            pos = self.positions.get((symbol, side))
            if pos is None:
                return OrderResult(success=False, error=f"No {side.value} position on {symbol}")
            pos.trailing = {
                'size': size,
                'activation': activation_price,
                'callback': callback_ratio,
                'active': False,
                'extreme': None,
            }
            return OrderResult(success=True, order_id=self._order_id())

    def close_position(self, symbol: str, side: Side) -> OrderResult:
        with self._lock:
            pos = self.positions.get((symbol, side))
            if pos is None:
                return OrderResult(success=False, error=f"No {side.value} position on {symbol}")
            price = float(self.current_bar(symbol)['close'])
            size = pos.size
            self._close(pos, size, price, "Manual close")
            return OrderResult(success=True, order_id=self._order_id(), fill_price=price, filled_size=size)

    # ------------------------------------------------------------------ settlement

    def _settle_bar(self, symbol: str, bar: pd.Series):
        """Check stops, take-profit legs and trailing stops against one bar.

        The stop is checked first, so a bar touching both is a loss. A bar
        that opens beyond the stop fills it at the open.
        """
        for side in (Side.LONG, Side.SHORT):
            pos = self.positions.get((symbol, side))
            if pos is None:
                continue
            high, low = float(bar['high']), float(bar['low'])
            adverse = low if side is Side.LONG else high
            favourable = high if side is Side.LONG else low

            if pos.stop_loss is not None and (adverse - pos.stop_loss) * side.sign <= 0:
                open_ = float(bar['open'])
                fill = pos.stop_loss if (open_ - pos.stop_loss) * side.sign >= 0 else open_
                self._close(pos, pos.size, fill, "Stop Loss")
                continue

            for leg in list(pos.take_profits):
                price, size = leg
                if (favourable - price) * side.sign >= 0 and pos.size > 0:
                    pos.take_profits.remove(leg)
                    self._close(pos, min(size, pos.size), price, "Take Profit")

            trail = pos.trailing
            if trail is None or pos.size <= 0:
                continue
            if not trail['active'] and (favourable - trail['activation']) * side.sign >= 0:
                trail['active'] = True
                trail['extreme'] = favourable
            if trail['active']:
                if (favourable - trail['extreme']) * side.sign > 0:
                    trail['extreme'] = favourable
                trigger = trail['extreme'] * (1 - trail['callback'] * side.sign)
                if (adverse - trigger) * side.sign <= 0:
                    pos.trailing = None
                    self._close(pos, min(trail['size'], pos.size), trigger, "Trailing Stop")

    def _close(self, pos: PaperPosition, size: float, price: float, reason: str):
        ct_val = self.instruments[pos.symbol].contract_value
        gross = (price - pos.entry_price) * size * ct_val * pos.side.sign
        fee = self.cost_model.fee(price * size * ct_val)
        self.cash_balance += gross - fee
        pos.size = round(pos.size - size, 10)
        pos.realized_pnl += gross - fee

        self.closed_trades.append({
            'symbol': pos.symbol,
            'side': pos.side.value,
            'size': size,
            'entry_price': pos.entry_price,
            'exit_price': price,
            'exit_time': datetime.now(timezone.utc),
            'net_pnl': gross - fee,
            'exit_reason': reason,
        })
        logger.debug(f"Paper {reason.lower()}: {pos.symbol} {pos.side.value} {size} @ {price} ({gross - fee:+.4f})")
        if pos.size <= 0:
            del self.positions[(pos.symbol, pos.side)]

    @staticmethod
    def _order_id() -> str:
        return str(uuid.uuid4())[:8]
