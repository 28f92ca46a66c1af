import threading

import numpy as np
import pandas as pd
import pytest

from ema_hunter.errors import DataUnavailable
from ema_hunter.live.exchange_interface import (
    AccountDataProvider, MarketDataProvider, OrderExecutionProvider, OrderResult,
)
from ema_hunter.models import AccountSnapshot, InstrumentMeta, MarketSnapshot, PositionSnapshot, Side
from ema_hunter.strategies.indicators import enrich_with_ema


def candle_frame(closes, start="2024-01-01", freq="3min"):
    """OHLCV frame whose bars open at the previous close."""
    closes = np.asarray(closes, dtype=float)
    index = pd.date_range(start, periods=len(closes), freq=freq, tz="UTC")
    opens = np.concatenate([[closes[0]], closes[:-1]])
    return pd.DataFrame(
        {
            'open': opens,
            'high': np.maximum(opens, closes),
            'low': np.minimum(opens, closes),
            'close': closes,
            'volume': 1.0,
        },
        index=index,
    )


def market_snapshot(symbol="ETH", direction="up", price=None, bars=80):
    """Enriched snapshot whose 1H trend and 3m cross both point ``direction``."""
    if direction == "up":
        higher = np.linspace(90, 110, bars)
        lower = np.linspace(105, 110, bars)
    elif direction == "down":
        higher = np.linspace(110, 90, bars)
        lower = np.linspace(95, 90, bars)
    else:
        higher = np.full(bars, 100.0)
        lower = np.full(bars, 100.0)
    lower_tf = enrich_with_ema(candle_frame(lower))
    return MarketSnapshot(
        symbol=symbol,
        price=float(price if price is not None else lower[-1]),
        higher_tf=enrich_with_ema(candle_frame(higher, freq="1h")),
        lower_tf=lower_tf,
    )


def position(symbol="ETH", side=Side.LONG, size=10, avg_price=100.0, roi=0.0, leverage=20):
    return PositionSnapshot(
        symbol=symbol, side=side, size=size, avg_price=avg_price,
        unrealized_roi=roi, leverage=leverage,
    )


class FakeExchange(MarketDataProvider, AccountDataProvider, OrderExecutionProvider):
    """Records every call; individual methods can be made to fail."""

    def __init__(self, instruments, markets=None, account=None):
        self.instruments = instruments
        self.markets = dict(markets or {})
        self.account = account or AccountSnapshot(equity=1000.0, available_equity=1000.0)
        self.calls = []
        self.failing = set()
        self.market_errors = {}
        self.account_error = None
        self.account_gate = None
        self.entered = threading.Event()

    def names(self):
        return [c[0] for c in self.calls]

    def get_market_snapshot(self, symbol):
        self.calls.append(('get_market_snapshot', symbol))
        if symbol in self.market_errors:
            raise self.market_errors[symbol]
        if symbol not in self.markets:
            raise DataUnavailable(symbol, "no market")
        return self.markets[symbol]

    def get_instrument(self, symbol):
        return self.instruments.get(symbol)

    def get_account(self):
        self.calls.append(('get_account',))
        self.entered.set()
        if self.account_gate is not None:
            self.account_gate.wait(5)
        if self.account_error is not None:
            raise self.account_error
        return self.account

    def _order(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name in self.failing:
            return OrderResult(success=False, error=f"{name} rejected")
        return OrderResult(success=True, order_id=f"o{len(self.calls)}")

    def set_leverage(self, symbol, leverage, side):
        return self._order('set_leverage', symbol, leverage, side)

    def place_market_order(self, request):
        return self._order('place_market_order', request)

    def place_conditional_order(self, symbol, side, size, take_profit_price=None, stop_loss_price=None):
        return self._order('place_conditional_order', symbol, side, size,
                           take_profit_price=take_profit_price, stop_loss_price=stop_loss_price)

    def cancel_conditional_orders(self, symbol, side, stop_loss_only=True):
        return self._order('cancel_conditional_orders', symbol, side, stop_loss_only=stop_loss_only)

    def place_trailing_stop(self, symbol, side, size, activation_price, callback_ratio):
        return self._order('place_trailing_stop', symbol, side, size, activation_price, callback_ratio)

    def close_position(self, symbol, side):
        return self._order('close_position', symbol, side)


@pytest.fixture
def instruments():
    return {
        'BTC': InstrumentMeta('BTC', contract_value=0.01, tick_size=0.1, lot_size=1, min_size=1),
        'ETH': InstrumentMeta('ETH', contract_value=0.1, tick_size=0.01, lot_size=1, min_size=1),
    }


@pytest.fixture
def exchange(instruments):
    return FakeExchange(instruments)


@pytest.fixture
def make_candles():
    return candle_frame


@pytest.fixture
def make_market():
    return market_snapshot


@pytest.fixture
def make_position():
    return position
