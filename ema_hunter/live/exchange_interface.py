"""Abstract exchange interfaces consumed by the trading core."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pandas as pd

from ..models import AccountSnapshot, InstrumentMeta, MarketSnapshot, Side


@dataclass
class OrderResult:
    """Result of an order execution."""
    success: bool
    order_id: Optional[str] = None
    fill_price: Optional[float] = None
    filled_size: Optional[float] = None
    error: Optional[str] = None


@dataclass
class OrderRequest:
    """A market order. Entries may carry an attached stop-loss."""
    symbol: str
    side: Side
    size: float
    reduce_only: bool = False
    stop_loss_price: Optional[float] = None
    order_type: str = "market"


class MarketDataProvider(ABC):
    """Market data source. Implement for each exchange."""

    @abstractmethod
    def get_market_snapshot(self, symbol: str) -> MarketSnapshot:
        """Ticker, 1H and 3m candles, funding, open interest and depth.

        Raises:
            DataUnavailable: If the symbol cannot be fetched this time
        """
        pass

    @abstractmethod
    def get_instrument(self, symbol: str) -> Optional[InstrumentMeta]:
        """Lot/tick constraints. None for unknown symbols."""
        pass


class AccountDataProvider(ABC):
    """Account state source."""

    @abstractmethod
    def get_account(self) -> AccountSnapshot:
        """Equity and open positions with attached stop/take prices.

        Raises:
            CredentialMissing: If the account cannot be authenticated
        """
        pass


class OrderExecutionProvider(ABC):
    """Order routing. Implement for each exchange."""

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: float, side: Side) -> OrderResult:
        pass

    @abstractmethod
    def place_market_order(self, request: OrderRequest) -> OrderResult:
        """Market order; fills report average price and size."""
        pass

    @abstractmethod
    def place_conditional_order(
        self,
        symbol: str,
        side: Side,
        size: float,
        take_profit_price: Optional[float] = None,
        stop_loss_price: Optional[float] = None,
    ) -> OrderResult:
        """Reduce-only conditional exit for a position side."""
        pass

    @abstractmethod
    def cancel_conditional_orders(self, symbol: str, side: Side, stop_loss_only: bool = True) -> OrderResult:
        """Cancel pending conditional exits for a position side."""
        pass

    @abstractmethod
    def place_trailing_stop(
        self,
        symbol: str,
        side: Side,
        size: float,
        activation_price: float,
        callback_ratio: float,
    ) -> OrderResult:
        """Reduce-only trailing stop activated at ``activation_price``."""
        pass

    @abstractmethod
    def close_position(self, symbol: str, side: Side) -> OrderResult:
        """Close a position side outright at market."""
        pass


class HistoricalDataProvider(ABC):
    """Historical candle source for backtests."""

    @abstractmethod
    def get_history(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> Optional[pd.DataFrame]:
        """OHLCV candles in [start, end], ascending, UTC DatetimeIndex."""
        pass

    @abstractmethod
    def get_instrument(self, symbol: str) -> Optional[InstrumentMeta]:
        pass
