"""
Transaction Cost Model

Taker-fee economics for perpetual swaps:
- Fee per fill (notional * taker rate)
- Round-trip fee expressed as margin ROI
- Fee-adjusted breakeven price
"""

from loguru import logger

from ..models import Side

TAKER_FEE_RATE = 0.0005


class TransactionCostModel:
    """
    Model trading costs for perpetual futures.

    Both entry and exit are assumed to be taker (market / triggered) fills.
    """

    def __init__(self, taker_fee_rate: float = TAKER_FEE_RATE, cost_multiplier: float = 1.0):
        """
        Initialize transaction cost model.

        Args:
            taker_fee_rate: Fee per fill as fraction of notional
            cost_multiplier: Multiply all costs (for stress testing, e.g., 1.5 = +50% costs)
        """
        if taker_fee_rate < 0:
            raise ValueError(f"taker_fee_rate must be >= 0, got {taker_fee_rate}")
        self.taker_fee_rate = taker_fee_rate * cost_multiplier
        self.cost_multiplier = cost_multiplier

        logger.debug(f"Initialized transaction cost model: taker={self.taker_fee_rate:.5f}")

    def fee(self, notional: float) -> float:
        """Fee in quote currency for one fill of the given notional."""
        return abs(notional) * self.taker_fee_rate

    def round_trip_rate(self) -> float:
        """Entry plus exit fee as fraction of notional."""
        return self.taker_fee_rate * 2

    def round_trip_roi(self, leverage: float) -> float:
        """Entry plus exit fee expressed as margin ROI at the given leverage."""
        return self.round_trip_rate() * leverage

    def net_roi(self, unrealized_roi: float) -> float:
        """
        Unrealized ROI net of round-trip fees.

        Exchange-reported uplRatio is already margin-based; the fee haircut is
        applied as a flat round-trip rate, matching how the breakeven trigger
        is configured.
        """
        return unrealized_roi - self.round_trip_rate()

    def breakeven_price(self, entry_price: float, side: Side) -> float:
        """
        Exit price at which a position nets zero after entry and exit fees.

        Args:
            entry_price: Average entry price
            side: Position side

        Returns:
            Fee-adjusted breakeven price
        """
        rate = self.taker_fee_rate
        if side is Side.LONG:
            return entry_price * (1 + rate) / (1 - rate)
        return entry_price * (1 - rate) / (1 + rate)

    def __repr__(self) -> str:
        return f"TransactionCostModel(taker={self.taker_fee_rate}, multiplier={self.cost_multiplier})"
