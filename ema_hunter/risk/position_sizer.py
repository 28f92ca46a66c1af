"""
Position Sizer

Margin-based contract sizing for leveraged perpetual swaps.
"""

import math

from loguru import logger

from ..errors import SizingDegenerate
from ..models import InstrumentMeta


class PositionSizer:
    """
    Convert a risk fraction of equity into an integer contract count.

    marginPerContract = contract_value * price / leverage
    targetMargin      = equity * risk_fraction
    contracts         = floor(targetMargin / marginPerContract)
    """

    def __init__(self, risk_fraction: float, leverage: float):
        """
        Initialize position sizer.

        Args:
            risk_fraction: Share of equity committed as margin per entry (0.15 = 15%)
            leverage: Leverage applied to the position
        """
        if risk_fraction < 0:
            raise ValueError(f"risk_fraction must be >= 0, got {risk_fraction}")
        if leverage <= 0:
            raise ValueError(f"leverage must be positive, got {leverage}")
        self.risk_fraction = risk_fraction
        self.leverage = leverage

    def margin_per_contract(self, price: float, contract_value: float) -> float:
        return contract_value * price / self.leverage

    def calculate_contracts(self, equity: float, price: float, contract_value: float) -> int:
        """
        Calculate contract count.

        Args:
            equity: Account equity in quote currency
            price: Current price
            contract_value: Underlying units per contract

        Returns:
            Non-negative integer contract count
        """
        if equity <= 0 or price <= 0 or contract_value <= 0:
            return 0

        target_margin = equity * self.risk_fraction
        per_contract = self.margin_per_contract(price, contract_value)
        # Guard against 2.9999999 from float division
        contracts = math.floor(target_margin / per_contract + 1e-9)

        logger.debug(
            f"Position sizing: margin=${target_margin:.2f}, "
            f"per_contract=${per_contract:.4f}, contracts={contracts}"
        )
        return max(contracts, 0)

    def size_for(self, instrument: InstrumentMeta, equity: float, price: float) -> int:
        """
        Calculate an executable contract count for an instrument.

        Raises:
            SizingDegenerate: If the count is zero or below the instrument minimum
        """
        contracts = self.calculate_contracts(equity, price, instrument.contract_value)
        if contracts <= 0 or contracts < instrument.min_size:
            raise SizingDegenerate(instrument.symbol, contracts, instrument.min_size)
        return contracts

    def __repr__(self) -> str:
        return f"PositionSizer(risk={self.risk_fraction*100}%, leverage={self.leverage}x)"
