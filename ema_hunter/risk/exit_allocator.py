"""
Exit Allocator

Splits an open position into a tiered take-profit ladder plus a trailing
stop for whatever remains:

    leg 1..n   conditional take-profit at tier n's price
    last leg   trailing stop activated at the last tier's price

Sizes are allocated greedily: each tier takes max(fraction * total, min_size)
capped at the remaining size. Leg sizes always sum to the position size;
legs smaller than min_size are kept in the plan but flagged as not
executable.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence

from ..models import InstrumentMeta, Side
from ..utils.helpers import round_half_up, round_to_step
from .transaction_costs import TransactionCostModel


class LegType(Enum):
    """Exit leg order types"""
    TAKE_PROFIT = "TAKE_PROFIT"
    TRAILING_STOP = "TRAILING_STOP"


@dataclass(frozen=True)
class ExitLeg:
    """One reduce-only exit order."""
    leg_type: LegType
    size: float
    trigger_price: float
    executable: bool
    callback_ratio: float = 0.0


@dataclass
class ExitPlan:
    """All exit legs for one position."""
    symbol: str
    side: Side
    total_size: float
    legs: List[ExitLeg] = field(default_factory=list)

    @property
    def executable_legs(self) -> List[ExitLeg]:
        return [leg for leg in self.legs if leg.executable]

    @property
    def allocated_size(self) -> float:
        return sum(leg.size for leg in self.legs)


def tier_price(
    entry_price: float,
    side: Side,
    net_roi: float,
    leverage: float,
    cost_model: TransactionCostModel,
) -> float:
    """
    Price at which a position earns ``net_roi`` on margin after round-trip fees.

    grossROI = netROI + 2 * takerFee * leverage
    price    = entry * (1 +/- grossROI / leverage)
    """
    gross_roi = net_roi + cost_model.round_trip_roi(leverage)
    return entry_price * (1 + side.sign * gross_roi / leverage)


def split_sizes(
    total_size: float,
    fractions: Sequence[float],
    min_size: float,
    precision: int,
) -> List[float]:
    """
    Greedy remainder allocation.

    Args:
        total_size: Position size in contracts
        fractions: Intended share of the total for each tier
        min_size: Exchange minimum order size
        precision: Lot precision in decimal places

    Returns:
        len(fractions) + 1 sizes; the last one is the remainder
    """
    total = round_half_up(total_size, precision)
    remaining = total
    sizes = []

    for fraction in fractions:
        if remaining <= 0:
            sizes.append(0.0)
            continue
        intended = total * fraction
        size = min(max(intended, min_size), remaining)
        size = round_half_up(size, precision)
        remaining = round_half_up(remaining - size, precision)
        sizes.append(size)

    sizes.append(max(round_half_up(remaining, precision), 0.0))
    return sizes


class ExitAllocator:
    """Builds exit plans for freshly opened positions."""

    def __init__(
        self,
        take_profit_rois: Sequence[float],
        take_profit_fractions: Sequence[float],
        trailing_callback_ratio: float,
        cost_model: TransactionCostModel = None,
    ):
        if len(take_profit_rois) != len(take_profit_fractions):
            raise ValueError("take_profit_rois and take_profit_fractions must have equal length")
        if not take_profit_rois:
            raise ValueError("at least one take-profit tier is required")
        if list(take_profit_rois) != sorted(take_profit_rois):
            raise ValueError("take_profit_rois must be ascending")
        if any(f < 0 for f in take_profit_fractions) or sum(take_profit_fractions) > 1:
            raise ValueError("take_profit_fractions must be non-negative and sum to at most 1")

        self.take_profit_rois = list(take_profit_rois)
        self.take_profit_fractions = list(take_profit_fractions)
        self.trailing_callback_ratio = trailing_callback_ratio
        self.cost_model = cost_model or TransactionCostModel()

    def allocate(
        self,
        instrument: InstrumentMeta,
        side: Side,
        entry_price: float,
        total_size: float,
        leverage: float,
    ) -> ExitPlan:
        """
        Build the exit ladder for a position.

        Args:
            instrument: Lot/tick constraints
            side: Position side
            entry_price: Average fill price
            total_size: Position size in contracts
            leverage: Position leverage

        Returns:
            ExitPlan whose leg sizes sum to total_size
        """
        sizes = split_sizes(
            total_size,
            self.take_profit_fractions,
            instrument.min_size,
            instrument.lot_precision,
        )
        prices = [
            round_to_step(
                tier_price(entry_price, side, roi, leverage, self.cost_model),
                instrument.tick_size,
            )
            for roi in self.take_profit_rois
        ]

        plan = ExitPlan(symbol=instrument.symbol, side=side, total_size=total_size)
        for size, price in zip(sizes[:-1], prices):
            plan.legs.append(ExitLeg(
                leg_type=LegType.TAKE_PROFIT,
                size=size,
                trigger_price=price,
                executable=size > 0 and size >= instrument.min_size,
            ))

        remainder = sizes[-1]
        plan.legs.append(ExitLeg(
            leg_type=LegType.TRAILING_STOP,
            size=remainder,
            trigger_price=prices[-1],
            executable=remainder > 0 and remainder >= instrument.min_size,
            callback_ratio=self.trailing_callback_ratio,
        ))
        return plan
