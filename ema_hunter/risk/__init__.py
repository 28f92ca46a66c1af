"""Risk management: fees, sizing, exit allocation and breakeven protection."""

from .transaction_costs import TAKER_FEE_RATE, TransactionCostModel
from .position_sizer import PositionSizer
from .exit_allocator import ExitAllocator, ExitLeg, ExitPlan, LegType
from .protection_registry import ProtectionRegistry

__all__ = [
    'TAKER_FEE_RATE',
    'TransactionCostModel',
    'PositionSizer',
    'ExitAllocator',
    'ExitLeg',
    'ExitPlan',
    'LegType',
    'ProtectionRegistry',
]
