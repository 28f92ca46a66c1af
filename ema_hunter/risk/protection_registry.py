"""
Protection Registry - breakeven lock bookkeeping

Remembers which (symbol, side) positions already had their stop moved to
breakeven, so the move fires at most once per open position no matter how
many scans see ROI above the trigger.

Lifecycle:
1. Key added when the breakeven action is emitted
2. Key kept while the position stays open
3. Key released on the next refresh if the stop update was rejected
4. Key pruned once the account no longer reports the position
5. Registry cleared on reset/stop
"""

from typing import Iterable, Set, Tuple

from loguru import logger

from ..models import Side

PositionKey = Tuple[str, Side]


class ProtectionRegistry:
    """Set of position keys already moved to breakeven."""

    def __init__(self):
        self._protected: Set[PositionKey] = set()

    def __contains__(self, key: PositionKey) -> bool:
        return key in self._protected

    def __len__(self) -> int:
        return len(self._protected)

    def __iter__(self):
        return iter(sorted(self._protected, key=lambda k: (k[0], k[1].value)))

    def claim(self, key: PositionKey) -> bool:
        """
        Mark a position as protected.

        Returns:
            True if the key was newly added, False if it was already protected
        """
        if key in self._protected:
            return False
        self._protected.add(key)
        logger.info(f"Breakeven lock armed for {key[0]} {key[1].value}")
        return True

    def release(self, key: PositionKey) -> bool:
        """
        Forget a claim whose stop update was never confirmed by the exchange.

        Returns:
            True if the key was protected
        """
        if key not in self._protected:
            return False
        self._protected.discard(key)
        logger.info(f"Breakeven lock released for {key[0]} {key[1].value}, will retry")
        return True

    def prune(self, open_keys: Iterable[PositionKey]) -> Set[PositionKey]:
        """
        Drop keys whose position is no longer open.

        Only call this with a complete, successfully fetched position list.

        Returns:
            The keys that were removed
        """
        still_open = set(open_keys)
        stale = self._protected - still_open
        if stale:
            self._protected &= still_open
            logger.debug(f"Pruned closed positions from protection registry: {sorted(k[0] for k in stale)}")
        return stale

    def clear(self) -> None:
        self._protected.clear()
        logger.info("Protection registry cleared")

    def __repr__(self) -> str:
        return f"ProtectionRegistry(protected={len(self._protected)})"
