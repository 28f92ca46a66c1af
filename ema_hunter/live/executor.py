"""Trade executor: maps decisions onto order execution calls.

- BUY/SELL: size, set leverage, market order with attached hard stop,
  then the take-profit / trailing-stop exit ladder
- CLOSE: close the position side outright
- UPDATE_TPSL: replace the position's stop-loss with the breakeven stop
"""
from typing import List, Optional

from loguru import logger

from ..errors import DataUnavailable, ExecutionFailure
from ..models import AccountSnapshot, Action, Decision, InstrumentMeta, MarketSnapshot, Side, StrategyConfig
from ..risk.exit_allocator import ExitAllocator, LegType
from ..risk.position_sizer import PositionSizer
from ..risk.transaction_costs import TransactionCostModel
from ..utils.helpers import round_to_step
from .exchange_interface import MarketDataProvider, OrderExecutionProvider, OrderRequest, OrderResult


class TradeExecutor:
    """Executes decisions against an OrderExecutionProvider."""

    def __init__(
        self,
        orders: OrderExecutionProvider,
        market: MarketDataProvider,
        strategy: StrategyConfig,
        cost_model: Optional[TransactionCostModel] = None,
    ):
        self.orders = orders
        self.market = market
        self.cost_model = cost_model or TransactionCostModel()
        self.configure(strategy)

    def configure(self, strategy: StrategyConfig):
        """Rebuild sizing and exit rules after a strategy change."""
        self.strategy = strategy
        self.sizer = PositionSizer(strategy.risk_fraction, strategy.leverage)
        self.allocator = ExitAllocator(
            strategy.take_profit_rois,
            strategy.take_profit_fractions,
            strategy.trailing_callback_ratio,
            self.cost_model,
        )

    def execute(self, decision: Decision, market: MarketSnapshot, account: AccountSnapshot) -> OrderResult:
        """Execute one actionable decision.

        Raises:
            SizingDegenerate: Entry would be zero or below minimum size
            ExecutionFailure: The provider rejected the order
            DataUnavailable: Instrument metadata or position missing
        """
        if decision.action in (Action.BUY, Action.SELL):
            return self._open(decision, market, account)

        position = account.position_for(decision.symbol, decision.side)
        if position is None:
            raise DataUnavailable(decision.symbol, f"no open position for {decision.action.value}")

        if decision.action is Action.CLOSE:
            result = self.orders.close_position(decision.symbol, position.side)
            self._check(decision.symbol, result, "close position")
            return result

        if decision.action is Action.UPDATE_TPSL:
            return self.move_stop(decision.symbol, position.side, position.size, decision.stop_loss_price,
                                  previous_stop=position.stop_loss_price)

        raise ValueError(f"Cannot execute {decision.action.value}")

    def move_stop(self, symbol: str, side: Side, size: float, stop_price: float,
                  previous_stop: Optional[float] = None) -> OrderResult:
        """Replace existing stop-loss orders on a position side with a new stop.

        If the new stop is rejected after the old one was cancelled,
        ``previous_stop`` (when known) is placed again before raising.
        """
        instrument = self.market.get_instrument(symbol)
        if instrument is not None:
            stop_price = round_to_step(stop_price, instrument.tick_size)

        cancelled = self.orders.cancel_conditional_orders(symbol, side, stop_loss_only=True)
        if not cancelled.success:
            logger.warning(f"{symbol}: could not cancel previous stop: {cancelled.error}")

        result = self.orders.place_conditional_order(symbol, side, size, stop_loss_price=stop_price)
        if not result.success and cancelled.success and previous_stop is not None:
            restored = self.orders.place_conditional_order(symbol, side, size, stop_loss_price=previous_stop)
            if restored.success:
                logger.warning(f"{symbol}: new stop rejected, previous stop {previous_stop} restored")
            else:
                logger.error(f"{symbol}: new stop rejected and previous stop could not be restored: {restored.error}")
        self._check(symbol, result, "stop-loss update")
        logger.info(f"{symbol} {side.value}: stop moved to {stop_price}")
        return result

    def _open(self, decision: Decision, market: MarketSnapshot, account: AccountSnapshot) -> OrderResult:
        instrument = self.market.get_instrument(decision.symbol)
        if instrument is None or not instrument.is_tradable:
            raise DataUnavailable(decision.symbol, "instrument metadata unavailable or not tradable")

        contracts = self.sizer.size_for(instrument, account.equity, market.price)
        decision.size_contracts = contracts
        side = Side.from_action(decision.action)

        lev = self.orders.set_leverage(decision.symbol, decision.leverage, side)
        self._check(decision.symbol, lev, f"set leverage {decision.leverage}x")

        stop = decision.stop_loss_price
        if stop is not None:
            stop = round_to_step(stop, instrument.tick_size)
        result = self.orders.place_market_order(OrderRequest(
            symbol=decision.symbol, side=side, size=contracts, stop_loss_price=stop,
        ))
        self._check(decision.symbol, result, f"{decision.action.value} {contracts}")

        fill_price = result.fill_price or market.price
        filled = result.filled_size or contracts
        self.place_exit_ladder(instrument, side, fill_price, filled, decision.leverage)
        return result

    def place_exit_ladder(self, instrument: InstrumentMeta, side: Side, entry_price: float,
                          size: float, leverage: float) -> List[OrderResult]:
        """Submit the executable legs of the exit plan; leg failures are logged, not raised."""
        plan = self.allocator.allocate(instrument, side, entry_price, size, leverage)
        results = []
        for leg in plan.legs:
            if not leg.executable:
                logger.debug(f"{instrument.symbol}: skipping {leg.leg_type.value} leg of {leg.size} (below minimum)")
                continue
            if leg.leg_type is LegType.TAKE_PROFIT:
                result = self.orders.place_conditional_order(
                    instrument.symbol, side, leg.size, take_profit_price=leg.trigger_price,
                )
            else:
                result = self.orders.place_trailing_stop(
                    instrument.symbol, side, leg.size, leg.trigger_price, leg.callback_ratio,
                )
            if not result.success:
                logger.warning(f"{instrument.symbol}: {leg.leg_type.value} leg rejected: {result.error}")
            results.append(result)
        return results

    @staticmethod
    def _check(symbol: str, result: OrderResult, what: str):
        if not result.success:
            raise ExecutionFailure(symbol, f"{what} failed: {result.error}")
