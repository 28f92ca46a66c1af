"""Decision engine: one decision per symbol per scan.

Per-symbol state machine:
- NO_POSITION + entry signal            -> BUY / SELL
- POSITIONED + trend against the side   -> CLOSE
- POSITIONED + net ROI >= trigger, key unprotected -> UPDATE_TPSL (breakeven)
- POSITIONED otherwise                  -> HOLD

Used unchanged by the live scheduler and the backtest simulator, which
runs it in technical-only mode (no advisory call).
"""
from dataclasses import replace
from typing import Optional

from loguru import logger

from ..errors import AdvisoryFailure
from ..models import (
    Action, Decision, DecisionSource, MarketSnapshot, PositionSnapshot,
    Side, StrategyConfig, Trend,
)
from ..risk.protection_registry import ProtectionRegistry
from ..risk.transaction_costs import TransactionCostModel
from ..strategies.signal_analyzer import analyze_entry, analyze_trend, hard_stop_price
from .advisory import AdvisoryProvider, allowed_actions, build_prompt, parse_advice


class DecisionEngine:
    """Combines the signal analyzer, fee model and protection registry.

    The only side effect is registry mutation when a breakeven move is
    emitted.
    """

    def __init__(
        self,
        strategy: StrategyConfig,
        registry: ProtectionRegistry,
        cost_model: Optional[TransactionCostModel] = None,
        advisory: Optional[AdvisoryProvider] = None,
    ):
        self.strategy = strategy
        self.registry = registry
        self.cost_model = cost_model or TransactionCostModel()
        self.advisory = advisory

    def check_breakeven(self, position: PositionSnapshot, trend: Trend = Trend.NEUTRAL) -> Optional[Decision]:
        """Emit UPDATE_TPSL once per open position when net ROI reaches the trigger.

        The registry claim happens here, so repeated calls for the same open
        position return None after the first hit.
        """
        net_roi = self.cost_model.net_roi(position.unrealized_roi)
        if net_roi < self.strategy.breakeven_trigger_roi:
            return None
        if not self.registry.claim(position.key):
            return None

        stop = self.cost_model.breakeven_price(position.avg_price, position.side)
        return Decision(
            symbol=position.symbol,
            action=Action.UPDATE_TPSL,
            reasoning=(
                f"Net ROI {net_roi:.2%} >= {self.strategy.breakeven_trigger_roi:.2%}, "
                f"moving stop to breakeven {stop:.6g}"
            ),
            size_contracts=position.size,
            leverage=position.leverage,
            stop_loss_price=stop,
            trend=trend,
            side=position.side,
        )

    def rule_decision(self, symbol: str, market: Optional[MarketSnapshot],
                      position: Optional[PositionSnapshot]) -> Decision:
        """Rule-based decision, no advisory involvement."""
        leverage = self.strategy.leverage
        if market is None:
            return Decision(symbol=symbol, action=Action.HOLD,
                            reasoning="No market data this scan", leverage=leverage)

        trend = analyze_trend(market.higher_tf, market.lower_tf, self.strategy.trend_tolerance)

        if position is not None:
            against = (
                (position.side is Side.LONG and trend.direction is Trend.DOWN)
                or (position.side is Side.SHORT and trend.direction is Trend.UP)
            )
            if against:
                return Decision(
                    symbol=symbol, action=Action.CLOSE,
                    reasoning=f"{trend.description}: trend reversed against {position.side.value} position",
                    size_contracts=position.size, leverage=position.leverage, trend=trend.direction,
                    side=position.side,
                )

            breakeven = self.check_breakeven(position, trend.direction)
            if breakeven is not None:
                return breakeven

            net_roi = self.cost_model.net_roi(position.unrealized_roi)
            if position.key in self.registry:
                reason = f"Holding with breakeven lock active (net ROI {net_roi:.2%})"
            else:
                reason = f"Holding, waiting for targets (net ROI {net_roi:.2%})"
            return Decision(symbol=symbol, action=Action.HOLD, reasoning=reason,
                            size_contracts=position.size, leverage=position.leverage,
                            trend=trend.direction, side=position.side)

        entry = analyze_entry(
            market.lower_tf, trend.direction, market.price,
            leverage, self.strategy.initial_stop_loss_roi,
        )
        if entry.signal:
            return Decision(
                symbol=symbol, action=entry.action, reasoning=entry.reason,
                leverage=leverage, stop_loss_price=entry.stop_loss_price, trend=trend.direction,
            )
        return Decision(
            symbol=symbol, action=Action.HOLD,
            reasoning=f"{trend.description}; {entry.reason}",
            leverage=leverage, trend=trend.direction,
        )

    def decide(self, symbol: str, market: Optional[MarketSnapshot],
               position: Optional[PositionSnapshot], use_advisory: bool = True) -> Decision:
        """Final decision for one symbol.

        With an advisory provider configured and ``use_advisory`` set, the
        rule decision is sent as a recommendation and the reply may replace
        it. Breakeven moves are never overridden. Any advisory problem falls
        back to the rule decision, tagged as such.
        """
        decision = self.rule_decision(symbol, market, position)
        if (not use_advisory or self.advisory is None or market is None
                or decision.action is Action.UPDATE_TPSL):
            return decision

        try:
            prompt = build_prompt(self.strategy, market, position, decision)
            advice = parse_advice(self.advisory.advise(prompt['system'], prompt['user']))
            if advice.action not in allowed_actions(position):
                state = "flat" if position is None else f"{position.side.value}"
                raise AdvisoryFailure(f"advisory action {advice.action.value} rejected while {state}")
        except AdvisoryFailure as e:
            return self._fallback(decision, str(e))
        except Exception as e:
            return self._fallback(decision, f"advisory unavailable: {e}")

        stop = decision.stop_loss_price
        if advice.action in (Action.BUY, Action.SELL):
            stop = self._validated_stop(advice.action, market.price, advice.stop_loss_price)

        return replace(
            decision,
            action=advice.action,
            reasoning=advice.reasoning or f"Advisory {advice.action.value}",
            stop_loss_price=stop,
            source=DecisionSource.ADVISORY,
        )

    def _validated_stop(self, action: Action, price: float, proposed: Optional[float]) -> float:
        """Advisory stop if it sits on the losing side of price, else the hard stop."""
        if proposed is not None:
            if (action is Action.BUY and proposed < price) or (action is Action.SELL and proposed > price):
                return proposed
        return hard_stop_price(price, action, self.strategy.leverage, self.strategy.initial_stop_loss_roi)

    def _fallback(self, decision: Decision, why: str) -> Decision:
        logger.warning(f"{decision.symbol}: {why}, using rule-based decision")
        return replace(
            decision,
            reasoning=f"[fallback] {why}; {decision.reasoning}",
            source=DecisionSource.FALLBACK,
        )
