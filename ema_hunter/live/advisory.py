"""
Advisory adapter: optional external decision service.

The rule engine's recommendation and a market snapshot are rendered into a
structured prompt. The provider's reply (a dict or JSON text) is parsed and
clamped to the actions that are valid for the current position state.
Anything unusable raises AdvisoryFailure so the caller can fall back.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Union

from ..errors import AdvisoryFailure
from ..models import Action, Decision, MarketSnapshot, PositionSnapshot, StrategyConfig

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


class AdvisoryProvider(ABC):
    """Abstract advisory service. Implement for each LLM/API vendor."""

    @abstractmethod
    def advise(self, system_prompt: str, user_prompt: str) -> Union[Dict, str]:
        """
        Ask the service for a decision.

        Returns:
            Decision-shaped dict, or text containing a JSON object
        """
        pass


@dataclass(frozen=True)
class Advice:
    """Parsed advisory reply."""
    action: Action
    reasoning: str
    stop_loss_price: Optional[float] = None


def build_prompt(
    strategy: StrategyConfig,
    market: MarketSnapshot,
    position: Optional[PositionSnapshot],
    recommendation: Decision,
) -> Dict[str, str]:
    """
    Render the system and user prompts for one symbol.

    Returns:
        {'system': ..., 'user': ...}
    """
    lower = market.lower_tf.iloc[-1] if len(market.lower_tf) else None
    higher = market.higher_tf.iloc[-1] if len(market.higher_tf) else None

    def _ema(row, col):
        if row is None or col not in row.index:
            return None
        return round(float(row[col]), 6)

    snapshot = {
        'symbol': market.symbol,
        'price': market.price,
        'funding_rate': market.funding_rate,
        'open_interest': market.open_interest,
        'ema_1h': {'fast': _ema(higher, 'ema_fast'), 'slow': _ema(higher, 'ema_slow')},
        'ema_3m': {'fast': _ema(lower, 'ema_fast'), 'slow': _ema(lower, 'ema_slow')},
        'position': None if position is None else {
            'side': position.side.value,
            'size': position.size,
            'avg_price': position.avg_price,
            'unrealized_roi': position.unrealized_roi,
        },
        'rule_engine': {
            'action': recommendation.action.value,
            'trend': recommendation.trend.value,
            'stop_loss': recommendation.stop_loss_price,
            'reasoning': recommendation.reasoning,
        },
    }
    user = (
        "Market snapshot and rule-engine recommendation:\n"
        f"{json.dumps(snapshot, indent=2)}\n\n"
        "Reply with a JSON object: "
        '{"action": "BUY|SELL|HOLD|CLOSE", "reasoning": "...", "stop_loss": <price or null>}'
    )
    return {'system': strategy.prompt_text, 'user': user}


def parse_advice(payload: Union[Dict, str]) -> Advice:
    """
    Parse a provider reply into Advice.

    Raises:
        AdvisoryFailure: If the payload carries no recognizable action
    """
    if isinstance(payload, str):
        match = _JSON_BLOCK.search(payload)
        if not match:
            raise AdvisoryFailure("advisory reply contains no JSON object")
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AdvisoryFailure(f"advisory reply is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise AdvisoryFailure(f"unexpected advisory payload type: {type(payload).__name__}")

    # Accept both flat and {"trading_decision": {...}} shapes
    nested = payload.get('trading_decision') or {}
    raw_action = payload.get('action') or nested.get('action')
    try:
        action = Action(str(raw_action).upper())
    except ValueError:
        raise AdvisoryFailure(f"unknown advisory action: {raw_action!r}")

    raw_sl = payload.get('stop_loss', nested.get('stop_loss'))
    try:
        stop_loss = float(raw_sl) if raw_sl not in (None, '', '0', 0) else None
    except (TypeError, ValueError):
        stop_loss = None

    return Advice(action=action, reasoning=str(payload.get('reasoning', '')).strip(), stop_loss_price=stop_loss)


def allowed_actions(position: Optional[PositionSnapshot]) -> set:
    """Actions an advisory reply may choose for the current position state."""
    if position is None:
        return {Action.BUY, Action.SELL, Action.HOLD}
    return {Action.HOLD, Action.CLOSE}
