from dataclasses import replace

import pytest

from ema_hunter.errors import DataUnavailable, ExecutionFailure, SizingDegenerate
from ema_hunter.live.exchange_interface import OrderResult
from ema_hunter.live.executor import TradeExecutor
from ema_hunter.models import AccountSnapshot, Action, Decision, Side, StrategyConfig


@pytest.fixture
def executor(exchange):
    return TradeExecutor(exchange, exchange, StrategyConfig())


def buy(symbol='ETH', stop=109.7251):
    return Decision(symbol=symbol, action=Action.BUY, reasoning="test", leverage=20, stop_loss_price=stop)


def flat_account(equity=1000.0):
    return AccountSnapshot(equity=equity, available_equity=equity)


def test_entry_sets_leverage_then_market_order_then_ladder(executor, exchange, make_market):
    market = make_market(direction="up", price=110.0)
    decision = buy()

    executor.execute(decision, market, flat_account())

    names = exchange.names()
    assert names[:2] == ['set_leverage', 'place_market_order']
    assert names.count('place_conditional_order') == 3
    assert names[-1] == 'place_trailing_stop'

    # 150 margin / (0.1 * 110 / 20) per contract
    assert decision.size_contracts == 272
    request = exchange.calls[1][1][0]
    assert request.side is Side.LONG
    assert request.size == 272
    assert request.stop_loss_price == 109.73


def test_ladder_sizes_sum_to_filled_size(executor, exchange, make_market):
    executor.execute(buy(), make_market(direction="up", price=110.0), flat_account())

    tp_sizes = [c[1][2] for c in exchange.calls if c[0] == 'place_conditional_order']
    trail = [c for c in exchange.calls if c[0] == 'place_trailing_stop'][0]
    assert sum(tp_sizes) + trail[1][2] == 272
    assert all(c[2]['take_profit_price'] > 110.0
               for c in exchange.calls if c[0] == 'place_conditional_order')
    assert trail[1][4] == 0.005


def test_rejected_entry_raises_and_places_no_exits(executor, exchange, make_market):
    exchange.failing.add('place_market_order')

    with pytest.raises(ExecutionFailure):
        executor.execute(buy(), make_market(direction="up"), flat_account())
    assert 'place_conditional_order' not in exchange.names()
    assert 'place_trailing_stop' not in exchange.names()


def test_rejected_leverage_stops_entry(executor, exchange, make_market):
    exchange.failing.add('set_leverage')
    with pytest.raises(ExecutionFailure):
        executor.execute(buy(), make_market(direction="up"), flat_account())
    assert 'place_market_order' not in exchange.names()


def test_rejected_ladder_leg_is_not_fatal(executor, exchange, make_market):
    exchange.failing.add('place_trailing_stop')
    result = executor.execute(buy(), make_market(direction="up"), flat_account())
    assert result.success


def test_tiny_account_raises_sizing_degenerate(executor, exchange, make_market):
    with pytest.raises(SizingDegenerate):
        executor.execute(buy(), make_market(direction="up", price=110.0), flat_account(equity=1.0))
    assert exchange.calls == []


def test_unknown_instrument_is_data_unavailable(executor, make_market):
    with pytest.raises(DataUnavailable):
        executor.execute(buy(symbol='DOGE'), make_market(symbol='DOGE'), flat_account())


def test_close_without_position_raises(executor, make_market):
    decision = Decision(symbol='ETH', action=Action.CLOSE, reasoning="reversal")
    with pytest.raises(DataUnavailable):
        executor.execute(decision, make_market(), flat_account())


def test_close_uses_position_side(executor, exchange, make_market, make_position):
    account = AccountSnapshot(1000.0, 1000.0, positions=[make_position(side=Side.SHORT)])
    decision = Decision(symbol='ETH', action=Action.CLOSE, reasoning="reversal")

    executor.execute(decision, make_market(), account)
    assert exchange.calls == [('close_position', ('ETH', Side.SHORT), {})]


def test_breakeven_update_cancels_then_places_stop(executor, exchange, make_market, make_position):
    account = AccountSnapshot(1000.0, 1000.0, positions=[make_position(size=7)])
    decision = Decision(symbol='ETH', action=Action.UPDATE_TPSL, reasoning="lock",
                        stop_loss_price=100.10006)

    executor.execute(decision, make_market(), account)

    assert exchange.names() == ['cancel_conditional_orders', 'place_conditional_order']
    name, args, kwargs = exchange.calls[1]
    assert args == ('ETH', Side.LONG, 7)
    assert kwargs['stop_loss_price'] == 100.1
    assert kwargs['take_profit_price'] is None


def test_reconfigure_picks_up_new_risk(executor, exchange, make_market):
    executor.configure(StrategyConfig(risk_fraction=0.05))
    decision = buy()
    executor.execute(decision, make_market(direction="up", price=110.0), flat_account())
    assert decision.size_contracts == 90


def test_rejected_breakeven_restores_previous_stop(executor, exchange, make_market, make_position, monkeypatch):
    account = AccountSnapshot(1000.0, 1000.0, positions=[replace(make_position(), stop_loss_price=98.0)])
    placed = []

    def place(symbol, side, size, take_profit_price=None, stop_loss_price=None):
        placed.append(stop_loss_price)
        return OrderResult(success=stop_loss_price == 98.0, error="trigger price invalid")

    monkeypatch.setattr(exchange, 'place_conditional_order', place)
    decision = Decision(symbol='ETH', action=Action.UPDATE_TPSL, reasoning="lock", stop_loss_price=100.1)

    with pytest.raises(ExecutionFailure):
        executor.execute(decision, make_market(), account)
    assert placed == [100.1, 98.0]


def test_close_targets_decision_side_in_hedge_mode(executor, exchange, make_market, make_position):
    account = AccountSnapshot(1000.0, 1000.0, positions=[
        make_position(side=Side.LONG), make_position(side=Side.SHORT),
    ])
    decision = Decision(symbol='ETH', action=Action.CLOSE, reasoning="reversal", side=Side.SHORT)

    executor.execute(decision, make_market(), account)
    assert exchange.calls == [('close_position', ('ETH', Side.SHORT), {})]
