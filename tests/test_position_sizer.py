import pytest

from ema_hunter.errors import SizingDegenerate
from ema_hunter.models import InstrumentMeta
from ema_hunter.risk.position_sizer import PositionSizer


def test_contracts_from_margin_budget():
    sizer = PositionSizer(risk_fraction=0.15, leverage=20)
    # margin per contract = 0.1 * 2000 / 20 = 10, budget = 150
    assert sizer.calculate_contracts(1000, 2000, 0.1) == 15


def test_contracts_floor_instead_of_round():
    sizer = PositionSizer(risk_fraction=0.15, leverage=20)
    assert sizer.calculate_contracts(1000, 2100, 0.1) == 14


def test_contracts_non_decreasing_in_equity():
    sizer = PositionSizer(risk_fraction=0.15, leverage=20)
    counts = [sizer.calculate_contracts(equity, 3000, 0.1) for equity in range(0, 5000, 37)]
    assert counts == sorted(counts)
    assert all(c >= 0 for c in counts)


def test_contracts_non_increasing_in_price():
    sizer = PositionSizer(risk_fraction=0.15, leverage=20)
    counts = [sizer.calculate_contracts(1000, price, 0.1) for price in range(100, 5000, 53)]
    assert counts == sorted(counts, reverse=True)


@pytest.mark.parametrize("equity,price,ct_val", [(0, 100, 1), (-5, 100, 1), (1000, 0, 1), (1000, 100, 0)])
def test_degenerate_inputs_give_zero(equity, price, ct_val):
    assert PositionSizer(0.15, 20).calculate_contracts(equity, price, ct_val) == 0


def test_size_for_raises_below_minimum():
    btc = InstrumentMeta('BTC', contract_value=0.01, tick_size=0.1, lot_size=1, min_size=1)
    sizer = PositionSizer(risk_fraction=0.15, leverage=20)

    with pytest.raises(SizingDegenerate) as exc:
        sizer.size_for(btc, equity=10, price=60000)
    assert exc.value.contracts == 0

    assert sizer.size_for(btc, equity=1000, price=60000) == 5


def test_invalid_leverage_rejected():
    with pytest.raises(ValueError):
        PositionSizer(0.15, 0)
