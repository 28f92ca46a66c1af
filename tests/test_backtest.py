from datetime import timedelta

import numpy as np
import pandas as pd
import pytest

from ema_hunter.analytics.performance_metrics import PerformanceMetrics
from ema_hunter.backtesting.simulator import BacktestRequest, BacktestSimulator
from ema_hunter.errors import BacktestError
from ema_hunter.live.exchange_interface import HistoricalDataProvider
from ema_hunter.models import Side, StrategyConfig
from ema_hunter.risk.transaction_costs import TransactionCostModel
from ema_hunter.utils.helpers import parse_date

START_BAR = 1300
CRASH_BAR = START_BAR + 20


class FrameHistory(HistoricalDataProvider):
    def __init__(self, frames, instruments):
        self.frames = frames
        self.instruments = instruments
        self.requests = []

    def get_history(self, symbol, timeframe, start, end):
        self.requests.append((symbol, timeframe, start, end))
        frame = self.frames.get(symbol)
        if frame is None:
            return None
        return frame.loc[parse_date(start):parse_date(end)]

    def get_instrument(self, symbol):
        return self.instruments.get(symbol)


@pytest.fixture
def rising_with_crash(make_candles):
    """75 hours of steadily rising 3m bars with one deep wick after the start."""
    frame = make_candles(100.0 + 0.01 * np.arange(1500))
    frame.loc[frame.index[CRASH_BAR], 'low'] = 90.0
    return frame


@pytest.fixture
def simulator(rising_with_crash, instruments):
    return BacktestSimulator(FrameHistory({'ETH': rising_with_crash}, instruments), curve_points=50)


@pytest.fixture
def request_for(rising_with_crash):
    def _make(**overrides):
        fields = dict(
            symbol='ETH',
            start=rising_with_crash.index[START_BAR].to_pydatetime(),
            end=rising_with_crash.index[-1].to_pydatetime(),
            initial_balance=1000.0,
            strategy=StrategyConfig(),
        )
        fields.update(overrides)
        return BacktestRequest(**fields)
    return _make


def test_warmup_is_fetched_before_start(simulator, request_for):
    request = request_for()
    simulator.run(request)

    _, timeframe, start, _ = simulator.history.requests[0]
    assert timeframe == '3m'
    assert start == parse_date(request.start) - timedelta(hours=60)


def test_first_entry_and_stop_out(simulator, request_for, rising_with_crash):
    result = simulator.run(request_for())

    entry, exit_ = result.trades[0], result.trades[1]
    assert entry.type == 'BUY'
    assert entry.price == pytest.approx(rising_with_crash['close'].iloc[START_BAR])
    assert entry.contracts == 265

    assert exit_.type == 'CLOSE'
    assert exit_.reason == 'Stop loss'
    assert exit_.price == pytest.approx(entry.price * (1 - 0.05 / 20))
    assert exit_.timestamp == rising_with_crash.index[CRASH_BAR].to_pydatetime()
    assert exit_.profit < 0


def test_open_position_is_closed_at_end(simulator, request_for):
    result = simulator.run(request_for())

    last = result.trades[-1]
    assert last.type == 'CLOSE'
    assert last.reason == 'End of backtest'


def test_ledger_is_consistent(simulator, request_for):
    result = simulator.run(request_for())

    closes = [t for t in result.trades if t.type == 'CLOSE']
    assert result.total_trades == len(closes)
    assert result.final_balance == pytest.approx(1000.0 + sum(t.profit for t in closes))
    assert result.total_profit == pytest.approx(result.final_balance - 1000.0)
    assert result.fees_paid == pytest.approx(sum(t.fee for t in result.trades))
    assert 0.0 <= result.max_drawdown <= 1.0
    assert 0.0 <= result.win_rate <= 1.0


def test_reentry_after_wick_rides_to_end(simulator, request_for):
    result = simulator.run(request_for())

    # Breakeven stop sits below every later low
    reasons = [t.reason for t in result.trades if t.type == 'CLOSE']
    assert reasons == ['Stop loss', 'End of backtest']
    assert result.trades[-1].profit > 0


def test_equity_curve_is_decimated(simulator, request_for):
    result = simulator.run(request_for())

    assert 2 <= len(result.equity_curve) <= 52
    stamps = [s.timestamp for s in result.equity_curve]
    assert stamps == sorted(stamps)
    assert all(0.0 <= s.drawdown <= 1.0 for s in result.equity_curve)
    assert len(result.equity_frame()) == len(result.equity_curve)
    assert list(result.trades_frame()['type'][:2]) == ['BUY', 'CLOSE']


def test_runs_are_deterministic(simulator, request_for):
    first = simulator.run(request_for())
    second = simulator.run(request_for())

    assert first.trades == second.trades
    assert first.final_balance == second.final_balance


def test_flat_market_makes_no_trades(instruments, request_for, make_candles):
    flat = make_candles(np.full(1500, 100.0))
    simulator = BacktestSimulator(FrameHistory({'ETH': flat}, instruments))

    result = simulator.run(request_for())

    assert result.total_trades == 0
    assert result.trades == []
    assert result.final_balance == 1000.0
    assert result.profit_factor == 0.0


@pytest.mark.parametrize("overrides", [
    {'initial_balance': 0},
    {'symbol': 'DOGE'},
])
def test_invalid_requests_raise(simulator, request_for, overrides):
    with pytest.raises(BacktestError):
        simulator.run(request_for(**overrides))


def test_start_after_end_raises(simulator, request_for, rising_with_crash):
    request = request_for(start=rising_with_crash.index[-1], end=rising_with_crash.index[0])
    with pytest.raises(BacktestError):
        simulator.run(request)


def test_missing_history_raises(instruments, request_for):
    simulator = BacktestSimulator(FrameHistory({}, instruments))
    with pytest.raises(BacktestError):
        simulator.run(request_for())


def test_roi_projections_are_linear():
    index = pd.date_range('2024-01-01', periods=11, freq='D', tz='UTC')
    equity = pd.DataFrame({'equity': np.linspace(1000, 1100, 11)}, index=index)
    trades = pd.DataFrame({'profit': [60.0, -10.0, 50.0]})

    metrics = PerformanceMetrics(equity, trades, 1000.0).calculate_all_metrics()

    assert metrics['total_return'] == pytest.approx(0.1)
    assert metrics['weekly_roi'] == pytest.approx(0.07)
    assert metrics['monthly_roi'] == pytest.approx(0.30)
    assert metrics['annualized_roi'] == pytest.approx(3.65)
    assert metrics['win_rate'] == pytest.approx(2 / 3)
    assert metrics['profit_factor'] == pytest.approx(11.0)
    assert metrics['avg_loss'] == pytest.approx(10.0)
    assert metrics['max_drawdown'] == 0.0
    assert metrics['sharpe_ratio'] > 0


@pytest.fixture
def rising_frame(make_candles):
    """Same ramp and crash wick as ``rising_with_crash``, with closes editable before building."""
    def _make(closes=None):
        closes = 100.0 + 0.01 * np.arange(1500) if closes is None else closes
        frame = make_candles(closes)
        frame.loc[frame.index[CRASH_BAR], 'low'] = 90.0
        return frame
    return _make


def run_on(frame, instruments, request):
    return BacktestSimulator(FrameHistory({'ETH': frame}, instruments)).run(request)


def test_breakeven_stop_closes_at_breakeven_price(rising_frame, instruments, request_for):
    frame = rising_frame()
    frame.loc[frame.index[1450], 'low'] = 100.0

    result = run_on(frame, instruments, request_for())

    reentry = result.trades[2]
    assert reentry.type == 'BUY'
    closes = [t for t in result.trades if t.type == 'CLOSE']
    assert [t.reason for t in closes] == ['Stop loss', 'Breakeven stop', 'End of backtest']

    locked = closes[1]
    assert locked.timestamp == frame.index[1450].to_pydatetime()
    assert locked.price == pytest.approx(TransactionCostModel().breakeven_price(reentry.price, Side.LONG))
    assert locked.profit == pytest.approx(0.0, abs=1e-6)


def test_gap_through_stop_fills_at_open(rising_frame, instruments, request_for):
    closes = 100.0 + 0.01 * np.arange(1500)
    closes[1450:] = 80.0
    frame = rising_frame(closes)
    frame.loc[frame.index[1450], ['open', 'high']] = 80.0

    result = run_on(frame, instruments, request_for())

    gapped = next(t for t in result.trades if t.reason == 'Breakeven stop')
    assert gapped.timestamp == frame.index[1450].to_pydatetime()
    assert gapped.price == 80.0
    assert gapped.profit < 0


def test_stop_wins_over_reversal_on_the_same_bar(make_candles, instruments, request_for):
    # 5x with a wide stop: the step down flips the 1H trend without touching the stop
    strategy = StrategyConfig(leverage=5, initial_stop_loss_roi=0.9)
    closes = 100.0 + 0.01 * np.arange(1500)
    closes[1350:] = 98.5

    plain = run_on(make_candles(closes), instruments, request_for(strategy=strategy))
    reversal = next(t for t in plain.trades if t.type == 'CLOSE' and 'trend reversed' in t.reason)

    frame = make_candles(closes)
    frame.loc[pd.Timestamp(reversal.timestamp), 'low'] = 50.0
    result = run_on(frame, instruments, request_for(strategy=strategy))

    entry = result.trades[0]
    same_bar = [t for t in result.trades if t.type == 'CLOSE' and t.timestamp == reversal.timestamp]
    assert [t.reason for t in same_bar] == ['Stop loss']
    assert same_bar[0].price == pytest.approx(entry.price * (1 - 0.9 / 5))
