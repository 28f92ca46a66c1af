from datetime import datetime, timedelta, timezone

import pytest

from ema_hunter.errors import CredentialMissing, DataUnavailable
from ema_hunter.live.log_stream import LogStream
from ema_hunter.live.trade_journal import TradeJournal
from ema_hunter.models import (
    AccountSnapshot, Action, Candle, Decision, InstrumentMeta, PositionSnapshot,
    Side, StrategyConfig, candles_to_frame,
)
from ema_hunter.utils.config import Config
from ema_hunter.utils.helpers import (
    format_currency, format_percentage, round_half_up, round_to_step, step_decimals, timeframe_to_offset,
)


@pytest.fixture
def config(monkeypatch):
    for key in ("STRATEGY", "SIMULATION", "OKX_API_KEY", "OKX_SECRET_KEY", "OKX_PASSPHRASE"):
        monkeypatch.delenv(key, raising=False)
    return Config()


class TestConfig:
    def test_instrument_catalog(self, config):
        instruments = config.get_instruments()
        assert set(instruments) == {'BTC', 'ETH', 'SOL', 'BNB', 'XRP'}
        assert instruments['ETH'].contract_value == 0.1
        assert instruments['XRP'].price_precision == 4
        assert config.inst_id('BTC') == 'BTC-USDT-SWAP'

    def test_strategy_profiles(self, config):
        assert config.active_strategy_name == 'ema_hunter'
        default = config.get_strategy_config()
        assert default.leverage == 20
        assert default.take_profit_rois == [0.05, 0.08, 0.12]

        conservative = config.get_strategy_config('ema_hunter_conservative')
        assert conservative.enabled_symbols == ['BTC', 'ETH']
        assert conservative.trend_tolerance == 0.001

        with pytest.raises(KeyError):
            config.get_strategy_config('moonshot')

    def test_env_selects_strategy(self, config, monkeypatch):
        monkeypatch.setenv("STRATEGY", "ema_hunter_conservative")
        assert config.get_strategy_config().leverage == 10

    def test_dot_notation(self, config):
        assert config.get('engine.tick_seconds') == 2
        assert config.get('engine.nope', 'x') == 'x'
        assert config.taker_fee_rate == 0.0005
        assert config.lower_timeframe == '3m'

    def test_credentials_required_outside_simulation(self, config, monkeypatch):
        assert config.simulation
        assert config.exchange_credentials()['api_key'] == ''

        monkeypatch.setenv("SIMULATION", "false")
        assert not config.simulation
        with pytest.raises(CredentialMissing):
            config.exchange_credentials()

        for key in ("OKX_API_KEY", "OKX_SECRET_KEY", "OKX_PASSPHRASE"):
            monkeypatch.setenv(key, "k")
        assert config.exchange_credentials()['passphrase'] == 'k'

    def test_missing_config_dir(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_path))

    def test_absolute_config_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("STRATEGY", raising=False)
        (tmp_path / 'config.yaml').write_text("engine:\n  tick_seconds: 5\n")
        (tmp_path / 'strategies.yaml').write_text(
            "active: fast\nstrategies:\n  fast:\n    leverage: 5\n    empty_scan_interval_sec: 3\n"
        )
        config = Config(str(tmp_path))
        assert config.tick_seconds == 5.0
        assert config.get_instruments() == {}
        assert config.get_strategy_config().empty_scan_interval_sec == 3


class TestModels:
    def test_instrument_from_payload(self):
        meta = InstrumentMeta.from_payload(
            {'instId': 'ETH-USDT-SWAP', 'ctVal': '0.1', 'tickSz': '0.01', 'lotSz': '1',
             'minSz': '1', 'state': 'live', 'listTime': '1600000000000'},
            symbol='ETH',
        )
        assert meta.symbol == 'ETH'
        assert meta.tick_size == 0.01
        assert meta.lot_precision == 0
        assert meta.is_tradable
        assert meta.list_time.tzinfo is timezone.utc

    def test_bad_instrument_payload(self):
        with pytest.raises(DataUnavailable):
            InstrumentMeta.from_payload({'instId': 'ETH-USDT-SWAP', 'ctVal': 'abc'})

    def test_position_from_payload(self):
        hedge = PositionSnapshot.from_payload({
            'instId': 'BTC-USDT-SWAP', 'posSide': 'short', 'pos': '4', 'avgPx': '60000',
            'uplRatio': '0.12', 'lever': '20', 'slTriggerPx': '', 'tpTriggerPx': '58000',
        }, symbol='BTC')
        assert hedge.side is Side.SHORT
        assert hedge.key == ('BTC', Side.SHORT)
        assert hedge.stop_loss_price is None
        assert hedge.take_profit_price == 58000.0

        net = PositionSnapshot.from_payload({'instId': 'X', 'posSide': 'net', 'pos': '-3', 'avgPx': '1'})
        assert net.side is Side.SHORT
        assert net.size == 3
        assert net.leverage == 1

        with pytest.raises(DataUnavailable):
            PositionSnapshot.from_payload({'instId': 'X', 'pos': '1'})

    def test_account_ignores_empty_positions(self, make_position):
        account = AccountSnapshot(100.0, 100.0, positions=[make_position(size=0), make_position(symbol='BTC')])
        assert account.position_for('ETH') is None
        assert [p.symbol for p in account.open_positions] == ['BTC']

    def test_account_lookup_by_side(self, make_position):
        account = AccountSnapshot(100.0, 100.0, positions=[
            make_position(side=Side.LONG), make_position(side=Side.SHORT),
        ])
        assert [p.side for p in account.positions_for('ETH')] == [Side.LONG, Side.SHORT]
        assert account.position_for('ETH').side is Side.LONG
        assert account.position_for('ETH', Side.SHORT).side is Side.SHORT
        assert account.position_for('BTC', Side.SHORT) is None

    @pytest.mark.parametrize("kwargs", [
        {'leverage': 0},
        {'risk_fraction': 1.5},
        {'take_profit_rois': [0.1, 0.05, 0.2]},
        {'take_profit_fractions': [0.5, 0.5]},
        {'fast_period': 60, 'slow_period': 15},
    ])
    def test_strategy_validation(self, kwargs):
        with pytest.raises(ValueError):
            StrategyConfig(**kwargs)

    def test_strategy_from_dict_ignores_unknown_keys(self):
        strategy = StrategyConfig.from_dict({'leverage': 5, 'colour': 'blue'})
        assert strategy.leverage == 5

    def test_side_helpers(self):
        assert Side.from_action(Action.SELL) is Side.SHORT
        assert Side.LONG.opposite is Side.SHORT
        with pytest.raises(ValueError):
            Side.from_action(Action.HOLD)

    def test_candles_to_frame_sorts_and_localizes(self):
        t0 = datetime(2024, 1, 1)
        frame = candles_to_frame([
            Candle(t0 + timedelta(minutes=3), 2, 2, 2, 2, ema_fast=2.0, ema_slow=1.0),
            Candle(t0, 1, 1, 1, 1, ema_fast=1.0, ema_slow=1.0),
        ])
        assert list(frame['close']) == [1, 2]
        assert str(frame.index.tz) == 'UTC'
        assert 'ema_fast' in frame.columns
        assert len(candles_to_frame([])) == 0


class TestHelpers:
    def test_step_rounding(self):
        assert step_decimals(0.01) == 2
        assert step_decimals(1) == 0
        assert round_to_step(101.237, 0.01) == 101.24
        assert round_to_step(61234.56, 0.1) == 61234.6
        assert round_to_step(7.3, 0) == 7.3
        assert round_half_up(0.25, 1) == 0.3
        assert round_half_up(2.5, 0) == 3.0

    def test_formatting(self):
        assert format_currency(1234.5) == "1,234.50 USDT"
        assert format_percentage(0.078, 1) == "7.8%"

    def test_timeframes(self):
        assert timeframe_to_offset('1H') == '1h'
        with pytest.raises(ValueError):
            timeframe_to_offset('7m')


class TestLogStreamAndJournal:
    def test_log_buffer_is_bounded(self):
        stream = LogStream(max_entries=3)
        for i in range(5):
            stream.info(f"message {i}")

        entries = stream.entries()
        assert len(stream) == 3
        assert [e.message for e in entries] == ["message 2", "message 3", "message 4"]
        assert entries[-1].id == 5
        assert stream.entries(limit=1)[0].message == "message 4"

    def test_trade_level_and_unknown_level(self):
        stream = LogStream()
        assert stream.trade("BUY ETH").to_dict()['type'] == 'TRADE'
        with pytest.raises(ValueError):
            stream.log('DEBUG', 'nope')

    def test_journal_appends_plain_json(self, tmp_path):
        journal = TradeJournal(str(tmp_path / 'state' / 'trades.jsonl'))
        journal.record({'action': Action.CLOSE, 'side': Side.LONG, 'size': 3})
        journal.record(Decision(symbol='ETH', action=Action.BUY, reasoning='cross').to_dict())

        events = journal.read()
        assert events[0]['action'] == 'CLOSE'
        assert events[0]['side'] == 'long'
        assert 'time' in events[0]
        assert events[1]['symbol'] == 'ETH'
        assert journal.read(limit=1) == events[1:]
