"""
Backtest Simulator

Deterministic bar-by-bar replay of the live decision logic over historical
3m candles:
1. Warm-up window (slow EMA period x 1H) fetched before the start so the
   higher-timeframe trend is usable from the first step
2. 1H candles resampled from 3m; only completed bars are visible per step
3. Decisions from the same DecisionEngine the live loop uses, technical-only
4. Intrabar stop-loss check runs before the decision's own CLOSE
5. Fees debited on open and on close; equity = cash + mark-to-market
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger

from ..analytics.performance_metrics import PerformanceMetrics
from ..errors import BacktestError
from ..live.decision_engine import DecisionEngine
from ..live.exchange_interface import HistoricalDataProvider
from ..models import (
    Action, InstrumentMeta, MarketSnapshot, PositionSnapshot, Side, StrategyConfig,
)
from ..risk.position_sizer import PositionSizer
from ..risk.protection_registry import ProtectionRegistry
from ..risk.transaction_costs import TransactionCostModel
from ..strategies.indicators import enrich_with_ema, resample_ohlcv
from ..utils.helpers import parse_date, timeframe_to_offset, timeframe_to_timedelta


@dataclass
class BacktestRequest:
    """One backtest request."""
    symbol: str
    start: datetime
    end: datetime
    initial_balance: float
    strategy: StrategyConfig = field(default_factory=StrategyConfig)


@dataclass
class BacktestTrade:
    """An open or close fill in the simulated ledger."""
    type: str  # 'BUY', 'SELL' or 'CLOSE'
    price: float
    contracts: float
    timestamp: datetime
    fee: float
    reason: str
    profit: Optional[float] = None  # net of entry and exit fees, CLOSE only
    roi: Optional[float] = None


@dataclass
class BacktestSnapshot:
    """Equity curve sample."""
    timestamp: datetime
    equity: float
    price: float
    drawdown: float


@dataclass
class SimulatedPosition:
    side: Side
    size: float
    entry_price: float
    entry_time: datetime
    leverage: float
    entry_fee: float
    stop_loss: Optional[float] = None
    protected: bool = False


@dataclass
class BacktestState:
    """Per-run ledger, mutated bar by bar."""
    cash_balance: float
    position: Optional[SimulatedPosition] = None
    trades: List[BacktestTrade] = field(default_factory=list)
    equity_curve: List[BacktestSnapshot] = field(default_factory=list)
    peak_equity: float = 0.0
    max_drawdown: float = 0.0
    fees_paid: float = 0.0

    def unrealized(self, price: float, contract_value: float) -> float:
        pos = self.position
        if pos is None:
            return 0.0
        return (price - pos.entry_price) * pos.size * contract_value * pos.side.sign

    def mark(self, price: float, contract_value: float) -> float:
        """Mark to market; updates peak equity and max drawdown. Returns current drawdown."""
        equity = self.cash_balance + self.unrealized(price, contract_value)
        self.peak_equity = max(self.peak_equity, equity)
        drawdown = (self.peak_equity - equity) / self.peak_equity if self.peak_equity > 0 else 0.0
        drawdown = min(max(drawdown, 0.0), 1.0)
        self.max_drawdown = max(self.max_drawdown, drawdown)
        return drawdown


@dataclass
class BacktestResult:
    """Backtest summary plus trade list and decimated equity curve."""
    symbol: str
    start: datetime
    end: datetime
    initial_balance: float
    total_trades: int
    win_rate: float
    total_profit: float
    final_balance: float
    max_drawdown: float
    sharpe_ratio: float
    annualized_roi: float
    weekly_roi: float
    monthly_roi: float
    avg_profit: float
    avg_loss: float
    profit_factor: float
    fees_paid: float
    trades: List[BacktestTrade] = field(default_factory=list)
    equity_curve: List[BacktestSnapshot] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)

    def trades_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(t) for t in self.trades])

    def equity_frame(self) -> pd.DataFrame:
        df = pd.DataFrame([asdict(s) for s in self.equity_curve])
        if len(df):
            df.set_index('timestamp', inplace=True)
        return df


class BacktestSimulator:
    """
    Replays the decision engine over history for a single instrument.

    Runs synchronously; each ``run`` builds its own engine, registry and
    ledger, so independent runs share no state.
    """

    def __init__(
        self,
        history: HistoricalDataProvider,
        cost_model: Optional[TransactionCostModel] = None,
        lower_timeframe: str = "3m",
        higher_timeframe: str = "1H",
        window_bars: int = 300,
        curve_points: int = 500,
    ):
        """
        Initialize simulator.

        Args:
            history: Source of historical candles and instrument metadata
            cost_model: Fee model (default: taker fee on both legs)
            lower_timeframe: Entry-timing timeframe
            higher_timeframe: Trend timeframe, resampled from the lower one
            window_bars: Candles per timeframe visible to the analyzer per step
            curve_points: Target number of equity curve samples
        """
        self.history = history
        self.cost_model = cost_model or TransactionCostModel()
        self.lower_timeframe = lower_timeframe
        self.higher_timeframe = higher_timeframe
        self.window_bars = window_bars
        self.curve_points = curve_points

    def _validate(self, request: BacktestRequest) -> InstrumentMeta:
        if parse_date(request.start) >= parse_date(request.end):
            raise BacktestError(f"Start {request.start} must be before end {request.end}")
        if request.initial_balance <= 0:
            raise BacktestError(f"Initial balance must be positive, got {request.initial_balance}")
        instrument = self.history.get_instrument(request.symbol)
        if instrument is None:
            raise BacktestError(f"Unknown instrument {request.symbol}")
        return instrument

    def _load(self, request: BacktestRequest) -> pd.DataFrame:
        strategy = request.strategy
        warmup = timeframe_to_timedelta(self.higher_timeframe) * strategy.slow_period
        start = parse_date(request.start)
        candles = self.history.get_history(request.symbol, self.lower_timeframe, start - warmup, parse_date(request.end))
        if candles is None or len(candles) == 0:
            raise BacktestError(f"No {self.lower_timeframe} history for {request.symbol}")
        if (candles.index >= start).sum() == 0:
            raise BacktestError(f"No {request.symbol} candles after {request.start}")
        logger.debug(f"Loaded {len(candles)} candles for {request.symbol} (warm-up {warmup})")
        return candles

    def run(self, request: BacktestRequest) -> BacktestResult:
        """
        Run one backtest.

        Args:
            request: Symbol, date range, balance and strategy

        Returns:
            BacktestResult

        Raises:
            BacktestError: Bad range or balance, unknown instrument, no data
        """
        instrument = self._validate(request)
        strategy = request.strategy
        ct_val = instrument.contract_value

        lower = enrich_with_ema(self._load(request), strategy.fast_period, strategy.slow_period)
        higher = enrich_with_ema(
            resample_ohlcv(lower, timeframe_to_offset(self.higher_timeframe)),
            strategy.fast_period, strategy.slow_period,
        )
        lower_len = timeframe_to_timedelta(self.lower_timeframe)
        higher_close_times = higher.index + timeframe_to_timedelta(self.higher_timeframe)

        registry = ProtectionRegistry()
        engine = DecisionEngine(strategy, registry, self.cost_model)
        sizer = PositionSizer(strategy.risk_fraction, strategy.leverage)
        state = BacktestState(cash_balance=request.initial_balance, peak_equity=request.initial_balance)

        first = int(lower.index.searchsorted(parse_date(request.start)))
        steps = len(lower) - first
        decimation = max(1, steps // self.curve_points)
        equity_series = []

        logger.info(
            f"Backtesting {request.symbol}: {steps} bars "
            f"{lower.index[first]} to {lower.index[-1]}, balance {request.initial_balance}"
        )

        for n, i in enumerate(range(first, len(lower))):
            ts = lower.index[i]
            bar = lower.iloc[i]
            price = float(bar['close'])

            self._check_stop(state, bar, ts, ct_val)

            visible = int(higher_close_times.searchsorted(ts + lower_len, side='right'))
            market = MarketSnapshot(
                symbol=request.symbol,
                price=price,
                higher_tf=higher.iloc[max(0, visible - self.window_bars):visible],
                lower_tf=lower.iloc[max(0, i + 1 - self.window_bars):i + 1],
                timestamp=ts.to_pydatetime(),
            )
            position = self._position_snapshot(state, request.symbol, price)
            registry.prune([position.key] if position else [])

            decision = engine.decide(request.symbol, market, position, use_advisory=False)

            if decision.action in (Action.BUY, Action.SELL) and state.position is None:
                equity = state.cash_balance + state.unrealized(price, ct_val)
                contracts = sizer.calculate_contracts(equity, price, ct_val)
                if contracts > 0 and contracts >= instrument.min_size:
                    self._open(state, decision.action, contracts, price, ts, strategy.leverage,
                               decision.stop_loss_price, decision.reasoning, ct_val)
                else:
                    logger.debug(f"{ts}: {decision.action.value} skipped, sized {contracts} contracts")
            elif decision.action is Action.CLOSE and state.position is not None:
                self._close(state, price, ts, decision.reasoning, ct_val)
            elif decision.action is Action.UPDATE_TPSL and state.position is not None:
                state.position.stop_loss = decision.stop_loss_price
                state.position.protected = True

            drawdown = state.mark(price, ct_val)
            equity = state.cash_balance + state.unrealized(price, ct_val)
            equity_series.append((ts, equity))
            if n % decimation == 0 or i == len(lower) - 1:
                state.equity_curve.append(BacktestSnapshot(ts.to_pydatetime(), equity, price, drawdown))

        if state.position is not None:
            last_ts, last_price = lower.index[-1], float(lower['close'].iloc[-1])
            self._close(state, last_price, last_ts, "End of backtest", ct_val)

        result = self._calculate_result(request, state, equity_series)
        logger.success(
            f"Done: {result.initial_balance:.2f} -> {result.final_balance:.2f} USDT, "
            f"{result.total_trades} trades, WR={result.win_rate*100:.0f}%, "
            f"DD={result.max_drawdown*100:.1f}%, Sharpe={result.sharpe_ratio:.2f}"
        )
        return result

    def _position_snapshot(self, state: BacktestState, symbol: str, price: float) -> Optional[PositionSnapshot]:
        pos = state.position
        if pos is None:
            return None
        roi = (price - pos.entry_price) / pos.entry_price * pos.leverage * pos.side.sign
        return PositionSnapshot(
            symbol=symbol, side=pos.side, size=pos.size, avg_price=pos.entry_price,
            unrealized_roi=roi, leverage=pos.leverage, stop_loss_price=pos.stop_loss,
        )

    def _check_stop(self, state: BacktestState, bar: pd.Series, ts: pd.Timestamp, ct_val: float):
        """Close on a stop touched by the bar's range.

        Fills at the stop price, or at the open when the bar gapped through it.
        """
        pos = state.position
        if pos is None or pos.stop_loss is None:
            return
        if pos.side is Side.LONG:
            hit = bar['low'] <= pos.stop_loss
            fill = min(pos.stop_loss, float(bar['open']))
        else:
            hit = bar['high'] >= pos.stop_loss
            fill = max(pos.stop_loss, float(bar['open']))
        if hit:
            reason = "Breakeven stop" if pos.protected else "Stop loss"
            self._close(state, fill, ts, reason, ct_val)

    def _open(self, state: BacktestState, action: Action, contracts: float, price: float,
              ts: pd.Timestamp, leverage: float, stop: Optional[float], reason: str, ct_val: float):
        fee = self.cost_model.fee(price * contracts * ct_val)
        state.cash_balance -= fee
        state.fees_paid += fee
        state.position = SimulatedPosition(
            side=Side.from_action(action), size=contracts, entry_price=price,
            entry_time=ts.to_pydatetime(), leverage=leverage, entry_fee=fee, stop_loss=stop,
        )
        state.trades.append(BacktestTrade(action.value, price, contracts, ts.to_pydatetime(), fee, reason))

    def _close(self, state: BacktestState, price: float, ts: pd.Timestamp, reason: str, ct_val: float):
        pos = state.position
        gross = (price - pos.entry_price) * pos.size * ct_val * pos.side.sign
        fee = self.cost_model.fee(price * pos.size * ct_val)
        state.cash_balance += gross - fee
        state.fees_paid += fee

        profit = gross - fee - pos.entry_fee
        margin = pos.entry_price * pos.size * ct_val / pos.leverage
        state.trades.append(BacktestTrade(
            'CLOSE', price, pos.size, ts.to_pydatetime(), fee, reason,
            profit=profit, roi=profit / margin if margin else 0.0,
        ))
        state.position = None

    def _calculate_result(self, request: BacktestRequest, state: BacktestState,
                          equity_series: List) -> BacktestResult:
        closes = [t for t in state.trades if t.type == 'CLOSE']
        trades_df = pd.DataFrame({'profit': [t.profit for t in closes]})

        equity_df = pd.DataFrame(equity_series, columns=['time', 'equity']).set_index('time')
        if len(equity_df):
            # Final equity after the end-of-run close
            equity_df.iloc[-1, 0] = state.cash_balance

        period_days = (parse_date(request.end) - parse_date(request.start)).total_seconds() / 86400
        metrics = PerformanceMetrics(
            equity_df, trades_df, request.initial_balance, period_days,
        ).calculate_all_metrics()

        return BacktestResult(
            symbol=request.symbol,
            start=request.start,
            end=request.end,
            initial_balance=request.initial_balance,
            total_trades=metrics['total_trades'],
            win_rate=metrics['win_rate'],
            total_profit=state.cash_balance - request.initial_balance,
            final_balance=state.cash_balance,
            max_drawdown=max(state.max_drawdown, metrics['max_drawdown']),
            sharpe_ratio=metrics['sharpe_ratio'],
            annualized_roi=metrics['annualized_roi'],
            weekly_roi=metrics['weekly_roi'],
            monthly_roi=metrics['monthly_roi'],
            avg_profit=metrics['avg_profit'],
            avg_loss=metrics['avg_loss'],
            profit_factor=metrics['profit_factor'],
            fees_paid=state.fees_paid,
            trades=state.trades,
            equity_curve=state.equity_curve,
        )
