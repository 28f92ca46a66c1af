"""Trading loop scheduler: single-flight periodic scanning.

Every tick (default 2s):
- Refresh market snapshots (fanned out per symbol) and the account
- Breakeven sweep over all open positions
- Full decision + execution pass once the adaptive interval has elapsed
  (holding interval while any position is open, empty interval while flat)

A tick that fires while a scan is in flight is dropped. A missing or
rejected credential halts scanning until the strategy/config is updated.
A rejected breakeven stop is retried after the next account refresh.
"""
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Set

from loguru import logger

from ..errors import CredentialMissing, DataUnavailable, ExecutionFailure, SizingDegenerate
from ..models import AccountSnapshot, Action, Decision, MarketSnapshot, PositionSnapshot, StrategyConfig
from ..risk.protection_registry import PositionKey, ProtectionRegistry
from ..risk.transaction_costs import TransactionCostModel
from .advisory import AdvisoryProvider
from .decision_engine import DecisionEngine
from .exchange_interface import AccountDataProvider, MarketDataProvider, OrderExecutionProvider
from .executor import TradeExecutor
from .log_stream import LogStream
from .trade_journal import TradeJournal

DECISION_HISTORY = 20


@dataclass
class SchedulerContext:
    """All mutable state owned by one scheduler instance."""
    strategy: StrategyConfig
    symbols: List[str]
    registry: ProtectionRegistry = field(default_factory=ProtectionRegistry)
    unconfirmed_stops: Set[PositionKey] = field(default_factory=set)
    logs: LogStream = field(default_factory=LogStream)
    running: bool = False
    halted_reason: Optional[str] = None
    last_pass_at: Optional[float] = None
    market: Dict[str, MarketSnapshot] = field(default_factory=dict)
    account: Optional[AccountSnapshot] = None
    latest_decisions: Dict[str, Decision] = field(default_factory=dict)
    decision_history: Dict[str, Deque[Decision]] = field(default_factory=dict)
    scans: int = 0
    passes: int = 0
    orders_sent: int = 0

    def record_decision(self, decision: Decision):
        self.latest_decisions[decision.symbol] = decision
        history = self.decision_history.setdefault(decision.symbol, deque(maxlen=DECISION_HISTORY))
        history.append(decision)


class TradingLoopScheduler:
    """Owns the live loop and its context."""

    def __init__(
        self,
        market: MarketDataProvider,
        account: AccountDataProvider,
        orders: OrderExecutionProvider,
        strategy: StrategyConfig,
        symbols: Optional[List[str]] = None,
        advisory: Optional[AdvisoryProvider] = None,
        cost_model: Optional[TransactionCostModel] = None,
        journal: Optional[TradeJournal] = None,
        tick_seconds: float = 2.0,
        max_workers: int = 4,
        log_buffer: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.market_provider = market
        self.account_provider = account
        self.journal = journal
        self.tick_seconds = tick_seconds
        self.max_workers = max_workers
        self.clock = clock

        cost_model = cost_model or TransactionCostModel()
        self.context = SchedulerContext(
            strategy=strategy,
            symbols=list(symbols or strategy.enabled_symbols),
            logs=LogStream(log_buffer),
        )
        self.engine = DecisionEngine(strategy, self.context.registry, cost_model, advisory)
        self.executor = TradeExecutor(orders, market, strategy, cost_model)

        self._busy = threading.Lock()
        self._stop_event = threading.Event()
        self._ticker: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ control

    def start(self):
        """Enable decision + execution passes."""
        ctx = self.context
        ctx.running = True
        ctx.last_pass_at = None
        ctx.logs.info(f"Engine started (strategy: {ctx.strategy.name}, symbols: {', '.join(ctx.symbols)})")

    def stop(self):
        """Disable passes and reset protection state. An in-flight scan finishes normally."""
        ctx = self.context
        ctx.running = False
        ctx.registry.clear()
        ctx.unconfirmed_stops.clear()
        ctx.logs.info("Engine stopped")

    def update_strategy(self, strategy: StrategyConfig, symbols: Optional[List[str]] = None):
        """Swap strategy between scans and clear any credential halt."""
        with self._busy:
            ctx = self.context
            ctx.strategy = strategy
            if symbols is not None or not ctx.symbols:
                ctx.symbols = list(symbols or strategy.enabled_symbols)
            self.engine.strategy = strategy
            self.executor.configure(strategy)
            if ctx.halted_reason:
                ctx.logs.info("Configuration updated, resuming scans")
            ctx.halted_reason = None
            ctx.logs.info(f"Strategy updated: {strategy.name}")

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @property
    def halted(self) -> bool:
        return self.context.halted_reason is not None

    # ------------------------------------------------------------------ ticking

    @contextmanager
    def _single_flight(self):
        acquired = self._busy.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._busy.release()

    def tick(self) -> bool:
        """Attempt one scan.

        Returns:
            False if a scan was already in flight (tick dropped)
        """
        with self._single_flight() as acquired:
            if not acquired:
                logger.debug("Scan in flight, tick dropped")
                return False
            self._scan()
            return True

    def start_ticker(self):
        """Fire ``tick`` every ``tick_seconds`` on background threads."""
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop_event.clear()
        self._ticker = threading.Thread(target=self._tick_loop, name="ema-hunter-ticker", daemon=True)
        self._ticker.start()

    def shutdown(self, timeout: float = 5.0):
        self._stop_event.set()
        if self._ticker is not None:
            self._ticker.join(timeout)
        # Wait for an in-flight scan to drain
        with self._busy:
            pass

    def run(self):
        """Blocking loop for CLI use. Ctrl+C stops it."""
        self.start()
        self.start_ticker()
        try:
            while self._ticker.is_alive():
                self._ticker.join(1.0)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        finally:
            self.stop()
            self.shutdown()

    def _tick_loop(self):
        while not self._stop_event.wait(self.tick_seconds):
            threading.Thread(target=self.tick, name="ema-hunter-scan", daemon=True).start()

    # ------------------------------------------------------------------ scanning

    def _scan(self):
        ctx = self.context
        if ctx.halted_reason:
            return
        ctx.scans += 1
        try:
            self._refresh()
            if not ctx.running:
                return
            self._breakeven_sweep()
            if self._pass_due():
                self._decision_pass()
        except CredentialMissing as e:
            ctx.halted_reason = str(e)
            ctx.logs.error(f"Credential error, scanning halted until reconfigured: {e}")
        except Exception as e:
            logger.exception("Unexpected loop error")
            ctx.logs.error(f"Loop error: {e}")

    def _refresh(self):
        """Refresh snapshots. Symbols that fail are simply absent this scan."""
        ctx = self.context
        snapshots: Dict[str, MarketSnapshot] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                symbol: pool.submit(self.market_provider.get_market_snapshot, symbol)
                for symbol in ctx.symbols
            }
            for symbol, future in futures.items():
                try:
                    snapshots[symbol] = future.result()
                except CredentialMissing:
                    raise
                except DataUnavailable as e:
                    logger.warning(f"Market data skipped: {e}")
                except Exception as e:
                    logger.warning(f"{symbol}: market fetch failed: {e}")
        ctx.market = snapshots

        try:
            ctx.account = self.account_provider.get_account()
        except CredentialMissing:
            raise
        except Exception as e:
            ctx.account = None
            if ctx.running:
                ctx.logs.error(f"Account refresh failed: {e}")
            return

        ctx.registry.prune(p.key for p in ctx.account.open_positions)
        for key in ctx.unconfirmed_stops:
            ctx.registry.release(key)
        ctx.unconfirmed_stops.clear()

    def _breakeven_sweep(self):
        """Move stops to breakeven for every newly eligible position, every tick."""
        ctx = self.context
        if ctx.account is None:
            return
        for position in ctx.account.open_positions:
            decision = self.engine.check_breakeven(position)
            if decision is None:
                continue
            ctx.record_decision(decision)
            ctx.logs.trade(f"[{position.symbol}] {decision.action.value} | {decision.reasoning}")
            try:
                self.executor.move_stop(position.symbol, position.side, position.size,
                                        decision.stop_loss_price, previous_stop=position.stop_loss_price)
                self._journal(decision)
                ctx.logs.success(f"[{position.symbol}] breakeven stop placed at {decision.stop_loss_price:.6g}")
            except CredentialMissing:
                raise
            except Exception as e:
                ctx.logs.error(f"[{position.symbol}] breakeven update failed: {e}")
                ctx.unconfirmed_stops.add(position.key)

    def _pass_due(self) -> bool:
        ctx = self.context
        if ctx.account is None:
            return False
        if ctx.last_pass_at is None:
            return True
        interval = (
            ctx.strategy.holding_scan_interval_sec
            if ctx.account.open_positions
            else ctx.strategy.empty_scan_interval_sec
        )
        return self.clock() - ctx.last_pass_at >= interval

    def _decision_pass(self):
        ctx = self.context
        account = ctx.account
        ctx.last_pass_at = self.clock()
        ctx.passes += 1
        ctx.logs.info(f">>> Engine scan (strategy: {ctx.strategy.name}) <<<")

        open_count = len(account.open_positions)
        for symbol in ctx.symbols:
            market = ctx.market.get(symbol)
            # Hedge mode can hold both sides of one symbol
            for position in account.positions_for(symbol) or [None]:
                if self._act(symbol, market, position, open_count):
                    open_count += 1

    def _act(self, symbol: str, market: Optional[MarketSnapshot],
             position: Optional[PositionSnapshot], open_count: int) -> bool:
        """Decide and execute for one symbol/position. Returns True if a new position was opened."""
        ctx = self.context
        try:
            decision = self.engine.decide(symbol, market, position)
        except Exception as e:
            ctx.logs.error(f"[{symbol}] decision failed: {e}")
            return False

        ctx.record_decision(decision)
        if not decision.is_actionable:
            return False

        is_entry = decision.action in (Action.BUY, Action.SELL)
        if is_entry and open_count >= ctx.strategy.max_concurrent_positions:
            ctx.logs.warning(
                f"[{symbol}] {decision.action.value} skipped: "
                f"{open_count}/{ctx.strategy.max_concurrent_positions} positions open"
            )
            return False

        ctx.logs.trade(f"[{symbol}] {decision.action.value} | {decision.reasoning}")
        try:
            result = self.executor.execute(decision, market, ctx.account)
        except CredentialMissing:
            raise
        except SizingDegenerate as e:
            ctx.logs.warning(f"[{symbol}] entry skipped: {e}")
            return False
        except Exception as e:
            if decision.action is Action.UPDATE_TPSL and position is not None:
                ctx.unconfirmed_stops.add(position.key)
            label = "execution failed" if isinstance(e, (ExecutionFailure, DataUnavailable)) else "execution error"
            ctx.logs.error(f"[{symbol}] {label}: {e}")
            return False

        ctx.orders_sent += 1
        self._journal(decision, order_id=result.order_id, fill_price=result.fill_price)
        ctx.logs.success(f"[{symbol}] {decision.action.value} sent (order {result.order_id})")
        return is_entry

    def _journal(self, decision: Decision, **extra):
        if self.journal is None:
            return
        event = decision.to_dict()
        event.update(extra)
        self.journal.record(event)

    # ------------------------------------------------------------------ reporting

    def status(self, log_limit: int = 50) -> Dict:
        """Snapshot of the loop for the dashboard/CLI."""
        ctx = self.context
        account = ctx.account
        return {
            'running': ctx.running,
            'halted': ctx.halted_reason,
            'busy': self.busy,
            'strategy': ctx.strategy.name,
            'symbols': list(ctx.symbols),
            'equity': account.equity if account else None,
            'open_positions': [
                {'symbol': p.symbol, 'side': p.side.value, 'size': p.size,
                 'avg_price': p.avg_price, 'roi': p.unrealized_roi,
                 'protected': p.key in ctx.registry}
                for p in (account.open_positions if account else [])
            ],
            'latest_decisions': {s: d.to_dict() for s, d in ctx.latest_decisions.items()},
            'scans': ctx.scans,
            'passes': ctx.passes,
            'orders_sent': ctx.orders_sent,
            'logs': [e.to_dict() for e in ctx.logs.entries(log_limit)],
        }

    def decision_history(self, symbol: str) -> List[Decision]:
        return list(self.context.decision_history.get(symbol, []))
