"""Live trading engine for EMA Hunter.

Modules:
- decision_engine: Per-symbol decision state machine
- advisory: Optional advisory provider, prompt builder and reply parser
- executor: Maps decisions onto order calls
- scheduler: Single-flight trading loop
- exchange_interface: Abstract market/account/order/history providers
- paper_exchange: File-backed paper trading exchange
- log_stream: Bounded severity-tagged log buffer
- trade_journal: Append-only record of executed actions
"""
from .advisory import AdvisoryProvider, Advice
from .decision_engine import DecisionEngine
from .exchange_interface import (
    AccountDataProvider, HistoricalDataProvider, MarketDataProvider,
    OrderExecutionProvider, OrderRequest, OrderResult,
)
from .executor import TradeExecutor
from .log_stream import LogEntry, LogStream
from .paper_exchange import PaperExchange
from .scheduler import SchedulerContext, TradingLoopScheduler
from .trade_journal import TradeJournal

__all__ = [
    'AdvisoryProvider', 'Advice',
    'DecisionEngine',
    'MarketDataProvider', 'AccountDataProvider', 'OrderExecutionProvider',
    'HistoricalDataProvider', 'OrderRequest', 'OrderResult',
    'TradeExecutor',
    'LogEntry', 'LogStream',
    'PaperExchange',
    'SchedulerContext', 'TradingLoopScheduler',
    'TradeJournal',
]
