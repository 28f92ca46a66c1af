"""
Error taxonomy for EMA Hunter.

Every failure the trading core knows how to handle maps to one of these
exceptions. Per-symbol errors are caught and logged by the scheduler;
CredentialMissing halts live scanning until the configuration changes.
"""


class TradingError(Exception):
    """Base class for all EMA Hunter errors."""


class DataUnavailable(TradingError):
    """Market or account data missing for a symbol. Skip it and continue."""

    def __init__(self, symbol: str, message: str = "data unavailable"):
        self.symbol = symbol
        super().__init__(f"{symbol}: {message}")


class CredentialMissing(TradingError):
    """Exchange credentials absent or rejected. Fatal for live trading."""


class AdvisoryFailure(TradingError):
    """Advisory provider errored or returned an unusable payload."""


class ExecutionFailure(TradingError):
    """An order was rejected by the execution provider."""

    def __init__(self, symbol: str, message: str):
        self.symbol = symbol
        super().__init__(f"{symbol}: {message}")


class SizingDegenerate(TradingError):
    """Computed contract count is zero or below the instrument minimum."""

    def __init__(self, symbol: str, contracts: float, min_size: float):
        self.symbol = symbol
        self.contracts = contracts
        self.min_size = min_size
        super().__init__(
            f"{symbol}: sized {contracts} contracts, minimum is {min_size}"
        )


class BacktestError(TradingError, ValueError):
    """Invalid backtest request (bad range, unknown instrument, no data)."""
