"""
Configuration management for EMA Hunter
Loads configuration from YAML files and environment variables
"""

import os
from pathlib import Path
from typing import Any, Dict, List

import yaml
from dotenv import load_dotenv

from ..errors import CredentialMissing
from ..models import InstrumentMeta, StrategyConfig


class Config:
    """Configuration manager for the EMA Hunter system"""

    def __init__(self, config_dir: str = "configs"):
        """
        Initialize configuration manager

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)
        self.project_root = Path(__file__).parent.parent.parent

        # Load environment variables
        load_dotenv(self.project_root / ".env")

        # Load YAML configurations
        self.main_config = self._load_yaml("config.yaml")
        self.strategies_config = self._load_yaml("strategies.yaml")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """Load YAML configuration file"""
        config_path = self.config_dir if self.config_dir.is_absolute() else self.project_root / self.config_dir
        config_path = config_path / filename
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "r") as f:
            return yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Configuration key in dot notation (e.g., 'engine.tick_seconds')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self.main_config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_env(self, key: str, default: Any = None) -> Any:
        """Get environment variable"""
        return os.getenv(key, default)

    # Strategies
    @property
    def strategy_names(self) -> List[str]:
        return list((self.strategies_config.get("strategies") or {}).keys())

    @property
    def active_strategy_name(self) -> str:
        return self.get_env("STRATEGY", self.strategies_config.get("active", "ema_hunter"))

    def get_strategy_config(self, strategy_name: str = None) -> StrategyConfig:
        """
        Build a StrategyConfig from strategies.yaml

        Raises:
            KeyError: Unknown strategy name
        """
        name = strategy_name or self.active_strategy_name
        profiles = self.strategies_config.get("strategies") or {}
        if name not in profiles:
            raise KeyError(f"Unknown strategy '{name}', available: {', '.join(profiles)}")
        return StrategyConfig.from_dict(profiles[name] or {})

    # Instruments
    def get_instruments(self) -> Dict[str, InstrumentMeta]:
        """Instrument catalog keyed by coin (BTC, ETH, ...)"""
        catalog = {}
        for coin, meta in (self.get("instruments") or {}).items():
            catalog[coin] = InstrumentMeta(
                symbol=coin,
                contract_value=float(meta["contract_value"]),
                tick_size=float(meta["tick_size"]),
                lot_size=float(meta.get("lot_size", 1)),
                min_size=float(meta.get("min_size", 1)),
                tradable_state=meta.get("state", "live"),
            )
        return catalog

    def inst_id(self, coin: str) -> str:
        """Exchange instrument id for a coin key"""
        return self.get(f"instruments.{coin}.inst_id", f"{coin}-USDT-SWAP")

    # Exchange credentials
    @property
    def simulation(self) -> bool:
        """Paper trading unless SIMULATION=false"""
        env = self.get_env("SIMULATION")
        if env is not None:
            return env.strip().lower() not in ("0", "false", "no")
        return bool(self.get("exchange.simulation", True))

    def exchange_credentials(self) -> Dict[str, str]:
        """
        OKX API credentials from the environment

        Raises:
            CredentialMissing: Any credential absent outside simulation
        """
        creds = {
            "api_key": self.get_env("OKX_API_KEY", ""),
            "secret_key": self.get_env("OKX_SECRET_KEY", ""),
            "passphrase": self.get_env("OKX_PASSPHRASE", ""),
        }
        missing = [k for k, v in creds.items() if not v]
        if missing and not self.simulation:
            raise CredentialMissing(
                f"OKX credentials missing ({', '.join(missing)}). "
                "Copy .env.example to .env and add your API keys."
            )
        return creds

    # Engine
    @property
    def tick_seconds(self) -> float:
        return float(self.get("engine.tick_seconds", 2.0))

    @property
    def max_workers(self) -> int:
        return int(self.get("engine.max_workers", 4))

    @property
    def log_buffer_size(self) -> int:
        return int(self.get("engine.log_buffer", 500))

    @property
    def lower_timeframe(self) -> str:
        return self.get("exchange.lower_timeframe", "3m")

    @property
    def higher_timeframe(self) -> str:
        return self.get("exchange.higher_timeframe", "1H")

    @property
    def candle_count(self) -> int:
        return int(self.get("exchange.candle_count", 300))

    @property
    def taker_fee_rate(self) -> float:
        return float(self.get("fees.taker_fee_rate", 0.0005))

    # Backtest
    @property
    def initial_balance(self) -> float:
        """Get default backtest/paper balance"""
        return float(self.get_env("INITIAL_BALANCE", self.get("backtest.initial_balance", 1000)))

    @property
    def curve_points(self) -> int:
        return int(self.get("backtest.curve_points", 500))

    # Paths
    @property
    def data_dir(self) -> Path:
        """Get candle data directory path"""
        return self.project_root / self.get("data.candles_dir", "data/candles")

    @property
    def reports_dir(self) -> Path:
        """Get reports directory path"""
        reports_path = self.project_root / "reports"
        reports_path.mkdir(parents=True, exist_ok=True)
        return reports_path

    @property
    def logs_dir(self) -> Path:
        """Get logs directory path"""
        logs_path = self.project_root / "logs"
        logs_path.mkdir(parents=True, exist_ok=True)
        return logs_path

    @property
    def journal_file(self) -> Path:
        return self.project_root / self.get("data.journal_file", "state/trade_log.jsonl")

    # Logging Configuration
    @property
    def log_level(self) -> str:
        """Get log level"""
        return self.get_env("LOG_LEVEL", self.get("logging.level", "INFO"))

    def __repr__(self) -> str:
        return f"Config(strategy={self.active_strategy_name}, simulation={self.simulation})"


# Global configuration instance
_config = None


def get_config() -> Config:
    """Get global configuration instance (singleton)"""
    global _config
    if _config is None:
        _config = Config()
    return _config
