"""
Killzone runtime settings - loaded from environment (KILLZONE_*).

Strategy thresholds live in StrategyConfig; this covers what to watch,
where data comes from and how hard to retry collaborators.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment."""

    model_config = SettingsConfigDict(
        env_prefix="KILLZONE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Assets
    symbols: List[str] = ["ETH/USD"]
    reference_symbol: str = "BTC/USD"  # SMT divergence partner
    entry_timeframe: str = "5m"
    higher_timeframes: List[str] = ["4h", "1d"]
    candle_limit: int = 500

    # Strategy config file (JSON); defaults when empty
    strategy_config_path: Optional[str] = None

    # News blackout lookahead
    news_lookahead_minutes: int = 30

    # Order sizing for the execution collaborator
    order_amount: float = 12.0

    # Collaborator retry policy
    retry_attempts: int = 3
    retry_delay_seconds: float = 2.0

    log_level: str = "INFO"


settings = Settings()


def get_settings() -> Settings:
    """Return application settings (for dependency injection)."""
    return settings
