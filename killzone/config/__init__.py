"""Killzone configuration."""

from killzone.config.strategy import StrategyConfig, load_strategy_config

__all__ = ["StrategyConfig", "load_strategy_config"]
