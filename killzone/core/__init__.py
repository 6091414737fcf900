"""Core data model: candles, causal views, value objects and enums."""
