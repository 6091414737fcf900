"""Killzone - ICT pattern detection and decision pipeline."""

__version__ = "0.1.0"
