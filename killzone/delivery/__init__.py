"""Human-readable output."""

from .formatter import DecisionFormatter, formatter

__all__ = ["DecisionFormatter", "formatter"]
