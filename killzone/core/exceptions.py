"""
Killzone custom exceptions.

Insufficient data is never an exception: detectors return empty or NEUTRAL
results and the decision engine records a reason instead.
"""


class KillzoneError(Exception):
    """Base exception for Killzone."""

    pass


class ConfigurationError(KillzoneError):
    """Malformed strategy configuration. Fatal at startup."""

    pass


class TemporalViolation(KillzoneError):
    """A view or cursor would expose candles from after the decision time."""

    pass


class DataError(KillzoneError):
    """Malformed candle input (unordered, duplicated or non-numeric)."""

    pass


class CollaboratorError(KillzoneError):
    """External collaborator (data feed, news, execution) failed after retries."""

    pass
