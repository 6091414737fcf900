"""Trading calendar and session windows."""

from .sessions import SessionStatus, SessionWindowEvaluator

__all__ = ["SessionStatus", "SessionWindowEvaluator"]
