"""
Decision formatting.

Formats Decision objects consistently for notifiers (Telegram-style text)
and logs.
"""

from typing import Dict, List, Optional

from killzone.core.enums import Action
from killzone.core.models import Decision

ACTION_EMOJIS: Dict[str, str] = {
    "LONG": "🟢",
    "SHORT": "🔴",
    "NO_TRADE": "⏸️",
}

RULE = "═" * 60
SUMMARY_REASON_LIMIT = 120


def _action_emoji(action: Action) -> str:
    return ACTION_EMOJIS.get(action.value, ACTION_EMOJIS["NO_TRADE"])


def _clip_reason(reason: str, limit: int = SUMMARY_REASON_LIMIT) -> str:
    """Shorten a gate reason, keeping its 'LABEL:' prefix whole."""
    if len(reason) <= limit:
        return reason
    label, sep, detail = reason.partition(": ")
    if not sep or len(label) + 3 >= limit:
        return reason[: limit - 1] + "…"
    room = limit - len(label) - len(sep) - 1
    return f"{label}{sep}{detail[:room].rstrip()}…"


class DecisionFormatter:
    """Formats decisions for humans."""

    def format_summary(self, decision: Decision, symbol: str = "") -> str:
        """One-liner: '🟢 LONG ETH/USD | Confluence: 7.5 | Model: FVG'."""
        parts = [f"{_action_emoji(decision.action)} {decision.action.value}"]
        if symbol:
            parts[0] += f" {symbol}"
        if decision.is_trade:
            parts.append(f"Confluence: {decision.confluence_score:g}")
            if decision.entry_model:
                parts.append(f"Model: {decision.entry_model.value}")
        elif decision.reasons:
            parts.append(_clip_reason(decision.reasons[-1]))
        return " | ".join(parts)

    def format_report(
        self,
        decision: Decision,
        symbol: str = "",
        max_score: Optional[float] = None,
    ) -> str:
        """Multi-line analysis report listing every gate outcome."""
        score = f"{decision.confluence_score:g}"
        if max_score:
            score += f"/{max_score:g}"
        when = decision.timestamp.strftime("%Y-%m-%d %H:%M UTC") if decision.timestamp else "N/A"

        lines: List[str] = [
            RULE,
            f"ICT TRADE ANALYSIS {symbol}".rstrip(),
            RULE,
            f"Time: {when}",
            f"Action: {_action_emoji(decision.action)} {decision.action.value}",
            f"Direction: {decision.direction.value if decision.direction else 'N/A'}",
            f"Model: {decision.entry_model.value if decision.entry_model else 'N/A'}",
            f"Confluence: {score}",
            "",
            "Reasons:",
        ]
        lines.extend(f"  • {r}" for r in decision.reasons)
        lines.append(RULE)
        return "\n".join(lines)


# Singleton instance
formatter = DecisionFormatter()
