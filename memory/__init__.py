"""Memory module: conversation history, insights and suggestion cards."""

from memory.card_deck import CardDeck, CardDistance, SuggestionCard, normalize_title
from memory.insight_store import (
    Insight,
    InsightCandidate,
    InsightKind,
    InsightSource,
    InsightStore,
    normalize_value,
)
from memory.turn_log import Turn, TurnLog, TurnRole

__all__ = [
    "CardDeck",
    "CardDistance",
    "SuggestionCard",
    "normalize_title",
    "Insight",
    "InsightCandidate",
    "InsightKind",
    "InsightSource",
    "InsightStore",
    "normalize_value",
    "Turn",
    "TurnLog",
    "TurnRole",
]
