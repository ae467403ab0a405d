"""
SessionState - the explicit per-session aggregate.

Everything the engine knows about one conversation lives here: turns,
insights, cards and votes, the current phase with its rationale, the latest
rubric and the latest gate decision. Transitions go through the pure
functions in `orchestrator.reducers`.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from memory.card_deck import CardDeck
from memory.insight_store import InsightStore
from memory.turn_log import TurnLog
from orchestrator.phases import ConversationPhase
from orchestrator.reveal import RevealMode
from orchestrator.rubric import RubricSnapshot
from orchestrator.suggestion_gate import GateDecision


class SessionState(BaseModel):
    session_id: str | None = None
    mode: RevealMode = RevealMode.TEXT
    phase: ConversationPhase = ConversationPhase.WARMUP
    phase_rationale: list[str] = Field(default_factory=list)
    turn_log: TurnLog = Field(default_factory=TurnLog)
    insights: InsightStore = Field(default_factory=InsightStore)
    deck: CardDeck = Field(default_factory=CardDeck)
    rubric: RubricSnapshot | None = None
    last_gate_decision: GateDecision | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionState":
        """Create from dictionary."""
        return cls.model_validate(data)
