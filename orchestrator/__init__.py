"""
Conversation orchestration engine.

Components (leaves first):
1. RubricScorer - engagement/readiness snapshot
2. recommend_phase - conversation phase state machine
3. SuggestionGate - when and how to fetch suggestion cards
4. CardRevealController - card placement in the timeline
5. Orchestrator - wires the above per session
"""

from orchestrator.main import Orchestrator
from orchestrator.phases import ConversationPhase
from orchestrator.reveal import RevealMode

__all__ = [
    "Orchestrator",
    "ConversationPhase",
    "RevealMode",
]
