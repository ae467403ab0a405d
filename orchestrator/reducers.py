"""
Pure session transitions.

Every reducer takes a SessionState and returns a new one; the input is never
mutated, so each transition can be unit tested in isolation.
"""

from typing import Any

from memory.card_deck import SuggestionCard
from memory.insight_store import InsightMergeResult
from memory.turn_log import Turn
from orchestrator.phases import PhaseDecision
from orchestrator.reveal import RevealMode
from orchestrator.rubric import RubricSnapshot
from orchestrator.session import SessionState
from orchestrator.suggestion_gate import GateDecision


def _copy(session: SessionState) -> SessionState:
    return session.model_copy(deep=True)


def apply_turn(session: SessionState, turn: Turn) -> tuple[SessionState, int | None]:
    """Append (or correct by transcript id) a finalized turn."""
    new = _copy(session)
    index = new.turn_log.append(turn)
    return new, index


def retract_turn(session: SessionState, transcript_id: str) -> SessionState:
    new = _copy(session)
    new.turn_log.retract(transcript_id)
    return new


def edit_turn(session: SessionState, index: int, text: str) -> SessionState:
    new = _copy(session)
    new.turn_log.edit(index, text)
    return new


def remove_turn(session: SessionState, index: int) -> SessionState:
    new = _copy(session)
    new.turn_log.remove(index)
    return new


def merge_insights(session: SessionState, candidates: list[Any]) -> tuple[SessionState, InsightMergeResult]:
    new = _copy(session)
    result = new.insights.merge(candidates)
    return new, result


def remove_insight(session: SessionState, insight_id: str) -> SessionState:
    new = _copy(session)
    new.insights.remove(insight_id)
    return new


def apply_rubric(session: SessionState, snapshot: RubricSnapshot) -> SessionState:
    return session.model_copy(update={"rubric": snapshot})


def apply_phase(session: SessionState, decision: PhaseDecision) -> SessionState:
    return session.model_copy(update={
        "phase": decision.next_phase,
        "phase_rationale": list(decision.rationale),
    })


def record_gate_decision(session: SessionState, decision: GateDecision) -> SessionState:
    return session.model_copy(update={"last_gate_decision": decision})


def merge_cards(session: SessionState, batch: list[SuggestionCard]) -> tuple[SessionState, list[SuggestionCard]]:
    new = _copy(session)
    added = new.deck.merge_batch(batch)
    return new, added


def record_vote(session: SessionState, card_id: str, value: int | None, now: float) -> SessionState:
    new = _copy(session)
    new.deck.vote(card_id, value, now=now)
    return new


def clear_cards(session: SessionState) -> SessionState:
    new = _copy(session)
    new.deck.clear()
    return new


def set_mode(session: SessionState, mode: RevealMode) -> SessionState:
    return session.model_copy(update={"mode": mode})
