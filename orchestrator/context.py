"""Context helpers for Orchestrator."""

from __future__ import annotations

from typing import Any

from agents.suggestion_generator import SuggestionRequest
from memory.card_deck import VOTE_MAYBE, VOTE_SAVED, VOTE_SKIPPED
from orchestrator.suggestion_gate import GateDecision


class ContextMixin:
    """Mixin providing context and payload helpers."""

    def _suggestion_request(self, decision: GateDecision) -> SuggestionRequest:
        """Build the generator request for a fetch decision."""
        deck = self.session.deck

        def titles(value: int) -> list[str]:
            return [
                card.title
                for card_id, vote in deck.votes.items()
                if vote == value and (card := deck.get(card_id)) is not None
            ]

        return SuggestionRequest(
            insights=self.session.insights.aggregates(),
            liked_titles=titles(VOTE_SAVED),
            maybe_titles=titles(VOTE_MAYBE),
            disliked_titles=titles(VOTE_SKIPPED),
            transcript=self.session.turn_log.transcript(limit=self.scorer.thresholds.turn_window),
            shown_titles=deck.shown_titles(),
            limit=decision.limit,
            fetch_mode=decision.fetch_mode.value,
            focus_text=decision.focus_text,
            phase=self.session.phase.value,
        )

    def _timeline_payload(self) -> list[dict[str, Any]]:
        """Ordered {turn, cards} view with cards resolved from the deck."""
        deck = self.session.deck
        entries = []
        for entry in self.reveal.timeline(self.session.turn_log.turns):
            turn = entry["turn"]
            cards = [deck.get(card_id) for card_id in entry["cards"]]
            entries.append({
                "turn": turn.model_dump(mode="json") if turn is not None else None,
                "cards": [
                    {**card.model_dump(mode="json"), "vote": deck.votes.get(card.id)}
                    for card in cards
                    if card is not None
                ],
            })
        return entries

    def _backlog_payload(self) -> dict[str, Any]:
        gate_state = self.gate.state
        return {
            "unreviewed_count": self.session.deck.unreviewed_count,
            "suppressed": gate_state.backlog_suppressed,
            "nudge_sent": gate_state.backlog_nudge_sent,
        }

    def _cards_payload(self, card_ids: list[str]) -> list[dict[str, Any]]:
        deck = self.session.deck
        return [
            card.model_dump(mode="json")
            for card_id in card_ids
            if (card := deck.get(card_id)) is not None
        ]
