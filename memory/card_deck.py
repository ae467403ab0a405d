"""
CardDeck - suggestion cards and the user's reactions to them.

Identity of a card is its id, but batches are also deduplicated on the
normalized title so "Wildlife Photographer" and "wildlife photographer!!"
collapse into one stored card. Cards carrying a vote always survive a merge.
"""

import logging
import re
from enum import Enum

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class CardDistance(str, Enum):
    CORE = "core"
    ADJACENT = "adjacent"
    UNEXPECTED = "unexpected"


class CardConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


VOTE_SAVED = 1
VOTE_MAYBE = 0
VOTE_SKIPPED = -1
VALID_VOTES = (VOTE_SAVED, VOTE_MAYBE, VOTE_SKIPPED)


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    cleaned = re.sub(r"[^a-z0-9\s]", " ", title.lower())
    return " ".join(cleaned.split())


class SuggestionCard(BaseModel):
    """A recommended option the user reacts to."""
    id: str
    title: str
    summary: str
    why_it_fits: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    micro_experiments: list[str] = Field(default_factory=list)
    career_angles: list[str] = Field(default_factory=list)
    neighbor_territories: list[str] = Field(default_factory=list)
    confidence: CardConfidence = CardConfidence.MEDIUM
    score: float = 0.0
    distance: CardDistance = CardDistance.CORE

    @property
    def title_key(self) -> str:
        return normalize_title(self.title)


class CardDeck(BaseModel):
    """
    Active cards, votes and an archive of every card ever delivered.

    The archive lets voted cards be restored even after a later batch
    replaced the active list.
    """
    cards: list[SuggestionCard] = Field(default_factory=list)
    votes: dict[str, int] = Field(default_factory=dict)
    archive: dict[str, SuggestionCard] = Field(default_factory=dict)
    last_interaction_at: float | None = None

    def __len__(self) -> int:
        return len(self.cards)

    def get(self, card_id: str) -> SuggestionCard | None:
        for card in self.cards:
            if card.id == card_id:
                return card
        return self.archive.get(card_id)

    def merge_batch(self, batch: list[SuggestionCard]) -> list[SuggestionCard]:
        """
        Replace the active list with a new batch.

        - duplicates inside the batch (by id or normalized title) keep the first
        - a batch card matching an existing card by title keeps the existing card
        - voted cards missing from the batch are carried over

        Returns the cards that were not active before the merge.
        """
        existing_by_title = {c.title_key: c for c in self.cards}
        for card_id in self.votes:
            archived = self.archive.get(card_id)
            if archived is not None:
                existing_by_title.setdefault(archived.title_key, archived)

        previous_ids = {c.id for c in self.cards}
        merged: list[SuggestionCard] = []
        seen_ids: set[str] = set()
        seen_titles: set[str] = set()

        for card in batch:
            key = card.title_key
            if not key or key in seen_titles or card.id in seen_ids:
                logger.debug("Dropping duplicate card in batch: %s", card.title)
                continue
            kept = existing_by_title.get(key, card)
            if kept.id in seen_ids:
                continue
            merged.append(kept)
            seen_ids.add(kept.id)
            seen_titles.add(key)

        carried = 0
        for card_id in self.votes:
            if card_id in seen_ids:
                continue
            voted = self.get(card_id)
            if voted is None or voted.title_key in seen_titles:
                continue
            merged.append(voted)
            seen_ids.add(voted.id)
            seen_titles.add(voted.title_key)
            carried += 1

        for card in merged:
            self.archive[card.id] = card
        self.cards = merged

        added = [c for c in merged if c.id not in previous_ids]
        logger.info("Merged %d new card(s) with %d carried voted card(s)", len(added), carried)
        return added

    def vote(self, card_id: str, value: int | None, now: float | None = None) -> None:
        """Record save/maybe/skip; None clears the vote back to pending."""
        if self.get(card_id) is None:
            raise KeyError(f"Unknown card: {card_id}")
        if value is None:
            self.votes.pop(card_id, None)
        elif value in VALID_VOTES:
            self.votes[card_id] = value
        else:
            raise ValueError(f"Invalid vote value: {value}")
        if now is not None:
            self.last_interaction_at = now

    def clear(self) -> None:
        """User reset: forget active cards and votes."""
        self.cards = []
        self.votes = {}

    def unreviewed(self) -> list[SuggestionCard]:
        return [c for c in self.cards if c.id not in self.votes]

    @property
    def unreviewed_count(self) -> int:
        return len(self.unreviewed())

    @property
    def vote_count(self) -> int:
        return len(self.votes)

    @property
    def saved_count(self) -> int:
        return sum(1 for v in self.votes.values() if v == VOTE_SAVED)

    def groups(self) -> dict[str, list[SuggestionCard]]:
        """Cards bucketed by reaction for the UI basket."""
        buckets: dict[str, list[SuggestionCard]] = {"pending": [], "saved": [], "maybe": [], "skipped": []}
        for card in self.cards:
            vote = self.votes.get(card.id)
            if vote == VOTE_SAVED:
                buckets["saved"].append(card)
            elif vote == VOTE_MAYBE:
                buckets["maybe"].append(card)
            elif vote == VOTE_SKIPPED:
                buckets["skipped"].append(card)
            else:
                buckets["pending"].append(card)
        return buckets

    def shown_titles(self) -> list[str]:
        """Every title delivered so far, for the generator to avoid."""
        return [c.title for c in self.archive.values()]
