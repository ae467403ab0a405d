"""
TurnLog - ordered conversation history.

Streaming transcripts arrive as fragments that share a transcript id. Only the
finalized fragment reaches the log, and a later finalization with the same id
corrects the existing turn in place instead of adding a duplicate.
"""

import logging
from enum import Enum

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """A single finalized utterance."""
    role: TurnRole
    text: str
    transcript_id: str | None = Field(default=None, description="Realtime item/response id, when known")


class TurnLog(BaseModel):
    """
    Append-only ordered history with in-place correction.

    Deletion only happens through explicit user edits (`edit`, `remove`) or
    retraction of an optimistic announcement the engine itself added.
    """
    turns: list[Turn] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.turns)

    def index_of(self, transcript_id: str | None) -> int | None:
        """Position of the turn carrying this transcript id."""
        if not transcript_id:
            return None
        for index, turn in enumerate(self.turns):
            if turn.transcript_id == transcript_id:
                return index
        return None

    def append(self, turn: Turn) -> int | None:
        """
        Insert a finalized turn, or correct the turn that shares its transcript id.

        Returns the index written, or None when the text was empty.
        """
        text = turn.text.strip()
        if not text:
            logger.debug("Ignoring empty %s turn (transcript_id=%s)", turn.role.value, turn.transcript_id)
            return None

        existing = self.index_of(turn.transcript_id)
        if existing is not None:
            current = self.turns[existing]
            # Role of the first fragment wins, the text is the correction
            self.turns[existing] = Turn(role=current.role, text=text, transcript_id=current.transcript_id)
            return existing

        self.turns.append(Turn(role=turn.role, text=text, transcript_id=turn.transcript_id))
        return len(self.turns) - 1

    def retract(self, transcript_id: str) -> bool:
        """Remove an optimistic turn that should never have been shown."""
        index = self.index_of(transcript_id)
        if index is None:
            return False
        del self.turns[index]
        return True

    def edit(self, index: int, text: str) -> None:
        """Explicit user edit of an existing turn."""
        if not 0 <= index < len(self.turns):
            raise IndexError(f"No turn at index {index}")
        current = self.turns[index]
        self.turns[index] = current.model_copy(update={"text": text.strip()})

    def remove(self, index: int) -> Turn:
        """Explicit user deletion of a turn."""
        if not 0 <= index < len(self.turns):
            raise IndexError(f"No turn at index {index}")
        return self.turns.pop(index)

    def recent(self, limit: int = 12) -> list[Turn]:
        """Trimmed copies of the last `limit` turns."""
        window = self.turns[-limit:] if limit > 0 else []
        return [Turn(role=t.role, text=t.text.strip(), transcript_id=t.transcript_id) for t in window]

    def user_turns(self) -> list[Turn]:
        return [t for t in self.turns if t.role == TurnRole.USER]

    @property
    def user_turn_count(self) -> int:
        return sum(1 for t in self.turns if t.role == TurnRole.USER)

    def last_user_text(self) -> str | None:
        for turn in reversed(self.turns):
            if turn.role == TurnRole.USER:
                return turn.text
        return None

    def transcript(self, limit: int | None = None) -> list[dict[str, str]]:
        """Role/text pairs for the external collaborators."""
        turns = self.turns if limit is None else self.turns[-limit:]
        return [{"role": t.role.value, "text": t.text} for t in turns]
