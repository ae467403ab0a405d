"""
Pydantic schemas for API request/response models.
"""

from typing import Any

from pydantic import BaseModel, Field


# WebSocket Message Schemas


class WSAnswer(BaseModel):
    """Client → Server: Typed user message."""
    type: str = "answer"
    answer: str


class WSRealtimeEvent(BaseModel):
    """Client → Server: Realtime voice event relayed from the browser."""
    type: str = "realtime_event"
    event: dict[str, Any]


class WSVote(BaseModel):
    """Client → Server: Reaction to a card (1 save, 0 maybe, -1 skip, null clear)."""
    type: str = "vote"
    card_id: str
    value: int | None = None


class WSMode(BaseModel):
    """Client → Server: Switch between text and voice."""
    type: str = "mode"
    mode: str
    connected: bool = False  # Voice channel is up and ready for the greeting


class WSRequestCards(BaseModel):
    """Client → Server: Explicit request for suggestion cards."""
    type: str = "request_cards"


class WSSessionStart(BaseModel):
    """Server → Client: Session started."""
    type: str = "session_start"
    session_id: str
    mode: str = "text"


class WSTurn(BaseModel):
    """Server → Client: Finalized turn written to the timeline."""
    type: str = "turn"
    index: int
    role: str
    text: str
    transcript_id: str | None = None


class WSCardsRevealed(BaseModel):
    """Server → Client: Cards placed after the turn at `insert_at`."""
    type: str = "cards_revealed"
    insert_at: int
    cards: list[dict[str, Any]] = []


class WSNudge(BaseModel):
    """Server → Client: One-time reminder about unreviewed cards."""
    type: str = "nudge"
    text: str
    card_ids: list[str] = []


class WSDeepeningPrompt(BaseModel):
    """Server → Client: Question linking a hobby to transferable skills."""
    type: str = "deepening_prompt"
    text: str


class WSRetract(BaseModel):
    """Server → Client: Remove an optimistic announcement turn."""
    type: str = "retract"
    transcript_id: str


class WSState(BaseModel):
    """Server → Client: Full engine state."""
    type: str = "state"
    state: dict[str, Any]


class WSChannelEvent(BaseModel):
    """Server → Client: Event to forward into the realtime voice session."""
    type: str = "channel_event"
    event: dict[str, Any]


class WSError(BaseModel):
    """Server → Client: Error message."""
    type: str = "error"
    message: str


# REST Schemas

class CreateSessionRequest(BaseModel):
    mode: str = "text"


class CreateSessionResponse(BaseModel):
    session_id: str
    state: dict[str, Any]


class VoteRequest(BaseModel):
    card_id: str
    value: int | None = Field(default=None, description="1 save, 0 maybe, -1 skip, null clear")


class StateResponse(BaseModel):
    """Exposed engine state for a session."""
    session_id: str
    mode: str
    phase: str
    phase_rationale: list[str] = []
    rubric: dict[str, Any] | None = None
    gate_decision: dict[str, Any] | None = None
    insights: dict[str, list[str]] = {}
    timeline: list[dict[str, Any]] = []
    backlog: dict[str, Any] = {}
    card_groups: dict[str, list[str]] = {}
    votes: dict[str, int] = {}
    fetch_in_flight: bool = False
