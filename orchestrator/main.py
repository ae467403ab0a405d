"""Conversation orchestration engine for Wayfinder.

Collaborators:
1. InsightExtractor - LLM insight extraction on every user turn (optional)
2. SuggestionGenerator - card generation when the gate says so
3. DialogueChannel - streaming voice channel (realtime events relayed by the client)

Flow per finalized user turn:
TurnLog → InsightStore merge → RubricScorer → PhaseStateMachine
        → SuggestionGate → (single-flight fetch) → CardRevealController
"""

import logging
import re
import time
from typing import Any, Awaitable, Callable
from uuid import uuid4

from config import GateThresholds, RevealSettings, RubricThresholds
from memory.card_deck import SuggestionCard
from memory.turn_log import Turn, TurnRole
from orchestrator import reducers
from orchestrator.channel import DialogueChannel, RealtimeChannel
from orchestrator.context import ContextMixin
from orchestrator.engagement import extract_heuristic_insights
from orchestrator.phases import PhaseContext, PhaseDecision, recommend_phase
from orchestrator.reveal import CardRevealController, RevealMode
from orchestrator.rubric import RubricScorer
from orchestrator.session import SessionState
from orchestrator.suggestion_gate import GateDecision, GateInputs, GateState, GateTrigger, SuggestionGate

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]

OPENING_LINE = (
    "Let's chat about what you're into and what you're working on. As we go, "
    "I'll suggest some ideas you can thumbs up or down."
)

INTRO_LINES = [
    "That triggers some ideas! Give me a moment to pull something together...",
    "Based on what you've shared, let me find some paths that might fit...",
    "This is giving me some ideas. Let me research a few options...",
    "I'm seeing some interesting directions. Let me build some cards for you...",
    "That's helpful context! Let me explore some career paths for you...",
]

ANNOUNCEMENT_PREFIX = "announce-"
DEEPENING_PREFIX = "deepen-"
OPENING_ID = "opening"

# Assistant promising cards ("let me pull some ideas together")
CARD_PROMISE_PATTERN = re.compile(
    r"\b(?:let me|i'?ll|i will)\s+(?:pull|put|find|build|gather|grab|line up|research|explore|come up with)\b"
    r"[^.!?]*\b(?:ideas?|options?|cards?|paths?|pathways?|suggestions?)\b",
    re.IGNORECASE,
)


class Orchestrator(ContextMixin):
    """
    One engine per session; every mutation happens on the event loop.

    API:
    - start() → opening state
    - submit_user_text(text) / handle_turn(turn) → gate decision for the turn
    - handle_realtime_event(event) → relayed voice channel events
    - vote(card_id, value), request_cards(), set_mode(mode)
    - get_state(), to_dict() / from_dict()
    """

    def __init__(
        self,
        session_id: str | None = None,
        mode: RevealMode = RevealMode.TEXT,
        extractor: Any | None = None,
        generator: Any | None = None,
        channel: DialogueChannel | None = None,
        on_event: EventHandler | None = None,
        rubric_thresholds: RubricThresholds | None = None,
        gate_thresholds: GateThresholds | None = None,
        reveal_settings: RevealSettings | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.session_id = session_id
        self.session = SessionState(session_id=session_id, mode=mode)

        # Collaborators
        self.extractor = extractor
        self.generator = generator
        self.on_event = on_event
        self.channel = channel or RealtimeChannel(send=self._send_channel_event)
        if isinstance(self.channel, RealtimeChannel) and self.channel.on_transcript is None:
            self.channel.on_transcript = self.handle_turn

        # Engine components
        self.scorer = RubricScorer(rubric_thresholds)
        self.gate = SuggestionGate(gate_thresholds)
        self.reveal = CardRevealController(
            channel=self.channel,
            settings=reveal_settings,
            on_reveal=self._on_cards_revealed,
        )

        self._clock = clock or time.time
        self._fetch_in_flight = False
        self._fetch_insert_at: int | None = None
        self._greeted_voice = False

    @property
    def fetch_in_flight(self) -> bool:
        return self._fetch_in_flight

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _emit(self, event: dict[str, Any]) -> None:
        if self.on_event is not None:
            await self.on_event(event)

    async def _emit_state(self) -> None:
        await self._emit({"type": "state", "state": self.get_state()})

    async def _send_channel_event(self, event: dict[str, Any]) -> None:
        """Events for the realtime session travel back through the client."""
        await self._emit({"type": "channel_event", "event": event})

    async def _on_cards_revealed(self, insert_at: int, card_ids: list[str]) -> None:
        await self._emit({
            "type": "cards_revealed",
            "insert_at": insert_at,
            "cards": self._cards_payload(card_ids),
        })

    async def _append_turn(self, turn: Turn) -> int | None:
        self.session, index = reducers.apply_turn(self.session, turn)
        if index is not None:
            stored = self.session.turn_log.turns[index]
            await self._emit({"type": "turn", "index": index, **stored.model_dump(mode="json")})
        return index

    def _retract_turn(self, transcript_id: str) -> None:
        index = self.session.turn_log.index_of(transcript_id)
        self.session = reducers.retract_turn(self.session, transcript_id)
        if index is not None:
            self._turn_removed(index)

    def _turn_removed(self, index: int) -> None:
        """Shift card insertion points, including a pending fetch's, past a deleted turn."""
        self.reveal.turn_removed(index)
        if self._fetch_insert_at is not None and self._fetch_insert_at > index:
            self._fetch_insert_at -= 1

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> dict[str, Any]:
        """Open the conversation and evaluate the session-start trigger."""
        if self.session.mode == RevealMode.TEXT and len(self.session.turn_log) == 0:
            await self._append_turn(Turn(role=TurnRole.ASSISTANT, text=OPENING_LINE, transcript_id=OPENING_ID))
        await self._evaluate(GateTrigger.SESSION_START)
        return self.get_state()

    async def set_mode(self, mode: RevealMode) -> None:
        self.session = reducers.set_mode(self.session, mode)
        if mode == RevealMode.TEXT:
            self._greeted_voice = False
        logger.info("Session %s switched to %s mode", self.session_id, mode.value)

    async def on_voice_connected(self) -> GateDecision | None:
        """Voice channel is up: let the assistant greet first, once per voice stint."""
        await self.set_mode(RevealMode.VOICE)
        if self._greeted_voice:
            return None
        self._greeted_voice = True
        await self.channel.send_event({
            "type": "response.create",
            "response": {"output_modalities": ["audio", "text"]},
        })
        return await self._evaluate(GateTrigger.VOICE_GREETING)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def submit_user_text(self, text: str) -> GateDecision | None:
        """
        Typed user message.

        In voice mode the message is also pushed into the realtime session;
        the acknowledgement wait is bounded and a timeout only logs a warning.
        """
        if self.session.mode != RevealMode.VOICE:
            return await self.handle_turn(Turn(role=TurnRole.USER, text=text))

        item_id = f"item-{uuid4().hex[:12]}"
        await self.channel.send_event({
            "type": "conversation.item.create",
            "item": {
                "id": item_id,
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        })
        await self.channel.wait_for_item(item_id, self.reveal.settings.ack_timeout_seconds)
        await self.channel.send_event({"type": "response.create"})
        return await self.handle_turn(Turn(role=TurnRole.USER, text=text, transcript_id=item_id))

    async def handle_realtime_event(self, event: dict[str, Any]) -> Turn | None:
        """Relay one realtime event; finalized transcripts come back through handle_turn."""
        if not isinstance(self.channel, RealtimeChannel):
            raise TypeError("Realtime events need a RealtimeChannel")
        return await self.channel.handle_event(event)

    async def handle_turn(self, turn: Turn) -> GateDecision | None:
        """Run the full pipeline for one finalized turn."""
        previous_length = len(self.session.turn_log)
        index = await self._append_turn(turn)
        if index is None:
            return None
        is_new = index == previous_length

        if turn.role == TurnRole.ASSISTANT:
            self._refresh_rubric_and_phase()
            if is_new and CARD_PROMISE_PATTERN.search(turn.text):
                logger.info("Assistant promised cards; forcing a fetch")
                return await self._evaluate(GateTrigger.ASSISTANT_PROMISE)
            return None

        await self._refresh_insights()
        phase_decision = self._refresh_rubric_and_phase()
        if not is_new:
            # A corrected transcript is not a new turn for the gate
            await self._emit_state()
            return self.session.last_gate_decision

        decision = await self._evaluate(GateTrigger.TURN)
        if phase_decision.should_seed_teaser_card and not decision.should_fetch:
            decision = await self._evaluate(GateTrigger.TEASER)

        await self._emit_state()
        return decision

    async def _refresh_insights(self) -> None:
        turns = self.session.turn_log.turns
        store = self.session.insights
        # Heuristics only introduce facts; they never refresh a stored record
        candidates: list[Any] = [
            candidate for candidate in extract_heuristic_insights(turns)
            if not store.holds(candidate.kind, candidate.value)
        ]

        if self.extractor is not None:
            try:
                extracted = await self.extractor.aextract(
                    self.session.turn_log.recent(self.scorer.thresholds.turn_window),
                    self.session.insights.fingerprints(),
                )
                candidates.extend(extracted or [])
            except Exception as e:
                logger.warning("Insight extraction failed; keeping prior insights: %s", e)

        self.session, result = reducers.merge_insights(self.session, candidates)
        if result.changed:
            logger.info(
                "Insights merged: %d inserted, %d updated, %d dropped",
                len(result.inserted), len(result.updated), result.dropped,
            )

    def _refresh_rubric_and_phase(self) -> PhaseDecision:
        session = self.session
        update = self.scorer.score(
            session.turn_log.turns,
            session.insights.insights,
            votes=session.deck.votes,
            suggestion_count=len(session.deck),
            previous=session.rubric,
        )
        if update.changed:
            self.session = reducers.apply_rubric(self.session, update.snapshot)

        decision = recommend_phase(PhaseContext(
            current_phase=self.session.phase,
            turns=self.session.turn_log.turns,
            insights=self.session.insights.insights,
            suggestion_count=len(self.session.deck),
            vote_count=self.session.deck.vote_count,
            rubric=self.session.rubric,
        ))
        if decision.next_phase != self.session.phase:
            logger.info(
                "Phase %s -> %s: %s",
                self.session.phase.value, decision.next_phase.value, decision.rationale[0],
            )
        self.session = reducers.apply_phase(self.session, decision)
        return decision

    # ------------------------------------------------------------------
    # Gate and fetch
    # ------------------------------------------------------------------

    async def request_cards(self) -> GateDecision:
        """Explicit request from the user/UI; forced unless the backlog guard holds."""
        return await self._evaluate(GateTrigger.MANUAL)

    async def _evaluate(self, trigger: GateTrigger) -> GateDecision:
        deck = self.session.deck
        decision = self.gate.evaluate(GateInputs(
            trigger=trigger,
            turns=self.session.turn_log.turns,
            insights=self.session.insights.insights,
            rubric=self.session.rubric,
            card_count=len(deck),
            unreviewed_card_ids=[card.id for card in deck.unreviewed()],
            last_interaction_at=deck.last_interaction_at,
            now=self._clock(),
        ))
        self.session = reducers.record_gate_decision(self.session, decision)
        logger.debug("Gate (%s): %s", trigger.value, decision.reason)

        if decision.resurface_card_ids:
            await self.reveal.resurface(
                decision.resurface_card_ids,
                len(self.session.turn_log),
                self.session.mode,
            )
        if decision.nudge_text:
            await self._emit({
                "type": "nudge",
                "text": decision.nudge_text,
                "card_ids": decision.resurface_card_ids,
            })
        if decision.deepening_prompt:
            await self._deliver_deepening_prompt(decision.deepening_prompt)
        if decision.should_fetch:
            await self.fetch_suggestions(decision)
        return decision

    async def _deliver_deepening_prompt(self, prompt: str) -> None:
        await self._emit({"type": "deepening_prompt", "text": prompt})
        if self.session.mode == RevealMode.VOICE:
            # The spoken question comes back as an assistant transcript
            await self.channel.send_event({
                "type": "response.create",
                "response": {"instructions": f"Ask the user this, in your own words: {prompt}"},
            })
            return
        await self._append_turn(Turn(
            role=TurnRole.ASSISTANT,
            text=prompt,
            transcript_id=f"{DEEPENING_PREFIX}{uuid4().hex[:8]}",
        ))

    async def fetch_suggestions(self, decision: GateDecision) -> list[SuggestionCard]:
        """
        Single-flight fetch.

        The in-flight flag is checked and set with no await in between, so a
        second trigger arriving during a fetch is dropped instead of issuing
        another generator call.
        """
        if self._fetch_in_flight:
            logger.info("Suggestion fetch already in flight; ignoring %s trigger", decision.trigger.value)
            return []
        self._fetch_in_flight = True
        try:
            return await self._run_fetch(decision)
        finally:
            self._fetch_in_flight = False
            self._fetch_insert_at = None

    async def _run_fetch(self, decision: GateDecision) -> list[SuggestionCard]:
        announcement_id: str | None = None
        if decision.allow_card_prompt:
            announcement_id = f"{ANNOUNCEMENT_PREFIX}{uuid4().hex[:8]}"
            line = INTRO_LINES[len(self.session.turn_log) % len(INTRO_LINES)]
            await self._append_turn(Turn(role=TurnRole.ASSISTANT, text=line, transcript_id=announcement_id))

        # Cards attach where the fetch began, whatever arrives meanwhile
        self._fetch_insert_at = len(self.session.turn_log)
        request = self._suggestion_request(decision)

        cards: list[SuggestionCard] = []
        if self.generator is None:
            logger.warning("No suggestion generator configured; skipping fetch")
        else:
            try:
                cards = await self.generator.agenerate(request) or []
            except Exception as e:
                logger.warning("Suggestion fetch failed (%s mode): %s", decision.fetch_mode.value, e)

        if not cards:
            self.gate.record_failure()
            if announcement_id is not None:
                self._retract_turn(announcement_id)
                await self._emit({"type": "retract", "transcript_id": announcement_id})
            return []

        self.session, added = reducers.merge_cards(self.session, cards)
        self.gate.record_success(decision, self._clock())
        self._refresh_rubric_and_phase()

        await self.reveal.reveal([card.id for card in added], self._fetch_insert_at, self.session.mode)
        return added

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def vote(self, card_id: str, value: int | None) -> None:
        """Save (1), maybe (0), skip (-1) or clear (None) a card."""
        self.session = reducers.record_vote(self.session, card_id, value, self._clock())
        self._refresh_rubric_and_phase()
        await self._emit_state()

    async def edit_turn(self, index: int, text: str) -> None:
        self.session = reducers.edit_turn(self.session, index, text)
        self._refresh_rubric_and_phase()

    async def remove_turn(self, index: int) -> None:
        self.session = reducers.remove_turn(self.session, index)
        self._turn_removed(index)
        self._refresh_rubric_and_phase()

    async def remove_insight(self, insight_id: str) -> None:
        self.session = reducers.remove_insight(self.session, insight_id)
        self._refresh_rubric_and_phase()

    async def clear_cards(self) -> None:
        self.session = reducers.clear_cards(self.session)
        self._refresh_rubric_and_phase()

    # ------------------------------------------------------------------
    # Exposed state
    # ------------------------------------------------------------------

    def get_state(self) -> dict[str, Any]:
        """Phase, rubric, latest gate decision, insights, timeline and backlog."""
        session = self.session
        return {
            "session_id": self.session_id,
            "mode": session.mode.value,
            "phase": session.phase.value,
            "phase_rationale": list(session.phase_rationale),
            "rubric": session.rubric.model_dump(mode="json") if session.rubric else None,
            "gate_decision": (
                session.last_gate_decision.model_dump(mode="json")
                if session.last_gate_decision else None
            ),
            "insights": session.insights.aggregates(),
            "timeline": self._timeline_payload(),
            "backlog": self._backlog_payload(),
            "card_groups": {
                group: [card.id for card in cards]
                for group, cards in session.deck.groups().items()
            },
            "votes": dict(session.deck.votes),
            "fetch_in_flight": self._fetch_in_flight,
        }

    def to_dict(self) -> dict[str, Any]:
        """Session aggregate plus gate hysteresis and card placements."""
        return {
            "session": self.session.to_dict(),
            "gate": self.gate.snapshot().model_dump(mode="json"),
            "placements": {str(k): list(v) for k, v in self.reveal.placements.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> "Orchestrator":
        """Restore an engine from `to_dict` output; collaborators come from kwargs."""
        session = SessionState.from_dict(data.get("session", {}))
        orchestrator = cls(session_id=session.session_id, mode=session.mode, **kwargs)
        orchestrator.session = session
        orchestrator.gate.restore(GateState.model_validate(data.get("gate", {})))
        orchestrator.reveal.placements = {
            int(k): list(v) for k, v in (data.get("placements") or {}).items()
        }
        return orchestrator
