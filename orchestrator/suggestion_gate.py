"""
SuggestionGate - decides when and how to ask the generator for cards.

Policy, highest priority first:
1. backlog guard (too many unreviewed cards left idle)
2. forced triggers (explicit request, assistant promise, teaser)
3. hard pre-gates for non-forced triggers, with a hobby deepening question
4. fallback escalation after a long blocked streak
5. context-light with an explicit ideas request
6. ready with a meaningful change, an explicit request or enough turns
7. no fetch

The gate owns a small hysteresis record (`GateState`) that is updated as a
side effect of TURN evaluations and can be snapshotted/restored.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, Field

from config import Config, GateThresholds
from memory.insight_store import Insight
from memory.turn_log import Turn, TurnRole
from orchestrator.activity_signals import ActivitySignalSummary, build_hobby_deepening_prompt, summarize_activity_signals
from orchestrator.rubric import CardReadinessStatus, RubricSnapshot

logger = logging.getLogger(__name__)


class GateTrigger(str, Enum):
    TURN = "turn"
    SESSION_START = "session-start"
    VOICE_GREETING = "voice-greeting"
    ASSISTANT_PROMISE = "assistant-promise"
    TEASER = "teaser"
    MANUAL = "manual"


FORCED_TRIGGERS = frozenset({GateTrigger.MANUAL, GateTrigger.ASSISTANT_PROMISE, GateTrigger.TEASER})


class FetchMode(str, Enum):
    NORMAL = "normal"
    FALLBACK = "fallback"


BACKLOG_NUDGE_TEXT = (
    "You've got a few ideas waiting. Give them a quick save, maybe or skip "
    "and I'll tune the next round to what you pick."
)


class GateInputs(BaseModel):
    """Everything the gate reads; it never reaches into the session itself."""
    trigger: GateTrigger = GateTrigger.TURN
    forced: bool = False
    turns: list[Turn] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    rubric: RubricSnapshot | None = None
    card_count: int = 0
    unreviewed_card_ids: list[str] = Field(default_factory=list)
    last_interaction_at: float | None = None
    now: float = 0.0

    @property
    def is_forced(self) -> bool:
        return self.forced or self.trigger in FORCED_TRIGGERS


class GateDecision(BaseModel):
    should_fetch: bool = False
    fetch_mode: FetchMode = FetchMode.NORMAL
    allow_card_prompt: bool = False
    insight_count: int = 0
    turn_count: int = 0
    focus_text: str | None = None
    reason: str = ""
    limit: int = 0
    trigger: GateTrigger = GateTrigger.TURN
    resurface_card_ids: list[str] = Field(default_factory=list)
    nudge_text: str | None = None
    deepening_prompt: str | None = None
    signature: str | None = None


class GateState(BaseModel):
    """Hysteresis owned by the gate."""
    blocked_streak: int = 0
    last_ready_signature: str | None = None
    turns_since_last_suggestion: int = 0
    last_delivery_at: float | None = None
    backlog_suppressed: bool = False
    backlog_nudge_sent: bool = False
    last_hobby_label: str | None = None
    hobby_prompt_insight_count: int = 0


def ready_signature(rubric: RubricSnapshot, insights: list[Insight]) -> str:
    """
    Readiness-relevant rubric fields plus the set of insight kinds.

    Energy and engagement style re-band on every turn and are left out, so a
    change here is 'meaningful'.
    """
    kinds = ",".join(sorted({i.kind.value for i in insights}))
    return "|".join([
        str(rubric.context_depth),
        rubric.readiness_bias.value,
        rubric.card_readiness.status.value,
        "ideas" if rubric.explicit_ideas_request else "-",
        kinds,
    ])


class SuggestionGate:
    """Priority-ordered fetch policy with snapshot-able hysteresis."""

    def __init__(self, thresholds: GateThresholds | None = None, state: GateState | None = None):
        self.thresholds = thresholds or Config.gate_thresholds()
        self.state = state or GateState()

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def snapshot(self) -> GateState:
        return self.state.model_copy(deep=True)

    def restore(self, state: GateState) -> None:
        self.state = state.model_copy(deep=True)

    def record_success(self, decision: GateDecision, now: float) -> None:
        """A batch was delivered: reset hysteresis and remember what it was based on."""
        self.state.blocked_streak = 0
        self.state.turns_since_last_suggestion = 0
        self.state.last_delivery_at = now
        if decision.signature:
            self.state.last_ready_signature = decision.signature
        logger.debug("Gate hysteresis reset after %s fetch", decision.fetch_mode.value)

    def record_failure(self) -> None:
        """Failed or empty fetch: hysteresis stays as it was so the next turn can retry."""
        logger.debug("Gate hysteresis kept after failed fetch (streak=%d)", self.state.blocked_streak)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, inputs: GateInputs) -> GateDecision:
        t = self.thresholds
        state = self.state
        rubric = inputs.rubric or RubricSnapshot()
        status = rubric.card_readiness.status
        signature = ready_signature(rubric, inputs.insights)

        if inputs.trigger == GateTrigger.TURN:
            state.turns_since_last_suggestion += 1
            state.blocked_streak = state.blocked_streak + 1 if status == CardReadinessStatus.BLOCKED else 0

        base = GateDecision(
            insight_count=len(inputs.insights),
            turn_count=len(inputs.turns),
            focus_text=self._focus_text(inputs.turns),
            trigger=inputs.trigger,
            signature=signature,
        )

        backlog = self._backlog_guard(inputs, base)
        if backlog is not None:
            return backlog

        if inputs.is_forced:
            return self._forced(inputs, status, base)

        activity = summarize_activity_signals(inputs.insights)
        unmet = self._unmet_pre_gates(inputs, rubric, activity)
        if unmet:
            return self._pre_gate_block(inputs, activity, unmet, base)

        if state.blocked_streak >= t.blocked_streak_limit:
            return self._fetch(base, FetchMode.FALLBACK, f"blocked for {state.blocked_streak} turns; escalate to fallback")

        if status == CardReadinessStatus.CONTEXT_LIGHT and rubric.explicit_ideas_request:
            return self._fetch(base, FetchMode.FALLBACK, "context-light but user asked for ideas")

        if status == CardReadinessStatus.READY:
            if signature != state.last_ready_signature:
                return self._fetch(base, FetchMode.NORMAL, "ready with a meaningful rubric change", allow_card_prompt=True)
            if rubric.explicit_ideas_request:
                return self._fetch(base, FetchMode.NORMAL, "ready and user asked for ideas", allow_card_prompt=True)
            if state.turns_since_last_suggestion >= t.turns_between_batches:
                return self._fetch(
                    base,
                    FetchMode.NORMAL,
                    f"ready and {state.turns_since_last_suggestion} turns since last batch",
                    allow_card_prompt=True,
                )

        return base.model_copy(update={"reason": f"no fetch (readiness {status.value})"})

    # ------------------------------------------------------------------
    # Policy steps
    # ------------------------------------------------------------------

    def _backlog_guard(self, inputs: GateInputs, base: GateDecision) -> GateDecision | None:
        t = self.thresholds
        state = self.state
        unreviewed = len(inputs.unreviewed_card_ids)

        if unreviewed < t.backlog_limit:
            if state.backlog_suppressed or state.backlog_nudge_sent:
                logger.info("Backlog cleared (%d unreviewed); fetches allowed again", unreviewed)
            state.backlog_suppressed = False
            state.backlog_nudge_sent = False
            return None

        if not state.backlog_suppressed:
            # Idle is measured from whichever happened last: delivery or interaction
            marks = [m for m in (state.last_delivery_at, inputs.last_interaction_at) if m is not None]
            if not marks or inputs.now - max(marks) < t.backlog_idle_seconds:
                return None
            state.backlog_suppressed = True

        if state.backlog_nudge_sent:
            return base.model_copy(update={"reason": f"backlog of {unreviewed} unreviewed cards; still suppressed"})

        state.backlog_nudge_sent = True
        logger.info("Backlog of %d unreviewed cards; re-surfacing and nudging", unreviewed)
        return base.model_copy(update={
            "reason": f"backlog of {unreviewed} unreviewed cards; nudge",
            "resurface_card_ids": list(inputs.unreviewed_card_ids),
            "nudge_text": BACKLOG_NUDGE_TEXT,
        })

    def _forced(self, inputs: GateInputs, status: CardReadinessStatus, base: GateDecision) -> GateDecision:
        if inputs.trigger == GateTrigger.TEASER:
            if inputs.card_count > 0:
                return base.model_copy(update={"reason": "teaser skipped; cards already on the table"})
            return self._fetch(base, FetchMode.FALLBACK, "teaser card to spark a reaction", limit=1)

        mode = FetchMode.NORMAL if status == CardReadinessStatus.READY else FetchMode.FALLBACK
        return self._fetch(
            base,
            mode,
            f"forced by {inputs.trigger.value}",
            allow_card_prompt=inputs.trigger == GateTrigger.MANUAL,
        )

    def _unmet_pre_gates(
        self,
        inputs: GateInputs,
        rubric: RubricSnapshot,
        activity: ActivitySignalSummary,
    ) -> list[str]:
        t = self.thresholds
        kinds = {i.kind for i in inputs.insights}
        user_turns = sum(1 for turn in inputs.turns if turn.role == TurnRole.USER)

        unmet = []
        if len(inputs.insights) < t.min_insights:
            unmet.append(f"{len(inputs.insights)}/{t.min_insights} insights")
        if len(kinds) < t.min_distinct_kinds:
            unmet.append(f"{len(kinds)}/{t.min_distinct_kinds} insight kinds")
        if user_turns < t.min_user_turns:
            unmet.append(f"{user_turns}/{t.min_user_turns} user turns")
        if rubric.context_depth < t.min_context_depth:
            unmet.append(f"context depth {rubric.context_depth}/{t.min_context_depth}")
        if activity.career_relevant_count < t.min_career_signals:
            unmet.append("no career-relevant activity yet")
        return unmet

    def _pre_gate_block(
        self,
        inputs: GateInputs,
        activity: ActivitySignalSummary,
        unmet: list[str],
        base: GateDecision,
    ) -> GateDecision:
        state = self.state
        reason = "pre-gate: " + "; ".join(unmet)
        label = activity.primary_hobby_label
        career_missing = activity.career_relevant_count < self.thresholds.min_career_signals

        if label and career_missing:
            key = label.lower()
            insight_count = len(inputs.insights)
            if key != state.last_hobby_label or insight_count > state.hobby_prompt_insight_count:
                state.last_hobby_label = key
                state.hobby_prompt_insight_count = insight_count
                prompt = build_hobby_deepening_prompt(label)
                logger.info("Hobby-only signals (%s); asking a deepening question", label)
                return base.model_copy(update={
                    "reason": f"{reason}; hobby deepening for {label}",
                    "deepening_prompt": prompt.prompt,
                })

        return base.model_copy(update={"reason": reason})

    def _fetch(
        self,
        base: GateDecision,
        mode: FetchMode,
        reason: str,
        allow_card_prompt: bool = False,
        limit: int | None = None,
    ) -> GateDecision:
        logger.info("Gate: fetch %s (%s)", mode.value, reason)
        return base.model_copy(update={
            "should_fetch": True,
            "fetch_mode": mode,
            "allow_card_prompt": allow_card_prompt,
            "reason": reason,
            "limit": limit or self.thresholds.card_limit,
        })

    def _focus_text(self, turns: list[Turn]) -> str | None:
        for turn in reversed(turns):
            if turn.role == TurnRole.USER:
                return turn.text[: self.thresholds.focus_text_chars]
        return None
