"""
Conversation phase state machine.

`recommend_phase` is a pure function: it never mutates the context it is
given and always explains itself through a non-empty rationale list.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from memory.insight_store import ASPIRATION_KINDS, BASE_KINDS, CONSTRAINT_KINDS, Insight
from memory.turn_log import Turn, TurnRole
from orchestrator.rubric import EngagementStyle, ReadinessBias, RubricSnapshot


class ConversationPhase(str, Enum):
    WARMUP = "warmup"
    STORY_MINING = "story-mining"
    PATTERN_MAPPING = "pattern-mapping"
    OPTION_SEEDING = "option-seeding"
    COMMITMENT = "commitment"


MIN_CONTEXT_DEPTH_FOR_PATTERN = 2
MIN_CONTEXT_DEPTH_FOR_OPTIONS = 2
MIN_KINDS_FOR_OPTIONS = 5

STORY_MINING_TEASER_TURNS = 6
PATTERN_MAPPING_TEASER_TURNS = 8
OPTION_SEEDING_TEASER_TURNS = 10

LOW_ENGAGEMENT = (EngagementStyle.BLOCKED, EngagementStyle.HESITANT)


class PhaseContext(BaseModel):
    current_phase: ConversationPhase = ConversationPhase.WARMUP
    turns: list[Turn] = Field(default_factory=list)
    insights: list[Insight] = Field(default_factory=list)
    suggestion_count: int = 0
    vote_count: int = 0
    rubric: RubricSnapshot | None = None


class PhaseDecision(BaseModel):
    next_phase: ConversationPhase
    rationale: list[str]
    should_seed_teaser_card: bool = False


def recommend_phase(context: PhaseContext) -> PhaseDecision:
    """Recommend the next phase for the given conversation context."""
    phase = context.current_phase
    turn_count = len(context.turns)
    kinds = {insight.kind for insight in context.insights}

    # A missing rubric reads as the most conservative snapshot
    rubric = context.rubric or RubricSnapshot()
    engagement = rubric.engagement_style
    depth = rubric.context_depth
    bias = rubric.readiness_bias
    low_engagement = engagement in LOW_ENGAGEMENT

    base_satisfied = BASE_KINDS <= kinds
    has_aspirations = bool(kinds & ASPIRATION_KINDS)
    has_constraints = bool(kinds & CONSTRAINT_KINDS)

    rationale: list[str] = []
    next_phase = phase
    teaser = False

    if phase == ConversationPhase.WARMUP:
        if any(turn.role == TurnRole.USER for turn in context.turns):
            next_phase = ConversationPhase.STORY_MINING
            rationale.append("User has started responding; move into story mining.")
        else:
            rationale.append("Awaiting initial user response; stay in warmup.")

    elif phase == ConversationPhase.STORY_MINING:
        ready_for_patterns = (
            base_satisfied
            and has_aspirations
            and (has_constraints or depth >= MIN_CONTEXT_DEPTH_FOR_PATTERN)
        )
        if ready_for_patterns:
            next_phase = ConversationPhase.PATTERN_MAPPING
            rationale.append("Insights now cover interests, strengths, and aspirations; move to pattern mapping.")
        elif low_engagement and turn_count >= STORY_MINING_TEASER_TURNS:
            teaser = True
            rationale.append("Rubric shows low engagement; seed teaser card to spark reaction.")
        else:
            rationale.append("Stay in story mining until aspirations (and ideally constraints) are surfaced.")

    elif phase == ConversationPhase.PATTERN_MAPPING:
        deep_context = (
            base_satisfied
            and has_aspirations
            and has_constraints
            and (depth >= MIN_CONTEXT_DEPTH_FOR_OPTIONS or len(kinds) >= MIN_KINDS_FOR_OPTIONS)
        )
        if rubric.explicit_ideas_request or bias == ReadinessBias.SEEKING_OPTIONS:
            next_phase = ConversationPhase.OPTION_SEEDING
            rationale.append("Rubric signals they're seeking options; progress to option seeding.")
        elif deep_context and (engagement == EngagementStyle.LEANING_IN or context.vote_count > 0):
            next_phase = ConversationPhase.OPTION_SEEDING
            rationale.append("Insight coverage and rubric depth high; ready to introduce cards.")
        elif low_engagement and context.suggestion_count == 0 and turn_count >= PATTERN_MAPPING_TEASER_TURNS:
            teaser = True
            rationale.append("Stalled despite coaching; try a teaser card to gauge reactions.")
        else:
            rationale.append("Continue mapping patterns to strengthen aspirations and constraints.")

    elif phase == ConversationPhase.OPTION_SEEDING:
        if context.vote_count > 0 and bias == ReadinessBias.DECIDING:
            next_phase = ConversationPhase.COMMITMENT
            rationale.append("Votes on cards and readiness to decide; shift to commitment.")
        elif low_engagement and context.suggestion_count == 0 and turn_count >= OPTION_SEEDING_TEASER_TURNS:
            teaser = True
            rationale.append("Option seeding stalled without cards; seed teaser to regain momentum.")
        else:
            rationale.append("Stay in option seeding to gather reactions and refine.")

    elif phase == ConversationPhase.COMMITMENT:
        if low_engagement and context.vote_count == 0:
            next_phase = ConversationPhase.PATTERN_MAPPING
            rationale.append("Commitment stalled; revert to pattern mapping for more context.")
        else:
            rationale.append("Remain in commitment to coach next steps.")

    return PhaseDecision(next_phase=next_phase, rationale=rationale, should_seed_teaser_card=teaser)
