"""
RubricScorer - point-in-time engagement/readiness snapshot.

The snapshot is recomputed wholesale on every relevant change. A recomputation
that matches the previous snapshot field for field (timestamp excluded) is
reported as unchanged and the previous object is handed back, so downstream
consumers never see a "new" rubric that carries no new information.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field

from config import Config, RubricThresholds
from memory.insight_store import ASPIRATION_KINDS, Insight, InsightKind
from memory.turn_log import Turn, TurnRole
from orchestrator.engagement import analyze_engagement

logger = logging.getLogger(__name__)


class EngagementStyle(str, Enum):
    LEANING_IN = "leaning-in"
    HESITANT = "hesitant"
    BLOCKED = "blocked"
    SEEKING_OPTIONS = "seeking-options"


class EnergyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReadinessBias(str, Enum):
    EXPLORING = "exploring"
    SEEKING_OPTIONS = "seeking-options"
    DECIDING = "deciding"


class CardReadinessStatus(str, Enum):
    BLOCKED = "blocked"
    CONTEXT_LIGHT = "context-light"
    READY = "ready"


class CardReadiness(BaseModel):
    status: CardReadinessStatus = CardReadinessStatus.BLOCKED
    reasons: list[str] = Field(default_factory=list)


IDEAS_REQUEST_PATTERN = re.compile(
    r"\b(?:options?|ideas?|careers?|suggestions?|what (?:could|should|can) i do|show me)\b",
    re.IGNORECASE,
)
DECISION_PATTERN = re.compile(
    r"\b(?:i'?ll (?:try|go with|do)|let'?s go with|i'?m leaning (?:towards?|to)|i(?:'ve| have) decided|that'?s the one)\b",
    re.IGNORECASE,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RubricSnapshot(BaseModel):
    """
    Heuristic engagement/readiness snapshot.

    Defaults are the most conservative reading so that a missing rubric makes
    every gate fail closed.
    """
    engagement_style: EngagementStyle = EngagementStyle.BLOCKED
    context_depth: int = Field(default=0, ge=0, le=3)
    energy_level: EnergyLevel = EnergyLevel.LOW
    readiness_bias: ReadinessBias = ReadinessBias.EXPLORING
    explicit_ideas_request: bool = False
    card_readiness: CardReadiness = Field(default_factory=CardReadiness)
    last_updated_at: datetime = Field(default_factory=_utcnow)

    def signature(self) -> str:
        """Every field except the timestamp, as a stable string."""
        return "|".join([
            self.engagement_style.value,
            str(self.context_depth),
            self.energy_level.value,
            self.readiness_bias.value,
            "ideas" if self.explicit_ideas_request else "-",
            self.card_readiness.status.value,
            ",".join(self.card_readiness.reasons),
        ])

    def same_as(self, other: RubricSnapshot | None) -> bool:
        return other is not None and self.signature() == other.signature()


class RubricUpdate(BaseModel):
    snapshot: RubricSnapshot
    changed: bool
    reasoning: list[str] = Field(default_factory=list)


def _band(value: int, bands: Iterable[int]) -> int:
    """Number of band edges strictly exceeded."""
    return sum(1 for edge in bands if value > edge)


class RubricScorer:
    """
    Computes a RubricSnapshot from recent turns, insights, votes and card counts.

    Thresholds come from `Config.rubric_thresholds()` unless given explicitly.
    """

    def __init__(self, thresholds: RubricThresholds | None = None):
        self.thresholds = thresholds or Config.rubric_thresholds()

    def score(
        self,
        turns: list[Turn],
        insights: list[Insight],
        votes: dict[str, int] | None = None,
        suggestion_count: int = 0,
        previous: RubricSnapshot | None = None,
    ) -> RubricUpdate:
        t = self.thresholds
        votes = votes or {}
        reasoning: list[str] = []

        window = [turn for turn in turns[-t.turn_window:] if turn.text.strip()]
        recent = window[-t.recent_window:]
        recent_user = [turn for turn in recent if turn.role == TurnRole.USER]
        recent_chars = sum(len(turn.text.strip()) for turn in recent_user)
        window_chars = sum(len(turn.text.strip()) for turn in window if turn.role == TurnRole.USER)

        explicit_request = any(IDEAS_REQUEST_PATTERN.search(turn.text) for turn in recent_user)
        decision_phrase = any(DECISION_PATTERN.search(turn.text) for turn in recent_user)

        # Engagement
        if not recent_user:
            style = EngagementStyle.BLOCKED
            reasoning.append("No recent user turns")
        elif explicit_request:
            style = EngagementStyle.SEEKING_OPTIONS
            reasoning.append("User asked for options or ideas")
        elif recent_chars > t.leaning_in_chars:
            style = EngagementStyle.LEANING_IN
        elif recent_chars > t.hesitant_chars:
            style = EngagementStyle.HESITANT
        else:
            style = EngagementStyle.BLOCKED

        analysis = analyze_engagement(window, window_size=t.turn_window)
        if style == EngagementStyle.HESITANT and analysis.engagement_score >= t.engagement_lift_score:
            style = EngagementStyle.LEANING_IN
            reasoning.append(f"Engagement score {analysis.engagement_score:.2f} lifts hesitant to leaning-in")
        elif style == EngagementStyle.LEANING_IN and analysis.negative_signals >= t.negative_signal_limit:
            style = EngagementStyle.HESITANT
            reasoning.append(f"{analysis.negative_signals} negative signals temper leaning-in")

        # Energy
        if recent_chars > t.high_energy_chars:
            energy = EnergyLevel.HIGH
        elif recent_chars > t.medium_energy_chars:
            energy = EnergyLevel.MEDIUM
        else:
            energy = EnergyLevel.LOW

        # Context depth: detail volume combined with kind coverage
        kinds = {insight.kind for insight in insights}
        volume = _band(window_chars, t.depth_volume_bands)
        coverage = sum(1 for edge in t.depth_coverage_bands if len(kinds) >= edge)
        depth = min(3, (volume + coverage + 1) // 2)
        reasoning.append(f"Depth {depth} from volume band {volume} and {len(kinds)} insight kinds")

        # Readiness bias; with cards on the table a decision outranks asking for more
        if decision_phrase and suggestion_count > 0:
            bias = ReadinessBias.DECIDING
            reasoning.append(f"Decision phrase with {suggestion_count} card(s) shown")
        elif explicit_request:
            bias = ReadinessBias.SEEKING_OPTIONS
        elif decision_phrase or (
            style == EngagementStyle.LEANING_IN and any(v == 1 for v in votes.values())
        ):
            bias = ReadinessBias.DECIDING
        else:
            bias = ReadinessBias.EXPLORING

        readiness = self._card_readiness(kinds, depth)

        snapshot = RubricSnapshot(
            engagement_style=style,
            context_depth=depth,
            energy_level=energy,
            readiness_bias=bias,
            explicit_ideas_request=explicit_request,
            card_readiness=readiness,
        )

        if snapshot.same_as(previous):
            return RubricUpdate(snapshot=previous, changed=False, reasoning=reasoning)

        logger.debug(
            "Rubric changed: %s (suggestions=%d, votes=%d)",
            snapshot.signature(), suggestion_count, len(votes),
        )
        return RubricUpdate(snapshot=snapshot, changed=True, reasoning=reasoning)

    def _card_readiness(self, kinds: set[InsightKind], depth: int) -> CardReadiness:
        missing_base = [k.value for k in (InsightKind.INTEREST, InsightKind.STRENGTH) if k not in kinds]
        if missing_base:
            return CardReadiness(
                status=CardReadinessStatus.BLOCKED,
                reasons=[f"missing {kind}" for kind in missing_base],
            )

        reasons: list[str] = []
        if not kinds & ASPIRATION_KINDS:
            reasons.append("missing aspiration")
        if depth < self.thresholds.ready_min_depth:
            reasons.append(f"context depth {depth} below {self.thresholds.ready_min_depth}")
        if reasons:
            return CardReadiness(status=CardReadinessStatus.CONTEXT_LIGHT, reasons=reasons)
        return CardReadiness(status=CardReadinessStatus.READY)
