"""
InsightStore - deduplicating aggregate of extracted facts about the user.

Stores:
- One Insight per (kind, normalized value)
- Provenance metadata (source, confidence, evidence) refreshed on re-submission
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class InsightKind(str, Enum):
    INTEREST = "interest"
    STRENGTH = "strength"
    CONSTRAINT = "constraint"
    GOAL = "goal"
    FRUSTRATION = "frustration"
    HOPE = "hope"
    BOUNDARY = "boundary"
    HIGHLIGHT = "highlight"


class InsightSource(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


ASPIRATION_KINDS = frozenset({InsightKind.HOPE, InsightKind.GOAL, InsightKind.HIGHLIGHT})
CONSTRAINT_KINDS = frozenset({InsightKind.CONSTRAINT, InsightKind.FRUSTRATION, InsightKind.BOUNDARY})
BASE_KINDS = frozenset({InsightKind.INTEREST, InsightKind.STRENGTH})


def normalize_value(value: str) -> str:
    """Case and whitespace normalization used for the dedupe key."""
    return " ".join(value.split()).lower()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InsightCandidate(BaseModel):
    """
    Raw insight proposed by the extractor (or heuristics).

    Validation is strict on kind/value so malformed entries can be dropped one
    at a time without failing the whole batch.
    """
    kind: InsightKind
    value: str
    source: InsightSource = InsightSource.USER
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    evidence: str | None = None

    @field_validator("value")
    @classmethod
    def _value_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("value is empty")
        return value


class Insight(BaseModel):
    """Stored insight record."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: InsightKind
    value: str
    source: InsightSource = InsightSource.USER
    confidence: float | None = None
    evidence: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def key(self) -> tuple[InsightKind, str]:
        return self.kind, normalize_value(self.value)


class InsightMergeResult(BaseModel):
    inserted: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    dropped: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated)


class InsightStore(BaseModel):
    """Ordered collection of insights keyed by (kind, normalized value)."""
    insights: list[Insight] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.insights)

    def _find(self, kind: InsightKind, value: str) -> Insight | None:
        key = (kind, normalize_value(value))
        for insight in self.insights:
            if insight.key == key:
                return insight
        return None

    def holds(self, kind: InsightKind, value: str) -> bool:
        return self._find(kind, value) is not None

    @staticmethod
    def _coerce(raw: Any) -> InsightCandidate | None:
        if isinstance(raw, InsightCandidate):
            return raw
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        if not isinstance(raw, dict):
            return None
        try:
            return InsightCandidate.model_validate(raw)
        except ValidationError:
            return None

    def merge(self, candidates: list[Any]) -> InsightMergeResult:
        """
        Merge candidate insights.

        Existing key -> refresh metadata in place (id and created_at kept).
        New key -> insert. Malformed candidates are skipped individually.
        """
        result = InsightMergeResult()
        for raw in candidates or []:
            candidate = self._coerce(raw)
            if candidate is None:
                result.dropped += 1
                logger.debug("Dropping malformed insight candidate: %r", raw)
                continue

            existing = self._find(candidate.kind, candidate.value)
            if existing is None:
                insight = Insight(
                    kind=candidate.kind,
                    value=candidate.value,
                    source=candidate.source,
                    confidence=candidate.confidence,
                    evidence=candidate.evidence,
                )
                self.insights.append(insight)
                result.inserted.append(insight.id)
                continue

            changes: dict[str, Any] = {}
            if candidate.source != existing.source:
                changes["source"] = candidate.source
            if candidate.confidence is not None and candidate.confidence != existing.confidence:
                changes["confidence"] = candidate.confidence
            if candidate.evidence and candidate.evidence != existing.evidence:
                changes["evidence"] = candidate.evidence
            if not changes:
                continue

            for field_name, value in changes.items():
                setattr(existing, field_name, value)
            existing.updated_at = _now()
            result.updated.append(existing.id)

        if result.dropped:
            logger.info("Dropped %d malformed insight candidate(s)", result.dropped)
        return result

    def remove(self, insight_id: str) -> bool:
        """Explicit user deletion."""
        for index, insight in enumerate(self.insights):
            if insight.id == insight_id:
                del self.insights[index]
                return True
        return False

    def aggregates(self) -> dict[str, list[str]]:
        """Deduplicated values grouped by kind, in insertion order."""
        grouped: dict[str, list[str]] = {}
        for insight in self.insights:
            grouped.setdefault(insight.kind.value, []).append(insight.value)
        return grouped

    def fingerprints(self) -> list[str]:
        """Compact keys handed to the extractor so it can skip known facts."""
        return [f"{i.kind.value}:{normalize_value(i.value)}" for i in self.insights]
