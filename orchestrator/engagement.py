"""Engagement analysis and heuristic insight extraction over recent turns."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from memory.insight_store import InsightCandidate, InsightKind, InsightSource
from memory.turn_log import Turn, TurnRole

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "of", "in", "to", "for", "on", "with", "that",
    "this", "is", "it", "as", "are", "was", "were", "be", "by", "i", "you", "we",
    "they", "he", "she", "him", "her", "them", "me", "my", "your", "our", "their",
    "at", "from", "but", "about",
})

NEGATIVE_PATTERNS = [
    re.compile(r"i\s*(?:don't|do not)\s*know", re.IGNORECASE),
    re.compile(r"nothing (?:much|really)", re.IGNORECASE),
    re.compile(r"it('s)? (?:all )?pointless", re.IGNORECASE),
    re.compile(r"no idea", re.IGNORECASE),
    re.compile(r"not sure", re.IGNORECASE),
]

INITIATIVE_PATTERNS = [
    re.compile(r"what if", re.IGNORECASE),
    re.compile(r"maybe (we|i) could", re.IGNORECASE),
    re.compile(r"how about", re.IGNORECASE),
    re.compile(r"i wonder", re.IGNORECASE),
    re.compile(r"let'?s", re.IGNORECASE),
]

MAX_SALIENT_TOPICS = 20


class EngagementAnalysis(BaseModel):
    """Signals describing how the user is engaging with the conversation."""
    reply_count: int = 0
    aligned_replies: float = 0.0
    depth_signals: int = 0
    theme_adoptions: int = 0
    initiative_signals: int = 0
    negative_signals: int = 0
    engagement_score: float = 0.0
    salient_topics: list[str] = Field(default_factory=list)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def tokenize(text: str) -> list[str]:
    cleaned = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return [t for t in cleaned.split() if len(t) > 2 and t not in STOPWORDS]


def _topics(tokens: list[str]) -> list[str]:
    return list(dict.fromkeys(t for t in tokens if len(t) >= 4))


def analyze_engagement(turns: list[Turn], window_size: int = 12) -> EngagementAnalysis:
    """
    Score engagement over the last `window_size` turns.

    A user reply counts as aligned when it reuses words from the assistant's
    pending question, as a theme adoption when it picks up a topic the
    assistant introduced, and as a depth signal when it brings three or more
    words the user has not used before.
    """
    recent = turns[-window_size:]
    analysis = EngagementAnalysis()

    pending_question: list[str] = []
    last_assistant_topics: list[str] = []
    addressed_topics: set[str] = set()
    seen_user_tokens: set[str] = set()
    salient: dict[str, None] = {}

    for turn in recent:
        tokens = tokenize(turn.text)
        if turn.role == TurnRole.ASSISTANT:
            topics = _topics(tokens)
            if topics:
                last_assistant_topics = topics
            pending_question = (topics or tokens) if "?" in turn.text else []
            continue

        if not tokens:
            pending_question = []
            continue

        analysis.reply_count += 1
        for token in tokens:
            salient[token] = None

        if pending_question:
            overlap = [t for t in pending_question if t in tokens]
            ratio = len(overlap) / len(pending_question)
            if ratio >= 0.2:
                analysis.aligned_replies += 1 if ratio >= 0.5 else 0.5

        new_topics = [t for t in last_assistant_topics if t in tokens and t not in addressed_topics]
        if new_topics:
            analysis.theme_adoptions += 1
            addressed_topics.update(new_topics)

        fresh = [t for t in tokens if t not in seen_user_tokens]
        if len(fresh) >= 3:
            analysis.depth_signals += 1
        seen_user_tokens.update(fresh)

        if "?" in turn.text or any(p.search(turn.text) for p in INITIATIVE_PATTERNS):
            analysis.initiative_signals += 1
        if any(p.search(turn.text) for p in NEGATIVE_PATTERNS):
            analysis.negative_signals += 1

        pending_question = []

    replies = analysis.reply_count
    reply_score = _clamp(replies / 4, 0, 1)
    alignment_score = _clamp(analysis.aligned_replies / replies if replies else 0, 0, 1)
    depth_score = _clamp(analysis.depth_signals / 3, 0, 1)
    theme_score = _clamp(analysis.theme_adoptions / 3, 0, 1)
    initiative_score = _clamp(analysis.initiative_signals / 2, 0, 1)
    negative_penalty = _clamp(analysis.negative_signals * 0.25, 0, 0.75)

    analysis.engagement_score = _clamp(
        reply_score * 0.2
        + alignment_score * 0.25
        + depth_score * 0.2
        + theme_score * 0.2
        + initiative_score * 0.15
        - negative_penalty,
        0,
        1,
    )
    analysis.salient_topics = list(salient)[-MAX_SALIENT_TOPICS:]
    return analysis


# ---------------------------------------------------------------------------
# Heuristic insight extraction
# ---------------------------------------------------------------------------

INSIGHT_PATTERNS: list[tuple[InsightKind, re.Pattern[str]]] = [
    (InsightKind.GOAL, re.compile(r"\b(?:i\s*(?:want|hope|plan|aim|would like|intend|looking) to)\s+([^.!?]+)", re.IGNORECASE)),
    (InsightKind.GOAL, re.compile(r"\bmy (?:goal|dream|mission) is to\s+([^.!?]+)", re.IGNORECASE)),
    (InsightKind.STRENGTH, re.compile(r"\b(?:i(?:'m| am)?\s*(?:good|great|strong) at|i\s*(?:can|could|manage to))\s+([^.!?]+)", re.IGNORECASE)),
    (InsightKind.STRENGTH, re.compile(r"\b(?:i\s*(?:build|built|create|created|develop|developed|prototype|prototyped))\s+([^.!?]+)", re.IGNORECASE)),
    (InsightKind.INTEREST, re.compile(r"\b(?:i(?:'m| am)?\s*(?:into|interested in|passionate about|love|enjoy|fascinated by))\s+([^.!?]+)", re.IGNORECASE)),
    (InsightKind.CONSTRAINT, re.compile(r"\b(?:i\s*(?:don't want|wouldn't|won't|avoid|can't|refuse|prefer not) to)\s+([^.!?]+)", re.IGNORECASE)),
    (InsightKind.CONSTRAINT, re.compile(r"\bno interest in\s+([^.!?]+)", re.IGNORECASE)),
    (InsightKind.CONSTRAINT, re.compile(r"\bnot comfortable with\s+([^.!?]+)", re.IGNORECASE)),
]

MAX_HEURISTIC_INSIGHTS = 12


def _normalize_snippet(snippet: str, kind: InsightKind) -> str:
    value = snippet.strip()
    value = re.sub(r"^to\s+", "", value, flags=re.IGNORECASE)
    value = re.sub(r"^about\s+", "", value, flags=re.IGNORECASE)
    value = re.sub(r"\s+", " ", value)
    if len(value) > 160:
        value = value[:157] + "..."
    if kind == InsightKind.CONSTRAINT and not value.lower().startswith("avoid"):
        value = f"Avoid {value}"
    if kind == InsightKind.STRENGTH and value[:1].islower():
        value = value[0].upper() + value[1:]
    return value


def extract_heuristic_insights(turns: list[Turn], window_size: int = 16) -> list[InsightCandidate]:
    """Pattern-match user sentences into insight candidates (first match per sentence)."""
    candidates: list[InsightCandidate] = []
    seen: set[str] = set()
    user_turns = [t for t in turns if t.role == TurnRole.USER][-window_size:]

    for turn in user_turns:
        sentences = [s.strip() for s in re.split(r"[.!?]", turn.text) if s.strip()]
        for sentence in sentences:
            for kind, pattern in INSIGHT_PATTERNS:
                match = pattern.search(sentence)
                if not match or not match.group(1):
                    continue
                value = _normalize_snippet(match.group(1), kind)
                if len(value) < 3:
                    continue
                key = f"{kind.value}:{value.lower()}"
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(InsightCandidate(
                    kind=kind,
                    value=value,
                    source=InsightSource.USER,
                    confidence=0.5,
                    evidence=sentence,
                ))
                break

    return candidates[:MAX_HEURISTIC_INSIGHTS]
