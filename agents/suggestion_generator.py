"""
SuggestionGenerator - turns the user's insights into suggestion cards.

The model call is a thin agno wrapper; everything after the call is plain
post-processing that never trusts the model's output shape:
- cards without a title or summary are skipped one by one
- list fields are trimmed and emptied of blanks
- identical titles and near-duplicates (token Jaccard >= 0.6) are dropped
- an all-core batch gets one adjacent and one unexpected card
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from agno.agent import Agent
from agno.models.openai import OpenAIChat
from pydantic import BaseModel, Field, ValidationError

from config import Config
from memory.card_deck import CardConfidence, CardDistance, SuggestionCard

logger = logging.getLogger(__name__)


class SuggestionGenerationError(RuntimeError):
    """The generator returned nothing usable."""


class RawSuggestion(BaseModel):
    """Card as the model writes it; every field is optional."""
    title: str | None = None
    summary: str | None = None
    why_it_fits: list[str] | None = None
    pathways: list[str] | None = None
    next_steps: list[str] | None = None
    micro_experiments: list[str] | None = None
    neighbor_tags: list[str] | None = None
    distance: str | None = None


class SuggestionGeneratorResponse(BaseModel):
    """Structured response from SuggestionGenerator."""
    cards: list[RawSuggestion] | None = Field(default=None)


class SuggestionRequest(BaseModel):
    """Everything the generator needs to know about the session."""
    insights: dict[str, list[str]] = Field(default_factory=dict)
    liked_titles: list[str] = Field(default_factory=list)
    maybe_titles: list[str] = Field(default_factory=list)
    disliked_titles: list[str] = Field(default_factory=list)
    transcript: list[dict[str, str]] = Field(default_factory=list)
    shown_titles: list[str] = Field(default_factory=list)
    limit: int = 3
    fetch_mode: str = "normal"
    focus_text: str | None = None
    phase: str | None = None


def summarise_transcript(transcript: list[dict[str, Any]]) -> str:
    """`role: text` lines, skipping blank entries."""
    lines = []
    for item in transcript:
        role = str(item.get("role") or "").strip()
        text = item.get("text")
        if not role or not isinstance(text, str) or not text.strip():
            continue
        lines.append(f"{role}: {text.strip()}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------

DEDUPE_STOPWORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "into", "about", "your",
    "their", "they", "you", "are", "our", "use", "using", "build", "based", "help",
    "guide", "create", "maker", "builder", "design", "designer", "consultant",
    "coach", "educator", "teacher", "content", "curator", "community", "connector",
    "proof", "concept", "business", "startup", "founder", "small", "medium",
    "enterprise", "sme", "tool", "tools", "voice",
})
SIMILARITY_THRESHOLD = 0.6


def _tokens(text: str) -> set[str]:
    cleaned = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return {t for t in cleaned.split() if len(t) >= 3 and t not in DEDUPE_STOPWORDS}


def _card_tokens(card: SuggestionCard) -> set[str]:
    tokens = _tokens(card.title) | _tokens(card.summary)
    for item in card.why_it_fits + card.career_angles:
        tokens |= _tokens(item)
    return tokens


def jaccard(a: set[str], b: set[str]) -> float:
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def is_similar(a: SuggestionCard, b: SuggestionCard) -> bool:
    return jaccard(_card_tokens(a), _card_tokens(b)) >= SIMILARITY_THRESHOLD


def _clean_list(values: list[str] | None) -> list[str]:
    return [v.strip() for v in values or [] if isinstance(v, str) and v.strip()]


def _coerce_distance(value: str | None) -> CardDistance:
    if value and value.lower() in (CardDistance.ADJACENT.value, CardDistance.UNEXPECTED.value):
        return CardDistance(value.lower())
    return CardDistance.CORE


def _card_id(index: int, title: str) -> str:
    slug = re.sub(r"\s+", "-", title.lower())[:32]
    return f"dynamic-{index}-{slug}"


def _rebalance_distances(cards: list[SuggestionCard]) -> list[SuggestionCard]:
    """Force a core/adjacent/unexpected mix when the model tagged everything core."""
    if len(cards) < 2 or any(c.distance != CardDistance.CORE for c in cards):
        return cards

    cards = list(cards)
    by_neighbors = sorted(range(len(cards)), key=lambda i: len(cards[i].neighbor_territories), reverse=True)
    adjacent = by_neighbors[0] if cards[by_neighbors[0]].neighbor_territories else 1
    cards[adjacent] = cards[adjacent].model_copy(update={"distance": CardDistance.ADJACENT})

    unexpected = min(range(len(cards)), key=lambda i: cards[i].score)
    if unexpected == adjacent:
        unexpected = (unexpected + 1) % len(cards)
    cards[unexpected] = cards[unexpected].model_copy(update={"distance": CardDistance.UNEXPECTED})

    logger.info("Rebalanced card distances: %s", [(c.title, c.distance.value) for c in cards])
    return cards


def postprocess_cards(raw_cards: list[Any], limit: int) -> list[SuggestionCard]:
    """Validate, clean, dedupe and rebalance raw model output."""
    mapped: list[SuggestionCard] = []
    for index, raw in enumerate((raw_cards or [])[:limit]):
        try:
            card = raw if isinstance(raw, RawSuggestion) else RawSuggestion.model_validate(raw)
        except ValidationError:
            logger.warning("Skipping malformed card %d", index)
            continue
        title = (card.title or "").strip()
        summary = (card.summary or "").strip()
        if not title or not summary:
            logger.warning("Skipping card %d - missing title or summary", index)
            continue
        mapped.append(SuggestionCard(
            id=_card_id(index, title),
            title=title,
            summary=summary,
            why_it_fits=_clean_list(card.why_it_fits),
            career_angles=_clean_list(card.pathways),
            next_steps=_clean_list(card.next_steps),
            micro_experiments=_clean_list(card.micro_experiments),
            neighbor_territories=_clean_list(card.neighbor_tags),
            confidence=CardConfidence.MEDIUM,
            score=5 - index,
            distance=_coerce_distance(card.distance),
        ))

    unique: list[SuggestionCard] = []
    seen_titles: set[str] = set()
    for card in mapped:
        if card.title_key in seen_titles:
            logger.info("Dropping duplicate card title: %s", card.title)
            continue
        if any(is_similar(kept, card) for kept in unique):
            logger.info("Dropping near-duplicate card: %s", card.title)
            continue
        seen_titles.add(card.title_key)
        unique.append(card)

    return _rebalance_distances(unique)


def _parse_raw_content(content: str) -> list[Any]:
    block = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
    payload = block.group(1).strip() if block else content
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise SuggestionGenerationError(f"Failed to parse card generation response: {e}") from e
    cards = data.get("cards") if isinstance(data, dict) else None
    return cards if isinstance(cards, list) else []


class SuggestionGenerator:
    """
    Agent generating ranked suggestion cards.

    `agenerate` raises SuggestionGenerationError when the model produced no
    usable card; network errors propagate as-is for the caller to handle.
    """

    def __init__(self, model_id: str | None = None):
        self.model_id = model_id or Config.SUGGESTION_MODEL_ID
        self._agent: Agent | None = None
        self._prompt_template: str | None = None

    def _load_prompt(self) -> str:
        if self._prompt_template is None:
            prompt_path = Path(__file__).parent.parent / "prompts" / "suggestion_generator_prompt.txt"
            self._prompt_template = prompt_path.read_text()
        return self._prompt_template

    def _ensure_agent(self, instructions: str) -> Agent:
        if not self._agent:
            self._agent = Agent(
                model=OpenAIChat(id=self.model_id),
                instructions=instructions,
                output_schema=SuggestionGeneratorResponse,
                markdown=False,
                debug_mode=False,
                use_json_mode=True,
            )
        else:
            self._agent.instructions = instructions
        return self._agent

    def _build_prompt(self, request: SuggestionRequest) -> str:
        template = self._load_prompt()
        return template.format(
            limit=request.limit,
            fetch_mode=request.fetch_mode,
            phase=request.phase or "unknown",
            focus_text=request.focus_text or "None",
            insights=json.dumps(request.insights, indent=2),
            liked_titles=json.dumps(request.liked_titles),
            maybe_titles=json.dumps(request.maybe_titles),
            disliked_titles=json.dumps(request.disliked_titles),
            shown_titles=json.dumps(request.shown_titles),
            transcript=summarise_transcript(request.transcript) or "No transcript yet",
        )

    async def agenerate(self, request: SuggestionRequest) -> list[SuggestionCard]:
        """Generate up to `request.limit` cards."""
        if not request.insights:
            return []

        agent = self._ensure_agent(self._build_prompt(request))
        response = await agent.arun("Generate the suggestion cards.")
        result = response.content

        if isinstance(result, SuggestionGeneratorResponse):
            raw_cards: list[Any] = result.cards or []
        elif isinstance(result, str):
            raw_cards = _parse_raw_content(result)
        else:
            raise SuggestionGenerationError("Invalid response type from suggestion agent")

        cards = postprocess_cards(raw_cards, request.limit)
        if not cards:
            raise SuggestionGenerationError("Card generation returned no cards")
        logger.info("Generated %d card(s) in %s mode", len(cards), request.fetch_mode)
        return cards

    def cleanup(self) -> None:
        """Release agent resources."""
        self._agent = None
