"""
InsightExtractor - structured facts about the user from recent turns.

Given the recent transcript and the fingerprints of insights already known,
the agent proposes new or refined insights. Its output is returned as plain
candidate dicts; the InsightStore validates each one individually.
"""

import json
import logging
from pathlib import Path
from typing import Any

from agno.agent import Agent
from agno.models.openai import OpenAIChat
from pydantic import BaseModel, Field

from config import Config
from memory.turn_log import Turn

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = {"low": 0.3, "medium": 0.6, "high": 0.9}


class ExtractedInsight(BaseModel):
    """Loose shape; kind/value are checked when merged into the store."""
    kind: str | None = None
    value: str | None = None
    confidence: str | float | None = Field(default=None, description="low | medium | high")
    evidence: str | None = None
    source: str | None = None


class InsightExtractorResponse(BaseModel):
    """Structured response from InsightExtractor."""
    insights: list[ExtractedInsight] | None = Field(default=None)
    reasoning: str | None = Field(default=None, description="Explanation of extraction")


def _confidence(value: str | float | None) -> float | None:
    if isinstance(value, (int, float)):
        return float(value) if 0.0 <= value <= 1.0 else None
    if isinstance(value, str):
        return CONFIDENCE_LEVELS.get(value.strip().lower())
    return None


def to_candidates(insights: list[ExtractedInsight]) -> list[dict[str, Any]]:
    """Map extractor output onto InsightCandidate-shaped dicts."""
    candidates = []
    for item in insights:
        candidate: dict[str, Any] = {
            "kind": (item.kind or "").strip().lower(),
            "value": item.value or "",
            "confidence": _confidence(item.confidence),
            "evidence": item.evidence,
        }
        if item.source:
            candidate["source"] = item.source.strip().lower()
        candidates.append(candidate)
    return candidates


class InsightExtractor:
    """Agent proposing insight candidates from the conversation."""

    def __init__(self, model_id: str | None = None):
        self.model_id = model_id or Config.MODEL_ID
        self._agent: Agent | None = None
        self._prompt_template: str | None = None

    def _load_prompt(self) -> str:
        if self._prompt_template is None:
            prompt_path = Path(__file__).parent.parent / "prompts" / "insight_extractor_prompt.txt"
            self._prompt_template = prompt_path.read_text()
        return self._prompt_template

    def _ensure_agent(self, instructions: str) -> Agent:
        if not self._agent:
            self._agent = Agent(
                model=OpenAIChat(id=self.model_id),
                instructions=instructions,
                output_schema=InsightExtractorResponse,
                markdown=False,
                debug_mode=False,
                use_json_mode=True,
            )
        else:
            self._agent.instructions = instructions
        return self._agent

    def _build_prompt(self, turns: list[Turn], fingerprints: list[str]) -> str:
        template = self._load_prompt()
        transcript = "\n".join(f"{t.role.value}: {t.text}" for t in turns)
        return template.format(
            transcript=transcript or "No conversation yet",
            existing_insights=json.dumps(fingerprints, indent=2),
        )

    async def aextract(self, turns: list[Turn], fingerprints: list[str]) -> list[dict[str, Any]]:
        """Propose insight candidates for the given turns."""
        if not turns:
            return []

        agent = self._ensure_agent(self._build_prompt(turns, fingerprints))
        response = await agent.arun("Extract insights about the user from the conversation.")
        result = response.content

        if isinstance(result, InsightExtractorResponse):
            return to_candidates(result.insights or [])
        if isinstance(result, str):
            try:
                data = json.loads(result)
                return to_candidates(InsightExtractorResponse(**data).insights or [])
            except (json.JSONDecodeError, TypeError, ValueError):
                logger.warning("Insight extractor returned unparsable content")
                return []
        logger.warning("Insight extractor returned %s", type(result).__name__)
        return []

    def cleanup(self) -> None:
        """Release agent resources."""
        self._agent = None
