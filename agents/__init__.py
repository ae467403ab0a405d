"""
Agents module for Wayfinder.

Agents:
1. InsightExtractor - Structured insights about the user from recent turns
2. SuggestionGenerator - Ranked suggestion cards from insights and votes

Both are thin agno wrappers; their output is validated item by item before
it reaches the engine.
"""

from agents.insight_extractor import InsightExtractor, InsightExtractorResponse
from agents.suggestion_generator import (
    SuggestionGenerationError,
    SuggestionGenerator,
    SuggestionGeneratorResponse,
    SuggestionRequest,
)

__all__ = [
    # Agents
    "InsightExtractor",
    "SuggestionGenerator",
    # Response types
    "InsightExtractorResponse",
    "SuggestionGeneratorResponse",
    "SuggestionRequest",
    "SuggestionGenerationError",
]
