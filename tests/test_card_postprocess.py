import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from agents.suggestion_generator import (
    SuggestionGenerationError,
    SuggestionGenerator,
    SuggestionGeneratorResponse,
    SuggestionRequest,
    postprocess_cards,
    summarise_transcript,
)
from memory.card_deck import CardDistance


def raw(title, summary, **extra):
    return {"title": title, "summary": summary, **extra}


class TestPostprocessCards(unittest.TestCase):
    def test_cards_missing_title_or_summary_are_skipped(self):
        cards = postprocess_cards([
            raw("Nature Photo Tours", "Lead small photo walks in local parks"),
            raw("", "No title here"),
            raw("No summary", "   "),
            {"summary": "Missing title entirely"},
        ], limit=5)

        self.assertEqual([c.title for c in cards], ["Nature Photo Tours"])
        self.assertEqual(cards[0].id, "dynamic-0-nature-photo-tours")

    def test_lists_are_cleaned_and_fields_mapped(self):
        cards = postprocess_cards([
            raw(
                "Park Ranger",
                "Protect trails and guide visitors",
                why_it_fits=["  loves hiking ", "", "  "],
                pathways=["Seasonal ranger"],
                neighbor_tags=["conservation"],
            ),
        ], limit=3)

        card = cards[0]
        self.assertEqual(card.why_it_fits, ["loves hiking"])
        self.assertEqual(card.career_angles, ["Seasonal ranger"])
        self.assertEqual(card.neighbor_territories, ["conservation"])
        self.assertEqual(card.score, 5)

    def test_duplicate_and_near_duplicate_titles_are_dropped(self):
        cards = postprocess_cards([
            raw("Nature Photo Tours", "Lead small photo walks in local parks"),
            raw("nature photo tours!", "Something else entirely about bread"),
            raw("Nature Photo Tours Online", "Lead small photo walks in local parks online"),
        ], limit=3)

        self.assertEqual(len(cards), 1)

    def test_all_core_batch_is_rebalanced(self):
        cards = postprocess_cards([
            raw("Park Ranger", "Protect trails and guide visitors"),
            raw("Bakery Web Studio", "Build websites for neighbourhood bakeries"),
            raw("Museum Night Host", "Run evening tours of exhibits"),
        ], limit=3)

        self.assertEqual(
            [c.distance for c in cards],
            [CardDistance.CORE, CardDistance.ADJACENT, CardDistance.UNEXPECTED],
        )

    def test_explicit_distances_are_kept(self):
        cards = postprocess_cards([
            raw("Park Ranger", "Protect trails and guide visitors", distance="adjacent"),
            raw("Bakery Web Studio", "Build websites for neighbourhood bakeries", distance="weird"),
        ], limit=3)

        self.assertEqual([c.distance for c in cards], [CardDistance.ADJACENT, CardDistance.CORE])

    def test_limit_applies_before_processing(self):
        cards = postprocess_cards([
            raw("Park Ranger", "Protect trails"),
            raw("Museum Night Host", "Run evening tours of exhibits"),
        ], limit=1)
        self.assertEqual(len(cards), 1)


class TestSummariseTranscript(unittest.TestCase):
    def test_skips_blank_entries(self):
        text = summarise_transcript([
            {"role": "assistant", "text": "Hi!"},
            {"role": "user", "text": "   "},
            {"role": "", "text": "orphan"},
            {"role": "user", "text": " I like maps "},
        ])
        self.assertEqual(text, "assistant: Hi!\nuser: I like maps")


class TestSuggestionGenerator(unittest.IsolatedAsyncioTestCase):
    def _agent_returning(self, content):
        agent = MagicMock()
        agent.arun = AsyncMock(return_value=MagicMock(content=content))
        return agent

    async def test_no_insights_returns_nothing(self):
        generator = SuggestionGenerator(model_id="test-model")
        self.assertEqual(await generator.agenerate(SuggestionRequest()), [])

    async def test_empty_model_output_raises(self):
        generator = SuggestionGenerator(model_id="test-model")
        request = SuggestionRequest(insights={"interest": ["maps"]})
        agent = self._agent_returning(SuggestionGeneratorResponse(cards=[]))

        with patch.object(generator, "_ensure_agent", return_value=agent):
            with self.assertRaises(SuggestionGenerationError):
                await generator.agenerate(request)

    async def test_string_output_in_code_block_is_parsed(self):
        generator = SuggestionGenerator(model_id="test-model")
        request = SuggestionRequest(insights={"interest": ["maps"]}, limit=2)
        content = '```json\n{"cards": [{"title": "Map Maker", "summary": "Draw trail maps"}]}\n```'

        with patch.object(generator, "_ensure_agent", return_value=self._agent_returning(content)):
            cards = await generator.agenerate(request)

        self.assertEqual([c.title for c in cards], ["Map Maker"])

    def test_prompt_renders_request(self):
        generator = SuggestionGenerator(model_id="test-model")
        prompt = generator._build_prompt(SuggestionRequest(
            insights={"interest": ["maps"]},
            liked_titles=["Park Ranger"],
            transcript=[{"role": "user", "text": "I like maps"}],
            limit=2,
        ))

        self.assertIn("Park Ranger", prompt)
        self.assertIn("user: I like maps", prompt)


if __name__ == "__main__":
    unittest.main()
