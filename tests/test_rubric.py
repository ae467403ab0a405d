import unittest

from memory.insight_store import Insight, InsightKind
from memory.turn_log import Turn, TurnRole
from orchestrator.rubric import (
    CardReadinessStatus,
    EnergyLevel,
    EngagementStyle,
    ReadinessBias,
    RubricScorer,
)

LONG_REPLY = "I spend my weekends restoring old bicycles with my neighbour. " * 5


def user(text: str) -> Turn:
    return Turn(role=TurnRole.USER, text=text)


def insight(kind: InsightKind, value: str) -> Insight:
    return Insight(kind=kind, value=value)


class TestRubricScorer(unittest.TestCase):
    def setUp(self):
        self.scorer = RubricScorer()

    def test_empty_conversation_is_conservative(self):
        update = self.scorer.score([], [])
        snapshot = update.snapshot

        self.assertTrue(update.changed)
        self.assertEqual(snapshot.engagement_style, EngagementStyle.BLOCKED)
        self.assertEqual(snapshot.context_depth, 0)
        self.assertEqual(snapshot.energy_level, EnergyLevel.LOW)
        self.assertEqual(snapshot.card_readiness.status, CardReadinessStatus.BLOCKED)
        self.assertIn("missing interest", snapshot.card_readiness.reasons)

    def test_long_recent_replies_lean_in(self):
        snapshot = self.scorer.score([user(LONG_REPLY)], []).snapshot

        self.assertEqual(snapshot.engagement_style, EngagementStyle.LEANING_IN)
        self.assertEqual(snapshot.energy_level, EnergyLevel.MEDIUM)
        self.assertEqual(snapshot.readiness_bias, ReadinessBias.EXPLORING)

    def test_short_replies_read_as_blocked(self):
        snapshot = self.scorer.score([user("ok"), user("sure")], []).snapshot
        self.assertEqual(snapshot.engagement_style, EngagementStyle.BLOCKED)

    def test_explicit_ideas_request(self):
        snapshot = self.scorer.score([user("What could I do with that?")], []).snapshot

        self.assertTrue(snapshot.explicit_ideas_request)
        self.assertEqual(snapshot.engagement_style, EngagementStyle.SEEKING_OPTIONS)
        self.assertEqual(snapshot.readiness_bias, ReadinessBias.SEEKING_OPTIONS)

    def test_decision_phrase_biases_towards_deciding(self):
        snapshot = self.scorer.score([user("I'm leaning towards the second one honestly")], []).snapshot
        self.assertEqual(snapshot.readiness_bias, ReadinessBias.DECIDING)

    def test_decision_among_shown_cards_outranks_asking_for_more(self):
        turns = [user("I'll go with the studio idea, show me more like it")]

        before_cards = self.scorer.score(turns, []).snapshot
        with_cards = self.scorer.score(turns, [], suggestion_count=3).snapshot

        self.assertEqual(before_cards.readiness_bias, ReadinessBias.SEEKING_OPTIONS)
        self.assertEqual(with_cards.readiness_bias, ReadinessBias.DECIDING)
        self.assertTrue(with_cards.explicit_ideas_request)

    def test_unchanged_recomputation_returns_previous_snapshot(self):
        first = self.scorer.score([user(LONG_REPLY)], []).snapshot
        second = self.scorer.score([user(LONG_REPLY)], [], previous=first)

        self.assertFalse(second.changed)
        self.assertIs(second.snapshot, first)

    def test_ready_with_base_kinds_aspiration_and_depth(self):
        insights = [
            insight(InsightKind.INTEREST, "restoring bicycles"),
            insight(InsightKind.STRENGTH, "fixing things"),
            insight(InsightKind.GOAL, "open a repair shop"),
        ]
        snapshot = self.scorer.score([user(LONG_REPLY)], insights).snapshot

        self.assertEqual(snapshot.context_depth, 2)
        self.assertEqual(snapshot.card_readiness.status, CardReadinessStatus.READY)
        self.assertEqual(snapshot.card_readiness.reasons, [])

    def test_context_light_without_aspiration(self):
        insights = [
            insight(InsightKind.INTEREST, "restoring bicycles"),
            insight(InsightKind.STRENGTH, "fixing things"),
        ]
        snapshot = self.scorer.score([user(LONG_REPLY)], insights).snapshot

        self.assertEqual(snapshot.card_readiness.status, CardReadinessStatus.CONTEXT_LIGHT)
        self.assertEqual(snapshot.card_readiness.reasons, ["missing aspiration"])

    def test_signature_ignores_timestamp(self):
        a = self.scorer.score([user(LONG_REPLY)], []).snapshot
        b = a.model_copy(update={"last_updated_at": a.last_updated_at.replace(year=2000)})
        self.assertTrue(a.same_as(b))


if __name__ == "__main__":
    unittest.main()
