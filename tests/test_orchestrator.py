import asyncio
import json
import unittest
from unittest.mock import AsyncMock, MagicMock

from config import RevealSettings
from memory.card_deck import SuggestionCard
from memory.turn_log import Turn, TurnRole
from orchestrator import ConversationPhase, Orchestrator, RevealMode
from orchestrator.main import ANNOUNCEMENT_PREFIX, OPENING_LINE
from orchestrator.suggestion_gate import BACKLOG_NUDGE_TEXT, FetchMode, GateDecision, GateTrigger

U1 = (
    "I love designing websites for small businesses. Honestly it started as a way to help my "
    "aunt with her bakery and then friends kept asking me for one too."
)
U2 = (
    "I'm good at coding and explaining tech to people who find it scary. Last summer I spent "
    "most evenings tweaking layouts until they felt right for every screen."
)
U3 = (
    "I want to launch my own web studio one day. Something small where every client gets a "
    "site that actually fits them."
)


def cards(*titles: str) -> list[SuggestionCard]:
    return [
        SuggestionCard(id=f"dynamic-{i}-{title.lower().replace(' ', '-')}", title=title, summary=f"{title} summary")
        for i, title in enumerate(titles)
    ]


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.now = 1000.0
        self.events = []
        self.generator = MagicMock()
        self.generator.agenerate = AsyncMock(
            return_value=cards("Small Business Web Studio", "Tech Explainer", "Bakery Brand Designer")
        )

    async def _record(self, event):
        self.events.append(event)

    def make(self, **kwargs) -> Orchestrator:
        values = {
            "session_id": "s1",
            "generator": self.generator,
            "on_event": self._record,
            "reveal_settings": RevealSettings(text_reveal_delay_seconds=0, ack_timeout_seconds=0.01),
            "clock": lambda: self.now,
        }
        values.update(kwargs)
        return Orchestrator(**values)

    def events_of(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["type"] == event_type]


class TestTextConversation(OrchestratorTestCase):
    async def test_three_answers_lead_to_one_batch_then_one_nudge(self):
        orch = self.make()
        state = await orch.start()
        self.assertEqual(state["timeline"][0]["turn"]["text"], OPENING_LINE)

        for text in (U1, U2):
            decision = await orch.submit_user_text(text)
            self.assertFalse(decision.should_fetch)
        self.generator.agenerate.assert_not_awaited()

        decision = await orch.submit_user_text(U3)

        self.assertTrue(decision.should_fetch)
        self.assertEqual(decision.fetch_mode, FetchMode.NORMAL)
        self.generator.agenerate.assert_awaited_once()
        self.assertEqual(orch.session.phase, ConversationPhase.PATTERN_MAPPING)

        # opening, three answers, then the announcement; cards follow it
        turns = orch.session.turn_log.turns
        self.assertEqual(len(turns), 5)
        self.assertTrue(turns[4].transcript_id.startswith(ANNOUNCEMENT_PREFIX))
        revealed = self.events_of("cards_revealed")
        self.assertEqual(len(revealed), 1)
        self.assertEqual(revealed[0]["insert_at"], 5)
        self.assertEqual(len(revealed[0]["cards"]), 3)

        request = self.generator.agenerate.await_args.args[0]
        self.assertEqual(request.limit, 3)
        self.assertIn("interest", request.insights)

        # three unreviewed cards left alone past the idle window
        self.now += 100
        await orch.submit_user_text("Still thinking it over.")
        self.now += 10
        await orch.submit_user_text("Hmm, okay then.")

        nudges = self.events_of("nudge")
        self.assertEqual(len(nudges), 1)
        self.assertEqual(nudges[0]["text"], BACKLOG_NUDGE_TEXT)
        self.assertEqual(len(nudges[0]["card_ids"]), 3)
        self.generator.agenerate.assert_awaited_once()

        state = orch.get_state()
        self.assertTrue(state["backlog"]["suppressed"])
        self.assertEqual(state["backlog"]["unreviewed_count"], 3)

    async def test_votes_clear_the_backlog(self):
        orch = self.make()
        for text in (U1, U2, U3):
            await orch.submit_user_text(text)
        card_ids = [c.id for c in orch.session.deck.cards]

        for card_id in card_ids:
            await orch.vote(card_id, 1)

        state = orch.get_state()
        self.assertEqual(state["backlog"]["unreviewed_count"], 0)
        self.assertEqual(state["card_groups"]["saved"], card_ids)
        self.assertEqual(state["votes"], {card_id: 1 for card_id in card_ids})

    async def test_user_edits_recompute_the_rubric(self):
        orch = self.make()
        for text in (U1, U2, U3):
            await orch.submit_user_text(text)
        insight_ids = [i.id for i in orch.session.insights.insights]
        turn_count = len(orch.session.turn_log.turns)

        await orch.edit_turn(0, "ok")
        await orch.remove_turn(1)
        for insight_id in insight_ids:
            await orch.remove_insight(insight_id)
        await orch.clear_cards()

        self.assertEqual(orch.session.turn_log.turns[0].text, "ok")
        self.assertEqual(len(orch.session.turn_log.turns), turn_count - 1)
        self.assertEqual(orch.session.insights.insights, [])
        self.assertEqual(len(orch.session.deck), 0)
        self.assertEqual(orch.session.rubric.card_readiness.status.value, "blocked")

    async def test_unknown_vote_raises(self):
        orch = self.make()
        with self.assertRaises(KeyError):
            await orch.vote("missing", 1)

    async def test_extractor_failure_keeps_heuristics(self):
        extractor = MagicMock()
        extractor.aextract = AsyncMock(side_effect=RuntimeError("timeout"))
        orch = self.make(extractor=extractor)

        with self.assertLogs("orchestrator.main", "WARNING"):
            await orch.submit_user_text("I love hiking.")

        self.assertEqual(orch.session.insights.aggregates(), {"interest": ["hiking"]})

    async def test_extractor_candidates_are_merged(self):
        extractor = MagicMock()
        extractor.aextract = AsyncMock(return_value=[
            {"kind": "hope", "value": "work outdoors", "confidence": 0.6},
            {"kind": "nonsense", "value": "dropped"},
        ])
        orch = self.make(extractor=extractor)

        await orch.submit_user_text("I love hiking.")

        self.assertEqual(
            orch.session.insights.aggregates(),
            {"interest": ["hiking"], "hope": ["work outdoors"]},
        )

    async def test_agreeing_sources_do_not_churn_a_stored_insight(self):
        extractor = MagicMock()
        extractor.aextract = AsyncMock(return_value=[
            {"kind": "interest", "value": "hiking", "confidence": 0.9, "evidence": "loves hiking"},
        ])
        orch = self.make(extractor=extractor)

        await orch.submit_user_text("I love hiking.")
        stored = orch.session.insights.insights[0]
        first_update = stored.updated_at

        with self.assertNoLogs("orchestrator.main", "INFO"):
            await orch._refresh_insights()

        stored = orch.session.insights.insights[0]
        self.assertEqual(len(orch.session.insights), 1)
        self.assertEqual(stored.confidence, 0.9)
        self.assertEqual(stored.evidence, "loves hiking")
        self.assertEqual(stored.updated_at, first_update)

    async def test_assistant_promise_forces_a_fetch(self):
        orch = self.make()
        decision = await orch.handle_turn(Turn(role=TurnRole.ASSISTANT, text="Let me pull some ideas together for you."))

        self.assertEqual(decision.trigger, GateTrigger.ASSISTANT_PROMISE)
        self.assertEqual(decision.fetch_mode, FetchMode.FALLBACK)
        self.generator.agenerate.assert_awaited_once()

    async def test_manual_request(self):
        orch = self.make()
        decision = await orch.request_cards()

        self.assertTrue(decision.should_fetch)
        self.assertEqual(len(orch.session.deck), 3)


class TestFetching(OrchestratorTestCase):
    async def test_single_flight(self):
        release = asyncio.Event()

        async def slow_generate(request):
            await release.wait()
            return cards("Park Ranger")

        self.generator.agenerate = AsyncMock(side_effect=slow_generate)
        orch = self.make()
        decision = GateDecision(should_fetch=True, limit=3)

        first = asyncio.create_task(orch.fetch_suggestions(decision))
        await asyncio.sleep(0)
        self.assertTrue(orch.fetch_in_flight)

        second = await orch.fetch_suggestions(decision)
        release.set()
        added = await first

        self.assertEqual(second, [])
        self.assertEqual([c.title for c in added], ["Park Ranger"])
        self.assertEqual(self.generator.agenerate.await_count, 1)
        self.assertFalse(orch.fetch_in_flight)

    async def test_failure_retracts_announcement(self):
        self.generator.agenerate = AsyncMock(side_effect=RuntimeError("upstream down"))
        orch = self.make()

        with self.assertLogs("orchestrator.main", "WARNING"):
            added = await orch.fetch_suggestions(GateDecision(should_fetch=True, allow_card_prompt=True, limit=3))

        self.assertEqual(added, [])
        self.assertEqual(len(orch.session.turn_log), 0)
        retracts = self.events_of("retract")
        self.assertEqual(len(retracts), 1)
        self.assertTrue(retracts[0]["transcript_id"].startswith(ANNOUNCEMENT_PREFIX))
        self.assertFalse(orch.fetch_in_flight)

    async def test_cards_attach_where_the_fetch_began(self):
        orch = self.make()

        async def generate_while_user_talks(request):
            await orch.handle_turn(Turn(role=TurnRole.USER, text="hold on"))
            return cards("Park Ranger")

        self.generator.agenerate = AsyncMock(side_effect=generate_while_user_talks)
        await orch.fetch_suggestions(GateDecision(should_fetch=True, allow_card_prompt=True, limit=3))

        self.assertEqual(len(orch.session.turn_log), 2)
        self.assertEqual(orch.reveal.placements, {1: ["dynamic-0-park-ranger"]})
        timeline = orch.get_state()["timeline"]
        self.assertEqual([c["title"] for c in timeline[0]["cards"]], ["Park Ranger"])
        self.assertEqual(timeline[1]["cards"], [])

    async def test_removing_an_earlier_turn_keeps_cards_in_place(self):
        orch = self.make()
        await orch.handle_turn(Turn(role=TurnRole.USER, text="first"))
        await orch.handle_turn(Turn(role=TurnRole.USER, text="second"))
        await orch.fetch_suggestions(GateDecision(should_fetch=True, limit=3))
        await orch.handle_turn(Turn(role=TurnRole.USER, text="third"))

        await orch.remove_turn(0)

        timeline = orch.get_state()["timeline"]
        self.assertEqual([entry["turn"]["text"] for entry in timeline], ["second", "third"])
        self.assertEqual(len(timeline[0]["cards"]), 3)
        self.assertEqual(timeline[1]["cards"], [])

    async def test_turn_removed_during_a_fetch_moves_its_insertion_point(self):
        orch = self.make()
        await orch.handle_turn(Turn(role=TurnRole.USER, text="first"))
        await orch.handle_turn(Turn(role=TurnRole.USER, text="second"))

        async def generate_while_user_edits(request):
            await orch.remove_turn(0)
            return cards("Park Ranger")

        self.generator.agenerate = AsyncMock(side_effect=generate_while_user_edits)
        await orch.fetch_suggestions(GateDecision(should_fetch=True, limit=3))

        self.assertEqual(orch.reveal.placements, {1: ["dynamic-0-park-ranger"]})


class TestVoiceConversation(OrchestratorTestCase):
    async def test_reveal_waits_for_spoken_response(self):
        orch = self.make(mode=RevealMode.VOICE)
        await orch.handle_realtime_event({"type": "response.created", "response": {"id": "r1"}})

        await orch.fetch_suggestions(GateDecision(should_fetch=True, limit=3))

        self.assertEqual(self.events_of("cards_revealed"), [])
        self.assertEqual(orch.reveal.pending, 1)

        await orch.handle_realtime_event({"type": "response.done", "response": {"id": "r1"}})

        self.assertEqual(len(self.events_of("cards_revealed")), 1)
        self.assertEqual(orch.reveal.pending, 0)

    async def test_corrected_transcript_replaces_turn(self):
        orch = self.make(mode=RevealMode.VOICE)
        base = {"type": "conversation.item.input_audio_transcription.completed", "item_id": "item-1"}

        await orch.handle_realtime_event({**base, "transcript": "I like cook"})
        await orch.handle_realtime_event({**base, "transcript": "I love cooking"})

        turns = orch.session.turn_log.turns
        self.assertEqual(len(turns), 1)
        self.assertEqual(turns[0].text, "I love cooking")
        self.assertEqual(orch.gate.state.turns_since_last_suggestion, 1)

    async def test_voice_greeting_happens_once(self):
        orch = self.make()
        await orch.on_voice_connected()
        await orch.on_voice_connected()

        sent = [e["event"]["type"] for e in self.events_of("channel_event")]
        self.assertEqual(sent, ["response.create"])
        self.assertEqual(orch.session.mode, RevealMode.VOICE)

    async def test_typed_text_in_voice_mode_goes_through_the_channel(self):
        orch = self.make(mode=RevealMode.VOICE)

        with self.assertLogs("orchestrator.channel", "WARNING"):
            await orch.submit_user_text("I love maps.")

        sent = [e["event"] for e in self.events_of("channel_event")]
        self.assertEqual(sent[0]["type"], "conversation.item.create")
        self.assertEqual(sent[0]["item"]["content"][0]["text"], "I love maps.")
        self.assertEqual(sent[-1]["type"], "response.create")
        self.assertEqual(orch.session.turn_log.turns[0].transcript_id, sent[0]["item"]["id"])

    async def test_ack_during_the_wait_releases_typed_text(self):
        orch = self.make(
            mode=RevealMode.VOICE,
            reveal_settings=RevealSettings(text_reveal_delay_seconds=0, ack_timeout_seconds=5.0),
        )

        pending = asyncio.create_task(orch.submit_user_text("I love maps."))
        await asyncio.sleep(0)
        item_id = self.events_of("channel_event")[0]["event"]["item"]["id"]
        await orch.handle_realtime_event({"type": "conversation.item.added", "item": {"id": item_id}})
        await asyncio.wait_for(pending, timeout=1.0)

        self.assertTrue(orch.channel.was_item_acknowledged(item_id))
        self.assertEqual(orch.session.turn_log.turns[0].transcript_id, item_id)


class TestPersistence(OrchestratorTestCase):
    async def test_round_trip(self):
        orch = self.make()
        await orch.start()
        for text in (U1, U2, U3):
            await orch.submit_user_text(text)

        data = json.loads(json.dumps(orch.to_dict()))
        restored = Orchestrator.from_dict(data, generator=self.generator, clock=lambda: self.now)

        self.assertEqual(restored.session_id, "s1")
        self.assertEqual(restored.gate.state, orch.gate.state)
        self.assertEqual(restored.reveal.placements, orch.reveal.placements)
        original, copy = orch.get_state(), restored.get_state()
        for key in ("phase", "insights", "timeline", "card_groups", "backlog"):
            self.assertEqual(copy[key], original[key])


if __name__ == "__main__":
    unittest.main()
