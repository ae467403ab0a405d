import unittest
from unittest.mock import AsyncMock

from memory.turn_log import TurnRole
from orchestrator.channel import DialogueChannel, RealtimeChannel


class TestRealtimeChannel(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.on_transcript = AsyncMock()
        self.channel = RealtimeChannel(send=AsyncMock(), on_transcript=self.on_transcript)

    def test_satisfies_dialogue_channel(self):
        self.assertIsInstance(self.channel, DialogueChannel)

    async def test_completion_callback_runs_once(self):
        callback = AsyncMock()
        await self.channel.handle_event({"type": "response.created", "response": {"id": "r1"}})
        self.assertTrue(self.channel.is_response_active())

        self.channel.on_response_complete(callback)
        await self.channel.handle_event({"type": "response.done", "response": {"id": "r1"}})
        await self.channel.handle_event({"type": "response.done", "response": {"id": "r1"}})

        self.assertFalse(self.channel.is_response_active())
        callback.assert_awaited_once()

    async def test_callback_waits_for_every_active_response(self):
        callback = AsyncMock()
        await self.channel.handle_event({"type": "response.created", "response": {"id": "r1"}})
        await self.channel.handle_event({"type": "response.created", "response": {"id": "r2"}})
        self.channel.on_response_complete(callback)

        await self.channel.handle_event({"type": "response.done", "response": {"id": "r1"}})
        callback.assert_not_awaited()

        await self.channel.handle_event({"type": "response.done", "response": {"id": "r2"}})
        callback.assert_awaited_once()

    async def test_failing_callback_is_logged(self):
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        self.channel.on_response_complete(callback)
        with self.assertLogs("orchestrator.channel", "ERROR"):
            await self.channel.handle_event({"type": "response.done"})

    async def test_assistant_deltas_buffer_until_done(self):
        await self.channel.handle_event({"type": "response.output_audio_transcript.delta", "response_id": "r1", "delta": "Tell me "})
        await self.channel.handle_event({"type": "response.output_audio_transcript.delta", "response_id": "r1", "delta": "more"})
        self.on_transcript.assert_not_awaited()
        self.assertEqual(self.channel.partials["r1"], "Tell me more")

        turn = await self.channel.handle_event({"type": "response.output_audio_transcript.done", "response_id": "r1"})

        self.assertEqual(turn.text, "Tell me more")
        self.assertEqual(turn.role, TurnRole.ASSISTANT)
        self.assertEqual(turn.transcript_id, "r1")
        self.on_transcript.assert_awaited_once_with(turn)
        self.assertNotIn("r1", self.channel.partials)

    async def test_user_transcription_completed(self):
        turn = await self.channel.handle_event({
            "type": "conversation.item.input_audio_transcription.completed",
            "item_id": "item-7",
            "transcript": "  I like maps  ",
        })

        self.assertEqual(turn.role, TurnRole.USER)
        self.assertEqual(turn.text, "I like maps")
        self.assertEqual(turn.transcript_id, "item-7")

    async def test_empty_final_transcript_is_ignored(self):
        turn = await self.channel.handle_event({
            "type": "conversation.item.input_audio_transcription.completed",
            "item_id": "item-8",
            "transcript": "   ",
        })
        self.assertIsNone(turn)
        self.on_transcript.assert_not_awaited()

    async def test_wait_for_item_resolves_on_ack(self):
        await self.channel.handle_event({"type": "conversation.item.created", "item": {"id": "item-1"}})

        self.assertTrue(self.channel.was_item_acknowledged("item-1"))
        self.assertTrue(await self.channel.wait_for_item("item-1", timeout=0.1))

    async def test_wait_for_item_times_out(self):
        with self.assertLogs("orchestrator.channel", "WARNING"):
            acknowledged = await self.channel.wait_for_item("item-missing", timeout=0.01)
        self.assertFalse(acknowledged)

    async def test_cancel_only_when_active(self):
        await self.channel.cancel_active_response()
        self.channel._send.assert_not_awaited()

        await self.channel.handle_event({"type": "response.created", "response": {"id": "r1"}})
        await self.channel.cancel_active_response()
        self.channel._send.assert_awaited_once_with({"type": "response.cancel"})


if __name__ == "__main__":
    unittest.main()
