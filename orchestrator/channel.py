"""
Dialogue channel seam.

The engine depends on three questions about the streaming voice channel:
is a response active, call me once when it completes, and was this item
acknowledged. `RealtimeChannel` answers them by interpreting the realtime
events the client relays over the websocket.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from memory.turn_log import Turn, TurnRole

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[], Awaitable[None]]
EventSender = Callable[[dict[str, Any]], Awaitable[None]]
TranscriptHandler = Callable[[Turn], Awaitable[None]]


@runtime_checkable
class DialogueChannel(Protocol):
    def is_response_active(self) -> bool: ...

    def on_response_complete(self, callback: CompletionCallback) -> None: ...

    def was_item_acknowledged(self, item_id: str) -> bool: ...

    async def wait_for_item(self, item_id: str, timeout: float) -> bool: ...

    async def send_event(self, event: dict[str, Any]) -> None: ...


ASSISTANT_DELTA_EVENTS = frozenset({
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
    "response.output_text.delta",
    "response.delta",
})
ASSISTANT_FINAL_EVENTS = frozenset({
    "response.audio_transcript.done",
    "response.output_audio_transcript.done",
    "response.output_text.done",
})
USER_DELTA_EVENTS = frozenset({
    "conversation.item.input_audio_transcription.delta",
})
USER_FINAL_EVENTS = frozenset({
    "conversation.item.input_audio_transcription.completed",
    "conversation.item.input_audio_transcription.done",
})
ACK_EVENTS = frozenset({"conversation.item.added", "conversation.item.created"})
RESPONSE_END_EVENTS = frozenset({"response.completed", "response.done"})


def transcript_id(event: dict[str, Any]) -> str | None:
    item = event.get("item")
    return (
        event.get("response_id")
        or event.get("item_id")
        or (item.get("id") if isinstance(item, dict) else None)
    )


def coerce_text(*candidates: Any) -> str | None:
    """First non-blank string among the candidates (or their text/transcript field)."""
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate
        if isinstance(candidate, dict):
            for key in ("text", "transcript"):
                value = candidate.get(key)
                if isinstance(value, str) and value.strip():
                    return value
    return None


class RealtimeChannel:
    """
    Interprets relayed realtime events and exposes the DialogueChannel seam.

    Partial transcripts are buffered here and never reach the TurnLog; only
    finalized transcripts are handed to `on_transcript`.
    """

    def __init__(
        self,
        send: EventSender | None = None,
        on_transcript: TranscriptHandler | None = None,
    ):
        self._send = send
        self.on_transcript = on_transcript
        self._active_responses: set[str] = set()
        self._completion_callbacks: list[CompletionCallback] = []
        self._acknowledged: set[str] = set()
        self._ack_waiters: dict[str, asyncio.Future] = {}
        self.partials: dict[str, str] = {}

    # DialogueChannel -------------------------------------------------

    def is_response_active(self) -> bool:
        return bool(self._active_responses)

    def on_response_complete(self, callback: CompletionCallback) -> None:
        """Register a one-shot callback for the next response completion."""
        self._completion_callbacks.append(callback)

    def was_item_acknowledged(self, item_id: str) -> bool:
        return item_id in self._acknowledged

    async def send_event(self, event: dict[str, Any]) -> None:
        if self._send is None:
            logger.debug("No sender attached; dropping %s", event.get("type"))
            return
        await self._send(event)

    # Primitives ------------------------------------------------------

    async def cancel_active_response(self) -> None:
        if self.is_response_active():
            await self.send_event({"type": "response.cancel"})

    async def wait_for_item(self, item_id: str, timeout: float) -> bool:
        """Bounded wait for an item acknowledgement; False on timeout."""
        if item_id in self._acknowledged:
            return True
        loop = asyncio.get_running_loop()
        waiter = self._ack_waiters.setdefault(item_id, loop.create_future())
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Item %s not acknowledged within %.1fs; proceeding", item_id, timeout)
            return False
        finally:
            if self._ack_waiters.get(item_id) is waiter and waiter.done():
                del self._ack_waiters[item_id]

    # Event interpretation ---------------------------------------------

    async def handle_event(self, event: dict[str, Any]) -> Turn | None:
        """
        Apply one relayed realtime event.

        Returns the finalized Turn when the event finalizes a transcript.
        """
        event_type = event.get("type")
        if not event_type:
            return None

        if event_type in ACK_EVENTS:
            self._acknowledge(transcript_id(event))
        elif event_type == "response.created":
            response = event.get("response") or {}
            self._active_responses.add(response.get("id") or "response")
        elif event_type in RESPONSE_END_EVENTS:
            await self._complete_response((event.get("response") or {}).get("id"))
        elif event_type in ASSISTANT_DELTA_EVENTS or event_type in USER_DELTA_EVENTS:
            self._buffer_delta(transcript_id(event), coerce_text(event.get("delta"), event.get("text"), event.get("transcript")))
        elif event_type in ASSISTANT_FINAL_EVENTS:
            return await self._finalize(event, TurnRole.ASSISTANT)
        elif event_type in USER_FINAL_EVENTS:
            return await self._finalize(event, TurnRole.USER)
        elif event_type == "error":
            logger.warning("Realtime error event: %s", event.get("error"))
        return None

    def _acknowledge(self, item_id: str | None) -> None:
        if not item_id:
            return
        self._acknowledged.add(item_id)
        waiter = self._ack_waiters.pop(item_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(True)

    def _buffer_delta(self, item_id: str | None, delta: str | None) -> None:
        if not item_id or not delta:
            return
        self.partials[item_id] = self.partials.get(item_id, "") + delta

    async def _finalize(self, event: dict[str, Any], role: TurnRole) -> Turn | None:
        item_id = transcript_id(event)
        buffered = self.partials.pop(item_id, None) if item_id else None
        text = coerce_text(event.get("transcript"), event.get("text"), event.get("delta")) or buffered
        if not text or not text.strip():
            return None
        turn = Turn(role=role, text=text.strip(), transcript_id=item_id)
        if self.on_transcript is not None:
            await self.on_transcript(turn)
        return turn

    async def _complete_response(self, response_id: str | None) -> None:
        if response_id and response_id in self._active_responses:
            self._active_responses.discard(response_id)
        else:
            # Completion without a matching id ends whatever was active
            self._active_responses.clear()
        if self._active_responses:
            return

        callbacks, self._completion_callbacks = self._completion_callbacks, []
        for callback in callbacks:
            try:
                await callback()
            except Exception:
                logger.exception("Response completion callback failed")
