"""
CardRevealController - places delivered cards into the turn timeline.

Rules:
- while the voice channel is streaming a response, reveals wait in one FIFO
  and a single completion callback flushes them
- text mode waits a short fixed delay so the acknowledgement renders first
- cards attach to the turn index at which their fetch began, so later turns
  never reorder them
- a card id is placed at most once per insertion point
- deleting a turn shifts later insertion points so cards stay with their turn
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable

from config import Config, RevealSettings
from memory.turn_log import Turn
from orchestrator.channel import DialogueChannel

logger = logging.getLogger(__name__)

RevealHandler = Callable[[int, list[str]], Awaitable[None]]


class RevealMode(str, Enum):
    TEXT = "text"
    VOICE = "voice"


class CardRevealController:
    """Deferred, ordered and idempotent card placement."""

    def __init__(
        self,
        channel: DialogueChannel | None = None,
        settings: RevealSettings | None = None,
        on_reveal: RevealHandler | None = None,
    ):
        self.channel = channel
        self.settings = settings or Config.reveal_settings()
        self.on_reveal = on_reveal
        self.placements: dict[int, list[str]] = {}
        self._queue: deque[tuple[list[str], int]] = deque()
        self._flush_registered = False

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def reveal(self, card_ids: list[str], insert_at: int, mode: RevealMode) -> list[str]:
        """
        Reveal cards at `insert_at`.

        Returns the ids placed now; an empty list when deferred or already placed.
        """
        if not card_ids:
            return []

        if mode == RevealMode.VOICE and self.channel is not None and self.channel.is_response_active():
            self._queue.append((list(card_ids), insert_at))
            if not self._flush_registered:
                self._flush_registered = True
                self.channel.on_response_complete(self._flush)
            logger.debug("Deferred %d card(s) until the active response completes", len(card_ids))
            return []

        if mode == RevealMode.TEXT and self.settings.text_reveal_delay_seconds > 0:
            await asyncio.sleep(self.settings.text_reveal_delay_seconds)

        return await self._apply(card_ids, insert_at)

    async def resurface(self, card_ids: list[str], tail: int, mode: RevealMode) -> list[str]:
        """Re-deliver existing cards at the current end of the timeline."""
        return await self.reveal(card_ids, tail, mode)

    async def _flush(self) -> None:
        self._flush_registered = False
        while self._queue:
            card_ids, insert_at = self._queue.popleft()
            await self._apply(card_ids, insert_at)

    def turn_removed(self, index: int) -> None:
        """
        Keep placements anchored to their turns after the turn at `index` is deleted.

        Insertion points past the removed turn move down by one; cards that
        followed the removed turn now follow the turn before it.
        """
        shifted: dict[int, list[str]] = {}
        for insert_at in sorted(self.placements):
            slot = insert_at - 1 if insert_at > index else insert_at
            placed = shifted.setdefault(slot, [])
            placed.extend(card_id for card_id in self.placements[insert_at] if card_id not in placed)
        self.placements = shifted
        self._queue = deque(
            (card_ids, insert_at - 1 if insert_at > index else insert_at)
            for card_ids, insert_at in self._queue
        )

    async def _apply(self, card_ids: list[str], insert_at: int) -> list[str]:
        placed = self.placements.setdefault(insert_at, [])
        fresh = [card_id for card_id in dict.fromkeys(card_ids) if card_id not in placed]
        if not fresh:
            return []
        placed.extend(fresh)
        logger.info("Revealed %d card(s) at turn %d", len(fresh), insert_at)
        if self.on_reveal is not None:
            await self.on_reveal(insert_at, fresh)
        return fresh

    def timeline(self, turns: list[Turn]) -> list[dict]:
        """
        Ordered {turn, cards} entries for rendering.

        Cards placed at index N follow the Nth turn; index 0 is a leading entry
        without a turn. Placements past the end attach to the last turn.
        """
        attached: dict[int, list[str]] = {}
        for insert_at in sorted(self.placements):
            slot = min(insert_at, len(turns))
            attached.setdefault(slot, []).extend(self.placements[insert_at])

        entries: list[dict] = []
        if attached.get(0):
            entries.append({"turn": None, "cards": list(attached[0])})
        for index, turn in enumerate(turns):
            entries.append({"turn": turn, "cards": list(attached.get(index + 1, []))})
        return entries
