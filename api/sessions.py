"""
Session management for orchestrator instances.

Sessions live in memory; `snapshot`/`restore` expose the serialized form for
callers that want to keep them elsewhere.
"""

import logging
import os
from typing import Any

from agents import InsightExtractor, SuggestionGenerator
from config import Config
from orchestrator import Orchestrator, RevealMode

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages orchestrator sessions.

    One Orchestrator per session; the websocket handler attaches its event
    sink when a client connects.
    """

    def __init__(self):
        self.sessions: dict[str, Orchestrator] = {}

    def _collaborators(self) -> dict[str, Any]:
        return {
            "extractor": InsightExtractor(model_id=Config.MODEL_ID),
            "generator": SuggestionGenerator(model_id=Config.SUGGESTION_MODEL_ID),
        }

    def create_session(self, mode: RevealMode = RevealMode.TEXT) -> str:
        """Create a new session and return session ID."""
        session_id = os.urandom(16).hex()
        self.sessions[session_id] = Orchestrator(
            session_id=session_id,
            mode=mode,
            **self._collaborators(),
        )
        logger.info("Created session %s (%s mode)", session_id, mode.value)
        return session_id

    def get_session(self, session_id: str) -> Orchestrator | None:
        """Get orchestrator for a session."""
        return self.sessions.get(session_id)

    def snapshot(self, session_id: str) -> dict[str, Any] | None:
        orchestrator = self.sessions.get(session_id)
        return orchestrator.to_dict() if orchestrator else None

    def restore(self, data: dict[str, Any]) -> str:
        """Rebuild a session from `snapshot` output and register it."""
        orchestrator = Orchestrator.from_dict(data, **self._collaborators())
        session_id = orchestrator.session_id or os.urandom(16).hex()
        orchestrator.session_id = session_id
        orchestrator.session = orchestrator.session.model_copy(update={"session_id": session_id})
        self.sessions[session_id] = orchestrator
        return session_id

    def delete_session(self, session_id: str) -> None:
        """Drop a session and release its agents."""
        orchestrator = self.sessions.pop(session_id, None)
        if orchestrator is None:
            return
        for agent in (orchestrator.extractor, orchestrator.generator):
            if agent is not None:
                agent.cleanup()

    def close_all(self) -> None:
        for session_id in list(self.sessions):
            self.delete_session(session_id)
        logger.info("Closed all sessions")


session_manager = SessionManager()
