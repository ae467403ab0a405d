"""
WebSocket handler for real-time bidirectional communication.

Client messages: ``answer``, ``realtime_event``, ``vote``, ``mode``,
``request_cards``. Engine events (``turn``, ``cards_revealed``, ``nudge``,
``deepening_prompt``, ``retract``, ``state``, ``channel_event``) are pushed
as they happen through the orchestrator's event sink.

Every client message is dispatched in its own task. Realtime acknowledgements
and response completions keep flowing while a typed answer waits for its ack
or a suggestion fetch is in flight; the orchestrator's in-flight flag keeps
fetches single.
"""

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from api.schemas import (
    WSAnswer,
    WSCardsRevealed,
    WSChannelEvent,
    WSDeepeningPrompt,
    WSError,
    WSMode,
    WSNudge,
    WSRealtimeEvent,
    WSRequestCards,
    WSRetract,
    WSSessionStart,
    WSState,
    WSTurn,
    WSVote,
)
from api.sessions import session_manager
from orchestrator import Orchestrator, RevealMode

logger = logging.getLogger(__name__)

# Dispatch tasks outlive a disconnect so a resumed session sees their results
_running: set[asyncio.Task] = set()

OUTBOUND_SCHEMAS: dict[str, type[BaseModel]] = {
    "turn": WSTurn,
    "cards_revealed": WSCardsRevealed,
    "nudge": WSNudge,
    "deepening_prompt": WSDeepeningPrompt,
    "retract": WSRetract,
    "state": WSState,
    "channel_event": WSChannelEvent,
}


def make_event_sink(websocket: WebSocket):
    """Forward orchestrator events to the client through the WS schemas."""

    async def send(event: dict[str, Any]) -> None:
        schema = OUTBOUND_SCHEMAS.get(event.get("type", ""))
        if schema is None:
            logger.warning("Dropping unknown engine event %s", event.get("type"))
            return
        await websocket.send_json(schema(**event).model_dump())

    return send


async def _dispatch(orchestrator: Orchestrator, message: dict[str, Any]) -> None:
    """Route one client message to the orchestrator."""
    message_type = message.get("type")

    if message_type == "answer":
        answer = WSAnswer(**message)
        await orchestrator.submit_user_text(answer.answer)

    elif message_type == "realtime_event":
        relayed = WSRealtimeEvent(**message)
        await orchestrator.handle_realtime_event(relayed.event)

    elif message_type == "vote":
        vote = WSVote(**message)
        await orchestrator.vote(vote.card_id, vote.value)

    elif message_type == "mode":
        mode_msg = WSMode(**message)
        mode = RevealMode(mode_msg.mode)
        if mode == RevealMode.VOICE and mode_msg.connected:
            await orchestrator.on_voice_connected()
        else:
            await orchestrator.set_mode(mode)

    elif message_type == "request_cards":
        WSRequestCards(**message)
        await orchestrator.request_cards()

    else:
        raise ValueError(f"Unsupported message type '{message_type}'")


async def _handle_message(websocket: WebSocket, orchestrator: Orchestrator, data: str) -> None:
    """Parse and dispatch one client message, reporting failures as error frames."""
    try:
        message = json.loads(data)
        await _dispatch(orchestrator, message)
    except json.JSONDecodeError:
        await websocket.send_json(WSError(message="Invalid JSON format").model_dump())
    except (ValidationError, ValueError, KeyError) as e:
        await websocket.send_json(WSError(message=f"Invalid message: {str(e)}").model_dump())
    except Exception as e:
        logger.exception("Error processing message")
        await websocket.send_json(
            WSError(message=f"Error processing message: {str(e)}").model_dump()
        )


def _spawn(websocket: WebSocket, orchestrator: Orchestrator, data: str) -> asyncio.Task:
    task = asyncio.create_task(_handle_message(websocket, orchestrator, data))
    _running.add(task)
    task.add_done_callback(_running.discard)
    return task


async def websocket_handler(websocket: WebSocket, session_id: str | None = None):
    """
    Handle WebSocket connection for a discovery session.

    Flow:
    1. Client connects with optional session_id
    2. If no session_id, create a new session and send session_start
    3. Run the opening (skipped when resuming)
    4. Receive messages until the client disconnects, dispatching each in a task
    """
    await websocket.accept()

    is_resuming = False
    try:
        if session_id:
            orchestrator = session_manager.get_session(session_id)
            if not orchestrator:
                await websocket.send_json(
                    WSError(message=f"Session {session_id} not found").model_dump()
                )
                await websocket.close()
                return
            is_resuming = True
        else:
            session_id = session_manager.create_session()
            orchestrator = session_manager.get_session(session_id)

        orchestrator.on_event = make_event_sink(websocket)
        await websocket.send_json(
            WSSessionStart(session_id=session_id, mode=orchestrator.session.mode.value).model_dump()
        )

        try:
            if is_resuming:
                await websocket.send_json(WSState(state=orchestrator.get_state()).model_dump())
            else:
                await orchestrator.start()
        except Exception as e:
            logger.exception("Failed to start session")
            await websocket.send_json(
                WSError(message=f"Failed to start session: {str(e)}").model_dump()
            )
            await websocket.close()
            return

        # Main loop
        while True:
            data = await websocket.receive_text()
            _spawn(websocket, orchestrator, data)

    except WebSocketDisconnect:
        logger.info("Client disconnected from session %s", session_id)
    finally:
        orchestrator = session_manager.get_session(session_id) if session_id else None
        if orchestrator is not None:
            orchestrator.on_event = None
