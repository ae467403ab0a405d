"""
FastAPI application for the Wayfinder conversation engine.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.schemas import CreateSessionRequest, CreateSessionResponse, StateResponse, VoteRequest
from api.sessions import session_manager
from api.websocket import websocket_handler
from config import Config
from orchestrator import RevealMode

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Validate configuration on startup
Config.validate()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Wayfinder API starting (model=%s)", Config.MODEL_ID)
    yield
    session_manager.close_all()


app = FastAPI(
    title="Wayfinder Conversation API",
    description="WebSocket API for guided career discovery conversations",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.websocket("/ws")
async def websocket_new_session(websocket: WebSocket):
    """WebSocket endpoint for new session (no session_id)."""
    await websocket_handler(websocket, session_id=None)


@app.websocket("/ws/{session_id}")
async def websocket_existing_session(websocket: WebSocket, session_id: str):
    """WebSocket endpoint for existing session."""
    await websocket_handler(websocket, session_id=session_id)


@app.post("/sessions")
async def create_session(request: CreateSessionRequest) -> CreateSessionResponse:
    """Create a session without opening a websocket."""
    try:
        mode = RevealMode(request.mode)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown mode '{request.mode}'")
    session_id = session_manager.create_session(mode=mode)
    orchestrator = session_manager.get_session(session_id)
    state = await orchestrator.start()
    return CreateSessionResponse(session_id=session_id, state=state)


@app.get("/sessions/{session_id}/state")
async def get_state(session_id: str) -> StateResponse:
    """Phase, rubric, latest gate decision, insights, timeline and backlog."""
    orchestrator = session_manager.get_session(session_id)
    if not orchestrator:
        raise HTTPException(status_code=404, detail="Session not found")
    return StateResponse(**orchestrator.get_state())


@app.post("/sessions/{session_id}/votes")
async def vote(session_id: str, request: VoteRequest) -> StateResponse:
    """Record a save/maybe/skip reaction (null clears it)."""
    orchestrator = session_manager.get_session(session_id)
    if not orchestrator:
        raise HTTPException(status_code=404, detail="Session not found")
    try:
        await orchestrator.vote(request.card_id, request.value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Card {request.card_id} not found")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return StateResponse(**orchestrator.get_state())


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    if not session_manager.get_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    session_manager.delete_session(session_id)
    return {"deleted": session_id}


@app.get("/health")
async def health():
    """Health check."""
    return {"status": "healthy"}
