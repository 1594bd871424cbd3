"""
Chat Router - Generation sessions and streaming responses
"""
from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from typing import Literal, Optional
from pydantic import BaseModel, Field
from collections import OrderedDict
import asyncio
import json

from config import settings
from models import ChatMessage
from services.generation import (
    GenerationSession,
    JsonCharacterStore,
    JsonChatStore,
    JsonSettingsStore,
    JsonWorldInfoStore,
    SessionError,
)
from services.llm import BackendClient
from utils import get_logger, list_json_files

router = APIRouter()
logger = get_logger("routers.chat")

# chat_id -> live session, least recently used first; one in-flight generation per chat
_sessions: OrderedDict[str, GenerationSession] = OrderedDict()
MAX_SESSIONS = 100  # Idle sessions beyond this are dropped, oldest first

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StartChatRequest(BaseModel):
    character_id: str = Field(..., max_length=200)
    greeting_index: int = 0


class SendMessageRequest(BaseModel):
    content: str = Field(..., max_length=50000)


class EditMessageRequest(BaseModel):
    content: str = Field(..., max_length=50000)


class SwipeRequest(BaseModel):
    index: Optional[int] = None


class ChatSummary(BaseModel):
    id: str
    character_id: Optional[str] = None
    message_count: int = 0
    updated_at: Optional[str] = None


class ChatSnapshot(BaseModel):
    id: str
    character_id: Optional[str] = None
    state: str
    is_generating: bool
    messages: list[ChatMessage]


def create_backend() -> BackendClient:
    return BackendClient()


def open_chat_store(chat_id: str) -> JsonChatStore:
    try:
        return JsonChatStore(chat_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def create_session(chat_id: str, character_id: str) -> GenerationSession:
    settings_store = JsonSettingsStore()
    return GenerationSession(
        character_id=character_id,
        chat_store=open_chat_store(chat_id),
        characters=JsonCharacterStore(),
        personas=settings_store,
        world_info=JsonWorldInfoStore(),
        templates=settings_store,
        backend=create_backend(),
    )


def remember_session(chat_id: str, session: GenerationSession) -> None:
    """Register a session as most recently used and drop the oldest idle ones over the cap."""
    _sessions[chat_id] = session
    _sessions.move_to_end(chat_id)
    for stale_id in list(_sessions):
        if len(_sessions) <= MAX_SESSIONS:
            break
        if stale_id != chat_id and not _sessions[stale_id].is_generating:
            del _sessions[stale_id]
            logger.debug("Evicted idle session %s", stale_id)


async def get_session(chat_id: str) -> GenerationSession:
    """Return the live session for a chat, creating it from the chat file if needed."""
    session = _sessions.get(chat_id)
    if session is not None:
        _sessions.move_to_end(chat_id)
        return session

    store = open_chat_store(chat_id)
    if not await store.exists():
        raise HTTPException(status_code=404, detail="Chat not found")
    character_id = await store.character_id()
    if not character_id:
        raise HTTPException(status_code=400, detail="Chat has no character")

    session = create_session(chat_id, character_id)
    remember_session(chat_id, session)
    return session


async def shutdown_sessions() -> None:
    """Stop in-flight generations (keeping their partial text) and drop all sessions."""
    active = [s for s in _sessions.values() if s.is_generating]
    for session in active:
        await session.stop()
    if active:
        logger.info("Stopped %d generation(s) on shutdown", len(active))
    _sessions.clear()


async def snapshot(chat_id: str, session: GenerationSession) -> ChatSnapshot:
    return ChatSnapshot(
        id=chat_id,
        character_id=session.character_id,
        state=session.state.value,
        is_generating=session.is_generating,
        messages=await session.chat_store.load(),
    )


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def stream_generation(session: GenerationSession, run) -> StreamingResponse:
    """
    Relay a session generation to the client as SSE.

    `run` is a session method taking an on_event callback. Token events are
    forwarded as they arrive, followed by a final "done" event with the
    persisted message, or an "error" event.
    """
    async def generate():
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(run(on_event=queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(None))

        while True:
            event = await queue.get()
            if event is None:
                break
            yield _sse(event.model_dump())

        if task.cancelled():
            yield _sse({"type": "done", "message": None, "state": session.state.value})
        elif isinstance(task.exception(), (SessionError, LookupError)):
            yield _sse({"type": "error", "message": str(task.exception())})
        elif task.exception() is not None:
            logger.error("Generation crashed", exc_info=task.exception())
            yield _sse({"type": "error", "message": "Generation failed"})
        else:
            message = task.result()
            yield _sse({
                "type": "done",
                "message": message.model_dump() if message else None,
                "state": session.state.value,
            })
        yield "data: [DONE]\n\n"

    return StreamingResponse(generate(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/sessions", response_model=list[ChatSummary])
async def list_chats():
    """List stored chats, most recently updated first."""
    chats = await list_json_files(settings.data_dir / "chats")
    summaries = [
        ChatSummary(
            id=chat_id,
            character_id=chat.get("character_id"),
            message_count=len(chat.get("messages", [])),
            updated_at=chat.get("updated_at"),
        )
        for chat_id, chat in chats
    ]
    return sorted(summaries, key=lambda s: s.updated_at or "", reverse=True)


@router.post("/sessions/{chat_id}/start", response_model=ChatSnapshot)
async def start_chat(chat_id: str, request: StartChatRequest):
    """Create a chat for a character and seed it with the greeting."""
    store = open_chat_store(chat_id)
    if await store.exists() and await store.load():
        raise HTTPException(status_code=409, detail="Chat already started")

    session = create_session(chat_id, request.character_id)
    try:
        await session.characters.get(request.character_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await store.set_character(request.character_id)
    await session.start_chat(request.greeting_index)
    remember_session(chat_id, session)
    logger.info("Started chat %s with character %s", chat_id, request.character_id)
    return await snapshot(chat_id, session)


@router.get("/sessions/{chat_id}", response_model=ChatSnapshot)
async def get_chat(chat_id: str):
    session = await get_session(chat_id)
    return await snapshot(chat_id, session)


@router.post("/sessions/{chat_id}/messages")
async def send_message(chat_id: str, request: SendMessageRequest):
    """Send a message and stream the reply."""
    session = await get_session(chat_id)

    async def run(on_event):
        return await session.send(request.content, on_event=on_event)

    return stream_generation(session, run)


@router.post("/sessions/{chat_id}/continue")
async def continue_message(chat_id: str):
    """Extend the last assistant message."""
    session = await get_session(chat_id)
    return stream_generation(session, session.continue_generation)


@router.post("/sessions/{chat_id}/regenerate")
async def regenerate_message(chat_id: str):
    """Generate a new swipe for the last assistant message."""
    session = await get_session(chat_id)
    return stream_generation(session, session.regenerate)


@router.post("/sessions/{chat_id}/stop")
async def stop_generation(chat_id: str):
    session = await get_session(chat_id)
    await session.stop()
    return {"status": session.state.value}


@router.post("/sessions/{chat_id}/swipe/{direction}", response_model=ChatMessage)
async def swipe(chat_id: str, direction: Literal["left", "right"], request: Optional[SwipeRequest] = None):
    session = await get_session(chat_id)
    index = request.index if request else None
    try:
        if direction == "left":
            return await session.swipe_left(index)
        return await session.swipe_right(index)
    except SessionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/sessions/{chat_id}/messages/{index}", response_model=ChatMessage)
async def edit_message(chat_id: str, index: int, request: EditMessageRequest):
    session = await get_session(chat_id)
    try:
        return await session.edit_message(index, request.content)
    except SessionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/sessions/{chat_id}/messages/{index}")
async def delete_message(chat_id: str, index: int):
    session = await get_session(chat_id)
    try:
        await session.delete_message(index)
    except SessionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "deleted"}
