"""
Generation session - send / stop / continue / regenerate / swipe for one chat.

At most one generation is in flight per session. The active slot is claimed
and released synchronously, so a concurrent stop() and send() can never leave
two streams running; starting a new generation stops the previous one first
and keeps its partial text.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from models import (
    ChatMessage,
    CompleteEvent,
    GenerationConfig,
    StreamEvent,
    TokenEvent,
)
from services.llm import BackendClient, clean_response
from services.prompt import substitute
from utils import get_logger
from .context import build_chat_context, build_request, load_generation_config
from .stores import CharacterStore, ChatStore, PersonaStore, TemplateStore, WorldInfoStore

logger = get_logger("generation.session")

EventCallback = Callable[[StreamEvent], None]
Finalizer = Callable[[str], Awaitable[ChatMessage]]


class SessionError(Exception):
    """An operation that the chat's current state does not allow."""


class GenerationState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class _Generation:
    on_event: Optional[EventCallback] = None
    finalize: Optional[Finalizer] = None
    task: Optional[asyncio.Task] = None
    finalizing: Optional[asyncio.Future] = None
    accumulated: str = ""
    stopped: bool = False
    finished: bool = False

    def emit(self, event: StreamEvent) -> None:
        if self.on_event is not None:
            self.on_event(event)


class GenerationSession:
    def __init__(
        self,
        character_id: str,
        chat_store: ChatStore,
        characters: CharacterStore,
        personas: PersonaStore,
        world_info: WorldInfoStore,
        templates: TemplateStore,
        backend: BackendClient,
        config: Optional[GenerationConfig] = None,
    ):
        self.character_id = character_id
        self.chat_store = chat_store
        self.characters = characters
        self.personas = personas
        self.world_info = world_info
        self.templates = templates
        self.backend = backend
        self.state = GenerationState.IDLE
        self.last_error: Optional[str] = None
        self._config = config
        self._generation: Optional[_Generation] = None
        self._lock = asyncio.Lock()

    @property
    def is_generating(self) -> bool:
        return self._generation is not None

    async def generation_config(self) -> GenerationConfig:
        """Resolved once, on first use, and reused for the session's lifetime."""
        if self._config is None:
            self._config = await load_generation_config(self.templates)
        return self._config

    # Generation

    async def send(self, text: str, on_event: Optional[EventCallback] = None) -> Optional[ChatMessage]:
        """
        Append a user message and generate the reply.

        Returns the persisted assistant message, or None if the generation was
        stopped, failed, or produced no text.
        """
        async def prepare():
            history = await self.chat_store.load()
            await self.chat_store.append(ChatMessage(content=text, is_user=True))

            async def finalize(reply: str) -> ChatMessage:
                message = ChatMessage(content=reply.lstrip(), is_user=False)
                await self.chat_store.append(message)
                return message

            return history, text, finalize

        return await self._start(on_event, prepare)

    async def regenerate(self, on_event: Optional[EventCallback] = None) -> Optional[ChatMessage]:
        """Generate a new swipe for the last assistant message and select it."""
        async def prepare():
            messages = await self.chat_store.load()
            index, user_index = self._reply_target(messages)
            target = messages[index]
            swipes = list(target.swipes) if target.swipes else [target.content]
            if target.displayed_content not in swipes:
                swipes.append(target.displayed_content)

            async def finalize(reply: str) -> ChatMessage:
                reply = reply.lstrip()
                new_swipes = swipes + [reply]
                message = target.model_copy(update={
                    "content": reply,
                    "swipes": new_swipes,
                    "swipe_id": len(new_swipes) - 1,
                })
                await self.chat_store.replace(index, message)
                return message

            return messages[:user_index], messages[user_index].displayed_content, finalize

        return await self._start(on_event, prepare)

    async def continue_generation(self, on_event: Optional[EventCallback] = None) -> Optional[ChatMessage]:
        """Generate more text and append it to the last assistant message."""
        async def prepare():
            messages = await self.chat_store.load()
            index, user_index = self._reply_target(messages)
            target = messages[index]
            seed = target.displayed_content

            async def finalize(reply: str) -> ChatMessage:
                content = seed + reply
                update = {"content": content}
                if target.swipes:
                    swipes = list(target.swipes)
                    swipes[target.swipe_id] = content
                    update["swipes"] = swipes
                message = target.model_copy(update=update)
                await self.chat_store.replace(index, message)
                return message

            return messages[:user_index], messages[user_index].displayed_content, finalize

        return await self._start(on_event, prepare)

    async def stop(self) -> None:
        """
        Stop the in-flight generation.

        Cancels the stream, sends a best-effort abort to the backend, and
        persists any partial text. A no-op when nothing is generating.
        """
        generation = self._generation
        if generation is None:
            return
        self._generation = None
        generation.stopped = True
        async with self._lock:
            await self._halt(generation)
        if self._generation is None:
            self.state = GenerationState.CANCELLED

    async def _start(self, on_event: Optional[EventCallback], prepare) -> Optional[ChatMessage]:
        previous = self._generation
        generation = _Generation(on_event=on_event)
        self._generation = generation
        if previous is not None:
            previous.stopped = True

        try:
            async with self._lock:
                if previous is not None:
                    logger.info("Stopping previous generation before starting a new one")
                    await self._halt(previous)
                if generation.stopped:
                    return None
                self.state = GenerationState.STARTING
                history, new_message, generation.finalize = await prepare()
                endpoint, body = await self._build(history, new_message)
        except BaseException:
            if self._generation is generation:
                self._generation = None
                self.state = GenerationState.IDLE
            raise

        if generation.stopped:
            return None
        generation.task = asyncio.create_task(self._stream(generation, endpoint, body))
        await asyncio.wait([generation.task])
        if generation.task.cancelled():
            return None
        return generation.task.result()

    async def _build(self, history, new_message) -> tuple[str, dict]:
        config = await self.generation_config()
        character = await self.characters.get(self.character_id)
        context = await build_chat_context(character, self.personas, self.world_info, config, history)
        return build_request(history, new_message, context)

    def _set_state(self, generation: _Generation, state: GenerationState) -> None:
        if self._generation is generation:
            self.state = state

    async def _stream(self, generation: _Generation, endpoint: str, body: dict) -> Optional[ChatMessage]:
        config = await self.generation_config()
        result = None
        try:
            async for event in self.backend.stream_completion(
                endpoint, body, request_type=config.mode.kind, model=config.api.model or None
            ):
                if isinstance(event, TokenEvent):
                    generation.accumulated = event.accumulated
                    self._set_state(generation, GenerationState.STREAMING)
                    generation.emit(event)
                elif isinstance(event, CompleteEvent):
                    generation.finished = True
                    self._set_state(generation, GenerationState.COMPLETE)
                    if event.text.strip():
                        generation.finalizing = asyncio.ensure_future(generation.finalize(event.text))
                        result = await asyncio.shield(generation.finalizing)
                    else:
                        logger.warning("Generation finished without any text")
                    self._set_state(generation, GenerationState.IDLE)
                    generation.emit(event)
                else:
                    generation.finished = True
                    self.last_error = event.message
                    self._set_state(generation, GenerationState.ERROR)
                    logger.error("Generation failed: %s", event.message)
                    generation.emit(event)
        finally:
            if self._generation is generation:
                self._generation = None
        return result

    async def _halt(self, generation: _Generation) -> None:
        generation.stopped = True
        task = generation.task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
            config = await self.generation_config()
            await self.backend.abort(config.api.api_server)

        if generation.finalizing is not None:
            await asyncio.wait([generation.finalizing])
            return
        if generation.finished or generation.finalize is None:
            return

        partial = clean_response(generation.accumulated)
        if partial.strip():
            logger.info("Keeping %d chars from the stopped generation", len(partial))
            await generation.finalize(partial)

    # Message operations (no network)

    @staticmethod
    def _reply_target(messages: list[ChatMessage]) -> tuple[int, int]:
        """Index of the last assistant message and of the user message before it."""
        index = next((i for i in range(len(messages) - 1, -1, -1) if not messages[i].is_user), None)
        if index is None:
            raise SessionError("There is no assistant message to work on")
        user_index = next((i for i in range(index - 1, -1, -1) if messages[i].is_user), None)
        if user_index is None:
            raise SessionError("No user message precedes the last assistant message")
        return index, user_index

    def _require_idle(self) -> None:
        # Streaming replies are written back by index once they finish
        if self.is_generating:
            raise SessionError("Stop the current generation before changing messages")

    @staticmethod
    def _check_index(messages: list[ChatMessage], index: int) -> None:
        if not 0 <= index < len(messages):
            raise SessionError(f"Message index out of range: {index}")

    async def _swipe(self, step: int, index: Optional[int]) -> ChatMessage:
        self._require_idle()
        messages = await self.chat_store.load()
        if index is None:
            index = next((i for i in range(len(messages) - 1, -1, -1) if not messages[i].is_user), None)
            if index is None:
                raise SessionError("There is no assistant message to swipe")
        self._check_index(messages, index)

        message = messages[index]
        target = message.swipe_id + step
        if not message.swipes or not 0 <= target < len(message.swipes):
            return message
        updated = message.model_copy(update={"swipe_id": target, "content": message.swipes[target]})
        await self.chat_store.replace(index, updated)
        return updated

    async def swipe_left(self, index: Optional[int] = None) -> ChatMessage:
        return await self._swipe(-1, index)

    async def swipe_right(self, index: Optional[int] = None) -> ChatMessage:
        return await self._swipe(1, index)

    async def start_chat(self, greeting_index: int = 0) -> Optional[ChatMessage]:
        """
        Seed an empty chat with the character's greeting.

        The first message and the alternate greetings become the greeting's
        swipes. Returns None if the character has no greeting.
        """
        self._require_idle()
        if await self.chat_store.load():
            raise SessionError("Chat already has messages")
        character = await self.characters.get(self.character_id)
        persona = await self.personas.current()
        greetings = [
            substitute(g, character, persona)
            for g in [character.first_message, *character.alternate_greetings]
            if g.strip()
        ]
        if not greetings:
            return None
        greeting_index = min(max(greeting_index, 0), len(greetings) - 1)
        message = ChatMessage(
            content=greetings[greeting_index],
            is_user=False,
            swipes=greetings if len(greetings) > 1 else None,
            swipe_id=greeting_index if len(greetings) > 1 else 0,
        )
        await self.chat_store.append(message)
        return message

    async def edit_message(self, index: int, content: str) -> ChatMessage:
        """Replace a message's text; for swiped messages the selected swipe changes too."""
        self._require_idle()
        messages = await self.chat_store.load()
        self._check_index(messages, index)
        message = messages[index]
        update = {"content": content}
        if message.swipes:
            swipes = list(message.swipes)
            swipes[message.swipe_id] = content
            update["swipes"] = swipes
        updated = message.model_copy(update=update)
        await self.chat_store.replace(index, updated)
        return updated

    async def delete_message(self, index: int) -> None:
        """Delete a message; its swipe history goes with it."""
        self._require_idle()
        messages = await self.chat_store.load()
        self._check_index(messages, index)
        await self.chat_store.delete(index)
