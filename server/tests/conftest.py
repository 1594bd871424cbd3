"""
Shared fixtures for the PocketTavern test suite.

The data directory is pointed at a temp dir before any application module is
imported, because config creates its directories at import time.
"""
import asyncio
import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("POCKETTAVERN_DATA_DIR", tempfile.mkdtemp(prefix="pockettavern-test-"))
os.environ["POCKETTAVERN_LOG_REQUESTS"] = "false"

import pytest

from models import (
    ApiSelection,
    Character,
    ChatMessage,
    InstructTemplate,
    Persona,
    SamplerPreset,
    TokenEvent,
    WorldInfoSettings,
)

# Marks the point in a FakeBackend script where the stream blocks until cancelled
HANG = object()


def tokens(*deltas: str) -> list[TokenEvent]:
    """TokenEvents for the given deltas with running accumulation."""
    events = []
    accumulated = ""
    for delta in deltas:
        accumulated += delta
        events.append(TokenEvent(delta=delta, accumulated=accumulated))
    return events


async def wait_for(predicate, steps: int = 500) -> None:
    """Yield to the loop until predicate() is true."""
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class FakeChatStore:
    def __init__(self, messages=None):
        self.messages: list[ChatMessage] = list(messages or [])

    async def load(self):
        return [m.model_copy(deep=True) for m in self.messages]

    async def append(self, message):
        self.messages.append(message)

    async def replace(self, index, message):
        self.messages[index] = message

    async def delete(self, index):
        del self.messages[index]


class FakeCharacterStore:
    def __init__(self, *characters: Character):
        self.characters = {c.id: c for c in characters}

    async def get(self, character_id):
        if character_id not in self.characters:
            raise LookupError(f"Character not found: {character_id}")
        return self.characters[character_id]


class FakeWorldInfoStore:
    def __init__(self, books=None):
        self.books = books or {}
        self.requested: list[str] = []

    async def get(self, name):
        self.requested.append(name)
        if name not in self.books:
            raise LookupError(f"Lorebook not found: {name}")
        return list(self.books[name])


class FakePersonaStore:
    def __init__(self, persona=None):
        self.persona = persona or Persona(name="Alex", is_selected=True)

    async def current(self):
        return self.persona


class FakeTemplateStore:
    def __init__(
        self,
        template=None,
        prompt_order=(),
        prompts=None,
        system_prompt="",
        preset=None,
        world_info_settings=None,
        api=None,
    ):
        self.template = template
        self.prompt_order = list(prompt_order)
        self.prompts = prompts or {}
        self.system_prompt = system_prompt
        self.preset = preset or SamplerPreset()
        self.world_info_settings = world_info_settings or WorldInfoSettings()
        self.api = api or ApiSelection()
        self.loads = 0

    async def current_instruct_template(self):
        self.loads += 1
        return self.template

    async def current_chat_prompt_order(self):
        return self.prompt_order

    async def current_chat_prompts(self):
        return self.prompts

    async def current_system_prompt(self):
        return self.system_prompt

    async def current_preset(self):
        return self.preset

    async def current_world_info_settings(self):
        return self.world_info_settings

    async def current_api(self):
        return self.api


class FakeBackend:
    """
    Stands in for BackendClient. Each stream_completion call plays the next
    script: a list of StreamEvents, optionally containing HANG.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests: list[tuple[str, dict]] = []
        self.aborts: list[str] = []
        self.active = 0
        self.max_active = 0

    async def stream_completion(self, endpoint, body, request_type="instruct", model=None):
        self.requests.append((endpoint, body))
        script = self.scripts.pop(0) if self.scripts else []
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            for item in script:
                if item is HANG:
                    await asyncio.Event().wait()
                yield item
                await asyncio.sleep(0)
        finally:
            self.active -= 1

    async def abort(self, api_server=""):
        self.aborts.append(api_server)


@pytest.fixture
def character():
    return Character(
        id="seraphina",
        name="Seraphina",
        description="A guardian of the forest.",
        personality="Kind and protective.",
        scenario="{{user}} wakes up in a glade.",
        first_message="Hello, {{user}}.",
        alternate_greetings=["Welcome back, {{user}}."],
    )


@pytest.fixture
def alpaca_template():
    return InstructTemplate(
        name="Alpaca",
        input_sequence="### Instruction:\n",
        output_sequence="### Response:\n",
        stop_sequence="\n",
    )


@pytest.fixture
def make_session(character):
    """Build a GenerationSession over fake stores."""
    from services.generation import GenerationSession

    def factory(backend, messages=None, templates=None, persona=None, world_info=None):
        return GenerationSession(
            character_id=character.id,
            chat_store=FakeChatStore(messages),
            characters=FakeCharacterStore(character),
            personas=FakePersonaStore(persona),
            world_info=world_info or FakeWorldInfoStore(),
            templates=templates or FakeTemplateStore(),
            backend=backend,
        )

    return factory
