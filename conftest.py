import asyncio

import pytest

from tutor_chat.config import ChatConfig
from tutor_chat.engine import ChatSessionEngine
from tutor_chat.persistence import JsonFilePersistence


class StubResponder:
    """Streams `chunks`, then raises `error` if set.

    `gate` holds the reply until set; `hang` never replies at all.
    `started` is set as soon as a call arrives.
    """

    def __init__(self) -> None:
        self.chunks: list[str] = ["Hi", " there", "!"]
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.hang = False
        self.started = asyncio.Event()
        self.calls: list[dict] = []

    async def respond(self, prompt, history, character_id):
        self.calls.append({
            "prompt": prompt,
            "history": list(history),
            "character_id": character_id,
        })
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.hang:
            await asyncio.Event().wait()
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class StubGreeter:
    """Returns `text`, or raises `error`. `gates` holds greetings per character id."""

    def __init__(self) -> None:
        self.text = "Hello, scholar!"
        self.error: Exception | None = None
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str, dict]] = []

    async def greet(self, character_id, scenario_type, context_keys):
        self.calls.append((character_id, scenario_type, dict(context_keys)))
        gate = self.gates.get(character_id)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def responder() -> StubResponder:
    return StubResponder()


@pytest.fixture
def greeter() -> StubGreeter:
    return StubGreeter()


@pytest.fixture
def config() -> ChatConfig:
    return ChatConfig(responder_timeout=1.0, greeting_timeout=1.0)


@pytest.fixture
def engine(responder, greeter, config) -> ChatSessionEngine:
    return ChatSessionEngine(responder, greeter, config=config)


@pytest.fixture
def persistence(tmp_path) -> JsonFilePersistence:
    return JsonFilePersistence(tmp_path / "data-tests")


@pytest.fixture
def make_engine(responder, greeter, config):
    """Build an engine with overrides, e.g. make_engine(persistence=p)."""

    def _make(**kwargs) -> ChatSessionEngine:
        kwargs.setdefault("config", config)
        return ChatSessionEngine(responder, greeter, **kwargs)

    return _make
