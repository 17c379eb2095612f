"""Core domain models.

Scenarios identify an isolated conversation context; messages are the turns
stored under a scenario. Messages come in two channel variants that share a
common base:

    NarrationMessage    — system-paced speech bubbles, no reply expected.
                          Carries pacing and optional media.
    InteractionMessage  — main chat turns; the only channel the user types in.

Pydantic is used for validation and serialisation at every data boundary.
Messages are frozen: a streaming message is updated by replacing it with a
copy (model_copy), never by mutating it in place.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Annotated, Literal, Union
from urllib.parse import quote, urlencode

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field

from tutor_chat.errors import InvalidArgument, WrongChannel

ScenarioType = Literal["general", "menu", "task"]
SCENARIO_TYPES: tuple[str, ...] = ("general", "menu", "task")

ScenarioState = Literal["uninitialized", "active", "paused", "inactive", "terminated"]

Channel = Literal["narration", "interaction"]
CHANNELS: tuple[str, ...] = ("narration", "interaction")

Role = Literal["user", "assistant", "system"]
PacingHint = Literal["fast", "normal", "slow"]


# ---------------------------------------------------------------------------
# Scenario identity
# ---------------------------------------------------------------------------

class Scenario(BaseModel):
    """A conversation context: character + type + contextual keys.

    Equality and hashing use the derived id only, so constructing the same
    logical scenario twice yields interchangeable values.
    """

    model_config = ConfigDict(frozen=True)

    character_id: str = Field(min_length=1)
    type: ScenarioType
    context_keys: dict[str, str] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        """Injective encoding of (character_id, type, ordered context_keys).

        "aristotle_general", "mendel_menu?topic_id=heredity", ...
        The character id is percent-escaped (including "_") and the context
        pairs are urlencoded, so distinct inputs never share an id.
        """
        head = f"{quote(self.character_id, safe='').replace('_', '%5F')}_{self.type}"
        if not self.context_keys:
            return head
        return f"{head}?{urlencode(list(self.context_keys.items()))}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Scenario):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __str__(self) -> str:
        return f"Scenario({self.id})"

    @classmethod
    def general(cls, character_id: str) -> Scenario:
        return make_scenario(character_id, "general")

    @classmethod
    def menu(cls, character_id: str, topic_id: str) -> Scenario:
        return make_scenario(character_id, "menu", {"topic_id": topic_id})

    @classmethod
    def task(
        cls, character_id: str, topic_id: str, lesson_id: str, module_id: str
    ) -> Scenario:
        return make_scenario(
            character_id, "task",
            {"topic_id": topic_id, "lesson_id": lesson_id, "module_id": module_id},
        )


def make_scenario(
    character_id: str,
    type: str,
    context_keys: Mapping[str, str] | None = None,
) -> Scenario:
    """Build a Scenario, raising InvalidArgument for malformed inputs."""
    if not isinstance(character_id, str) or not character_id.strip():
        raise InvalidArgument("character_id must be a non-empty string")
    if type not in SCENARIO_TYPES:
        raise InvalidArgument(
            f"Unknown scenario type {type!r}; expected one of {', '.join(SCENARIO_TYPES)}"
        )
    keys = dict(context_keys or {})
    for key, value in keys.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise InvalidArgument(f"context key {key!r} must map a string to a string")
    return Scenario(character_id=character_id, type=type, context_keys=keys)


def scenarios_equal(a: Scenario, b: Scenario) -> bool:
    return a.id == b.id


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class BaseMessage(BaseModel):
    """Fields shared by both channel variants."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    scenario_id: str = Field(min_length=1)
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    is_streaming: bool = False
    is_error: bool = False
    generation: int = 0
    tag: str | None = None  # "greeting" | "session_return" | "error" | None


class NarrationMessage(BaseMessage):
    """A chathead speech bubble. Never expects a reply."""

    channel: Literal["narration"] = "narration"
    role: Role = "assistant"
    pacing: PacingHint = "normal"
    media: str | None = None  # optional image/asset reference

    @property
    def display_ms(self) -> int:
        return display_ms_for(self.content)

    @property
    def gap_ms(self) -> int:
        return gap_ms_for(self.content, self.pacing)


class InteractionMessage(BaseMessage):
    """A main-chat turn: questions, typed answers, feedback."""

    channel: Literal["interaction"] = "interaction"
    character_id: str | None = None


Message = Annotated[
    Union[NarrationMessage, InteractionMessage],
    Field(discriminator="channel"),
]

message_list_adapter: TypeAdapter[list[Message]] = TypeAdapter(list[Message])


def require_channel(message: BaseMessage, channel: str) -> None:
    """Raise WrongChannel unless message is the variant for channel."""
    if channel not in CHANNELS:
        raise WrongChannel(f"Unknown channel {channel!r}")
    expected = NarrationMessage if channel == "narration" else InteractionMessage
    if not isinstance(message, expected):
        raise WrongChannel(
            f"{type(message).__name__} cannot be placed on the {channel} channel"
        )


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------

MS_PER_WORD = 300
MIN_DISPLAY_MS = 2000
MAX_DISPLAY_MS = 8000

_GAP_BY_PACING = {"fast": 800, "slow": 1800}
QUESTION_GAP_MS = 1500


def display_ms_for(text: str) -> int:
    """How long a bubble stays up: ~300 ms per word, clamped to 2–8 s."""
    words = len(text.split())
    return min(max(words * MS_PER_WORD, MIN_DISPLAY_MS), MAX_DISPLAY_MS)


def gap_ms_for(text: str, pacing: str = "normal") -> int:
    """Pause before the next bubble. Questions get a thinking pause."""
    if text.rstrip().endswith("?"):
        return QUESTION_GAP_MS
    if pacing in _GAP_BY_PACING:
        return _GAP_BY_PACING[pacing]
    if len(text) < 50:
        return 800
    if len(text) < 120:
        return 1200
    return 1800
