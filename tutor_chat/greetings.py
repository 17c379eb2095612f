"""Greeting providers — the first message of a brand-new scenario.

The engine depends only on the protocol:

    async def greet(self, character_id: str, scenario_type: str,
                    context_keys: Mapping[str, str]) -> str: ...

Any exception or empty text makes the engine fall back to its static
default greeting, so providers are free to fail.

    StaticGreetingProvider — canned text per character (optionally per
                             scenario type), with {context_key} placeholders.
    HttpGreetingProvider   — asks the AI provider for a short greeting.

RETURN_GREETINGS is the pool for the one-off "welcome back" bubble shown when
a persisted scenario is restored; it never goes through a provider.
"""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Mapping
from typing import Protocol

from tutor_chat.config import DEFAULT_GREETING
from tutor_chat.llm import HttpResponder, ResponderError

logger = logging.getLogger(__name__)

RETURN_GREETINGS: tuple[str, ...] = (
    "Welcome back! Ready to pick up where we left off?",
    "Good to have you back! What shall we explore today?",
    "You're back! Science waits for no one, so let's dive in.",
)

MAX_GREETING_LINES = 3


class GreetingProvider(Protocol):
    async def greet(
        self, character_id: str, scenario_type: str, context_keys: Mapping[str, str]
    ) -> str: ...


def pick_return_greeting(rng: random.Random) -> str:
    return rng.choice(RETURN_GREETINGS)


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class StaticGreetingProvider:
    """Looks up "{character_id}:{scenario_type}", then "{character_id}", then default."""

    def __init__(
        self,
        greetings: Mapping[str, str] | None = None,
        default: str = DEFAULT_GREETING,
    ) -> None:
        self._greetings = dict(greetings or {})
        self._default = default

    async def greet(
        self, character_id: str, scenario_type: str, context_keys: Mapping[str, str]
    ) -> str:
        template = self._greetings.get(
            f"{character_id}:{scenario_type}",
            self._greetings.get(character_id, self._default),
        )
        return template.format_map(_KeepMissing(context_keys))


class HttpGreetingProvider:
    """Generates a short greeting through HttpResponder.complete()."""

    def __init__(
        self,
        responder: HttpResponder,
        character_names: Mapping[str, str] | None = None,
    ) -> None:
        self._responder = responder
        self._names = dict(character_names or {})

    async def greet(
        self, character_id: str, scenario_type: str, context_keys: Mapping[str, str]
    ) -> str:
        messages = [
            {"role": "system", "content": self._prompt(character_id, scenario_type, context_keys)},
            {"role": "user", "content": "Generate greeting now."},
        ]
        text = clean_greeting(await self._responder.complete(messages))
        if not text:
            raise ResponderError("AI provider returned an empty greeting")
        logger.debug("greeting character=%s type=%s len=%d", character_id, scenario_type, len(text))
        return text

    def _prompt(
        self, character_id: str, scenario_type: str, context_keys: Mapping[str, str]
    ) -> str:
        name = self._names.get(character_id, character_id)
        return (
            f"You are {name}, an AI science tutor talking to a Grade 9 student "
            f"who just opened {describe_location(scenario_type, context_keys)}.\n\n"
            "Write a warm greeting of at most three short sentences, "
            "one per line. Plain text only: no numbering, quotes or bullets. "
            "Do not ask the student a question."
        )


def describe_location(scenario_type: str, context_keys: Mapping[str, str]) -> str:
    topic = context_keys.get("topic_id", "this topic")
    if scenario_type == "menu":
        return f"the lesson menu for {topic}"
    if scenario_type == "task":
        lesson = context_keys.get("lesson_id", "a lesson")
        module = context_keys.get("module_id", "a module")
        return f"module {module} of lesson {lesson} in {topic}"
    return "the app's home screen"


_LIST_MARKER = re.compile(r"^(\d+[.)]|[-*•])\s*")


def clean_greeting(raw: str) -> str:
    """Strip list markers and quotes; keep at most MAX_GREETING_LINES lines."""
    lines: list[str] = []
    for line in raw.splitlines():
        line = _LIST_MARKER.sub("", line.strip()).strip().strip('"').strip()
        if line:
            lines.append(line)
    return "\n".join(lines[:MAX_GREETING_LINES])
