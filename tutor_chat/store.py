"""In-memory message store.

Maps scenario id → ordered message list. There is no I/O here; durability is
the job of an optional Persistence collaborator (tutor_chat.persistence).

A scenario is "known" once registered. Known-but-empty (after clear) and
unknown (never registered, or evicted) are distinct states: appending to an
unknown scenario is refused so that messages can never be orphaned.

Only the ChatSessionEngine owns a MessageStore and mutates it.
"""

from __future__ import annotations

from collections.abc import Iterable

from tutor_chat.errors import NoActiveScenario
from tutor_chat.models import (
    BaseMessage,
    InteractionMessage,
    NarrationMessage,
    require_channel,
)


class MessageStore:
    def __init__(self) -> None:
        self._histories: dict[str, list[BaseMessage]] = {}

    # ------------------------------------------------------------------
    # Scenario bookkeeping
    # ------------------------------------------------------------------

    def register(self, scenario_id: str) -> None:
        """Mark a scenario as known with an empty history. Idempotent."""
        self._histories.setdefault(scenario_id, [])

    def is_known(self, scenario_id: str) -> bool:
        return scenario_id in self._histories

    def known_ids(self) -> list[str]:
        return list(self._histories)

    def clear(self, scenario_id: str) -> None:
        """Empty a scenario's history but keep it known. No-op if unknown."""
        if scenario_id in self._histories:
            self._histories[scenario_id] = []

    def evict(self, scenario_id: str) -> None:
        """Forget a scenario entirely; re-entry will be treated as brand new."""
        self._histories.pop(scenario_id, None)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, scenario_id: str, message: BaseMessage) -> None:
        history = self._require(scenario_id)
        self._check_owner(scenario_id, message)
        if history and message.timestamp < history[-1].timestamp:
            raise ValueError(
                f"Message {message.id} is older than the last message in {scenario_id}"
            )
        history.append(message)

    def append_narration(self, scenario_id: str, message: NarrationMessage) -> None:
        require_channel(message, "narration")
        self.append(scenario_id, message)

    def append_interaction(self, scenario_id: str, message: InteractionMessage) -> None:
        require_channel(message, "interaction")
        self.append(scenario_id, message)

    def load(self, scenario_id: str, messages: Iterable[BaseMessage]) -> None:
        """Bulk-append restored messages, in order."""
        for message in messages:
            self.append(scenario_id, message)

    def replace(self, scenario_id: str, message: BaseMessage) -> None:
        """Swap in a newer copy of a message that is still streaming."""
        history = self._require(scenario_id)
        self._check_owner(scenario_id, message)
        index = self._index_of(history, message.id)
        if not history[index].is_streaming:
            raise ValueError(f"Message {message.id} is finished and cannot change")
        if type(history[index]) is not type(message):
            raise ValueError(f"Message {message.id} cannot change channel")
        history[index] = message

    def withdraw(self, scenario_id: str, message_id: str) -> None:
        """Remove an unfinished streaming message."""
        history = self._require(scenario_id)
        index = self._index_of(history, message_id)
        if not history[index].is_streaming:
            raise ValueError(f"Message {message_id} is finished and cannot be withdrawn")
        del history[index]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_all(self, scenario_id: str) -> list[BaseMessage]:
        return list(self._histories.get(scenario_id, []))

    def get_narration(self, scenario_id: str) -> list[NarrationMessage]:
        return [m for m in self.get_all(scenario_id) if isinstance(m, NarrationMessage)]

    def get_interaction(self, scenario_id: str) -> list[InteractionMessage]:
        return [m for m in self.get_all(scenario_id) if isinstance(m, InteractionMessage)]

    def find(self, scenario_id: str, message_id: str) -> BaseMessage | None:
        for m in self._histories.get(scenario_id, []):
            if m.id == message_id:
                return m
        return None

    def last(self, scenario_id: str) -> BaseMessage | None:
        history = self._histories.get(scenario_id)
        return history[-1] if history else None

    def __len__(self) -> int:
        return len(self._histories)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, scenario_id: str) -> list[BaseMessage]:
        history = self._histories.get(scenario_id)
        if history is None:
            raise NoActiveScenario(f"Scenario {scenario_id!r} has not been initialized")
        return history

    @staticmethod
    def _check_owner(scenario_id: str, message: BaseMessage) -> None:
        if message.scenario_id != scenario_id:
            raise ValueError(
                f"Message belongs to {message.scenario_id!r}, not {scenario_id!r}"
            )

    @staticmethod
    def _index_of(history: list[BaseMessage], message_id: str) -> int:
        for i, m in enumerate(history):
            if m.id == message_id:
                return i
        raise ValueError(f"No message with id {message_id}")
