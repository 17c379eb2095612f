"""Chat session engine — scenario switching, greetings and streamed replies.

One explicitly constructed engine is shared by every UI surface. It owns the
message store, the generation guard and the event bus; nothing else mutates
them.

Concurrency:
  Every mutation runs under one asyncio.Lock. The lock is never held while
  waiting on a collaborator (greeting provider, responder): the request is
  issued outside the lock and its result is applied under the lock only if
  the generation captured at issue time is still current. A scenario switch
  in between bumps the generation, so the late result is silently dropped.

Scenario lifecycle:
  uninitialized → active → {paused, inactive, terminated}
  paused → active (resume, or set_scenario)
  terminated scenarios are forgotten; re-entry starts from scratch.

Turn flow (submit_user_message):
  1. Wait out any greeting still in flight, then append the user
     InteractionMessage, snapshot it and yield it.
  2. Call the responder with the prompt and the preceding history window.
  3. Stream partial assistant messages (one placeholder, replaced per chunk).
  4. Finalise the message, snapshot to persistence, yield it.
  On responder failure or timeout: withdraw the placeholder and append one
  is_error message instead. Errors are data; the stream never raises them.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import datetime, timezone

from tutor_chat.config import ChatConfig
from tutor_chat.errors import NoActiveScenario, UnknownScenario, WrongChannel
from tutor_chat.events import EventBus, Subscription
from tutor_chat.generation import GenerationGuard
from tutor_chat.greetings import GreetingProvider, pick_return_greeting
from tutor_chat.llm import Responder, ResponderError
from tutor_chat.models import (
    CHANNELS,
    BaseMessage,
    InteractionMessage,
    NarrationMessage,
    Scenario,
    ScenarioState,
)
from tutor_chat.persistence import Persistence
from tutor_chat.store import MessageStore

logger = logging.getLogger(__name__)


class ChatSessionEngine:
    """Central coordinator for scenario-isolated conversations.

    Args:
        responder:   Streams AI replies (tutor_chat.llm.Responder).
        greeter:     Supplies the first message of new scenarios.
        persistence: Optional snapshot/restore collaborator.
        config:      Tunables; defaults to ChatConfig().
        rng:         Random source for "welcome back" greeting selection.
    """

    def __init__(
        self,
        responder: Responder,
        greeter: GreetingProvider,
        *,
        persistence: Persistence | None = None,
        config: ChatConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._responder = responder
        self._greeter = greeter
        self._persistence = persistence
        self._config = config or ChatConfig()
        self._rng = rng or random.Random()

        self._lock = asyncio.Lock()
        self._store = MessageStore()
        self._guard = GenerationGuard()
        self._events = EventBus(self._config.event_queue_size)

        self._current: Scenario | None = None
        self._scenarios: dict[str, Scenario] = {}
        self._paused: set[str] = set()
        self._terminated: set[str] = set()
        self._return_greeted: set[str] = set()
        self._greeting_requests: Counter[str] = Counter()
        # scenario id -> set once its greeting has landed or been dropped
        self._pending_greetings: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def config(self) -> ChatConfig:
        return self._config

    @property
    def current_scenario(self) -> Scenario | None:
        return self._current

    @property
    def generation(self) -> int:
        return self._guard.current

    def greeting_requests(self, scenario_id: str) -> int:
        """How many times a greeting was requested for scenario_id."""
        return self._greeting_requests[scenario_id]

    def state(self, scenario_id: str) -> ScenarioState:
        if scenario_id in self._paused:
            return "paused"
        if self._current is not None and self._current.id == scenario_id:
            return "active"
        if self._store.is_known(scenario_id):
            return "inactive"
        if scenario_id in self._terminated:
            return "terminated"
        return "uninitialized"

    def subscribe(self) -> Subscription:
        """Push notifications of HistoryChanged events."""
        return self._events.subscribe()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_history(self, scenario_id: str, channel: str | None = None) -> list[BaseMessage]:
        if channel is None:
            return self._store.get_all(scenario_id)
        if channel == "narration":
            return list(self._store.get_narration(scenario_id))
        if channel == "interaction":
            return list(self._store.get_interaction(scenario_id))
        raise WrongChannel(f"Unknown channel {channel!r}; expected one of {CHANNELS}")

    def get_narration_messages(self, scenario_id: str) -> list[NarrationMessage]:
        return self._store.get_narration(scenario_id)

    def get_interaction_messages(self, scenario_id: str) -> list[InteractionMessage]:
        return self._store.get_interaction(scenario_id)

    # ------------------------------------------------------------------
    # Scenario lifecycle
    # ------------------------------------------------------------------

    async def set_scenario(self, scenario: Scenario) -> None:
        """Make scenario current; greet it if its history is empty."""
        async with self._lock:
            if self._current == scenario and scenario.id not in self._paused:
                return

            previous = self._current
            generation = self._guard.bump()
            self._current = scenario
            self._scenarios[scenario.id] = scenario
            self._paused.discard(scenario.id)
            logger.info(
                "Scenario switch: %s -> %s (gen %d)",
                previous.id if previous else None, scenario.id, generation,
            )

            if not self._store.is_known(scenario.id):
                self._initialize(scenario)

            pending: asyncio.Event | None = None
            if not self._store.get_all(scenario.id):
                self._greeting_requests[scenario.id] += 1
                pending = asyncio.Event()
                self._pending_greetings[scenario.id] = pending
            self._publish(scenario.id)

        if pending is None:
            return
        try:
            text = await self._request_greeting(scenario)
            async with self._lock:
                if not self._guard.is_current(generation):
                    logger.debug("Discarding stale greeting for %s (gen %d)", scenario.id, generation)
                    return
                greeting = NarrationMessage(
                    scenario_id=scenario.id,
                    role="assistant",
                    content=text,
                    timestamp=self._stamp(scenario.id),
                    generation=generation,
                    tag="greeting",
                )
                self._store.append_narration(scenario.id, greeting)
                self._snapshot(scenario)
                self._publish(scenario.id)
        finally:
            if self._pending_greetings.get(scenario.id) is pending:
                del self._pending_greetings[scenario.id]
            pending.set()

    async def pause(self, scenario_id: str) -> None:
        """Mark a scenario paused. Does not bump the generation."""
        async with self._lock:
            if not self._store.is_known(scenario_id):
                raise UnknownScenario(f"Cannot pause unknown scenario {scenario_id!r}")
            self._paused.add(scenario_id)
            logger.info("Scenario paused: %s", scenario_id)

    async def resume(self, scenario_id: str) -> None:
        """Make a previously initialized scenario current again, without greeting."""
        async with self._lock:
            scenario = self._scenarios.get(scenario_id)
            if scenario is None or not self._store.is_known(scenario_id):
                raise UnknownScenario(f"Cannot resume unknown scenario {scenario_id!r}")
            self._paused.discard(scenario_id)
            self._current = scenario
            generation = self._guard.bump()
            logger.info("Scenario resumed: %s (gen %d)", scenario_id, generation)
            self._publish(scenario_id)

    async def clear_history(self, scenario_id: str) -> None:
        """Empty a scenario's history. The next switch into it greets again."""
        async with self._lock:
            if not self._store.is_known(scenario_id):
                return
            self._store.clear(scenario_id)
            if self._persistence is not None:
                self._persistence.delete(scenario_id)
            logger.info("History cleared: %s", scenario_id)
            self._publish(scenario_id)

    async def terminate(self, scenario_id: str) -> None:
        """Forget a scenario entirely; re-entry is treated as brand new."""
        async with self._lock:
            if not self._store.is_known(scenario_id):
                raise UnknownScenario(f"Cannot terminate unknown scenario {scenario_id!r}")
            self._store.evict(scenario_id)
            self._scenarios.pop(scenario_id, None)
            self._paused.discard(scenario_id)
            self._return_greeted.discard(scenario_id)
            self._terminated.add(scenario_id)
            if self._persistence is not None:
                self._persistence.delete(scenario_id)
            if self._current is not None and self._current.id == scenario_id:
                self._current = None
                self._guard.bump()
            logger.info("Scenario terminated: %s (gen %d)", scenario_id, self._guard.current)
            self._publish(scenario_id)

    # ------------------------------------------------------------------
    # Sending messages
    # ------------------------------------------------------------------

    async def submit_user_message(self, text: str) -> AsyncIterator[BaseMessage]:
        """Append the user turn and stream the assistant reply.

        Yields the user message, then streaming partials, then the final
        message (or a single is_error message). Raises NoActiveScenario on
        first iteration if no scenario is current. A greeting still in flight
        for the current scenario is waited for, so it stays the first message.
        """
        while True:
            async with self._lock:
                scenario = self._require_current()
                pending = self._pending_greetings.get(scenario.id)
                if pending is None:
                    generation = self._guard.current
                    window = self._window(scenario.id)
                    user_msg = InteractionMessage(
                        scenario_id=scenario.id,
                        role="user",
                        content=text,
                        timestamp=self._stamp(scenario.id),
                        generation=generation,
                        character_id=scenario.character_id,
                    )
                    self._store.append_interaction(scenario.id, user_msg)
                    self._snapshot(scenario)
                    self._publish(scenario.id)
                    break
            logger.debug("Waiting for the greeting of %s", scenario.id)
            await pending.wait()
        yield user_msg

        content = ""
        placeholder: InteractionMessage | None = None
        try:
            try:
                try:
                    chunks = self._responder.respond(text, window, scenario.character_id)
                except ResponderError:
                    raise
                except Exception as e:
                    raise ResponderError(f"AI responder failed: {e!r}") from e
                async with aclosing(self._read_bounded(chunks)) as stream:
                    async for chunk in stream:
                        content += chunk
                        async with self._lock:
                            if not self._applicable(scenario.id, placeholder, generation):
                                return
                            placeholder = self._put_streaming(
                                scenario, placeholder, content, generation
                            )
                            self._publish(scenario.id)
                        yield placeholder
                if not content:
                    raise ResponderError("AI provider returned an empty response")
            except ResponderError as e:
                logger.warning("Responder failed for %s: %s", scenario.id, e)
                async with self._lock:
                    if not self._applicable(scenario.id, placeholder, generation):
                        return
                    if placeholder is not None:
                        self._store.withdraw(scenario.id, placeholder.id)
                        placeholder = None
                    error_msg = InteractionMessage(
                        scenario_id=scenario.id,
                        role="assistant",
                        content=self._config.error_text,
                        timestamp=self._stamp(scenario.id),
                        generation=generation,
                        is_error=True,
                        tag="error",
                        character_id=scenario.character_id,
                    )
                    self._store.append_interaction(scenario.id, error_msg)
                    self._snapshot(scenario)
                    self._publish(scenario.id)
                yield error_msg
                return

            async with self._lock:
                if not self._applicable(scenario.id, placeholder, generation):
                    return
                final = placeholder.model_copy(update={"content": content, "is_streaming": False})
                self._store.replace(scenario.id, final)
                placeholder = None
                self._snapshot(scenario)
                self._publish(scenario.id)
            yield final
        finally:
            # Stale, cleared, or abandoned by the caller mid-stream
            if placeholder is not None:
                async with self._lock:
                    self._withdraw_unfinished(scenario.id, placeholder)

    async def send_message(self, text: str) -> list[BaseMessage]:
        """Run submit_user_message to completion; return the final state of each message."""
        by_id: dict[str, BaseMessage] = {}
        async for message in self.submit_user_message(text):
            by_id[message.id] = message
        return list(by_id.values())

    def retry_last_message(self) -> AsyncIterator[BaseMessage] | None:
        """Re-submit the latest user text in the current scenario.

        Nothing is removed from history; the previous attempt (and its error
        message, if any) stays as it was. Returns None if there is no user
        message to retry.
        """
        scenario = self._require_current()
        for message in reversed(self._store.get_all(scenario.id)):
            if message.role == "user":
                return self.submit_user_message(message.content)
        return None

    # ------------------------------------------------------------------
    # Internal helpers (callers hold the lock unless noted)
    # ------------------------------------------------------------------

    def _require_current(self) -> Scenario:
        if self._current is None:
            raise NoActiveScenario("No scenario is active; call set_scenario() first")
        return self._current

    def _initialize(self, scenario: Scenario) -> None:
        """First entry in this engine's lifetime: register, maybe restore."""
        self._store.register(scenario.id)
        self._terminated.discard(scenario.id)
        if not self._persists(scenario):
            return
        restored = self._persistence.restore(scenario.id)
        if not restored:
            return
        self._store.load(scenario.id, restored)
        logger.info("Restored %d messages for %s", len(restored), scenario.id)
        if scenario.id not in self._return_greeted:
            self._return_greeted.add(scenario.id)
            self._store.append_narration(scenario.id, NarrationMessage(
                scenario_id=scenario.id,
                role="assistant",
                content=pick_return_greeting(self._rng),
                timestamp=self._stamp(scenario.id),
                generation=self._guard.current,
                tag="session_return",
            ))

    async def _request_greeting(self, scenario: Scenario) -> str:
        """Ask the greeter; fall back to the static default on any failure. No lock."""
        try:
            text = await asyncio.wait_for(
                self._greeter.greet(
                    scenario.character_id, scenario.type, dict(scenario.context_keys)
                ),
                timeout=self._config.greeting_timeout,
            )
        except Exception as e:
            logger.warning("Greeting failed for %s, using default: %r", scenario.id, e)
            return self._config.default_greeting
        if not isinstance(text, str) or not text.strip():
            logger.warning("Empty greeting for %s, using default", scenario.id)
            return self._config.default_greeting
        return text.strip()

    async def _read_bounded(self, chunks: AsyncIterator[str]) -> AsyncIterator[str]:
        """Relay responder chunks under one overall deadline. No lock.

        Timeouts and any failure raised by the responder surface as
        ResponderError.
        """
        timeout = self._config.responder_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        iterator = aiter(chunks)
        try:
            while True:
                remaining = max(deadline - loop.time(), 0)
                try:
                    chunk = await asyncio.wait_for(anext(iterator), timeout=remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    raise ResponderError(f"AI responder timed out after {timeout}s") from e
                except ResponderError:
                    raise
                except Exception as e:
                    raise ResponderError(f"AI responder failed: {e!r}") from e
                logger.debug("responder chunk len=%d", len(chunk))
                yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _put_streaming(
        self,
        scenario: Scenario,
        placeholder: InteractionMessage | None,
        content: str,
        generation: int,
    ) -> InteractionMessage:
        if placeholder is None:
            placeholder = InteractionMessage(
                scenario_id=scenario.id,
                role="assistant",
                content=content,
                timestamp=self._stamp(scenario.id),
                generation=generation,
                is_streaming=True,
                character_id=scenario.character_id,
            )
            self._store.append_interaction(scenario.id, placeholder)
            return placeholder
        placeholder = placeholder.model_copy(update={"content": content})
        self._store.replace(scenario.id, placeholder)
        return placeholder

    def _applicable(
        self, scenario_id: str, placeholder: InteractionMessage | None, generation: int
    ) -> bool:
        """Whether a response issued at generation may still touch the store."""
        if not self._guard.is_current(generation):
            logger.debug(
                "Discarding stale response for %s (gen %d, current %d)",
                scenario_id, generation, self._guard.current,
            )
            return False
        if placeholder is not None and self._store.find(scenario_id, placeholder.id) is None:
            logger.debug("History of %s was cleared mid-response; dropping it", scenario_id)
            return False
        return True

    def _withdraw_unfinished(self, scenario_id: str, placeholder: InteractionMessage) -> None:
        current = self._store.find(scenario_id, placeholder.id)
        if current is not None and current.is_streaming:
            self._store.withdraw(scenario_id, placeholder.id)
            self._publish(scenario_id)

    def _window(self, scenario_id: str) -> list[BaseMessage]:
        n = self._config.history_window
        if n == 0:
            return []
        return [m for m in self._store.get_all(scenario_id) if not m.is_streaming][-n:]

    def _stamp(self, scenario_id: str) -> datetime:
        """Now, but never earlier than the scenario's last message."""
        now = datetime.now(timezone.utc)
        last = self._store.last(scenario_id)
        if last is not None and last.timestamp > now:
            return last.timestamp
        return now

    def _persists(self, scenario: Scenario) -> bool:
        return self._persistence is not None and scenario.type in self._config.persist_types

    def _snapshot(self, scenario: Scenario) -> None:
        if self._persists(scenario):
            self._persistence.snapshot(scenario.id, self._store.get_all(scenario.id))

    def _publish(self, scenario_id: str) -> None:
        self._events.publish(scenario_id, self._store.get_all(scenario_id), self._guard.current)
