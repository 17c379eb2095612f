"""AI responder — streams reply text for a user turn.

The engine depends only on the protocol:

    def respond(self, prompt: str, history: Sequence[BaseMessage],
                character_id: str) -> AsyncIterator[str]: ...

`history` is the recent slice of the active scenario's conversation (the
engine decides how much). The engine may stop reading the iterator at any
time; implementations must tolerate being abandoned mid-stream.

Two implementations are provided:

    HttpResponder  — OpenAI-compatible chat completions over httpx, streamed
                     as server-sent events. Also offers a non-streaming
                     complete() used by the HTTP greeting provider.
    EchoResponder  — yields the prompt back word by word. Useful for wiring
                     smoke tests without a running model.

Tests use StubResponder (defined in conftest.py) instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, Protocol

import httpx

from tutor_chat.models import BaseMessage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol — every responder implementation must match this signature
# ---------------------------------------------------------------------------

class Responder(Protocol):
    def respond(
        self, prompt: str, history: Sequence[BaseMessage], character_id: str
    ) -> AsyncIterator[str]: ...


# ---------------------------------------------------------------------------
# HttpResponder — connects to a real backend
# ---------------------------------------------------------------------------

class HttpResponder:
    """Async client for OpenAI-compatible /v1/chat/completions.

    Streaming responses arrive as SSE lines:
        data: {"choices": [{"delta": {"content": "..."}}]}
        data: [DONE]
    Malformed data lines are skipped.

    Args:
        provider_url:   Base URL, e.g. "https://api.openai.com".
        api_key:        Bearer token, or empty string if not required.
        model:          Model identifier sent with every request.
        temperature:    Sampling temperature.
        max_tokens:     Completion length cap.
        system_prompts: Optional character_id → system prompt mapping.
        timeout:        HTTP timeout in seconds. Defaults to 30.
        transport:      Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        model: str = "",
        temperature: float = 0.7,
        max_tokens: int = 500,
        system_prompts: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._system_prompts = dict(system_prompts or {})
        self._timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self._base_url}/v1/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def build_messages(
        self, prompt: str, history: Sequence[BaseMessage], character_id: str
    ) -> list[dict[str, str]]:
        """System prompt, prior turns, then the new user prompt."""
        messages: list[dict[str, str]] = []
        system_prompt = self._system_prompts.get(character_id)
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        for m in history:
            if m.role == "system" or m.is_error:
                continue
            messages.append({"role": m.role, "content": m.content})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _body(self, messages: list[dict[str, str]], stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stream": stream,
        }
        if self._model:
            body["model"] = self._model
        return body

    async def respond(
        self, prompt: str, history: Sequence[BaseMessage], character_id: str
    ) -> AsyncIterator[str]:
        messages = self.build_messages(prompt, history, character_id)
        logger.debug(
            "responder call character=%s url=%s messages=%d",
            character_id, self.url, len(messages),
        )
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", self.url,
                    json=self._body(messages, stream=True),
                    headers=self._headers(),
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        done, text = parse_sse_line(line)
                        if done:
                            break
                        if text:
                            yield text
        except httpx.ConnectError as e:
            raise ResponderError(f"Cannot connect to AI provider at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise ResponderError(
                f"AI provider returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise ResponderError(f"AI provider timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ResponderError(f"Transport error talking to AI provider: {e}") from e

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Non-streaming completion; returns the whole reply text."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    self.url,
                    json=self._body(messages, stream=False),
                    headers=self._headers(),
                )
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise ResponderError(f"Cannot connect to AI provider at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise ResponderError(
                f"AI provider returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise ResponderError(f"AI provider timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ResponderError(f"Transport error talking to AI provider: {e}") from e

        try:
            text = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ResponderError("Unexpected response format from AI provider") from e
        if not isinstance(text, str):
            raise ResponderError("Unexpected response format from AI provider")
        logger.debug("responder completion len=%d", len(text))
        return text


def parse_sse_line(line: str) -> tuple[bool, str | None]:
    """Parse one SSE line. Returns (done, delta_text)."""
    if not line.startswith("data:"):
        return False, None
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return True, None
    try:
        content = json.loads(data)["choices"][0]["delta"].get("content")
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        logger.debug("skipping malformed stream chunk %r", data)
        return False, None
    if isinstance(content, str) and content:
        return False, content
    return False, None


# ---------------------------------------------------------------------------
# EchoResponder — no network; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoResponder:
    """Streams the prompt back one word at a time."""

    async def respond(
        self, prompt: str, history: Sequence[BaseMessage], character_id: str
    ) -> AsyncIterator[str]:
        logger.debug("EchoResponder character=%s prompt_len=%d", character_id, len(prompt))
        words = prompt.split(" ")
        for i, word in enumerate(words):
            yield word if i == 0 else f" {word}"


# ---------------------------------------------------------------------------
# ResponderError — raised for all connection and protocol failures
# ---------------------------------------------------------------------------

class ResponderError(RuntimeError):
    """Raised when the AI provider cannot be reached or returns an error."""
