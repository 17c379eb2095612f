"""Engine and provider settings.

ChatConfig holds every tunable with its default. load_config() reads a .env
file (python-dotenv) and overrides the defaults from environment variables:

    TUTOR_CHAT_HISTORY_WINDOW      responder context window (messages)
    TUTOR_CHAT_RESPONDER_TIMEOUT   seconds, whole responder invocation
    TUTOR_CHAT_GREETING_TIMEOUT    seconds
    TUTOR_CHAT_DEFAULT_GREETING    static fallback greeting
    TUTOR_CHAT_ERROR_TEXT          content of in-band error messages
    TUTOR_CHAT_PERSIST_TYPES       comma-separated scenario types to persist
    TUTOR_CHAT_DATA_DIR            JSON persistence directory (unset = memory only)
    TUTOR_CHAT_EVENT_QUEUE_SIZE    events kept per subscriber before the oldest drop
    OPENAI_BASE_URL                provider base URL
    OPENAI_API_KEY                 bearer token
    OPENAI_MODEL                   model identifier
    OPENAI_TEMPERATURE
    OPENAI_MAX_TOKENS
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from tutor_chat.models import SCENARIO_TYPES, ScenarioType

DEFAULT_GREETING = "Hello! I'm here to help. What would you like to explore?"
DEFAULT_ERROR_TEXT = (
    "I'm having trouble connecting right now. "
    "Please check your internet connection and try again."
)


class ChatConfig(BaseModel):
    history_window: int = Field(default=10, ge=0)
    responder_timeout: float = Field(default=30.0, gt=0)
    greeting_timeout: float = Field(default=30.0, gt=0)
    default_greeting: str = DEFAULT_GREETING
    error_text: str = DEFAULT_ERROR_TEXT
    persist_types: tuple[ScenarioType, ...] = ("general", "menu")
    data_dir: Path | None = None
    event_queue_size: int = Field(default=256, ge=1)

    provider_url: str = "https://api.openai.com"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 500


def load_config(env_file: Path | None = None) -> ChatConfig:
    """Build a ChatConfig from the environment (and an optional .env file)."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    fields: dict = {}
    _read(fields, "history_window", "TUTOR_CHAT_HISTORY_WINDOW", int)
    _read(fields, "responder_timeout", "TUTOR_CHAT_RESPONDER_TIMEOUT", float)
    _read(fields, "greeting_timeout", "TUTOR_CHAT_GREETING_TIMEOUT", float)
    _read(fields, "default_greeting", "TUTOR_CHAT_DEFAULT_GREETING", str)
    _read(fields, "error_text", "TUTOR_CHAT_ERROR_TEXT", str)
    _read(fields, "data_dir", "TUTOR_CHAT_DATA_DIR", Path)
    _read(fields, "event_queue_size", "TUTOR_CHAT_EVENT_QUEUE_SIZE", int)
    _read(fields, "provider_url", "OPENAI_BASE_URL", str)
    _read(fields, "api_key", "OPENAI_API_KEY", str)
    _read(fields, "model", "OPENAI_MODEL", str)
    _read(fields, "temperature", "OPENAI_TEMPERATURE", float)
    _read(fields, "max_tokens", "OPENAI_MAX_TOKENS", int)

    raw_types = os.getenv("TUTOR_CHAT_PERSIST_TYPES")
    if raw_types is not None:
        types = tuple(t.strip() for t in raw_types.split(",") if t.strip())
        unknown = [t for t in types if t not in SCENARIO_TYPES]
        if unknown:
            raise ValueError(f"TUTOR_CHAT_PERSIST_TYPES has unknown types: {unknown}")
        fields["persist_types"] = types

    return ChatConfig(**fields)


def _read(fields: dict, name: str, env_var: str, cast: type) -> None:
    raw = os.getenv(env_var)
    if raw is None or raw == "":
        return
    try:
        fields[name] = cast(raw)
    except ValueError as e:
        raise ValueError(f"{env_var}={raw!r} is not a valid {cast.__name__}") from e
