"""FastAPI composition root.

create_app() wires one ChatSessionEngine from configuration (or accepts a
ready-made engine, as the tests do) and mounts the API under /api.

Without an API key the app runs offline: replies come from EchoResponder
and greetings from StaticGreetingProvider.
"""

import logging

from fastapi import FastAPI

from tutor_chat.config import ChatConfig, load_config
from tutor_chat.engine import ChatSessionEngine
from tutor_chat.greetings import HttpGreetingProvider, StaticGreetingProvider
from tutor_chat.llm import EchoResponder, HttpResponder
from tutor_chat.persistence import JsonFilePersistence
from tutor_chat.routes import router

logger = logging.getLogger(__name__)


def build_engine(config: ChatConfig) -> ChatSessionEngine:
    persistence = JsonFilePersistence(config.data_dir) if config.data_dir else None
    if config.api_key:
        responder = HttpResponder(
            provider_url=config.provider_url,
            api_key=config.api_key,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.responder_timeout,
        )
        return ChatSessionEngine(
            responder, HttpGreetingProvider(responder),
            persistence=persistence, config=config,
        )

    logger.warning("No API key configured; using offline echo responder")
    return ChatSessionEngine(
        EchoResponder(), StaticGreetingProvider(default=config.default_greeting),
        persistence=persistence, config=config,
    )


def create_app(
    engine: ChatSessionEngine | None = None, config: ChatConfig | None = None
) -> FastAPI:
    if engine is None:
        engine = build_engine(config or load_config())

    app = FastAPI(title="Tutor Chat")
    app.state.engine = engine
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (configured from .env / environment)
app = create_app()
