"""FastAPI endpoints under /api.

A thin surface over one ChatSessionEngine stored on app.state.engine:

  GET    /health
  GET    /scenario                          current scenario (404 if none)
  PUT    /scenario                          set_scenario
  POST   /messages                          submit_user_message, NDJSON stream
  POST   /messages/retry                    retry_last_message, NDJSON stream
  GET    /scenarios/{id}/messages?channel=  get_history
  DELETE /scenarios/{id}/messages           clear_history
  DELETE /scenarios/{id}                    terminate
  POST   /scenarios/{id}/pause              pause
  POST   /scenarios/{id}/resume             resume
"""

from collections.abc import AsyncIterator
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from tutor_chat.engine import ChatSessionEngine
from tutor_chat.errors import InvalidArgument, UnknownScenario
from tutor_chat.models import BaseMessage, ScenarioType, make_scenario

router = APIRouter()

NDJSON = "application/x-ndjson"


class ScenarioBody(BaseModel):
    character_id: str
    type: ScenarioType
    context_keys: dict[str, str] = {}


class MessageBody(BaseModel):
    text: str


def get_engine(request: Request) -> ChatSessionEngine:
    return request.app.state.engine


def _state_body(engine: ChatSessionEngine, scenario_id: str) -> dict:
    return {
        "scenario_id": scenario_id,
        "state": engine.state(scenario_id),
        "generation": engine.generation,
    }


async def _ndjson(messages: AsyncIterator[BaseMessage]) -> AsyncIterator[str]:
    async for message in messages:
        yield message.model_dump_json() + "\n"


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/scenario")
async def get_scenario(engine: ChatSessionEngine = Depends(get_engine)):
    """Current scenario and its history."""
    scenario = engine.current_scenario
    if scenario is None:
        raise HTTPException(404, "No active scenario")
    return {"scenario": scenario, "messages": engine.get_history(scenario.id)}


@router.put("/scenario")
async def set_scenario(body: ScenarioBody, engine: ChatSessionEngine = Depends(get_engine)):
    """Switch to a scenario (greets it if brand new)."""
    try:
        scenario = make_scenario(body.character_id, body.type, body.context_keys)
    except InvalidArgument as e:
        raise HTTPException(400, str(e))
    await engine.set_scenario(scenario)
    return {"scenario": scenario, "messages": engine.get_history(scenario.id)}


@router.post("/messages")
async def post_message(body: MessageBody, engine: ChatSessionEngine = Depends(get_engine)):
    """Send a user message; streams one JSON message per line."""
    if engine.current_scenario is None:
        raise HTTPException(409, "No active scenario")
    return StreamingResponse(_ndjson(engine.submit_user_message(body.text)), media_type=NDJSON)


@router.post("/messages/retry")
async def retry_message(engine: ChatSessionEngine = Depends(get_engine)):
    """Re-send the latest user message of the current scenario."""
    if engine.current_scenario is None:
        raise HTTPException(409, "No active scenario")
    stream = engine.retry_last_message()
    if stream is None:
        raise HTTPException(404, "Nothing to retry")
    return StreamingResponse(_ndjson(stream), media_type=NDJSON)


@router.get("/scenarios/{scenario_id}/messages")
async def get_messages(
    scenario_id: str,
    channel: Literal["narration", "interaction"] | None = None,
    engine: ChatSessionEngine = Depends(get_engine),
):
    """Read a scenario's history, optionally for one channel."""
    return engine.get_history(scenario_id, channel)


@router.delete("/scenarios/{scenario_id}/messages")
async def clear_messages(scenario_id: str, engine: ChatSessionEngine = Depends(get_engine)):
    """Clear a scenario's history."""
    await engine.clear_history(scenario_id)
    return {"ok": True}


@router.delete("/scenarios/{scenario_id}")
async def terminate_scenario(scenario_id: str, engine: ChatSessionEngine = Depends(get_engine)):
    """Forget a scenario entirely."""
    try:
        await engine.terminate(scenario_id)
    except UnknownScenario as e:
        raise HTTPException(404, str(e))
    return _state_body(engine, scenario_id)


@router.post("/scenarios/{scenario_id}/pause")
async def pause_scenario(scenario_id: str, engine: ChatSessionEngine = Depends(get_engine)):
    """Pause a scenario so it can be resumed later."""
    try:
        await engine.pause(scenario_id)
    except UnknownScenario as e:
        raise HTTPException(404, str(e))
    return _state_body(engine, scenario_id)


@router.post("/scenarios/{scenario_id}/resume")
async def resume_scenario(scenario_id: str, engine: ChatSessionEngine = Depends(get_engine)):
    """Make a paused scenario current again."""
    try:
        await engine.resume(scenario_id)
    except UnknownScenario as e:
        raise HTTPException(404, str(e))
    return _state_body(engine, scenario_id)
