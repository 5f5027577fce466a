import json
import logging
from typing import Dict, Iterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session as DbSession

from promptkeeper import schemas
from promptkeeper.database import get_db
from promptkeeper.errors import PromptKeeperError
from promptkeeper.services import get_settings_map, update_settings
from promptkeeper.utils.llm_utils import (
    ChatMessage,
    ChatOptions,
    ProviderRegistry,
    load_provider_config,
)

from .dependencies import get_provider_registry

logger = logging.getLogger(__name__)

router = APIRouter()


def sse_event(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def stream_events(chunks: Iterator[str]) -> Iterator[str]:
    """Wraps provider text chunks as SSE ``message`` events; a failure ends the stream with an ``error`` event."""
    try:
        for text in chunks:
            yield sse_event("message", {"text": text})
    except PromptKeeperError as e:
        logger.error(f"Streaming call failed: {e.message}")
        yield sse_event("error", e.to_dict())


def _streaming_response(chunks: Iterator[str]) -> StreamingResponse:
    return StreamingResponse(
        stream_events(chunks),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/settings", response_model=Dict[str, str], tags=["Settings"], summary="Get settings", description="Returns every stored setting as a flat key/value map.")
def read_settings_route(db: DbSession = Depends(get_db)):
    return get_settings_map(db)

@router.post("/settings", response_model=Dict[str, str], tags=["Settings"], summary="Update settings", description="Upserts the given keys in one transaction; keys not mentioned are left alone.")
def update_settings_route(values: Dict[str, str], db: DbSession = Depends(get_db)):
    update_settings(db, values)
    return {"status": "success"}


@router.post("/test-prompt", response_model=schemas.PromptTestResponse, tags=["LLM Utilities"], summary="Test a prompt with an LLM", description="Sends a chat conversation to the configured provider. With stream=true the reply is sent as server-sent events.")
def test_prompt_route(
    request_data: schemas.PromptTestRequest,
    db: DbSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    config = load_provider_config(db, registry, request_data.provider)
    options = ChatOptions(
        model=request_data.model or config.model,
        temperature=request_data.temperature,
        top_p=request_data.top_p,
        max_tokens=request_data.max_tokens or 0,
    )
    messages = [ChatMessage(role=m.role, content=m.content) for m in request_data.messages]

    if request_data.stream:
        chunks = config.provider.call_chat_stream(config.api_key, config.api_url, options, messages)
        return _streaming_response(chunks)

    response_text = config.provider.call_chat(config.api_key, config.api_url, options, messages)
    return {"response": response_text}


@router.post("/optimize-prompt", response_model=schemas.OptimizePromptResponse, tags=["LLM Utilities"], summary="Optimize a prompt with an LLM", description="Asks the configured provider to rewrite the prompt, guided by the default_system_prompt setting.")
def optimize_prompt_route(
    request_data: schemas.OptimizePromptRequest,
    db: DbSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    config = load_provider_config(db, registry, request_data.provider)
    options = ChatOptions(model=config.model)
    messages = [
        ChatMessage(role="system", content=config.system_prompt),
        ChatMessage(role="user", content=request_data.prompt),
    ]

    if request_data.stream:
        chunks = config.provider.call_chat_stream(config.api_key, config.api_url, options, messages)
        return _streaming_response(chunks)

    optimized = config.provider.call_chat(config.api_key, config.api_url, options, messages)
    return {"optimized_prompt": optimized}
