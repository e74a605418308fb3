"""
Chat API router.
POST /chat/stream                  relay one turn (returns SSE stream)
POST /chat                         same turn, collected into one JSON response
GET  /chat/models                  configured providers and models
POST /chat/validate                validate a message before sending
GET  /chat/history/{conversation}  persisted messages of a conversation
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, AsyncIterator, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chatrelay.agent.relay import ChatStreamRelay, InvalidChatRequest, validate_messages
from chatrelay.config import get_config
from chatrelay.db.store import get_messages, save_message
from chatrelay.models.base import BaseModelAdapter, ProviderUnavailableError
from chatrelay.models.registry import available_providers, get_adapter
from chatrelay.streaming.events import (
    DONE_FRAME,
    ChatMessage,
    CompletionEvent,
    ErrorEvent,
    encode_frame,
    utc_now,
)
from chatrelay.tools.content_query import get_enabled_tools
from chatrelay.tools.contentstack import ContentLookup, ContentstackClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

MAX_CONTENT_LENGTH = 10_000

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatRequest(BaseModel):
    # The browser widget posts camelCase keys.
    model_config = ConfigDict(populate_by_name=True)

    messages: list[dict[str, Any]]
    provider: Optional[str] = None
    model: Optional[str] = None
    website_context: Optional[dict[str, Any]] = Field(default=None, alias="websiteContext")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


class ValidateRequest(BaseModel):
    content: Any = None


# ── Dependencies ─────────────────────────────────────────────────────────────

def get_content_lookup() -> ContentLookup:
    return ContentstackClient.from_config(get_config().contentstack)


def get_adapter_factory() -> Callable[..., BaseModelAdapter]:
    return get_adapter


# ── Helpers ──────────────────────────────────────────────────────────────────

def _parse_messages(body: ChatRequest) -> list[ChatMessage]:
    try:
        validate_messages(body.messages)
    except InvalidChatRequest as e:
        raise HTTPException(status_code=400, detail={"error": "Validation failed", "details": e.errors})

    messages: list[ChatMessage] = []
    errors: list[str] = []
    for i, m in enumerate(body.messages):
        fields = {k: v for k, v in m.items() if k in ("id", "role", "content", "timestamp") and v not in (None, "")}
        try:
            messages.append(ChatMessage(**fields))
        except ValidationError as e:
            errors.extend(f"messages[{i}].{err['loc'][0]}: {err['msg']}" for err in e.errors())
    if errors:
        raise HTTPException(status_code=400, detail={"error": "Validation failed", "details": errors})
    return messages


def _build_relay(
    body: ChatRequest,
    lookup: ContentLookup,
    adapter_factory: Callable[..., BaseModelAdapter],
) -> ChatStreamRelay:
    cfg = get_config()
    adapter = adapter_factory(body.provider, body.model)
    return ChatStreamRelay(
        adapter=adapter,
        tools=get_enabled_tools(lookup),
        system_prompt=cfg.agent.render_system_prompt(body.website_context),
    )


def _persist_turn(relay: ChatStreamRelay, conversation_id: str, user_message: Optional[ChatMessage]):
    async def listener(message: ChatMessage, completion: CompletionEvent) -> None:
        if user_message is not None:
            await save_message(conversation_id, user_message)
        metadata: dict[str, Any] = {
            "provider": relay.adapter.provider,
            "model": relay.adapter.model_name,
            "finish_reason": completion.finish_reason,
            "usage": completion.usage.model_dump() if completion.usage else None,
        }
        if relay.tool_events:
            metadata["tool_calls"] = relay.tool_events
        await save_message(conversation_id, message, metadata=metadata)

    return listener


async def _failed_stream(message: str) -> AsyncIterator[str]:
    yield encode_frame(ErrorEvent(error=message))
    yield DONE_FRAME


# ── Routes ───────────────────────────────────────────────────────────────────

@router.post("/stream")
async def stream_chat(
    body: ChatRequest,
    lookup: ContentLookup = Depends(get_content_lookup),
    adapter_factory: Callable[..., BaseModelAdapter] = Depends(get_adapter_factory),
):
    messages = _parse_messages(body)
    logger.info(
        "Chat request: provider=%s model=%s messages=%d context=%s",
        body.provider, body.model, len(messages), bool(body.website_context),
    )

    try:
        relay = _build_relay(body, lookup, adapter_factory)
    except ProviderUnavailableError as e:
        logger.error("Cannot open upstream: %s", e)
        return StreamingResponse(_failed_stream(str(e)), media_type="text/event-stream", headers=SSE_HEADERS)

    conversation_id = body.conversation_id or str(uuid.uuid4())
    user_message = messages[-1] if messages[-1].role == "user" else None
    relay.add_listener(_persist_turn(relay, conversation_id, user_message))

    headers = {**SSE_HEADERS, "X-Conversation-Id": conversation_id}
    return StreamingResponse(relay.stream(messages), media_type="text/event-stream", headers=headers)


@router.post("")
async def chat(
    body: ChatRequest,
    lookup: ContentLookup = Depends(get_content_lookup),
    adapter_factory: Callable[..., BaseModelAdapter] = Depends(get_adapter_factory),
):
    messages = _parse_messages(body)

    try:
        relay = _build_relay(body, lookup, adapter_factory)
    except ProviderUnavailableError as e:
        return JSONResponse(
            {"error": "LLM provider not available", "message": str(e), "timestamp": utc_now()},
            status_code=503,
        )

    conversation_id = body.conversation_id or str(uuid.uuid4())
    user_message = messages[-1] if messages[-1].role == "user" else None
    relay.add_listener(_persist_turn(relay, conversation_id, user_message))

    error: Optional[str] = None
    async for event in relay.events(messages):
        if event.type == "error":
            error = event.error

    if error is not None:
        return JSONResponse(
            {"error": "Failed to process chat request", "message": error, "timestamp": utc_now()},
            status_code=502,
        )

    completion = relay.completion
    return {
        "response": relay.assistant_message.content if relay.assistant_message else "",
        "provider": relay.adapter.provider,
        "model": relay.adapter.model_name,
        "finish_reason": completion.finish_reason if completion else None,
        "usage": completion.usage.model_dump() if completion and completion.usage else None,
        "tool_results": relay.tool_events,
        "conversation_id": conversation_id,
        "timestamp": utc_now(),
    }


@router.get("/models")
async def list_models():
    cfg = get_config()
    providers = available_providers(cfg)
    default_provider = cfg.default_provider if cfg.default_provider in providers else (
        providers[0] if providers else None
    )
    default_model = None
    if default_provider:
        default_model = cfg.resolve_model(cfg.get_provider(default_provider))

    return {
        "providers": providers,
        "models": {p.name: p.models for p in cfg.providers if p.name in providers},
        "default_provider": default_provider,
        "default_model": default_model,
        "timestamp": utc_now(),
    }


@router.post("/validate")
async def validate_content(body: ValidateRequest):
    content = body.content
    errors = []
    if not isinstance(content, str) or not content:
        errors.append("content is required and must be a string")
    elif len(content) > MAX_CONTENT_LENGTH:
        errors.append(f"content must be at most {MAX_CONTENT_LENGTH} characters")

    if errors:
        return JSONResponse({"valid": False, "errors": errors, "timestamp": utc_now()}, status_code=400)

    return {
        "valid": True,
        "content": content.strip(),
        "character_count": len(content),
        "timestamp": utc_now(),
    }


@router.get("/history/{conversation_id}")
async def history(conversation_id: str, page: int = 1, limit: int = 50):
    if page < 1 or not 1 <= limit <= 200:
        raise HTTPException(status_code=400, detail="page must be >= 1 and limit between 1 and 200")
    messages = await get_messages(conversation_id, limit=limit + 1, offset=(page - 1) * limit)
    return {
        "conversation_id": conversation_id,
        "messages": messages[:limit],
        "pagination": {"page": page, "limit": limit, "has_more": len(messages) > limit},
    }
