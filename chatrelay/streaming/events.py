"""
Event vocabulary shared by the relay and its clients.

Every logical unit on the wire is one `data: <json>` frame followed by a blank
line. The stream always ends with the `data: [DONE]` sentinel, which is a
framing marker and not an event.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel as PydanticModel
from pydantic import Field, TypeAdapter, ValidationError

DATA_PREFIX = "data:"
DONE_TOKEN = "[DONE]"
DONE_FRAME = f"data: {DONE_TOKEN}\n\n"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatMessage(PydanticModel):
    id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex}")
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str = Field(default_factory=utc_now)


class Usage(PydanticModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


# ── Events ───────────────────────────────────────────────────────────────────

class ContentEvent(PydanticModel):
    type: Literal["content"] = "content"
    content: str


class ToolInvocationEvent(PydanticModel):
    """A fully accumulated tool call, about to be dispatched. Not sent on the wire."""
    type: Literal["tool_invocation"] = "tool_invocation"
    tool_call_id: str
    name: str
    arguments: str


class ToolResultEvent(PydanticModel):
    type: Literal["tool_result"] = "tool_result"
    tool_call_id: str
    content: str  # JSON text of the matched entries


class ToolErrorEvent(PydanticModel):
    type: Literal["tool_error"] = "tool_error"
    tool_call_id: str
    error: str


class CompletionEvent(PydanticModel):
    type: Literal["completion"] = "completion"
    finish_reason: str
    usage: Optional[Usage] = None


class ErrorEvent(PydanticModel):
    type: Literal["error"] = "error"
    error: str
    timestamp: str = Field(default_factory=utc_now)


StreamEvent = Annotated[
    Union[
        ContentEvent,
        ToolInvocationEvent,
        ToolResultEvent,
        ToolErrorEvent,
        CompletionEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

TERMINAL_TYPES = frozenset({"completion", "error"})
WIRE_TYPES = frozenset({"content", "tool_result", "tool_error", "completion", "error"})

_event_adapter: TypeAdapter = TypeAdapter(StreamEvent)


# ── Wire codec ───────────────────────────────────────────────────────────────

def encode_frame(event: PydanticModel) -> str:
    """Serialize one event as a `data:` frame."""
    if event.type not in WIRE_TYPES:
        raise ValueError(f"{event.type!r} events are not part of the wire vocabulary")
    return f"data: {event.model_dump_json()}\n\n"


def frame_payload(line: str) -> Optional[str]:
    """Return the payload of a `data:` line, or None for any other line."""
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload.strip()


def decode_event(payload: str):
    """
    Decode one frame payload into a StreamEvent.
    Raises ValueError when the payload is not a known event.
    """
    try:
        return _event_adapter.validate_json(payload)
    except ValidationError as e:
        try:
            json.loads(payload)
        except json.JSONDecodeError:
            raise ValueError(f"invalid JSON: {payload[:80]!r}") from e
        raise ValueError(f"unknown or incomplete event: {payload[:80]!r}") from e
