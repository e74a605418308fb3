"""
Server side of a streamed chat turn.

ChatStreamRelay opens one upstream completion, runs it through
UpstreamStreamParser and ToolCallDispatcher, and frames the resulting events
for the client. Every stream it produces ends with exactly one
`data: [DONE]` frame.

Per-request state: idle → streaming → {completed | cancelled | failed} → closed
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from chatrelay.agent.dispatcher import ToolCallDispatcher
from chatrelay.models.base import BaseModelAdapter, UpstreamError
from chatrelay.models.parser import UpstreamStreamParser
from chatrelay.streaming.cancel import CancelToken, StreamCancelled
from chatrelay.streaming.events import (
    DONE_FRAME,
    TERMINAL_TYPES,
    WIRE_TYPES,
    ChatMessage,
    CompletionEvent,
    ErrorEvent,
    encode_frame,
)
from chatrelay.tools.base import BaseTool

logger = logging.getLogger(__name__)

TurnListener = Callable[[ChatMessage, CompletionEvent], Awaitable[None]]


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    CLOSED = "closed"


class InvalidChatRequest(ValueError):
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def validate_messages(messages: list) -> None:
    """Reject an empty history or any entry without a known role and content."""
    errors: list[str] = []
    if not messages:
        errors.append("messages must be a non-empty list")
    for i, msg in enumerate(messages or []):
        role = getattr(msg, "role", None) if not isinstance(msg, dict) else msg.get("role")
        content = getattr(msg, "content", None) if not isinstance(msg, dict) else msg.get("content")
        if role not in ("user", "assistant", "system"):
            errors.append(f"messages[{i}].role is invalid")
        if not isinstance(content, str) or not content:
            errors.append(f"messages[{i}].content is required")
    if errors:
        raise InvalidChatRequest(errors)


class ChatStreamRelay:
    """Relays a single turn. Create one instance per request."""

    def __init__(
        self,
        adapter: BaseModelAdapter,
        tools: list[BaseTool],
        system_prompt: str = "",
        cancel_token: Optional[CancelToken] = None,
    ):
        self.adapter = adapter
        self.system_prompt = system_prompt
        self._token = cancel_token or CancelToken()
        self._dispatcher = ToolCallDispatcher(tools, self._token)
        self._listeners: list[TurnListener] = []
        self._background: set[asyncio.Task] = set()

        self.state = RelayState.IDLE
        self.outcome: Optional[RelayState] = None
        self.assistant_message: Optional[ChatMessage] = None
        self.tool_events: list[dict] = []
        self.completion: Optional[CompletionEvent] = None

    def add_listener(self, listener: TurnListener) -> None:
        """Register a coroutine called in the background after a completed turn."""
        self._listeners.append(listener)

    def cancel(self) -> None:
        self._token.cancel()

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    async def events(self, messages: list[ChatMessage]) -> AsyncIterator:
        """Yield the turn's StreamEvents, ending with completion or error (unless cancelled)."""
        validate_messages(messages)
        if self.state is not RelayState.IDLE:
            raise RuntimeError("ChatStreamRelay instances relay a single turn")
        self.state = RelayState.STREAMING

        upstream_messages = [{"role": m.role, "content": m.content} for m in messages]
        try:
            async with self.adapter.stream_completion(
                upstream_messages, self._dispatcher.tool_schemas, self.system_prompt
            ) as chunks:
                guarded = self._token.guard(chunks)
                deltas = UpstreamStreamParser().parse(guarded)
                pipeline = self._dispatcher.run(deltas)
                try:
                    async for event in pipeline:
                        self._token.raise_if_cancelled()
                        self._record(event)
                        yield event
                        if event.type in TERMINAL_TYPES:
                            if event.type == "completion":
                                self._notify(event)
                            break
                finally:
                    # Outermost first; each aclose is a no-op once a stage has finished.
                    for stage in (pipeline, deltas, guarded):
                        await stage.aclose()

        except StreamCancelled:
            logger.info("Turn cancelled by caller")
            self.outcome = RelayState.CANCELLED
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("Client went away, upstream released")
            self.outcome = RelayState.CANCELLED
            raise
        except UpstreamError as e:
            logger.error("Upstream failure: %s", e)
            self.outcome = RelayState.FAILED
            yield ErrorEvent(error=str(e))
        except Exception as e:
            logger.exception("Chat streaming error")
            self.outcome = RelayState.FAILED
            yield ErrorEvent(error=str(e) or "Unknown error occurred")
        finally:
            self.state = self.outcome or RelayState.CLOSED

    async def stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Yield wire frames for the turn, always followed by the sentinel frame."""
        events = self.events(messages)
        try:
            try:
                async for event in events:
                    if event.type not in WIRE_TYPES:
                        continue
                    yield encode_frame(event)
            finally:
                await events.aclose()
            yield DONE_FRAME
        finally:
            self.state = RelayState.CLOSED

    def _record(self, event) -> None:
        if event.type == "content":
            if self.assistant_message is None:
                self.assistant_message = ChatMessage(role="assistant", content="")
            self.assistant_message.content += event.content
        elif event.type in ("tool_result", "tool_error"):
            self.tool_events.append(event.model_dump())
        elif event.type == "completion":
            self.outcome = RelayState.COMPLETED
            self.completion = event
        elif event.type == "error":
            self.outcome = RelayState.FAILED

    def _notify(self, completion: CompletionEvent) -> None:
        if not self._listeners:
            return
        message = (self.assistant_message or ChatMessage(role="assistant", content="")).model_copy()
        for listener in self._listeners:
            task = asyncio.create_task(self._run_listener(listener, message, completion))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _run_listener(
        self, listener: TurnListener, message: ChatMessage, completion: CompletionEvent
    ) -> None:
        try:
            await listener(message, completion)
        except Exception:
            logger.exception("Turn listener failed")

    async def wait_for_listeners(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
