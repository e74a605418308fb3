"""
Client half of the chat stream.

ClientStreamConsumer reads the relay's byte stream, rebuilds the assistant
message incrementally and reports each UI-observable effect to its observers,
in stream order.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator, Iterable, Optional

from chatrelay.streaming.cancel import CancelToken, StreamCancelled
from chatrelay.streaming.events import (
    DONE_TOKEN,
    ChatMessage,
    Usage,
    decode_event,
    frame_payload,
)
from chatrelay.streaming.lines import StreamLineSplitter

logger = logging.getLogger(__name__)


class ConsumerObserver:
    """Receives the effects of one streamed turn. Override the hooks you need."""

    def message_created(self, message: ChatMessage) -> None:
        pass

    def message_appended(self, message: ChatMessage, fragment: str) -> None:
        pass

    def tool_result(self, tool_call_id: str, payload: str) -> None:
        pass

    def tool_error(self, tool_call_id: str, error: str) -> None:
        pass

    def message_completed(
        self, message: Optional[ChatMessage], finish_reason: str, usage: Optional[Usage]
    ) -> None:
        pass

    def error(self, error: str, partial: Optional[ChatMessage]) -> None:
        pass


class ClientStreamConsumer:
    """Consumes exactly one stream; create a new instance per turn."""

    def __init__(self, observers: Iterable[ConsumerObserver] = ()):
        self._observers: list[ConsumerObserver] = list(observers)
        self._splitter = StreamLineSplitter()
        self._token = CancelToken()

        self.message: Optional[ChatMessage] = None
        self.finalized = False
        self.terminal: Optional[str] = None  # "completion" | "error"
        self.skipped = 0

    def subscribe(self, observer: ConsumerObserver) -> None:
        self._observers.append(observer)

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def cancel(self) -> None:
        """Abort the read in progress. No notification fires after this call."""
        self._token.cancel()

    def fail(self, error: str) -> None:
        """Report a failure that happened outside the stream (e.g. a non-2xx response)."""
        if self.terminal is None:
            self.terminal = "error"
            self._notify("error", error, self.message)

    async def consume(self, source: AsyncIterator[bytes]) -> Optional[ChatMessage]:
        """Read `source` to the end (or until cancelled); return the assistant message."""
        chunks = self._token.guard(source)
        try:
            done = False
            async for chunk in chunks:
                for line in self._splitter.feed(chunk):
                    if self._handle_line(line):
                        done = True
                        break
                if done:
                    break
            if not done:
                tail = self._splitter.flush()
                if tail is not None:
                    self._handle_line(tail)

            if self.terminal is None:
                self.fail("Stream ended before the response was complete")
        except StreamCancelled:
            logger.info("Stream consumption cancelled")
        finally:
            await chunks.aclose()
        return self.message

    def _handle_line(self, line: str) -> bool:
        """Process one line; return True once the sentinel is reached."""
        payload = frame_payload(line)
        if not payload:
            return False
        if payload == DONE_TOKEN:
            return True
        try:
            event = decode_event(payload)
        except ValueError as e:
            self.skipped += 1
            logger.warning("Failed to parse stream chunk: %s", e)
            return False
        self._apply(event)
        return False

    def _apply(self, event) -> None:
        if self._token.cancelled:
            return
        if self.terminal is not None:
            logger.debug("Ignoring %s event after %s", event.type, self.terminal)
            return

        if event.type == "content":
            if self.message is None:
                self.message = ChatMessage(role="assistant", content=event.content)
                self._notify("message_created", self.message)
            else:
                self.message.content += event.content
                self._notify("message_appended", self.message, event.content)

        elif event.type == "tool_result":
            self._notify("tool_result", event.tool_call_id, event.content)

        elif event.type == "tool_error":
            self._notify("tool_error", event.tool_call_id, event.error)

        elif event.type == "completion":
            self.terminal = "completion"
            self.finalized = True
            self._notify("message_completed", self.message, event.finish_reason, event.usage)

        elif event.type == "error":
            self.terminal = "error"
            self._notify("error", event.error, self.message)

        elif event.type == "tool_invocation":
            # Relay-internal; never expected on the wire.
            logger.debug("Ignoring tool_invocation for %s", event.tool_call_id)

    def _notify(self, hook: str, *args) -> None:
        for observer in list(self._observers):
            if self._token.cancelled:
                return
            try:
                getattr(observer, hook)(*args)
            except Exception:
                logger.exception("Observer %r failed in %s", observer, hook)
