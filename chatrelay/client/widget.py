"""
Reference chat client.

Keeps the conversation, posts it to the relay's `/api/chat/stream` endpoint and
feeds the response body to a ClientStreamConsumer. This is the headless
counterpart of the embeddable browser widget.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

import httpx

from chatrelay.client.consumer import ClientStreamConsumer, ConsumerObserver
from chatrelay.streaming.events import ChatMessage, Usage

logger = logging.getLogger(__name__)


class ChatWidgetClient(ConsumerObserver):
    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        website_context: Optional[dict[str, Any]] = None,
        observers: Iterable[ConsumerObserver] = (),
        on_message_received: Optional[Callable[[ChatMessage], None]] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.provider = provider
        self.model = model
        self.website_context = website_context
        self.on_message_received = on_message_received

        self._api_key = api_key
        self._observers = list(observers)
        self._timeout = timeout
        self._transport = transport
        self._consumer: Optional[ClientStreamConsumer] = None

        self.messages: list[ChatMessage] = []
        self.conversation_id: Optional[str] = None
        self.is_loading = False
        self.last_error: Optional[str] = None
        self.last_usage: Optional[Usage] = None
        self.tool_payloads: dict[str, str] = {}

    def _request_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [{"role": m.role, "content": m.content} for m in self.messages],
        }
        if self.provider:
            body["provider"] = self.provider
        if self.model:
            body["model"] = self.model
        if self.website_context:
            body["website_context"] = self.website_context
        if self.conversation_id:
            body["conversation_id"] = self.conversation_id
        return body

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def send_message(self, text: str) -> Optional[ChatMessage]:
        """Send one user message and stream the reply. Returns the assistant message, if any."""
        text = text.strip()
        if not text:
            raise ValueError("message must not be empty")
        if self.is_loading:
            raise RuntimeError("a response is already streaming")

        self.messages.append(ChatMessage(role="user", content=text))
        self.last_error = None
        consumer = ClientStreamConsumer([self, *self._observers])
        self._consumer = consumer
        self.is_loading = True

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.endpoint}/api/chat/stream",
                    json=self._request_body(),
                    headers=self._headers(),
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        consumer.fail(f"API request failed: {response.status_code} {response.reason_phrase}")
                        return None
                    self.conversation_id = response.headers.get("x-conversation-id", self.conversation_id)
                    return await consumer.consume(response.aiter_bytes())
        except httpx.HTTPError as e:
            logger.warning("Chat request failed: %s", e)
            consumer.fail(f"Connection error: {e}")
            return None
        finally:
            self.is_loading = False
            self._consumer = None

    def cancel(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()

    def clear_messages(self) -> None:
        self.messages = []
        self.tool_payloads = {}

    # ── ConsumerObserver hooks ────────────────────────────────────────────────

    def message_created(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def tool_result(self, tool_call_id: str, payload: str) -> None:
        self.tool_payloads[tool_call_id] = payload

    def message_completed(self, message, finish_reason, usage) -> None:
        self.last_usage = usage
        if message is not None and self.on_message_received:
            self.on_message_received(message)

    def error(self, error: str, partial: Optional[ChatMessage]) -> None:
        self.last_error = error
