"""Tests for ChatWidgetClient against the real app (ASGITransport) and against MockTransport failures."""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from chatrelay.client.consumer import ConsumerObserver
from chatrelay.client.widget import ChatWidgetClient
from chatrelay.routers.chat import get_adapter_factory
from chatrelay.streaming.events import DONE_FRAME, CompletionEvent, ContentEvent, encode_frame
from tests.factories import simple_turn


def make_widget(app, **kwargs):
    return ChatWidgetClient("http://testserver/", transport=httpx.ASGITransport(app=app), **kwargs)


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_round_trip(self, app):
        received = []
        widget = make_widget(app, on_message_received=received.append)

        reply = await widget.send_message("  Hi  ")

        assert reply.content == "Hi there"
        assert [(m.role, m.content) for m in widget.messages] == [("user", "Hi"), ("assistant", "Hi there")]
        assert received == [reply]
        assert widget.last_usage.total_tokens == 15
        assert widget.last_error is None
        assert widget.conversation_id
        assert not widget.is_loading

    @pytest.mark.asyncio
    async def test_follow_up_sends_history_and_conversation(self, app, adapter):
        widget = make_widget(app, website_context={"siteName": "Acme"})
        await widget.send_message("Hi")
        first_conversation = widget.conversation_id

        adapter.chunks = simple_turn("Sure")
        await widget.send_message("And laptops?")

        assert widget.conversation_id == first_conversation
        assert [m["content"] for m in adapter.requests[1]["messages"]] == ["Hi", "Hi there", "And laptops?"]
        assert "Acme" in adapter.requests[1]["system"]

    @pytest.mark.asyncio
    async def test_extra_observers_are_notified(self, app):
        seen = []

        class Watcher(ConsumerObserver):
            def message_appended(self, message, fragment):
                seen.append(fragment)

        widget = make_widget(app, observers=[Watcher()])
        await widget.send_message("Hi")
        assert seen == [" there"]

    @pytest.mark.asyncio
    async def test_error_frame_sets_last_error(self, app):
        del app.dependency_overrides[get_adapter_factory]
        widget = make_widget(app)

        assert await widget.send_message("Hi") is None
        assert "GROQ_API_KEY" in widget.last_error
        assert [m.role for m in widget.messages] == ["user"]

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, app):
        widget = make_widget(app)
        with pytest.raises(ValueError):
            await widget.send_message("   ")
        assert widget.messages == []

    def test_clear_messages(self, app):
        widget = make_widget(app)
        widget.tool_payloads["c1"] = "[]"
        widget.clear_messages()
        assert widget.messages == []
        assert widget.tool_payloads == {}


class TestTransportFailures:
    @pytest.mark.asyncio
    async def test_http_error_status(self):
        widget = ChatWidgetClient("http://relay.test", transport=httpx.MockTransport(lambda r: httpx.Response(500)))

        assert await widget.send_message("Hi") is None
        assert widget.last_error == "API request failed: 500 Internal Server Error"
        assert not widget.is_loading

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        widget = ChatWidgetClient("http://relay.test", transport=httpx.MockTransport(handler))

        assert await widget.send_message("Hi") is None
        assert widget.last_error.startswith("Connection error")

    @pytest.mark.asyncio
    async def test_request_headers_and_body(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.read()
            return httpx.Response(
                200,
                content=b'data: {"type":"completion","finish_reason":"stop","usage":null}\n\ndata: [DONE]\n\n',
                headers={"x-conversation-id": "conv-9"},
            )

        widget = ChatWidgetClient(
            "http://relay.test", api_key="site-key", provider="groq", model="llama-3.1-8b-instant",
            transport=httpx.MockTransport(handler),
        )
        assert await widget.send_message("Hi") is None

        assert seen["url"] == "http://relay.test/api/chat/stream"
        assert seen["headers"]["x-api-key"] == "site-key"
        assert b'"provider": "groq"' in seen["body"] or b'"provider":"groq"' in seen["body"]
        assert widget.conversation_id == "conv-9"
        assert widget.last_error is None


class StalledBody(httpx.AsyncByteStream):
    """Response body that sends one frame, then waits for `gate` before finishing."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.closed = False

    async def __aiter__(self):
        yield encode_frame(ContentEvent(content="Hal")).encode()
        await self.gate.wait()
        yield encode_frame(CompletionEvent(finish_reason="stop")).encode() + DONE_FRAME.encode()

    async def aclose(self):
        self.closed = True


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self):
        body = StalledBody()
        observer = MagicMock(spec=ConsumerObserver)
        widget = ChatWidgetClient(
            "http://relay.test",
            observers=[observer],
            transport=httpx.MockTransport(lambda r: httpx.Response(200, stream=body)),
        )

        task = asyncio.create_task(widget.send_message("Hi"))
        while not observer.message_created.called:
            await asyncio.sleep(0)
        assert widget.is_loading

        widget.cancel()
        reply = await asyncio.wait_for(task, timeout=1)

        assert reply.content == "Hal"
        assert [c[0] for c in observer.method_calls] == ["message_created"]
        assert not widget.is_loading
        assert widget.last_error is None
        assert body.closed
        assert not body.gate.is_set()

    @pytest.mark.asyncio
    async def test_next_message_after_cancel(self, app):
        widget = make_widget(app)
        widget.cancel()

        reply = await widget.send_message("Hi")

        assert reply.content == "Hi there"
        assert widget.last_error is None
