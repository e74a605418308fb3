"""Unit tests for ToolCallDispatcher."""

import json

import pytest

from chatrelay.agent.dispatcher import ToolCallDispatcher
from chatrelay.models.parser import UpstreamStreamParser
from chatrelay.streaming.cancel import CancelToken, StreamCancelled
from chatrelay.tools.content_query import ContentQueryTool
from chatrelay.tools.contentstack import ContentNotFoundError
from tests.factories import (
    FakeLookup,
    async_iter,
    collect,
    lookup_turn,
    simple_turn,
    sse,
    tool_call_fragment,
    upstream_chunk,
)

LAPTOPS = [
    {"uid": "blt1", "title": "Laptop Pro 14"},
    {"uid": "blt2", "title": "Laptop Air 13"},
]


async def run(chunks, lookup=None, token=None):
    dispatcher = ToolCallDispatcher([ContentQueryTool(lookup or FakeLookup())], token)
    events = await collect(dispatcher.run(UpstreamStreamParser().parse(async_iter(chunks))))
    return events, dispatcher


def types(events):
    return [e.type for e in events]


def single_call(arguments: str, name: str = "query_contentstack_content", call_id: str = "call_1"):
    return [
        sse(upstream_chunk(tool_calls=[tool_call_fragment(0, call_id, name, arguments)])),
        sse(upstream_chunk(finish_reason="tool_calls")),
        b"data: [DONE]\n\n",
    ]


class TestContent:
    @pytest.mark.asyncio
    async def test_content_then_completion(self):
        events, _ = await run(simple_turn("Hi", " there"))

        assert types(events) == ["content", "content", "completion"]
        assert [e.content for e in events[:2]] == ["Hi", " there"]
        assert events[-1].finish_reason == "stop"
        assert events[-1].usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_missing_finish_completes_with_stop(self):
        events, _ = await run([sse(upstream_chunk(content="partial")), b"data: [DONE]\n\n"])

        assert types(events) == ["content", "completion"]
        assert events[-1].finish_reason == "stop"
        assert events[-1].usage is None

    @pytest.mark.asyncio
    async def test_provider_error_replaces_completion(self):
        chunks = [
            sse(upstream_chunk(content="a")),
            sse({"error": {"message": "Rate limit reached"}}),
            sse(upstream_chunk(content="b")),
        ]
        events, _ = await run(chunks)

        assert types(events) == ["content", "error"]
        assert events[-1].error == "Rate limit reached"

    @pytest.mark.asyncio
    async def test_content_after_finish_is_dropped(self):
        chunks = [
            sse(upstream_chunk(content="a", finish_reason="stop")),
            sse(upstream_chunk(content="late")),
            b"data: [DONE]\n\n",
        ]
        events, _ = await run(chunks)
        assert [e.content for e in events if e.type == "content"] == ["a"]


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_lookup_result_precedes_completion(self):
        lookup = FakeLookup(LAPTOPS)
        events, dispatcher = await run(lookup_turn(), lookup)

        assert types(events) == ["content", "tool_invocation", "tool_result", "completion"]
        assert lookup.calls == [("product", "laptop", 5)]
        assert json.loads(events[2].content) == LAPTOPS
        assert events[2].tool_call_id == "call_1"
        assert events[-1].finish_reason == "tool_calls"
        assert events[-1].usage.total_tokens == 15
        assert dispatcher.dispatched == ["call_1"]

    @pytest.mark.asyncio
    async def test_no_matches_is_an_empty_result(self):
        events, _ = await run(lookup_turn(), FakeLookup([]))
        result = next(e for e in events if e.type == "tool_result")
        assert json.loads(result.content) == []

    @pytest.mark.asyncio
    async def test_unknown_tool_is_ignored(self):
        lookup = FakeLookup(LAPTOPS)
        events, _ = await run(single_call("{}", name="delete_everything"), lookup)

        assert types(events) == ["completion"]
        assert lookup.calls == []

    @pytest.mark.asyncio
    async def test_malformed_arguments_become_tool_error(self):
        lookup = FakeLookup(LAPTOPS)
        events, _ = await run(single_call('{"content_type": "product"'), lookup)

        assert types(events) == ["tool_invocation", "tool_error", "completion"]
        assert events[1].error.startswith("Invalid arguments for query_contentstack_content")
        assert lookup.calls == []

    @pytest.mark.asyncio
    async def test_missing_content_type_becomes_tool_error(self):
        events, _ = await run(single_call('{"query": "laptop"}'))
        assert events[1].type == "tool_error"
        assert "content_type is required" in events[1].error

    @pytest.mark.asyncio
    async def test_lookup_failure_becomes_tool_error(self):
        lookup = FakeLookup(error=ContentNotFoundError('Content type "gadget" not found in Contentstack.'))
        events, _ = await run(single_call('{"content_type": "gadget", "query": "x"}'), lookup)

        assert types(events) == ["tool_invocation", "tool_error", "completion"]
        assert events[1].error == 'Content type "gadget" not found in Contentstack.'

    @pytest.mark.asyncio
    async def test_each_call_id_is_dispatched_once(self):
        chunks = [
            sse(upstream_chunk(tool_calls=[
                tool_call_fragment(0, "call_1", "query_contentstack_content", '{"content_type": "product",'),
            ])),
            sse(upstream_chunk(tool_calls=[
                tool_call_fragment(1, "call_1", "query_contentstack_content", ' "query": "laptop"}'),
            ])),
            sse(upstream_chunk(finish_reason="tool_calls")),
            b"data: [DONE]\n\n",
        ]
        lookup = FakeLookup(LAPTOPS)
        events, dispatcher = await run(chunks, lookup)

        assert types(events).count("tool_result") == 1
        assert lookup.calls == [("product", "laptop", 5)]
        assert dispatcher.dispatched == ["call_1"]

    @pytest.mark.asyncio
    async def test_two_calls_resolve_in_order(self):
        chunks = [
            sse(upstream_chunk(tool_calls=[
                tool_call_fragment(0, "a", "query_contentstack_content", '{"content_type": "product", "query": "x"}'),
                tool_call_fragment(1, "b", "query_contentstack_content", '{"content_type": "article", "query": "y", "limit": 2}'),
            ])),
            sse(upstream_chunk(finish_reason="tool_calls")),
            b"data: [DONE]\n\n",
        ]
        lookup = FakeLookup(LAPTOPS)
        events, _ = await run(chunks, lookup)

        results = [e.tool_call_id for e in events if e.type == "tool_result"]
        assert results == ["a", "b"]
        assert lookup.calls == [("product", "x", 5), ("article", "y", 2)]

    @pytest.mark.asyncio
    async def test_tool_call_without_finish_is_still_resolved(self):
        chunks = single_call('{"content_type": "product", "query": "x"}')
        del chunks[1]
        events, _ = await run(chunks, FakeLookup(LAPTOPS))

        assert types(events) == ["tool_invocation", "tool_result", "completion"]
        assert events[-1].finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_conflicting_names_become_tool_error(self):
        chunks = [
            sse(upstream_chunk(tool_calls=[tool_call_fragment(0, "call_1", "query_contentstack_content", "{")])),
            sse(upstream_chunk(tool_calls=[tool_call_fragment(0, "call_1", "something_else", "}")])),
            sse(upstream_chunk(finish_reason="tool_calls")),
            b"data: [DONE]\n\n",
        ]
        lookup = FakeLookup(LAPTOPS)
        events, _ = await run(chunks, lookup)

        assert types(events) == ["tool_invocation", "tool_error", "completion"]
        assert "conflicting names" in events[1].error
        assert lookup.calls == []


class CancellingLookup(FakeLookup):
    def __init__(self, token):
        super().__init__(LAPTOPS)
        self.token = token

    async def query(self, content_type, search_text, limit):
        self.token.cancel()
        return await super().query(content_type, search_text, limit)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_further_dispatch(self):
        token = CancelToken()
        lookup = CancellingLookup(token)
        chunks = [
            sse(upstream_chunk(tool_calls=[
                tool_call_fragment(0, "a", "query_contentstack_content", '{"content_type": "product", "query": "x"}'),
                tool_call_fragment(1, "b", "query_contentstack_content", '{"content_type": "product", "query": "y"}'),
            ])),
            sse(upstream_chunk(finish_reason="tool_calls")),
            b"data: [DONE]\n\n",
        ]

        dispatcher = ToolCallDispatcher([ContentQueryTool(lookup)], token)
        seen = []
        with pytest.raises(StreamCancelled):
            async for event in dispatcher.run(UpstreamStreamParser().parse(async_iter(chunks))):
                seen.append(event.type)

        assert seen == ["tool_invocation"]
        assert len(lookup.calls) == 1
