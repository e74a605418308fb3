"""
Tool-call dispatch for a single streamed turn.

Content passes straight through. Tool-call fragments are accumulated per call
id and, once the provider signals the end of the turn, each call to a known
tool is executed and its outcome is emitted before the turn's completion.
"""
from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

from chatrelay.models.base import UpstreamDelta
from chatrelay.streaming.cancel import CancelToken
from chatrelay.streaming.events import (
    CompletionEvent,
    ContentEvent,
    ErrorEvent,
    ToolErrorEvent,
    ToolInvocationEvent,
    ToolResultEvent,
    Usage,
)
from chatrelay.streaming.tool_calls import PendingToolCall, ToolCallAccumulator
from chatrelay.tools.base import BaseTool, ToolArgumentsError

logger = logging.getLogger(__name__)


class ToolCallDispatcher:
    def __init__(self, tools: list[BaseTool], cancel_token: Optional[CancelToken] = None):
        self._tools = {t.name: t for t in tools}
        self._token = cancel_token or CancelToken()
        self.dispatched: list[str] = []

    @property
    def tool_schemas(self) -> list[dict]:
        return [t.to_openai_schema() for t in self._tools.values()]

    async def run(self, deltas: AsyncIterator[UpstreamDelta]) -> AsyncIterator:
        """
        Yield StreamEvents for one turn:
          - content:        as soon as each fragment arrives
          - tool_invocation, tool_result / tool_error: after the finish signal
          - completion:     last, once every tool outcome is out
          - error:          instead of completion if the provider reports one
        """
        calls = ToolCallAccumulator()
        finish_reason: Optional[str] = None
        usage: Optional[Usage] = None

        async for delta in deltas:
            if delta.error:
                yield ErrorEvent(error=delta.error)
                return

            if finish_reason is None:
                if delta.content is not None:
                    yield ContentEvent(content=delta.content)
                for fragment in delta.tool_calls:
                    calls.add(fragment.index, fragment.id, fragment.name, fragment.arguments)

            if delta.usage is not None:
                usage = delta.usage

            if delta.finish_reason and finish_reason is None:
                finish_reason = delta.finish_reason
                async for event in self._resolve(calls):
                    yield event

            # Usage, when sent at all, arrives on or after the finish record.
            if finish_reason is not None and usage is not None:
                break

        if finish_reason is None:
            async for event in self._resolve(calls):
                yield event
            finish_reason = "stop"

        yield CompletionEvent(finish_reason=finish_reason, usage=usage)

    async def _resolve(self, calls: ToolCallAccumulator) -> AsyncIterator:
        conflicts = dict(calls.conflicts)
        for call in calls.drain():
            self._token.raise_if_cancelled()

            tool = self._tools.get(call.name)
            if tool is None:
                logger.info("Ignoring call %s to unknown tool %r", call.id, call.name)
                continue
            if call.id in self.dispatched:
                continue

            yield ToolInvocationEvent(tool_call_id=call.id, name=call.name, arguments=call.arguments)
            self.dispatched.append(call.id)

            if call.id in conflicts:
                yield ToolErrorEvent(tool_call_id=call.id, error=conflicts[call.id])
                continue

            outcome = await self._execute(tool, call)
            self._token.raise_if_cancelled()
            yield outcome

    async def _execute(self, tool: BaseTool, call: PendingToolCall):
        if not call.is_complete:
            logger.warning("Bad arguments for %s (%s): %.120s", call.name, call.id, call.arguments)
            return ToolErrorEvent(
                tool_call_id=call.id,
                error=f"Invalid arguments for {call.name}: expected a complete JSON object",
            )

        try:
            result = await tool.run(**call.parse_arguments())
        except ToolArgumentsError as e:
            return ToolErrorEvent(tool_call_id=call.id, error=f"Invalid arguments for {call.name}: {e}")
        except Exception as e:
            logger.warning("Tool %s failed (%s): %s", call.name, call.id, e)
            return ToolErrorEvent(tool_call_id=call.id, error=str(e) or type(e).__name__)

        count = len(result) if isinstance(result, list) else 1
        logger.info("Tool %s (%s) returned %d entries", call.name, call.id, count)
        return ToolResultEvent(tool_call_id=call.id, content=json.dumps(result, default=str))
