"""
Parser for OpenAI-compatible `chat/completions` streams.

Turns the raw response body into UpstreamDelta records. Malformed records
are logged and skipped; they never abort the stream.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

from chatrelay.models.base import ToolCallFragment, UpstreamDelta
from chatrelay.streaming.events import DONE_TOKEN, Usage, frame_payload
from chatrelay.streaming.lines import StreamLineSplitter

logger = logging.getLogger(__name__)


class UpstreamStreamParser:
    def __init__(self) -> None:
        self._splitter = StreamLineSplitter()
        self.skipped = 0

    async def parse(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[UpstreamDelta]:
        async for chunk in chunks:
            for line in self._splitter.feed(chunk):
                payload = frame_payload(line)
                if payload is None:
                    continue
                if payload == DONE_TOKEN:
                    self._splitter.flush()
                    return
                delta = self._decode(payload)
                if delta is not None:
                    yield delta

        tail = self._splitter.flush()
        if tail is not None:
            payload = frame_payload(tail)
            if payload and payload != DONE_TOKEN:
                delta = self._decode(payload)
                if delta is not None:
                    yield delta

    def _decode(self, payload: str) -> Optional[UpstreamDelta]:
        if not payload:
            return None
        try:
            record = json.loads(payload)
        except json.JSONDecodeError:
            self.skipped += 1
            logger.warning("Skipping malformed stream record: %.120s", payload)
            return None
        if not isinstance(record, dict):
            self.skipped += 1
            logger.warning("Skipping non-object stream record: %.120s", payload)
            return None
        try:
            return to_delta(record)
        except (TypeError, ValueError, AttributeError) as e:
            self.skipped += 1
            logger.warning("Skipping unexpected stream record (%s): %.120s", e, payload)
            return None


def to_delta(record: dict[str, Any]) -> Optional[UpstreamDelta]:
    """
    Map one provider record to an UpstreamDelta.

    Only choices[0].delta.{content, tool_calls}, choices[0].finish_reason,
    usage (or x_groq.usage) and a top-level error are read.
    """
    if record.get("error"):
        err = record["error"]
        message = err.get("message") if isinstance(err, dict) else str(err)
        return UpstreamDelta(error=message or "Upstream provider error")

    usage = record.get("usage")
    if usage is None and isinstance(record.get("x_groq"), dict):
        usage = record["x_groq"].get("usage")

    choices = record.get("choices") or []
    if not choices:
        if usage is None:
            return None
        return UpstreamDelta(usage=Usage(**_usage_fields(usage)))

    choice = choices[0]
    delta = choice.get("delta") or {}

    fragments = []
    for position, tc in enumerate(delta.get("tool_calls") or []):
        function = tc.get("function") or {}
        fragments.append(ToolCallFragment(
            index=tc.get("index", position),
            id=tc.get("id") or None,
            name=function.get("name") or None,
            arguments=function.get("arguments") or "",
        ))

    return UpstreamDelta(
        content=delta.get("content"),
        tool_calls=fragments,
        finish_reason=choice.get("finish_reason") or None,
        usage=Usage(**_usage_fields(usage)) if usage else None,
    )


def _usage_fields(usage: dict[str, Any]) -> dict[str, int]:
    return {
        key: int(usage.get(key) or 0)
        for key in ("prompt_tokens", "completion_tokens", "total_tokens")
    }
