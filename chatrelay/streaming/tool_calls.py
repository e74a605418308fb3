"""
Accumulation of streamed tool-call fragments.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class PendingToolCall:
    """One tool call whose arguments are still arriving in fragments."""

    def __init__(self, call_id: str, name: str = "") -> None:
        self.id = call_id
        self.name = name
        self._fragments: list[str] = []

    def append(self, fragment: str) -> None:
        if fragment:
            self._fragments.append(fragment)

    @property
    def arguments(self) -> str:
        return "".join(self._fragments)

    @property
    def is_complete(self) -> bool:
        """True once the accumulated arguments parse as a JSON object."""
        try:
            return isinstance(self.parse_arguments(), dict)
        except ValueError:
            return False

    def parse_arguments(self) -> dict[str, Any]:
        raw = self.arguments.strip()
        if not raw:
            return {}
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError("tool arguments must be a JSON object")
        return parsed

    def __repr__(self) -> str:
        return f"PendingToolCall(id={self.id!r}, name={self.name!r}, arguments={self.arguments!r})"


class ToolCallAccumulator:
    """
    Collects fragments for every call of one turn, in first-seen order.

    Providers send the call id and function name on the first fragment of a
    call only; later fragments carry just the positional `index`.
    """

    def __init__(self) -> None:
        self._calls: dict[str, PendingToolCall] = {}
        self._ids_by_index: dict[int, str] = {}
        self.conflicts: dict[str, str] = {}

    def add(
        self,
        index: int,
        call_id: Optional[str],
        name: Optional[str],
        arguments: str,
    ) -> Optional[PendingToolCall]:
        if call_id:
            self._ids_by_index[index] = call_id
        else:
            call_id = self._ids_by_index.get(index)
            if call_id is None:
                logger.warning("Dropping tool-call fragment with unknown index %s", index)
                return None

        call = self._calls.get(call_id)
        if call is None:
            call = PendingToolCall(call_id, name or "")
            self._calls[call_id] = call
        elif name and call.name and name != call.name:
            logger.warning(
                "Tool call %s announced as %r and then %r", call_id, call.name, name
            )
            self.conflicts[call_id] = f"Tool call {call_id} was announced with conflicting names"
        elif name and not call.name:
            call.name = name

        call.append(arguments)
        return call

    def drain(self) -> list[PendingToolCall]:
        """Return all calls in first-seen order and forget them."""
        calls = list(self._calls.values())
        self._calls.clear()
        self._ids_by_index.clear()
        return calls

    def __len__(self) -> int:
        return len(self._calls)
