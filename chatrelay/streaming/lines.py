"""
Line splitting for chunked event streams.

Network reads arrive in arbitrary byte chunks: a chunk can hold zero or many
complete lines, and can end in the middle of a multi-byte UTF-8 character.
StreamLineSplitter keeps the undecoded bytes inside an incremental decoder and
the unterminated tail of the text in its own buffer.
"""
from __future__ import annotations

import codecs
from typing import Optional


class StreamLineSplitter:
    """Turns byte chunks into complete text lines. One instance per stream."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)("replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text received after the last newline."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Append a chunk and return every line it completed (without newlines)."""
        if not chunk:
            return []
        self._buffer += self._decoder.decode(chunk, final=False)
        if "\n" not in self._buffer:
            return []

        *lines, self._buffer = self._buffer.split("\n")
        return [line[:-1] if line.endswith("\r") else line for line in lines]

    def flush(self) -> Optional[str]:
        """End of stream: return the unterminated tail, if any, and reset."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder(self._encoding)("replace")
        tail = tail.rstrip("\r")
        return tail or None
