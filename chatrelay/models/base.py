"""
Abstract upstream provider interface.
All adapters must implement `stream_completion`.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import AsyncIterator, Optional

from pydantic import BaseModel as PydanticModel
from pydantic import Field

from chatrelay.streaming.events import Usage


class UpstreamError(Exception):
    """The provider could not be reached or refused the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailableError(UpstreamError):
    """No usable provider/credentials for the requested model."""


class ToolCallFragment(PydanticModel):
    index: int = 0
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class UpstreamDelta(PydanticModel):
    """One decoded upstream record, reduced to the fields the relay relies on."""
    content: Optional[str] = None
    tool_calls: list[ToolCallFragment] = Field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    error: Optional[str] = None


class BaseModelAdapter(ABC):
    """Unified interface for streaming chat providers."""

    provider: str
    model_name: str

    @abstractmethod
    def stream_completion(
        self,
        messages: list[dict],
        tools: list[dict],
        system: str,
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]:
        """
        Open one streaming completion request.

        Entering the context yields the raw response body as byte chunks.
        Raises UpstreamError when the connection cannot be established or the
        provider answers with a non-2xx status. Leaving the context releases
        the connection.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the provider answers with the configured credentials. Never raises."""
        ...
