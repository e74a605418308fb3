"""
OpenAI-compatible adapter.
Works with Groq (https://api.groq.com/openai/v1), OpenAI, Ollama and any
endpoint that streams `chat/completions` as `data:` lines.

The response body is handed over as raw bytes; decoding is the job of
UpstreamStreamParser.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from chatrelay.models.base import BaseModelAdapter, UpstreamError

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT = 5.0


class OpenAICompatAdapter(BaseModelAdapter):
    def __init__(
        self,
        provider: str,
        model_name: str,
        base_url: str,
        api_key: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider    = provider
        self.model_name  = model_name
        self._base_url   = base_url.rstrip("/")
        self._api_key    = api_key
        self.temperature = temperature
        self.max_tokens  = max_tokens
        self._timeout    = timeout
        self._transport  = transport

    def build_request(self, messages: list[dict], tools: list[dict], system: str) -> dict[str, Any]:
        openai_messages: list[dict] = []
        if system:
            openai_messages.append({"role": "system", "content": system})
        for msg in messages:
            openai_messages.append({"role": msg["role"], "content": str(msg["content"])})

        body: dict[str, Any] = {
            "model":       self.model_name,
            "messages":    openai_messages,
            "temperature": self.temperature,
            "max_tokens":  self.max_tokens,
            "stream":      True,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        return body

    @asynccontextmanager
    async def stream_completion(
        self,
        messages: list[dict],
        tools: list[dict],
        system: str,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        body = self.build_request(messages, tools, system)
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type":  "application/json",
            "Accept":        "text/event-stream",
        }
        url = f"{self._base_url}/chat/completions"
        logger.info("Streaming %s:%s (%d messages)", self.provider, self.model_name, len(messages))

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                request = client.build_request("POST", url, json=body, headers=headers)
                response = await client.send(request, stream=True)
            except httpx.HTTPError as e:
                raise UpstreamError(f"Connection error: {e}") from e

            try:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    if response.status_code in (401, 403):
                        message = f"{self.provider} rejected the API key ({response.status_code})"
                    else:
                        message = f"{self.provider} returned HTTP {response.status_code}: {detail[:200]}"
                    raise UpstreamError(message, status_code=response.status_code)

                yield _read_body(response)
            finally:
                await response.aclose()

    async def health_check(self) -> bool:
        url = f"{self._base_url}/models"
        try:
            async with httpx.AsyncClient(timeout=HEALTH_CHECK_TIMEOUT, transport=self._transport) as client:
                response = await client.get(url, headers={"Authorization": f"Bearer {self._api_key}"})
        except httpx.HTTPError as e:
            logger.warning("Health check failed for %s: %s", self.provider, e)
            return False
        if response.status_code != 200:
            logger.warning("Health check for %s returned HTTP %d", self.provider, response.status_code)
        return response.status_code == 200


async def _read_body(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as e:
        raise UpstreamError(f"Upstream stream interrupted: {e}") from e
