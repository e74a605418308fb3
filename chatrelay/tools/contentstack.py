"""
Contentstack Delivery API client, the content lookup behind
`query_contentstack_content`.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional, Protocol

import httpx

from chatrelay.config import ContentstackConfig

logger = logging.getLogger(__name__)

_REGION_URLS: dict[str, str] = {
    "us":       "https://cdn.contentstack.io/v3",
    "eu":       "https://eu-cdn.contentstack.io/v3",
    "azure-na": "https://azure-na-cdn.contentstack.io/v3",
    "azure-eu": "https://azure-eu-cdn.contentstack.io/v3",
    "gcp-na":   "https://gcp-na-cdn.contentstack.io/v3",
}

_SEARCH_FIELDS = ("title", "description", "content", "tags")

HEALTH_CHECK_TIMEOUT = 5.0


class ContentLookupError(Exception):
    """Generic lookup failure."""


class ContentAuthenticationError(ContentLookupError):
    pass


class ContentNotFoundError(ContentLookupError):
    pass


class ContentRateLimitError(ContentLookupError):
    pass


class ContentLookup(Protocol):
    async def query(self, content_type: str, search_text: str, limit: int) -> list[dict[str, Any]]:
        """Return up to `limit` entries; an empty list when nothing matches."""
        ...


def region_base_url(region: str) -> str:
    return _REGION_URLS.get(region, _REGION_URLS["us"])


class ContentstackClient:
    def __init__(
        self,
        api_key: str,
        delivery_token: str,
        config: Optional[ContentstackConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ContentstackConfig()
        self.base_url = region_base_url(self.config.region)
        self._api_key = api_key
        self._delivery_token = delivery_token
        self._transport = transport

    @classmethod
    def from_config(cls, config: ContentstackConfig, **kwargs: Any) -> "ContentstackClient":
        return cls(
            api_key=os.environ.get(config.api_key_env, ""),
            delivery_token=os.environ.get(config.delivery_token_env, ""),
            config=config,
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "api_key": self._api_key,
            "access_token": self._delivery_token,
            "branch": self.config.branch,
            "Content-Type": "application/json",
        }

    def validate_config(self) -> list[str]:
        """Configuration problems that would fail every query; empty when usable."""
        errors: list[str] = []
        if not self._api_key:
            errors.append(f"Missing Contentstack API key ({self.config.api_key_env})")
        if not self._delivery_token:
            errors.append(f"Missing Contentstack delivery token ({self.config.delivery_token_env})")
        if not self.config.environment:
            errors.append("Missing Contentstack environment")
        if self.config.region not in _REGION_URLS:
            errors.append(f"Unknown Contentstack region {self.config.region!r}")
        return errors

    async def health_check(self) -> dict[str, str]:
        try:
            async with httpx.AsyncClient(timeout=HEALTH_CHECK_TIMEOUT, transport=self._transport) as client:
                resp = await client.get(
                    f"{self.base_url}/content_types", headers=self._headers(), params={"limit": 1}
                )
        except httpx.HTTPError as e:
            logger.warning("Contentstack health check failed: %s", e)
            return {"status": "unhealthy", "message": f"Contentstack API is not accessible: {e}"}

        if resp.status_code == 200:
            return {"status": "healthy", "message": "Contentstack API is accessible"}
        logger.warning("Contentstack health check returned HTTP %d", resp.status_code)
        return {"status": "unhealthy", "message": f"Unexpected response from Contentstack API (HTTP {resp.status_code})"}

    def build_params(self, search_text: str, limit: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "environment": self.config.environment,
            "locale": self.config.locale,
            "limit": max(1, min(limit, self.config.max_limit)),
            "include_count": "true",
            "include_fallback": "true",
        }
        if search_text.strip():
            params["query"] = json.dumps({
                "$or": [
                    {field: {"$regex": search_text, "$options": "i"}}
                    for field in _SEARCH_FIELDS
                ]
            })
        return params

    async def query(self, content_type: str, search_text: str = "", limit: int = 5) -> list[dict[str, Any]]:
        logger.info("Querying Contentstack %s for %r (limit %d)", content_type, search_text, limit)
        url = f"{self.base_url}/content_types/{content_type}/entries"

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.get(url, headers=self._headers(), params=self.build_params(search_text, limit))
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                raise ContentAuthenticationError(
                    "Contentstack authentication failed. Check the API key and delivery token."
                ) from e
            if status == 404:
                raise ContentNotFoundError(f'Content type "{content_type}" not found in Contentstack.') from e
            if status == 429:
                raise ContentRateLimitError("Contentstack API rate limit exceeded. Try again later.") from e
            raise ContentLookupError(f"Contentstack returned HTTP {status}") from e
        except httpx.HTTPError as e:
            raise ContentLookupError(f"Failed to query Contentstack content: {e}") from e
        except ValueError as e:
            raise ContentLookupError("Contentstack returned an invalid response") from e

        entries = data.get("entries") if isinstance(data, dict) else None
        if not entries:
            logger.info("No entries found for content type %s", content_type)
            return []
        return list(entries)
