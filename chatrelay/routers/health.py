"""
Health router.
GET /health   per-service status: each credentialed LLM provider and Contentstack
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx
from fastapi import APIRouter, Depends

from chatrelay.config import VERSION, get_config
from chatrelay.models.registry import check_providers
from chatrelay.streaming.events import utc_now
from chatrelay.tools.contentstack import ContentstackClient

router = APIRouter(tags=["health"])

_started = time.monotonic()


def get_service_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for outbound health checks; None means the real network."""
    return None


async def check_contentstack(transport: Optional[httpx.AsyncBaseTransport] = None) -> dict[str, str]:
    client = ContentstackClient.from_config(get_config().contentstack, transport=transport)
    problems = client.validate_config()
    if problems:
        return {"status": "unconfigured", "message": "; ".join(problems)}
    return await client.health_check()


@router.get("/health")
async def health(transport: Optional[httpx.AsyncBaseTransport] = Depends(get_service_transport)):
    providers, contentstack = await asyncio.gather(
        check_providers(get_config(), transport=transport),
        check_contentstack(transport),
    )
    llm = {name: "healthy" if ok else "unhealthy" for name, ok in providers.items()}
    healthy = any(providers.values()) and contentstack["status"] == "healthy"

    return {
        "status": "healthy" if healthy else "degraded",
        "version": VERSION,
        "timestamp": utc_now(),
        "uptime": round(time.monotonic() - _started, 3),
        "services": {"llm": llm, "contentstack": contentstack},
    }
