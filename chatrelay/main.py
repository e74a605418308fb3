"""
chatrelay: FastAPI entrypoint.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env before anything else
load_dotenv()

from chatrelay.config import VERSION, get_settings, load_config
from chatrelay.db.store import init_db
from chatrelay.models.registry import check_providers
from chatrelay.routers.chat import router as chat_router
from chatrelay.routers.health import check_contentstack, router as health_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = load_config()
    await init_db()
    logger.info(
        "chatrelay %s ready (default provider: %s, %d provider(s) configured)",
        VERSION, cfg.default_provider, len(cfg.providers),
    )

    for provider, healthy in (await check_providers(cfg)).items():
        if healthy:
            logger.info("%s provider is healthy", provider)
        else:
            logger.warning("%s provider health check failed", provider)
    contentstack = await check_contentstack()
    if contentstack["status"] != "healthy":
        logger.warning("Contentstack %s: %s", contentstack["status"], contentstack["message"])
    yield


def _cors_origins() -> list[str]:
    # CHATRELAY_CORS_ORIGINS: comma-separated list of allowed origins.
    # Default: any origin.
    raw = get_settings().cors_origins
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


def create_app() -> FastAPI:
    app = FastAPI(
        title="chatrelay",
        description="Streaming chat relay with CMS content lookup",
        version=VERSION,
        lifespan=lifespan,
    )

    origins = _cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Conversation-Id"],
    )

    app.include_router(chat_router, prefix="/api")
    app.include_router(health_router, prefix="/api")

    return app


app = create_app()


def start():
    import uvicorn
    settings = get_settings()
    uvicorn.run("chatrelay.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    start()
