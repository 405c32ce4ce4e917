"""ChatNest Backend Application.

Main entry point for the ChatNest backend service: passkey-protected chat
rooms with a shared AI participant.

Modules:
    - auth: Username sessions (bearer tokens)
    - store: Rooms, messages, profiles and the live insert feed
    - ai: ask-gpt function backed by OpenRouter
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatnest.ai.provider import create_provider_from_config, get_provider, set_provider
from chatnest.ai.router import router as ai_router
from chatnest.auth.router import router as auth_router
from chatnest.config import get_config
from chatnest.store.router import router as store_router
from chatnest.store.service import ChatStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# httpx/httpcore log every TCP connection; openai logs every request;
# websockets logs every frame at debug level.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "openai",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    config = get_config()

    # Apply configured log level to the root logger so that
    # `logging.level: "debug"` in chatnest.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = ChatStore.get_instance()

    if get_provider() is None:
        provider = create_provider_from_config(config)
        set_provider(provider)
        if provider:
            logger.info(f"AI active: model={config.ai.model}")
        else:
            logger.warning("AI replies disabled (ai.enabled=false or no OpenRouter key)")

    logger.info(
        f"ChatNest running on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    store.feed.close_all()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="ChatNest API",
    description="Backend service for ChatNest - multi-room chat with an AI participant",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(store_router)
app.include_router(ai_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status plus room/message counts and open live-feed handles.
    """
    store = ChatStore.get_instance()
    return {
        "status": "ok",
        "rooms": store.count_rooms(),
        "messages": store.count_messages(),
        "live_subscriptions": store.feed.open_count,
    }


if __name__ == "__main__":
    cfg = get_config()
    uvicorn.run("chatnest.main:app", host=cfg.server.host, port=cfg.server.port)
