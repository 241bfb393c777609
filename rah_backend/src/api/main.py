"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .middleware import register_error_handlers
from .routes import analytics, chat, system
from ..services.config import get_config
from ..services.helper_logger import get_helper_logger
from ..services.tool_executor import get_tool_executor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler to run startup tasks."""
    system.install_memory_handler()
    config = get_config()
    executor = get_tool_executor()
    logger.info(
        "RA-H chat API starting",
        extra={"app_base_url": config.app_base_url, "tool_count": len(executor.tool_names)},
    )
    yield
    get_helper_logger().close()
    logger.info("RA-H chat API stopped")


app = FastAPI(
    title="RA-H Chat API",
    description="Streaming chat orchestration over the RA-H knowledge graph",
    version="0.1.0",
    lifespan=lifespan,
)

config = get_config()

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(chat.router)
app.include_router(analytics.router)
app.include_router(system.router, tags=["system"])


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


__all__ = ["app"]
