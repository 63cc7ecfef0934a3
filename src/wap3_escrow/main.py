"""FastAPI application entry point for WAP3 escrow.

Lifecycle:
    1. Startup: Initialize logging, the ledger backend, the audit database
       and Redis; create tables (dev mode / SQLite).
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Close the ledger, database and Redis connections gracefully.

The MCP server is mounted at /mcp so AI agents can discover tools
alongside the REST API at /api/v1/*.

Run with:
    uvicorn wap3_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from wap3_escrow.config import get_settings
from wap3_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        ledger_backend=settings.ledger_backend,
    )

    # 2. Initialize the ledger
    from wap3_escrow.infrastructure.ledger import close_ledger, init_ledger

    init_ledger(settings)

    # 3. Initialize database
    from wap3_escrow.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 4. Initialize Redis
    from wap3_escrow.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_ledger()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="WAP3 Escrow",
        description=(
            "Agent task escrow: lock funds, prove completion, settle or refund, "
            "and reconcile a verifiable audit record from the ledger's event log."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from wap3_escrow.api.middleware import setup_middleware

    setup_middleware(app, allow_origins=settings.cors_allow_origins)

    # --- REST API Routes ---
    from wap3_escrow.api.routes.escrow import router as escrow_router
    from wap3_escrow.api.routes.health import router as health_router

    app.include_router(health_router)
    app.include_router(escrow_router)

    # --- MCP Server (mounted as sub-application) ---
    from wap3_escrow.mcp_server.tools import mcp

    mcp_app = mcp.sse_app()
    app.mount("/mcp", mcp_app)

    return app


# The app instance used by Uvicorn
app = create_app()
