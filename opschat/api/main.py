"""
FastAPI application for OpsChat.

Provides an OpenAI-compatible REST API over the streaming chat
orchestrator, plus tool, metrics and suggestion endpoints for the chat UI.

Usage:
    # Development server with auto-reload
    uvicorn opschat.api.main:app --reload --host 0.0.0.0 --port 8000

    # Production server (run cancellation needs a single worker)
    uvicorn opschat.api.main:app --host 0.0.0.0 --port 8000

    # Debug mode (verbose logging)
    LOG_LEVEL=DEBUG uvicorn opschat.api.main:app --reload --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import config
from ..tracing import init_tracing_client, shutdown_tracing
from .routes import chat, health, metrics, tools
from .state import shutdown_state


def configure_logging():
    """Configure logging based on LOG_LEVEL."""
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("opschat").setLevel(log_level)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Starting OpsChat API server")

    logger.info("=" * 60)
    logger.info("CHAT CONFIGURATION")
    logger.info(f"  Ollama endpoint: {config.ollama.endpoint}")
    logger.info(f"  Model: {config.ollama.model}")
    logger.info(f"  Temperature: {config.chat.temperature}")
    logger.info(f"  Max output tokens: {config.chat.max_output_tokens}")

    logger.info("-" * 60)
    logger.info(f"TOOLS: {'ENABLED' if config.chat.tools_enabled else 'DISABLED'}")
    active = {c.lower() for c in config.chat.active_categories}
    for server in config.tool_servers.servers:
        marker = "*" if not active or server.name.lower() in active else " "
        logger.info(f"  [{marker}] {server.name}: {server.url}")

    logger.info("-" * 60)
    logger.info(
        f"METRICS FORWARDING: {config.telemetry.metrics_url or 'DISABLED'}"
    )

    logger.info("-" * 60)
    logger.info("LANGFUSE OBSERVABILITY")
    tracing_client = init_tracing_client(config.langfuse)
    if tracing_client.enabled:
        logger.info("  Status: ENABLED")
        logger.info(f"  Host: {config.langfuse.host}")
    else:
        logger.info("  Status: DISABLED")
        if tracing_client.error:
            logger.info(f"  Reason: {tracing_client.error}")

    logger.info("=" * 60)

    yield

    logger.info("Shutting down OpsChat API server")
    shutdown_state()
    shutdown_tracing()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="OpsChat API",
        description=(
            "OpenAI-compatible chat API for DevOps teams. Conversations run on a "
            "local Ollama model that can call Jenkins, Jira, SonarQube, Nexus, "
            "Bitbucket, Elasticsearch and Grafana tool servers."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # The chat UI is served from another origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Run-Id"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(chat.router, tags=["Chat"])
    app.include_router(tools.router, tags=["Tools"])
    app.include_router(metrics.router, tags=["Metrics"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log validation errors before returning 400 response."""
        logger.warning(
            f"Validation error on {request.method} {request.url.path}: {exc.errors()}"
        )
        body = await request.body()
        logger.debug(f"Request body: {body.decode('utf-8', errors='replace')[:1000]}")
        return JSONResponse(
            status_code=400,
            content={"detail": exc.errors()},
        )

    return app


app = create_app()


def run_server():
    """Entry point for ``opschat-server``."""
    import uvicorn

    uvicorn.run(
        "opschat.api.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        workers=1 if config.server.reload else config.server.workers,
    )


if __name__ == "__main__":
    run_server()
