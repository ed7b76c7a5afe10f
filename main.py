from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from exceptions import ToolError
from middleware import RequestContextMiddleware, error_response
from routers import health, tools
from utils.lifecycle import lifecycle
from utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: logging, codec config, memory sweep. Shutdown: stop the sweep."""
    # --- Startup ---
    setup_logging()
    logger = get_logger("main")

    collaborators = health.check_collaborators()
    missing = [name for name, available in collaborators.items() if not available]
    if missing:
        logger.warning(
            f"Missing collaborators: {missing}",
            extra={"context": {"missing_collaborators": missing}},
        )

    lifecycle.start()
    logger.info(
        "Chutki started",
        extra={
            "context": {
                "tools": len(tools.REGISTRY),
                "sweep_interval": lifecycle.sweep_interval,
            }
        },
    )

    yield

    # --- Shutdown ---
    await lifecycle.stop()
    logger.info("Chutki shutting down")


app = FastAPI(
    title="Chutki",
    description="Image Tools Service",
    version=health.VERSION,
    lifespan=lifespan,
)

# CORS middleware
origins = [o.strip() for o in settings.allowed_origins.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["POST", "OPTIONS", "GET"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=[
        "Content-Disposition",
        "X-Tool-Diagnostics",
        "X-File-Retention",
        "X-Request-ID",
    ],
)

# RequestContextMiddleware handles: request ID, ToolError responses
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(ToolError)
async def tool_error_handler(request: Request, exc: ToolError):
    return error_response(exc, getattr(request.state, "request_id", None))


# Routers
app.include_router(health.router)
app.include_router(tools.router)
