"""FastAPI main application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from actionpilot import __version__
from actionpilot.api.routers import history, runs, stream, tools
from actionpilot.bootstrap import bootstrap
from actionpilot.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings.setup_logging()
    logger.info(
        "actionpilot_startup",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        root=str(settings.data_root),
        tool_gateway=settings.tool_gateway_url,
    )
    bootstrap()
    yield
    # Shutdown
    logger.info("actionpilot_shutdown")


app = FastAPI(
    title="ActionPilot",
    description="Plan execution engine for tool-using conversational agents",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return concise request validation details."""
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": [
                {
                    "field": " -> ".join(str(part) for part in err.get("loc", [])),
                    "type": err.get("type", "unknown"),
                    "msg": err.get("msg", "validation error"),
                }
                for err in exc.errors()
            ],
        },
    )


# Routers
app.include_router(runs.router, prefix="/api/v1")
app.include_router(history.router, prefix="/api/v1")
app.include_router(tools.router, prefix="/api/v1")
app.include_router(stream.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "root": str(settings.data_root)}
