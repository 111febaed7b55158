"""Main FastAPI application for the Graphics Sandbox API."""

# Standard library imports
from contextlib import asynccontextmanager

# Third-party imports
import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse
from pydantic import ValidationError

# Local application imports
from . import __version__
from .api import health, sessions, stream
from .config import settings
from .dependencies.services import set_orchestrator, set_stream_proxy
from .middleware.security import SecurityMiddleware, RequestLoggingMiddleware
from .models.errors import SandboxException
from .services.orchestrator import SessionOrchestrator
from .services.router import StreamRouter
from .services.stream_proxy import StreamProxy
from .utils.error_handlers import (
    sandbox_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .utils.logging import setup_logging

# Setup logging
setup_logging()
logger = structlog.get_logger()


async def _startup_sessions(app: FastAPI) -> None:
    """Create the orchestrator and stream proxy and register them."""
    orchestrator = SessionOrchestrator()
    await orchestrator.start()

    proxy = StreamProxy(StreamRouter(orchestrator.registry))
    await proxy.start()

    set_orchestrator(orchestrator)
    set_stream_proxy(proxy)

    app.state.orchestrator = orchestrator
    app.state.stream_proxy = proxy


def _log_collaborators(orchestrator: SessionOrchestrator) -> None:
    for name, available in orchestrator.check_collaborators().items():
        if available:
            logger.debug(f"{name} command available")
        else:
            logger.warning(f"{name} command not found on PATH")


async def _shutdown_sessions(app: FastAPI) -> None:
    """Tear down all sessions and close the proxy clients."""
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        try:
            await orchestrator.stop()
        except Exception as e:
            logger.error("Error stopping session orchestrator", error=str(e))

    proxy = getattr(app.state, "stream_proxy", None)
    if proxy is not None:
        try:
            await proxy.close()
        except Exception as e:
            logger.error("Error closing stream proxy", error=str(e))

    set_orchestrator(None)
    set_stream_proxy(None)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Graphics Sandbox API", version=__version__)

    if settings.api_debug:
        logger.warning("Debug mode is enabled - disable in production")

    await _startup_sessions(app)
    _log_collaborators(app.state.orchestrator)

    logger.info(
        "Graphics Sandbox API startup completed",
        max_sessions=settings.max_sessions,
        session_timeout_minutes=settings.session_timeout_minutes,
    )

    yield

    logger.info("Shutting down Graphics Sandbox API")
    await _shutdown_sessions(app)
    logger.info("Graphics Sandbox API shutdown completed")


# Create FastAPI app
app = FastAPI(
    title="Graphics Sandbox API",
    description="Compile programs in isolated sessions and stream their display",
    version=__version__,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    debug=settings.api_debug,
    lifespan=lifespan,
)

# Add middleware (order matters - most specific first)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityMiddleware)

# Add CORS middleware (conditionally)
if settings.enable_cors:
    origins = settings.cors_origins if settings.cors_origins else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    logger.info("CORS enabled", origins=origins)

# Register global error handlers
app.add_exception_handler(SandboxException, sandbox_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


# Include routers
app.include_router(sessions.router)

app.include_router(stream.router)

app.include_router(health.router, tags=["health", "monitoring"])

# Static UI and stream client assets
_static_dir = settings.get_static_dir()
if _static_dir is not None:
    app.mount("/static", StaticFiles(directory=str(_static_dir)), name="static")

_stream_client_dir = settings.get_stream_client_dir()
if _stream_client_dir is not None:
    app.mount(
        "/xpra-client",
        StaticFiles(directory=str(_stream_client_dir), html=True),
        name="stream-client",
    )


@app.get("/", include_in_schema=False)
async def get_index():
    """Serve the compiler UI page."""
    static_dir = settings.get_static_dir()
    if static_dir is None or not (static_dir / settings.index_file).is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(str(static_dir / settings.index_file))


def run_server():
    logger.info(f"Starting HTTP server on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "graphics_sandbox.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
        access_log=settings.enable_access_logs,
        timeout_keep_alive=120,
    )


if __name__ == "__main__":
    run_server()
