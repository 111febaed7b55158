"""Service dependency injection for the Graphics Sandbox API."""

# Standard library imports
from typing import Annotated, Optional

# Third-party imports
from fastapi import Depends
import structlog

# Local application imports
from ..models.errors import ServiceUnavailableError
from ..services.orchestrator import SessionOrchestrator
from ..services.stream_proxy import StreamProxy

logger = structlog.get_logger(__name__)

# Global references (set by main.py lifespan)
_orchestrator: Optional[SessionOrchestrator] = None
_stream_proxy: Optional[StreamProxy] = None


def set_orchestrator(orchestrator: Optional[SessionOrchestrator]) -> None:
    """Set the global orchestrator reference.

    Called by main.py after the orchestrator is started in lifespan.
    """
    global _orchestrator
    _orchestrator = orchestrator
    if orchestrator is not None:
        logger.info("Session orchestrator registered with dependency injection")


def set_stream_proxy(proxy: Optional[StreamProxy]) -> None:
    """Set the global stream proxy reference."""
    global _stream_proxy
    _stream_proxy = proxy
    if proxy is not None:
        logger.info("Stream proxy registered with dependency injection")


def get_orchestrator() -> SessionOrchestrator:
    """Get the session orchestrator instance."""
    if _orchestrator is None:
        raise ServiceUnavailableError("sandbox", "Session orchestrator is not running")
    return _orchestrator


def get_stream_proxy() -> StreamProxy:
    """Get the stream proxy instance."""
    if _stream_proxy is None:
        raise ServiceUnavailableError("stream", "Stream proxy is not running")
    return _stream_proxy


# Type aliases for dependency injection
OrchestratorDep = Annotated[SessionOrchestrator, Depends(get_orchestrator)]
StreamProxyDep = Annotated[StreamProxy, Depends(get_stream_proxy)]
