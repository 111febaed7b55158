"""Health check and monitoring endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
import structlog

from .. import __version__
from ..config import settings
from ..dependencies.services import OrchestratorDep, get_stream_proxy

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/health", summary="Basic health check")
async def basic_health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "graphics-sandbox-api",
    }


@router.get("/health/detailed", summary="Detailed health check")
async def detailed_health_check(orchestrator: OrchestratorDep):
    """Slot pool, sessions and availability of the external commands.

    Responds 503 when any external command is missing from PATH.
    """
    try:
        collaborators = orchestrator.check_collaborators()
        stats = orchestrator.get_stats()
        workspace_error = orchestrator.workspace_manager.get_initialization_error()

        healthy = all(collaborators.values()) and workspace_error is None
        response_data = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "collaborators": collaborators,
            "workspace": {
                "base_dir": str(orchestrator.workspace_manager.base_dir),
                "error": workspace_error,
            },
            **stats,
            "stream_proxy": get_stream_proxy().get_stats(),
        }

        return JSONResponse(status_code=200 if healthy else 503, content=response_data)

    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": "Health check system failure",
                "details": str(e) if settings.api_debug else "Internal error",
            },
        )


@router.get("/health/sessions", summary="Active sessions")
async def list_sessions(orchestrator: OrchestratorDep):
    """List live sessions with their slot and state."""
    sessions = orchestrator.registry.snapshot()
    return {
        "count": len(sessions),
        "capacity": orchestrator.pool.capacity,
        "sessions": [session.to_dict() for session in sessions],
    }
