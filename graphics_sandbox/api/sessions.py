"""Session API endpoints used by the browser client."""

from fastapi import APIRouter
import structlog

from ..dependencies.services import OrchestratorDep
from ..models.session import (
    HeartbeatResponse,
    InitResponse,
    RunRequest,
    RunResponse,
    SessionRequest,
    TeardownResponse,
)
from ..utils.request_helpers import short_id

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api", tags=["sessions"])


@router.post("/init", response_model=InitResponse)
async def init_session(orchestrator: OrchestratorDep):
    """Allocate a slot and start a display for a new session.

    Responds 503 when the server is at capacity or the display fails to
    start.
    """
    session = await orchestrator.create_session()
    return InitResponse(
        session_id=session.id,
        nickname=session.nickname,
        display=session.display,
        stream_ready=session.stream_ready,
    )


@router.post("/run", response_model=RunResponse, response_model_exclude_none=True)
async def run_code(request: RunRequest, orchestrator: OrchestratorDep):
    """Compile the submitted code and launch it on the session's display.

    Compile and launch failures are answered with 200 and
    ``{"success": false, "output": ...}``; unknown sessions with 404.
    """
    pid = await orchestrator.run_code(request.session_id, request.code)
    return RunResponse(success=True, pid=pid)


@router.post(
    "/heartbeat", response_model=HeartbeatResponse, response_model_exclude_none=True
)
async def heartbeat(request: SessionRequest, orchestrator: OrchestratorDep):
    """Keep a session alive."""
    if orchestrator.heartbeat(request.session_id):
        return HeartbeatResponse(alive=True)

    logger.debug("Heartbeat for expired session", session_id=short_id(request.session_id))
    return HeartbeatResponse(alive=False, expired=True)


@router.post("/teardown", response_model=TeardownResponse)
async def teardown_session(request: SessionRequest, orchestrator: OrchestratorDep):
    """End a session and release its resources."""
    await orchestrator.teardown(request.session_id, reason="client_request")
    return TeardownResponse()
