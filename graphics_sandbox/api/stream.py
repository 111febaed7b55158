"""Stream proxy endpoints.

Everything under ``/session/{session_id}/stream/`` is forwarded to the
display stream engine of that session.
"""

from fastapi import APIRouter, Request, WebSocket

from ..dependencies.services import get_stream_proxy

router = APIRouter(tags=["stream"])

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@router.api_route(
    "/session/{session_id}/stream/{path:path}",
    methods=PROXY_METHODS,
    include_in_schema=False,
)
async def proxy_stream_http(session_id: str, path: str, request: Request):
    """Forward an HTTP request; 502 when the stream is not ready."""
    return await get_stream_proxy().forward_http(request, session_id, path)


@router.websocket("/session/{session_id}/stream/{path:path}")
async def proxy_stream_websocket(websocket: WebSocket, session_id: str, path: str):
    """Bridge a WebSocket to the session's stream engine."""
    await get_stream_proxy().forward_websocket(websocket, session_id, path)
