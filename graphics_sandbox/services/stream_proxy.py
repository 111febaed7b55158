"""HTTP and WebSocket forwarding of session display streams.

Plain HTTP requests go through a shared httpx.AsyncClient and are streamed
back unchanged apart from hop-by-hop headers. WebSocket upgrades are
bridged to the upstream with aiohttp, pumping frames in both directions
until either side closes.
"""

import asyncio
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

import aiohttp
import httpx
import structlog
from fastapi import Request, WebSocket
from starlette.responses import StreamingResponse
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ..config import settings
from ..models.errors import ProxyTargetUnavailableError
from ..utils.request_helpers import short_id
from .router import StreamRouter, StreamTarget

logger = structlog.get_logger(__name__)

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
    }
)

# WebSocket close codes
WS_POLICY_VIOLATION = 1008
WS_INTERNAL_ERROR = 1011


def filter_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Drop hop-by-hop headers, including any named by ``Connection``."""
    items = list(headers)
    extra = set()
    for name, value in items:
        if name.lower() == "connection":
            extra.update(token.strip().lower() for token in value.split(","))
    return [
        (name, value)
        for name, value in items
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in extra
    ]


class StreamProxy:
    """Forwards stream traffic to the session resolved by the StreamRouter.

    Errors never propagate past the proxy: HTTP failures become 502
    responses and WebSocket failures become close frames.
    """

    def __init__(self, router: StreamRouter, timeout: float = None):
        self._router = router
        self._timeout = timeout if timeout is not None else settings.proxy_timeout_seconds
        self._http: Optional[httpx.AsyncClient] = None
        self._ws_session: Optional[aiohttp.ClientSession] = None
        self._active_websockets = 0
        self._stats: Dict[str, int] = {
            "http_requests": 0,
            "http_errors": 0,
            "websocket_connections": 0,
            "websocket_errors": 0,
            "refused": 0,
        }

    @property
    def router(self) -> StreamRouter:
        return self._router

    async def start(self) -> None:
        """Create the shared upstream clients."""
        self._get_http_client()
        self._get_ws_session()
        logger.info("Stream proxy started", timeout=self._timeout)

    async def close(self) -> None:
        """Close the shared upstream clients."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        if self._ws_session is not None:
            await self._ws_session.close()
            self._ws_session = None
        logger.info("Stream proxy closed")

    def get_stats(self) -> Dict[str, int]:
        return {**self._stats, "active_websockets": self._active_websockets}

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout=float(self._timeout)),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                follow_redirects=False,
            )
        return self._http

    def _get_ws_session(self) -> aiohttp.ClientSession:
        if self._ws_session is None:
            self._ws_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self._timeout)
            )
        return self._ws_session

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def forward_http(self, request: Request, session_id: str, path: str) -> StreamingResponse:
        """Forward one HTTP request to the session's stream port.

        Raises:
            ProxyTargetUnavailableError: session not routable or upstream failed
        """
        try:
            target = self._router.resolve_session(session_id, "/" + path, request.url.query)
        except ProxyTargetUnavailableError:
            self._stats["refused"] += 1
            raise

        self._stats["http_requests"] += 1
        client = self._get_http_client()
        body = await request.body()

        upstream_request = client.build_request(
            request.method,
            target.http_url,
            headers=filter_headers(request.headers.items()),
            content=body or None,
        )
        try:
            upstream = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            self._stats["http_errors"] += 1
            logger.error(
                "Proxy error",
                session_id=short_id(session_id),
                url=target.http_url,
                error=str(e) or type(e).__name__,
            )
            raise ProxyTargetUnavailableError(session_id)

        return StreamingResponse(
            self._stream_body(upstream),
            status_code=upstream.status_code,
            headers=dict(filter_headers(upstream.headers.items())),
        )

    @staticmethod
    async def _stream_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
        """Relay the upstream body, closing it even if the client goes away."""
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        finally:
            await upstream.aclose()

    # ------------------------------------------------------------------
    # WebSocket
    # ------------------------------------------------------------------

    async def forward_websocket(self, websocket: WebSocket, session_id: str, path: str) -> None:
        """Bridge a client WebSocket to the session's stream port."""
        try:
            target = self._router.resolve_session(
                session_id, "/" + path, websocket.url.query
            )
        except ProxyTargetUnavailableError:
            self._stats["refused"] += 1
            await websocket.close(code=WS_POLICY_VIOLATION)
            return

        protocols = [
            p.strip()
            for p in websocket.headers.get("sec-websocket-protocol", "").split(",")
            if p.strip()
        ]

        try:
            upstream = await self._get_ws_session().ws_connect(
                target.ws_url,
                protocols=protocols,
                max_msg_size=0,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._stats["websocket_errors"] += 1
            logger.warning(
                "WebSocket upstream connect failed",
                session_id=short_id(session_id),
                url=target.ws_url,
                error=str(e) or type(e).__name__,
            )
            await websocket.close(code=WS_INTERNAL_ERROR)
            return

        await websocket.accept(subprotocol=upstream.protocol)
        self._stats["websocket_connections"] += 1
        self._active_websockets += 1
        logger.debug("WebSocket bridged", session_id=short_id(session_id), url=target.ws_url)

        try:
            await self._bridge(websocket, upstream, target)
        finally:
            try:
                if not upstream.closed:
                    await upstream.close()
                await self._close_client(websocket, upstream.close_code)
            finally:
                self._active_websockets -= 1

    async def _bridge(
        self,
        websocket: WebSocket,
        upstream: aiohttp.ClientWebSocketResponse,
        target: StreamTarget,
    ) -> None:
        to_upstream = asyncio.create_task(self._client_to_upstream(websocket, upstream))
        to_client = asyncio.create_task(self._upstream_to_client(upstream, websocket))

        try:
            done, _ = await asyncio.wait(
                {to_upstream, to_client}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            # Also reached when the handler itself is cancelled
            for task in (to_upstream, to_client):
                task.cancel()
            await asyncio.gather(to_upstream, to_client, return_exceptions=True)

        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                self._stats["websocket_errors"] += 1
                logger.warning(
                    "WebSocket error",
                    session_id=short_id(target.session_id),
                    error=str(error) or type(error).__name__,
                )

    @staticmethod
    async def _client_to_upstream(
        websocket: WebSocket, upstream: aiohttp.ClientWebSocketResponse
    ) -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                await upstream.send_bytes(message["bytes"])
            elif message.get("text") is not None:
                await upstream.send_str(message["text"])

    @staticmethod
    async def _upstream_to_client(
        upstream: aiohttp.ClientWebSocketResponse, websocket: WebSocket
    ) -> None:
        async for message in upstream:
            if message.type == aiohttp.WSMsgType.TEXT:
                await websocket.send_text(message.data)
            elif message.type == aiohttp.WSMsgType.BINARY:
                await websocket.send_bytes(message.data)
            elif message.type == aiohttp.WSMsgType.ERROR:
                raise upstream.exception() or ConnectionError("upstream websocket error")
            else:
                break

    @staticmethod
    async def _close_client(websocket: WebSocket, code: Optional[int]) -> None:
        if websocket.application_state == WebSocketState.DISCONNECTED:
            return
        if websocket.client_state == WebSocketState.DISCONNECTED:
            return
        # 1005, 1006 and 1015 are reserved and may not be sent on the wire
        if not code or code in (1005, 1006, 1015):
            code = 1000
        try:
            await websocket.close(code=code)
        except RuntimeError:
            pass
