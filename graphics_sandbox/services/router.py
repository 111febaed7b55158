"""Stream routing from public paths to session stream ports."""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

import structlog

from ..config import settings
from ..models.errors import ProxyTargetUnavailableError
from .registry import SessionRegistry

logger = structlog.get_logger(__name__)

SESSION_ID_RE = re.compile(r"^[a-zA-Z0-9-]+$")
STREAM_PATH_RE = re.compile(r"^/session/(?P<session_id>[a-zA-Z0-9-]+)/stream(?P<rest>/.*)?$")


@dataclass(frozen=True)
class StreamTarget:
    """Where a stream request is forwarded to."""

    session_id: str
    host: str
    port: int
    path: str
    query: str = ""

    @property
    def path_with_query(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def http_url(self) -> str:
        return f"http://{self.host}:{self.port}{self.path_with_query}"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}:{self.port}{self.path_with_query}"


class StreamRouter:
    """Resolves ``/session/<id>/stream/<rest>`` to a session's stream port.

    Only sessions whose stream is ready and whose state is ready or
    executing are routable; there is no fallback target.
    """

    def __init__(self, registry: SessionRegistry, upstream_host: str = None):
        self._registry = registry
        self._upstream_host = upstream_host or settings.stream_upstream_host

    @staticmethod
    def parse(path: str) -> Optional[Tuple[str, str]]:
        """Split a public path into (session_id, upstream path)."""
        match = STREAM_PATH_RE.match(path)
        if not match:
            return None
        return match.group("session_id"), match.group("rest") or "/"

    def resolve(self, path: str, query: str = "") -> StreamTarget:
        """Resolve a full public path.

        Raises:
            ProxyTargetUnavailableError: malformed path or session not routable
        """
        parsed = self.parse(path)
        if parsed is None:
            raise ProxyTargetUnavailableError(message="Stream not ready")
        session_id, rest = parsed
        return self.resolve_session(session_id, rest, query)

    def resolve_session(self, session_id: str, rest: str = "/", query: str = "") -> StreamTarget:
        """Resolve a session id and upstream path.

        Raises:
            ProxyTargetUnavailableError: session absent or not routable
        """
        session = self._registry.get(session_id) if SESSION_ID_RE.match(session_id) else None
        if session is None or not session.is_routable:
            logger.debug(
                "Stream route refused",
                session_id=session_id[:8],
                known=session is not None,
                state=session.state.value if session else None,
            )
            raise ProxyTargetUnavailableError(session_id)

        if not rest.startswith("/"):
            rest = "/" + rest
        return StreamTarget(
            session_id=session_id,
            host=self._upstream_host,
            port=session.port,
            path=rest,
            query=query,
        )
