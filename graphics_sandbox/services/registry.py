"""Registry of live sessions."""

from collections import Counter
from typing import Dict, Iterator, List, Optional

import structlog

from ..models.errors import SessionNotFoundError, SessionStateError
from ..utils.request_helpers import short_id
from .session import Session

logger = structlog.get_logger(__name__)


class SessionRegistry:
    """Maps session ids to live sessions.

    Owned by the orchestrator. Every mutation is synchronous, so an insert
    or removal is never interleaved with another flow on the event loop.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def add(self, session: Session) -> None:
        if session.id in self._sessions:
            raise SessionStateError(f"Session {short_id(session.id)} already registered")
        self._sessions[session.id] = session
        logger.debug("Session registered", session_id=short_id(session.id), total=len(self))

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        """Get a session that has not begun teardown.

        Raises:
            SessionNotFoundError: unknown, expired or terminating session
        """
        session = self._sessions.get(session_id)
        if session is None or session.is_terminating:
            raise SessionNotFoundError(session_id)
        return session

    def remove(self, session: Session) -> bool:
        """Remove ``session`` if it is the instance registered under its id."""
        if self._sessions.get(session.id) is not session:
            return False
        del self._sessions[session.id]
        logger.debug("Session unregistered", session_id=short_id(session.id), total=len(self))
        return True

    def snapshot(self) -> List[Session]:
        """Copy of the current sessions, safe to iterate across awaits."""
        return list(self._sessions.values())

    def count_by_state(self) -> Dict[str, int]:
        return dict(Counter(s.state.value for s in self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(self.snapshot())
