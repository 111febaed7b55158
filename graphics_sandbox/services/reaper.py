"""Idle session reaper."""

import asyncio
import time
from typing import Callable, Optional

import structlog

from ..config import settings
from .registry import SessionRegistry

logger = structlog.get_logger(__name__)


class SessionReaper:
    """Periodically tears down sessions idle for longer than the timeout.

    A session is reaped only when its idle time is strictly greater than
    the timeout. Each sweep works on a snapshot of the registry, and a
    failure tearing down one session does not stop the others.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        interval: float = None,
        timeout: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._interval = interval if interval is not None else settings.reaper_interval_seconds
        self._timeout = timeout if timeout is not None else settings.get_session_timeout_seconds()
        self._clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.total_reaped = 0

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def is_running(self) -> bool:
        return self._running

    async def sweep(self, now: float = None) -> int:
        """Tear down every expired session once.

        Returns:
            Number of sessions reaped by this sweep
        """
        if now is None:
            now = self._clock()

        expired = [
            session
            for session in self._registry.snapshot()
            if not session.is_terminating and session.idle_seconds(now) > self._timeout
        ]
        if not expired:
            return 0

        for session in expired:
            session.log.warning(
                "Session expired due to inactivity",
                idle_seconds=int(session.idle_seconds(now)),
            )

        results = await asyncio.gather(
            *(session.teardown("idle_timeout") for session in expired),
            return_exceptions=True,
        )

        reaped = 0
        for session, result in zip(expired, results):
            if isinstance(result, Exception):
                session.log.error("Reaper teardown failed", error=str(result))
            else:
                reaped += 1

        self.total_reaped += reaped
        logger.info("Reaper sweep completed", reaped=reaped, remaining=len(self._registry))
        return reaped

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._reap_loop())
        logger.info(
            "Session reaper started",
            interval=self._interval,
            timeout_seconds=self._timeout,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Session reaper stopped")

    async def _reap_loop(self) -> None:
        """Background task that sweeps idle sessions."""
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in reaper loop", error=str(e))
