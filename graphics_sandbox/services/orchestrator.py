"""Session Orchestrator - Coordinates the sandbox session workflow.

This module ties together the slot pool, the session registry, the process
building blocks and the reaper, so API endpoints only delegate:

Usage:
    orchestrator = SessionOrchestrator()
    await orchestrator.start()
    session = await orchestrator.create_session()
    pid = await orchestrator.run_code(session.id, code)
    await orchestrator.stop()
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

import structlog

from ..config import settings
from ..models.errors import (
    CapacityExceededError,
    ServiceUnavailableError,
    SessionNotFoundError,
    StartupError,
    ValidationError,
)
from ..models.session import SessionState
from ..utils.commands import is_command_available
from ..utils.id_generator import generate_session_id
from ..utils.nickname import generate_nickname
from .reaper import SessionReaper
from .registry import SessionRegistry
from .sandbox.display import DisplayLauncher
from .sandbox.executor import SandboxExecutor
from .sandbox.manager import WorkspaceManager
from .sandbox.pool import ResourcePool
from .sandbox.supervisor import ProcessSupervisor
from .session import Session

logger = structlog.get_logger(__name__)


class SessionOrchestrator:
    """Coordinates session creation, execution and teardown.

    The orchestrator owns the registry and the pool. Slot allocation and
    registry insert happen in one synchronous stretch, and the session's
    destroy hook removes it and releases its slot in another, so the two
    structures always agree.
    """

    def __init__(
        self,
        pool: ResourcePool = None,
        registry: SessionRegistry = None,
        supervisor: ProcessSupervisor = None,
        workspace_manager: WorkspaceManager = None,
        display_launcher: DisplayLauncher = None,
        executor: SandboxExecutor = None,
        reaper: SessionReaper = None,
        nickname_factory: Callable[[], str] = generate_nickname,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pool = pool or ResourcePool()
        self.registry = registry or SessionRegistry()
        self.supervisor = supervisor or ProcessSupervisor()
        self.workspace_manager = workspace_manager or WorkspaceManager()
        self.display_launcher = display_launcher or DisplayLauncher(self.supervisor)
        self.executor = executor or SandboxExecutor(self.supervisor)
        self.reaper = reaper or SessionReaper(self.registry, clock=clock)
        self._nickname_factory = nickname_factory
        self._clock = clock
        self._started = False

    async def start(self) -> None:
        """Start background tasks."""
        if self._started:
            return
        await self.reaper.start()
        self._started = True
        logger.info(
            "Session orchestrator started",
            capacity=self.pool.capacity,
            base_display=settings.base_display,
            base_port=settings.base_stream_port,
            workspace_dir=str(self.workspace_manager.base_dir),
        )

    async def stop(self) -> None:
        """Stop the reaper and tear down every session."""
        await self.reaper.stop()
        await self.teardown_all("shutdown")
        await self.workspace_manager.drain()
        self._started = False
        logger.info("Session orchestrator stopped")

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    async def create_session(self) -> Session:
        """Allocate a slot, start the display and return the ready session.

        Raises:
            CapacityExceededError: every slot is held
            StartupTimeoutError / StartupCrashError: display failed to start
            ServiceUnavailableError: any other startup failure
        """
        session = Session(
            generate_session_id(),
            self._nickname_factory(),
            workspace_manager=self.workspace_manager,
            display_launcher=self.display_launcher,
            executor=self.executor,
            on_destroy=self._release,
            clock=self._clock,
        )

        self.registry.add(session)
        session.transition(SessionState.ALLOCATING)
        try:
            slot = self.pool.allocate(session.id)
        except CapacityExceededError:
            session.mark_failed("capacity_exceeded")
            await session.teardown("capacity_exceeded")
            raise

        session.log.info("Session created", display=slot.display, port=slot.port)

        try:
            await session.start(slot)
        except StartupError as e:
            session.log.error(
                "Display startup failed",
                error=e.message,
                output=e.output_tail[-500:],
            )
            await session.teardown("startup_failed")
            raise
        except SessionNotFoundError:
            await session.teardown("startup_aborted")
            raise ServiceUnavailableError(
                "sandbox", "Session was torn down during startup"
            )
        except Exception as e:
            session.mark_failed("startup_error")
            await session.teardown("startup_error")
            raise ServiceUnavailableError(
                "sandbox", f"Session initialization failed: {e}"
            )

        return session

    async def run_code(self, session_id: str, code: str) -> int:
        """Compile and launch ``code`` in a session.

        Returns:
            pid of the launched program

        Raises:
            SessionNotFoundError: unknown or expired session
            ValidationError: code exceeds the size limit
            CompileError / ExecutionError: pipeline failures
        """
        session = self.registry.require(session_id)

        max_bytes = settings.max_code_size_kb * 1024
        if len(code.encode("utf-8")) > max_bytes:
            raise ValidationError(
                f"Code exceeds maximum size of {settings.max_code_size_kb} KB"
            )

        session.log.info("Run requested", code_size=len(code))
        return await session.run(code)

    def heartbeat(self, session_id: str) -> bool:
        """Refresh a session's activity. Returns False if it is gone."""
        session = self.registry.get(session_id)
        if session is None or session.is_terminating:
            return False
        session.touch()
        return True

    async def teardown(self, session_id: str, reason: str = "requested") -> None:
        """Tear down a session on request.

        Raises:
            SessionNotFoundError: unknown session
        """
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        await session.teardown(reason)

    async def teardown_all(self, reason: str = "shutdown") -> None:
        """Tear down every registered session concurrently."""
        sessions = self.registry.snapshot()
        if not sessions:
            return
        logger.warning("Tearing down all sessions", count=len(sessions), reason=reason)
        results = await asyncio.gather(
            *(session.teardown(reason) for session in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                session.log.error("Teardown failed", error=str(result))

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.registry.get(session_id)

    def _release(self, session: Session) -> None:
        # Runs synchronously at the end of teardown
        self.registry.remove(session)
        self.pool.release(session.slot, owner=session.id)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "pool": self.pool.get_stats().to_dict(),
            "active_sessions": len(self.registry),
            "sessions_by_state": self.registry.count_by_state(),
            "reaper": {
                "running": self.reaper.is_running,
                "timeout_seconds": self.reaper.timeout,
                "total_reaped": self.reaper.total_reaped,
            },
        }

    def check_collaborators(self) -> Dict[str, bool]:
        """Check that each external command's binary is on PATH."""
        return {
            "display": is_command_available(settings.display_command),
            "compiler": is_command_available(settings.compile_command),
            "runtime": is_command_available(settings.runtime_command),
        }
