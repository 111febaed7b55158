"""Session state machine and execution pipeline.

A Session binds one client to one display/port slot, one workspace and at
most one live runtime process. It owns:
1. Display startup and readiness
2. The compile-then-run pipeline, serialized by a per-session lock
3. The idempotent teardown procedure
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog

from ..models.errors import (
    ExecutionError,
    SessionNotFoundError,
    SessionStateError,
    StartupError,
)
from ..models.pool import Slot
from ..models.session import SESSION_TRANSITIONS, SessionState
from ..utils.request_helpers import short_id
from .sandbox.display import DisplayLauncher
from .sandbox.executor import SandboxExecutor
from .sandbox.manager import WorkspaceInfo, WorkspaceManager
from .sandbox.supervisor import SupervisedProcess

logger = structlog.get_logger(__name__)

_ROUTABLE_STATES = (SessionState.READY, SessionState.EXECUTING)


class Session:
    """One user's sandbox.

    Key behaviors:
    - State changes go through ``transition`` and are checked against
      SESSION_TRANSITIONS; illegal moves raise SessionStateError
    - ``run`` holds an asyncio.Lock for the whole pipeline, so two
      submissions never interleave and at most one runtime is alive
    - ``teardown`` is shared: concurrent callers await the same task
    """

    def __init__(
        self,
        session_id: str,
        nickname: str,
        workspace_manager: WorkspaceManager,
        display_launcher: DisplayLauncher,
        executor: SandboxExecutor,
        on_destroy: Optional[Callable[["Session"], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.id = session_id
        self.nickname = nickname
        self.state = SessionState.CREATED
        self.slot: Optional[Slot] = None
        self.workspace: Optional[WorkspaceInfo] = None
        self.display_process: Optional[SupervisedProcess] = None
        self.runtime_process: Optional[SupervisedProcess] = None
        self.stream_ready = False
        self.created_at = datetime.utcnow()
        self.teardown_reason: Optional[str] = None

        self._workspace_manager = workspace_manager
        self._display_launcher = display_launcher
        self._executor = executor
        self._on_destroy = on_destroy
        self._clock = clock
        self.last_activity = clock()

        self._exec_lock = asyncio.Lock()
        self._teardown_task: Optional[asyncio.Future] = None

        self.log = logger.bind(session_id=short_id(session_id), nickname=nickname)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``.

        Raises:
            SessionStateError: if the move is not allowed from the current state
        """
        if new_state not in SESSION_TRANSITIONS[self.state]:
            raise SessionStateError(
                f"Illegal session transition {self.state.value} -> {new_state.value}"
            )
        self.log.debug("State change", old=self.state.value, new=new_state.value)
        self.state = new_state

    @property
    def is_terminating(self) -> bool:
        """True once teardown has begun."""
        return self._teardown_task is not None or self.state in (
            SessionState.TERMINATING,
            SessionState.DESTROYED,
        )

    @property
    def is_routable(self) -> bool:
        """Whether stream traffic may be forwarded to this session."""
        return (
            self.stream_ready
            and self.slot is not None
            and not self.is_terminating
            and self.state in _ROUTABLE_STATES
        )

    @property
    def display(self) -> Optional[int]:
        return self.slot.display if self.slot else None

    @property
    def port(self) -> Optional[int]:
        return self.slot.port if self.slot else None

    def touch(self) -> None:
        """Record client activity."""
        self.last_activity = self._clock()

    def idle_seconds(self, now: float = None) -> float:
        if now is None:
            now = self._clock()
        return now - self.last_activity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "nickname": self.nickname,
            "state": self.state.value,
            "display": self.display,
            "port": self.port,
            "stream_ready": self.stream_ready,
            "idle_seconds": round(self.idle_seconds(), 1),
            "runtime_pid": (
                self.runtime_process.pid
                if self.runtime_process and self.runtime_process.is_alive
                else None
            ),
            "created_at": self.created_at.isoformat(),
        }

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self, slot: Slot) -> None:
        """Create the workspace and bring up the display for ``slot``.

        Raises:
            StartupTimeoutError / StartupCrashError: display failed to start
            SessionNotFoundError: teardown began while starting
        """
        self.slot = slot
        self.transition(SessionState.STARTING_DISPLAY)
        self.workspace = await asyncio.to_thread(
            self._workspace_manager.create_workspace, self.id
        )
        if self.is_terminating:
            # Teardown may have scheduled removal before the workspace existed
            self._workspace_manager.schedule_removal(self.workspace)
            raise SessionNotFoundError(self.id)

        try:
            process = await self._display_launcher.start(
                slot, log=self.log, on_spawn=self._attach_display
            )
        except StartupError:
            if not self.is_terminating:
                self.transition(SessionState.FAILED)
            raise

        if self.is_terminating:
            await process.terminate()
            raise SessionNotFoundError(self.id)

        process.add_exit_callback(self._on_display_exit)
        self.transition(SessionState.READY)
        self.stream_ready = True
        self.touch()
        self.log.info("Session ready", display=slot.display, port=slot.port)

    def mark_failed(self, reason: str) -> None:
        """Move to FAILED ahead of teardown, if still possible."""
        if SessionState.FAILED in SESSION_TRANSITIONS[self.state]:
            self.transition(SessionState.FAILED)
        self.log.warning("Session failed", reason=reason)

    def _attach_display(self, process: SupervisedProcess) -> None:
        self.display_process = process
        if self.is_terminating:
            # Teardown already ran its display step without this handle
            asyncio.ensure_future(process.terminate())

    def _on_display_exit(self, process: SupervisedProcess) -> Optional[asyncio.Future]:
        if self.is_terminating or process is not self.display_process:
            return None
        self.log.error(
            "Display exited unexpectedly",
            exit_code=process.returncode,
            output=process.output_tail[-500:],
        )
        return self.teardown("display_exited")

    # ------------------------------------------------------------------
    # Execution pipeline
    # ------------------------------------------------------------------

    async def run(self, code: str) -> int:
        """Compile ``code`` and launch it on this session's display.

        Returns:
            pid of the launched runtime process

        Raises:
            CompileError: compiler failed; session stays ready
            ExecutionError: runtime could not be launched
            SessionNotFoundError: teardown began before or during the pipeline
            SessionStateError: session is not ready yet
        """
        self.touch()
        self._ensure_active()

        async with self._exec_lock:
            self._ensure_active()
            if self.state is not SessionState.READY:
                raise SessionStateError(f"Session is {self.state.value}, not ready")

            self.transition(SessionState.EXECUTING)
            try:
                return await self._run_pipeline(code)
            finally:
                if self.state is SessionState.EXECUTING:
                    self.transition(SessionState.READY)

    async def _run_pipeline(self, code: str) -> int:
        await self._kill_runtime()
        self._ensure_active()

        workspace = self.workspace
        if workspace is None or not workspace.exists():
            self._fail_unrecoverable("workspace_lost")
            raise ExecutionError("Execution failed: workspace is no longer available")

        try:
            await self._workspace_manager.write_source(workspace, code)
        except OSError as e:
            self.log.error("Failed to write source", error=str(e))
            if not workspace.exists():
                self._fail_unrecoverable("workspace_lost")
            raise ExecutionError(f"Execution failed: {e}")
        self._ensure_active()

        await self._executor.compile(workspace, log=self.log)
        self._ensure_active()

        try:
            await self._workspace_manager.prepare_runtime_prefix(workspace)
        except OSError as e:
            self.log.error("Failed to prepare runtime prefix", error=str(e))
            raise ExecutionError(f"Execution failed: {e}")
        self._ensure_active()

        process = await self._executor.launch(self.slot, workspace, log=self.log)
        if self.is_terminating:
            # Teardown already passed its runtime step
            await process.kill()
            raise SessionNotFoundError(self.id)

        self.runtime_process = process
        self.touch()
        return process.pid

    async def _kill_runtime(self) -> None:
        process, self.runtime_process = self.runtime_process, None
        if process is None:
            return
        if process.is_alive:
            self.log.info("Stopping previous program", pid=process.pid)
            await process.kill()
        if self.slot is not None:
            await self._executor.kill_helpers(self.slot, log=self.log)

    def _ensure_active(self) -> None:
        if self.is_terminating:
            raise SessionNotFoundError(self.id)

    def _fail_unrecoverable(self, reason: str) -> None:
        self.mark_failed(reason)
        self.teardown(reason)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def teardown(self, reason: str = "requested") -> asyncio.Future:
        """Start (or join) teardown and return an awaitable for its completion.

        The first call flips the session to TERMINATING synchronously, so the
        router and pipeline stop treating it as live before any await.
        Awaiting the result never cancels the shared teardown task.
        """
        if self._teardown_task is None:
            self.stream_ready = False
            self.teardown_reason = reason
            if self.state is not SessionState.TERMINATING:
                self.transition(SessionState.TERMINATING)
            self._teardown_task = asyncio.ensure_future(self._teardown(reason))
        return asyncio.shield(self._teardown_task)

    async def _teardown(self, reason: str) -> None:
        self.log.info("Tearing down session", reason=reason)

        if self.slot is not None:
            try:
                await self._display_launcher.stop(
                    self.slot, self.display_process, log=self.log
                )
            except Exception as e:
                self.log.warning("Display stop failed", error=str(e))

        try:
            await self._kill_runtime()
        except Exception as e:
            self.log.warning("Runtime stop failed", error=str(e))

        try:
            self._workspace_manager.schedule_removal(self.workspace)
        except Exception as e:
            self.log.warning("Workspace removal scheduling failed", error=str(e))

        if self._on_destroy is not None:
            try:
                self._on_destroy(self)
            except Exception as e:
                self.log.error("Session release failed", error=str(e))

        self.transition(SessionState.DESTROYED)
        self.log.info("Session destroyed", reason=reason)
