"""Process supervision and readiness detection.

Every external collaborator (display server, compiler helpers, runtime) is
spawned through the ProcessSupervisor. Each process gets its own process
group so that termination reaches any helpers it forks, and its stdout and
stderr are merged into one pipe that a background pump task consumes.

Readiness is decided by a ReadinessDetector fed with that output. The
default OutputMarkerDetector looks for a substring; other detectors (a
health endpoint poll, a sentinel file) can be dropped in without touching
the session state machine.
"""

import asyncio
import inspect
import os
import signal
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from ...config import settings
from ...models.errors import StartupCrashError, StartupTimeoutError

logger = structlog.get_logger(__name__)

# Characters of recent output kept per process for diagnostics
OUTPUT_TAIL_CHARS = 4096
READ_CHUNK_SIZE = 4096
PREVIEW_CHARS = 100


class ReadinessDetector(ABC):
    """Decides from a process's output whether it has finished starting."""

    @abstractmethod
    def feed(self, chunk: str) -> bool:
        """Consume an output chunk; return True once the process is ready."""

    def describe(self) -> str:
        return type(self).__name__


class OutputMarkerDetector(ReadinessDetector):
    """Ready when a marker substring appears in the output.

    A marker split across two reads is still detected: the last
    ``len(marker) - 1`` characters of each chunk are carried into the next.
    """

    def __init__(self, marker: str):
        if not marker:
            raise ValueError("readiness marker must not be empty")
        self.marker = marker
        self._carry = ""

    def feed(self, chunk: str) -> bool:
        window = self._carry + chunk
        if self.marker in window:
            return True
        keep = len(self.marker) - 1
        self._carry = window[-keep:] if keep else ""
        return False

    def describe(self) -> str:
        return f"marker {self.marker!r}"


ExitCallback = Callable[["SupervisedProcess"], Any]


def _consume_exception(future: asyncio.Future) -> None:
    # Crash results may land after the caller stopped waiting.
    if not future.cancelled():
        future.exception()


class SupervisedProcess:
    """Handle for a spawned external process.

    Owns the output pump task, the readiness future and exit callbacks.
    """

    def __init__(
        self,
        name: str,
        process: asyncio.subprocess.Process,
        argv: Sequence[str],
        detector: Optional[ReadinessDetector] = None,
        log=None,
    ):
        self.name = name
        self.process = process
        self.argv = list(argv)
        self.started_at = datetime.utcnow()
        self._detector = detector
        self._log = (log or logger).bind(process=name, pid=process.pid)

        self._ready: Optional[asyncio.Future] = None
        if detector is not None:
            self._ready = asyncio.get_running_loop().create_future()
            self._ready.add_done_callback(_consume_exception)

        self._tail: deque = deque()
        self._tail_len = 0
        self._exited = asyncio.Event()
        self._exit_callbacks: List[ExitCallback] = []
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return not self._exited.is_set() and self.process.returncode is None

    @property
    def is_ready(self) -> bool:
        return (
            self._ready is not None
            and self._ready.done()
            and not self._ready.cancelled()
            and self._ready.exception() is None
        )

    @property
    def output_tail(self) -> str:
        return "".join(self._tail)

    def add_exit_callback(self, callback: ExitCallback) -> None:
        """Register a callback run once after the process exits."""
        if self._exited.is_set():
            asyncio.get_running_loop().call_soon(self._run_callback_soon, callback)
        else:
            self._exit_callbacks.append(callback)

    def start_pump(self) -> None:
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(
                self._pump(), name=f"pump-{self.name}-{self.pid}"
            )

    async def wait_ready(self, timeout: float) -> None:
        """Wait for the detector to fire.

        Raises:
            StartupTimeoutError: no readiness within ``timeout`` seconds
            StartupCrashError: the process exited before readiness
        """
        if self._ready is None:
            raise RuntimeError(f"{self.name} was spawned without a readiness detector")
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError:
            # Exactly one outcome per launch: a late marker no longer counts.
            if not self._ready.done():
                self._ready.cancel()
            self._log.error(
                "Startup timeout",
                timeout=timeout,
                detector=self._detector.describe(),
            )
            raise StartupTimeoutError(self.name, timeout, self.output_tail)

    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for exit; returns the exit code or None on timeout."""
        try:
            if self._pump_task is not None:
                await asyncio.wait_for(self._exited.wait(), timeout)
            else:
                await asyncio.wait_for(self.process.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self.process.returncode

    def send_signal(self, sig: int) -> None:
        """Signal the whole process group, falling back to the leader."""
        if self.process.returncode is not None:
            return
        try:
            os.killpg(self.process.pid, sig)
        except (ProcessLookupError, PermissionError):
            try:
                self.process.send_signal(sig)
            except ProcessLookupError:
                pass

    async def terminate(self, grace: float = None) -> Optional[int]:
        """SIGTERM the group, escalating to SIGKILL after ``grace`` seconds."""
        if grace is None:
            grace = settings.display_stop_grace_seconds
        if not self.is_alive:
            return self.returncode

        self.send_signal(signal.SIGTERM)
        code = await self.wait(timeout=grace)
        if code is None and self.process.returncode is None:
            self._log.debug("Grace period elapsed, killing", grace=grace)
            return await self.kill()
        return code

    async def kill(self, timeout: float = 5.0) -> Optional[int]:
        """SIGKILL the group and wait briefly for the exit."""
        if self.process.returncode is None:
            self.send_signal(signal.SIGKILL)
        return await self.wait(timeout=timeout)

    async def _pump(self) -> None:
        stream = self.process.stdout
        try:
            if stream is not None:
                while True:
                    chunk = await stream.read(READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    self._record(chunk.decode("utf-8", errors="replace"))
        except Exception as e:
            self._log.warning("Output pump failed", error=str(e))

        returncode = await self.process.wait()
        self._exited.set()

        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(
                StartupCrashError(self.name, returncode, self.output_tail)
            )

        self._log.debug("Process exited", exit_code=returncode)

        callbacks, self._exit_callbacks = self._exit_callbacks, []
        for callback in callbacks:
            await self._run_callback(callback)

    def _record(self, text: str) -> None:
        self._tail.append(text)
        self._tail_len += len(text)
        while self._tail_len > OUTPUT_TAIL_CHARS and len(self._tail) > 1:
            self._tail_len -= len(self._tail.popleft())

        preview = text[:PREVIEW_CHARS].replace("\n", " ").strip()
        if preview:
            self._log.debug("Process output", output=preview)

        if (
            self._detector is not None
            and self._ready is not None
            and not self._ready.done()
            and self._detector.feed(text)
        ):
            self._ready.set_result(True)
            self._log.info("Process ready", detector=self._detector.describe())

    async def _run_callback(self, callback: ExitCallback) -> None:
        try:
            result = callback(self)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._log.error("Exit callback failed", error=str(e))

    def _run_callback_soon(self, callback: ExitCallback) -> None:
        asyncio.ensure_future(self._run_callback(callback))


class ProcessSupervisor:
    """Spawns external processes and waits for their readiness.

    ``start_and_await_ready`` resolves exactly once per launch: ready,
    StartupCrashError (exited first) or StartupTimeoutError. A process that
    times out is terminated when ``kill_on_timeout`` is set, instead of being
    left running until teardown.
    """

    def __init__(self, kill_on_timeout: bool = None, stop_grace: float = None):
        self._kill_on_timeout = (
            settings.display_kill_on_timeout if kill_on_timeout is None else kill_on_timeout
        )
        self._stop_grace = (
            settings.display_stop_grace_seconds if stop_grace is None else stop_grace
        )

    async def spawn(
        self,
        name: str,
        argv: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        detector: Optional[ReadinessDetector] = None,
        log=None,
    ) -> SupervisedProcess:
        """Start a process in its own group with merged, captured output."""
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=env,
            cwd=cwd,
            start_new_session=True,  # New process group for clean cleanup
        )
        supervised = SupervisedProcess(name, proc, argv, detector=detector, log=log)
        supervised.start_pump()
        supervised._log.debug("Process spawned", argv=" ".join(argv))
        return supervised

    async def run(
        self,
        name: str,
        argv: Sequence[str],
        timeout: float,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> Tuple[int, bytes]:
        """Run a short-lived command to completion.

        Args:
            name: Label used in logs
            argv: Command to run
            timeout: Seconds before the process group is killed
            env: Environment for the child
            cwd: Working directory for the child

        Returns:
            Tuple of (exit_code, merged output). Exit code is 124 on timeout
            and 127 when the command cannot be spawned.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
                cwd=cwd,
                start_new_session=True,
            )
        except OSError as e:
            logger.warning("Failed to spawn command", process=name, error=str(e))
            return 127, str(e).encode("utf-8")

        try:
            output, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                proc.kill()
            await proc.wait()
            logger.warning("Command timed out", process=name, timeout=timeout)
            return 124, f"{name} timed out after {timeout:g} seconds".encode("utf-8")

        return proc.returncode, output or b""

    async def start_and_await_ready(
        self,
        name: str,
        argv: Sequence[str],
        detector: ReadinessDetector,
        timeout: float,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        log=None,
        on_spawn: Optional[Callable[[SupervisedProcess], None]] = None,
    ) -> SupervisedProcess:
        """Spawn ``argv`` and wait until ``detector`` fires.

        Args:
            name: Label used in logs and errors
            argv: Command to run
            detector: Readiness detector fed with the merged output
            timeout: Seconds to wait for readiness
            env: Environment for the child
            cwd: Working directory for the child
            log: Bound logger to use
            on_spawn: Called with the handle before waiting, so the caller
                can reach the process from its teardown path

        Returns:
            The ready SupervisedProcess

        Raises:
            StartupTimeoutError: no readiness within ``timeout``
            StartupCrashError: exited before readiness or could not be spawned
        """
        try:
            supervised = await self.spawn(
                name, argv, env=env, cwd=cwd, detector=detector, log=log
            )
        except OSError as e:
            (log or logger).error("Failed to spawn process", process=name, error=str(e))
            raise StartupCrashError(name, None, str(e))

        if on_spawn is not None:
            on_spawn(supervised)

        try:
            await supervised.wait_ready(timeout)
        except StartupTimeoutError:
            if self._kill_on_timeout:
                await supervised.terminate(self._stop_grace)
            raise
        return supervised
