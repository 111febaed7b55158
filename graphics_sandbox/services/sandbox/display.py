"""Virtual display server launcher."""

import asyncio
import os
from pathlib import Path
from typing import Callable, List, Optional

import structlog

from ...config import settings
from ...models.pool import Slot
from ...utils.commands import render_command
from .supervisor import (
    OutputMarkerDetector,
    ProcessSupervisor,
    ReadinessDetector,
    SupervisedProcess,
)

logger = structlog.get_logger(__name__)


class DisplayLauncher:
    """Starts and stops the display server bound to a slot.

    The display process is started through the supervisor and considered
    ready when the configured detector fires (by default, the readiness
    marker in its output).
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        lock_dir: str = None,
        detector_factory: Callable[[], ReadinessDetector] = None,
    ):
        self._supervisor = supervisor
        self._lock_dir = Path(lock_dir or settings.x11_lock_dir)
        self._detector_factory = detector_factory or (
            lambda: OutputMarkerDetector(settings.display_ready_marker)
        )

    def stale_lock_paths(self, display: int) -> List[Path]:
        return [
            self._lock_dir / f".X{display}-lock",
            self._lock_dir / ".X11-unix" / f"X{display}",
        ]

    def cleanup_stale_locks(self, display: int) -> None:
        """Remove X lock files left behind by a previous display server."""
        for path in self.stale_lock_paths(display):
            try:
                path.unlink()
                logger.debug("Removed stale display lock", path=str(path))
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Lock cleanup warning", path=str(path), error=str(e))

    async def start(
        self,
        slot: Slot,
        log=None,
        on_spawn: Optional[Callable[[SupervisedProcess], None]] = None,
    ) -> SupervisedProcess:
        """Start the display server for ``slot`` and wait for readiness.

        Raises:
            StartupTimeoutError: no readiness within the startup timeout
            StartupCrashError: the display exited before readiness
        """
        log = log or logger
        self.cleanup_stale_locks(slot.display)

        argv = render_command(
            settings.display_command, display=slot.display, port=slot.port
        )
        log.info("Starting display server", display=slot.display, port=slot.port)

        return await self._supervisor.start_and_await_ready(
            "display",
            argv,
            self._detector_factory(),
            settings.display_startup_timeout_seconds,
            env=dict(os.environ),
            log=log,
            on_spawn=on_spawn,
        )

    async def stop(
        self,
        slot: Slot,
        process: Optional[SupervisedProcess] = None,
        log=None,
    ) -> None:
        """Terminate the display process and stop its session by name.

        Every step is best-effort; failures are logged and swallowed.
        """
        log = log or logger

        if process is not None and process.is_alive:
            try:
                await process.terminate(settings.display_stop_grace_seconds)
            except Exception as e:
                log.warning("Display termination failed", error=str(e))

        try:
            argv = render_command(settings.display_stop_command, display=slot.display)
            code, output = await self._supervisor.run(
                "display-stop",
                argv,
                timeout=settings.helper_command_timeout_seconds,
                env=dict(os.environ),
            )
            if code != 0:
                log.debug(
                    "Display stop command returned non-zero",
                    exit_code=code,
                    output=output.decode("utf-8", errors="replace")[:200],
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Display stop command failed", error=str(e))
