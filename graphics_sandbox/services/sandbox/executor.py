"""Compilation and runtime launch inside a session workspace.

Compiles the submitted source with the configured compiler command and
launches the resulting artifact under the runtime bound to the session's
virtual display.
"""

import os
import re
from pathlib import Path
from typing import Dict

import structlog

from ...config import settings
from ...models.errors import CompileError, ExecutionError
from ...models.pool import Slot
from ...utils.commands import render_command
from .manager import WorkspaceInfo
from .supervisor import ProcessSupervisor, SupervisedProcess

logger = structlog.get_logger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ANSI_ESCAPES = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")


class SandboxExecutor:
    """Runs the compiler and the runtime for a session.

    All processes go through the shared ProcessSupervisor so they run in
    their own process groups.
    """

    def __init__(self, supervisor: ProcessSupervisor):
        """Initialize executor.

        Args:
            supervisor: Supervisor used to spawn every external process
        """
        self._supervisor = supervisor

    async def compile(self, workspace: WorkspaceInfo, log=None) -> Path:
        """Compile the workspace source into the artifact.

        Args:
            workspace: Workspace holding the source file
            log: Bound session logger

        Returns:
            Path to the compiled artifact

        Raises:
            CompileError: non-zero exit, timeout, or no artifact produced
        """
        log = log or logger
        artifact = workspace.artifact_path
        argv = render_command(
            settings.compile_command,
            source=str(workspace.source_path),
            artifact=str(artifact),
            artifact_stem=str(artifact.with_suffix("")),
            workspace=str(workspace.root),
        )

        # A stale artifact must not mask a failed build
        try:
            artifact.unlink()
        except FileNotFoundError:
            pass

        log.info("Compiling")
        exit_code, output = await self._supervisor.run(
            "compiler",
            argv,
            timeout=settings.compile_timeout_seconds,
            env=dict(os.environ),
            cwd=str(workspace.root),
        )
        diagnostics = self._sanitize_output(output)

        if exit_code != 0:
            log.info("Compilation failed", exit_code=exit_code)
            raise CompileError(diagnostics or f"Compiler exited with code {exit_code}", exit_code)

        if not artifact.exists():
            log.warning("Compiler produced no artifact", artifact=artifact.name)
            raise CompileError(
                diagnostics or f"Compiler did not produce {artifact.name}", exit_code
            )

        log.info("Compilation successful")
        return artifact

    def build_runtime_env(self, slot: Slot, workspace: WorkspaceInfo) -> Dict[str, str]:
        """Build the environment for the runtime process."""
        env = dict(os.environ)
        env.update(settings.runtime_extra_env)
        env["DISPLAY"] = slot.display_name
        env[settings.runtime_prefix_env] = str(workspace.prefix_dir)
        return env

    async def launch(
        self, slot: Slot, workspace: WorkspaceInfo, log=None
    ) -> SupervisedProcess:
        """Launch the compiled artifact on the slot's display.

        Launch success is the spawn itself; the program keeps running in
        the background and its exit never changes session state.

        Raises:
            ExecutionError: the runtime could not be spawned
        """
        log = log or logger
        argv = render_command(
            settings.runtime_command,
            artifact=workspace.artifact_path.name,
            workspace=str(workspace.root),
            display=slot.display,
        )

        try:
            process = await self._supervisor.spawn(
                "runtime",
                argv,
                env=self.build_runtime_env(slot, workspace),
                cwd=str(workspace.root),
                log=log,
            )
        except OSError as e:
            log.error("Runtime launch failed", error=str(e))
            raise ExecutionError(f"Execution failed: {e}")

        process.add_exit_callback(self._log_runtime_exit)
        log.info("Program launched", pid=process.pid)
        return process

    async def kill_helpers(self, slot: Slot, log=None) -> None:
        """Stop runtime helper processes bound to the slot's display."""
        log = log or logger
        env = dict(os.environ)
        env["DISPLAY"] = slot.display_name
        try:
            argv = render_command(
                settings.runtime_helper_kill_command, display=slot.display
            )
            exit_code, _ = await self._supervisor.run(
                "runtime-helper-kill",
                argv,
                timeout=settings.helper_command_timeout_seconds,
                env=env,
            )
            log.debug("Runtime helpers stopped", exit_code=exit_code)
        except Exception as e:
            log.warning("Runtime helper kill failed", error=str(e))

    @staticmethod
    def _log_runtime_exit(process: SupervisedProcess) -> None:
        if process.returncode == 0:
            process._log.info("Program exited", exit_code=process.returncode)
        else:
            process._log.warning(
                "Program exited with error",
                exit_code=process.returncode,
                output=process.output_tail[-500:],
            )

    def _sanitize_output(self, output: bytes) -> str:
        """Sanitize compiler output for display in the client console."""
        try:
            output_str = output.decode("utf-8", errors="replace")
            output_str = _ANSI_ESCAPES.sub("", output_str)
            output_str = _CONTROL_CHARS.sub("", output_str)

            limit = settings.max_diagnostic_chars
            if len(output_str) > limit:
                output_str = output_str[:limit] + "\n[Output truncated]"
            return output_str.strip()

        except Exception as e:
            logger.error(f"Failed to sanitize output: {e}")
            return "[Output sanitization failed]"
