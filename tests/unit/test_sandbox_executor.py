"""Unit tests for compilation and runtime launch."""

import pytest

from graphics_sandbox.config import settings
from graphics_sandbox.models.errors import CompileError, ExecutionError
from graphics_sandbox.models.pool import Slot
from graphics_sandbox.services.sandbox.executor import SandboxExecutor
from graphics_sandbox.services.sandbox.manager import WorkspaceManager

SLOT = Slot(index=0, display=100, port=10000)


@pytest.fixture
def executor(supervisor):
    return SandboxExecutor(supervisor)


@pytest.fixture
def workspace(workspace_dir):
    manager = WorkspaceManager(workspace_dir)
    return manager.create_workspace("session-under-test")


class TestOutputSanitization:
    """Test compiler output cleanup."""

    def test_strips_ansi_and_control_chars(self, executor):
        raw = b"\x1b[31merror:\x1b[0m bad\x07 thing\n"
        assert executor._sanitize_output(raw) == "error: bad thing"

    def test_keeps_newlines_and_tabs(self, executor):
        assert executor._sanitize_output(b"line1\n\tline2") == "line1\n\tline2"

    def test_truncates_long_output(self, executor, monkeypatch):
        monkeypatch.setattr(settings, "max_diagnostic_chars", 100)
        result = executor._sanitize_output(b"x" * 500)
        assert result.startswith("x" * 100)
        assert result.endswith("[Output truncated]")
        assert len(result) < 200

    def test_invalid_utf8_is_replaced(self, executor):
        assert "�" in executor._sanitize_output(b"bad \xff byte")


class TestRuntimeEnvironment:
    """Test the environment handed to the runtime."""

    def test_env_binds_display_and_prefix(self, executor, workspace):
        env = executor.build_runtime_env(SLOT, workspace)

        assert env["DISPLAY"] == ":100"
        assert env[settings.runtime_prefix_env] == str(workspace.prefix_dir)
        for key, value in settings.runtime_extra_env.items():
            assert env[key] == value
        assert "PATH" in env


class TestCompile:
    """Test compiler invocation with the stand-in compiler."""

    @pytest.mark.asyncio
    async def test_successful_compile_produces_artifact(self, executor, workspace):
        workspace.source_path.write_text("echo hello\n")

        artifact = await executor.compile(workspace)

        assert artifact == workspace.artifact_path
        assert artifact.read_text() == "echo hello\n"

    @pytest.mark.asyncio
    async def test_failed_compile_raises_with_diagnostics(self, executor, workspace):
        workspace.source_path.write_text("COMPILE_ERROR\n")

        with pytest.raises(CompileError) as exc_info:
            await executor.compile(workspace)

        assert exc_info.value.exit_code == 1
        assert "error: COMPILE_ERROR found" in exc_info.value.diagnostics
        assert exc_info.value.status_code == 200
        assert exc_info.value.to_response().output == exc_info.value.diagnostics

    @pytest.mark.asyncio
    async def test_stale_artifact_does_not_mask_failure(self, executor, workspace):
        workspace.artifact_path.write_text("old build")
        workspace.source_path.write_text("COMPILE_ERROR\n")

        with pytest.raises(CompileError):
            await executor.compile(workspace)
        assert not workspace.artifact_path.exists()

    @pytest.mark.asyncio
    async def test_missing_artifact_is_compile_error(self, executor, workspace, monkeypatch):
        monkeypatch.setattr(settings, "compile_command", "true {source}")
        workspace.source_path.write_text("int main() {}")

        with pytest.raises(CompileError) as exc_info:
            await executor.compile(workspace)
        assert settings.artifact_filename in exc_info.value.diagnostics

    @pytest.mark.asyncio
    async def test_compile_timeout(self, executor, workspace, monkeypatch):
        monkeypatch.setattr(settings, "compile_command", "sleep 30")
        monkeypatch.setattr(settings, "compile_timeout_seconds", 0.2)
        workspace.source_path.write_text("int main() {}")

        with pytest.raises(CompileError) as exc_info:
            await executor.compile(workspace)
        assert exc_info.value.exit_code == 124
        assert "timed out" in exc_info.value.diagnostics


class TestLaunch:
    """Test runtime launch."""

    @pytest.mark.asyncio
    async def test_launch_runs_artifact_in_workspace(self, executor, workspace):
        workspace.artifact_path.write_text('echo "$DISPLAY $(pwd -P)"\n')
        workspace.prefix_dir.mkdir()

        process = await executor.launch(SLOT, workspace)
        assert await process.wait(timeout=5) == 0
        assert process.output_tail.strip() == f":100 {workspace.root.resolve()}"

    @pytest.mark.asyncio
    async def test_launch_failure_is_execution_error(self, executor, workspace, monkeypatch):
        monkeypatch.setattr(settings, "runtime_command", "/nonexistent/runtime {artifact}")

        with pytest.raises(ExecutionError) as exc_info:
            await executor.launch(SLOT, workspace)
        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_kill_helpers_tolerates_failure(self, executor, monkeypatch):
        monkeypatch.setattr(settings, "runtime_helper_kill_command", "/nonexistent/helper")
        await executor.kill_helpers(SLOT)
