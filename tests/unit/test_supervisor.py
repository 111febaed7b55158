"""Unit tests for process supervision and readiness detection."""

import asyncio

import pytest

from graphics_sandbox.models.errors import StartupCrashError, StartupTimeoutError
from graphics_sandbox.services.sandbox.supervisor import (
    OutputMarkerDetector,
    ProcessSupervisor,
)


class TestOutputMarkerDetector:
    """Test marker detection over chunked output."""

    def test_marker_in_single_chunk(self):
        detector = OutputMarkerDetector("xpra is ready")
        assert detector.feed("starting\nxpra is ready\n") is True

    def test_marker_split_across_chunks(self):
        detector = OutputMarkerDetector("xpra is ready")
        assert detector.feed("booting... xpra is r") is False
        assert detector.feed("eady\n") is True

    def test_marker_split_across_many_chunks(self):
        detector = OutputMarkerDetector("xpra is ready")
        results = [detector.feed(c) for c in ["xp", "ra", " is", " re", "ady"]]
        assert results == [False, False, False, False, True]

    def test_unrelated_output_never_ready(self):
        detector = OutputMarkerDetector("xpra is ready")
        assert detector.feed("xpra is starting\n") is False
        assert detector.feed("xpra is not ready yet\n") is False

    def test_empty_marker_rejected(self):
        with pytest.raises(ValueError):
            OutputMarkerDetector("")

    def test_describe(self):
        assert "xpra is ready" in OutputMarkerDetector("xpra is ready").describe()


class TestStartAndAwaitReady:
    """Test readiness outcomes of supervised processes."""

    @pytest.mark.asyncio
    async def test_ready_on_marker(self, supervisor):
        process = await supervisor.start_and_await_ready(
            "display",
            ["sh", "-c", "echo booting; echo 'xpra is ready'; exec sleep 30"],
            OutputMarkerDetector("xpra is ready"),
            timeout=5,
        )
        try:
            assert process.is_ready
            assert process.is_alive
            assert "booting" in process.output_tail
        finally:
            await process.terminate(0.5)
        assert not process.is_alive

    @pytest.mark.asyncio
    async def test_ready_when_marker_split_between_writes(self, supervisor):
        process = await supervisor.start_and_await_ready(
            "display",
            ["sh", "-c", "printf 'xpra is r'; sleep 0.2; printf 'eady\\n'; exec sleep 30"],
            OutputMarkerDetector("xpra is ready"),
            timeout=5,
        )
        try:
            assert process.is_ready
        finally:
            await process.terminate(0.5)

    @pytest.mark.asyncio
    async def test_crash_before_ready(self, supervisor):
        with pytest.raises(StartupCrashError) as exc_info:
            await supervisor.start_and_await_ready(
                "display",
                ["sh", "-c", "echo 'cannot open display'; exit 3"],
                OutputMarkerDetector("xpra is ready"),
                timeout=5,
            )

        assert exc_info.value.exit_code == 3
        assert "cannot open display" in exc_info.value.output_tail
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout_terminates_process(self, supervisor):
        spawned = []

        with pytest.raises(StartupTimeoutError) as exc_info:
            await supervisor.start_and_await_ready(
                "display",
                ["sh", "-c", "echo waiting; exec sleep 30"],
                OutputMarkerDetector("xpra is ready"),
                timeout=0.3,
                on_spawn=spawned.append,
            )

        assert exc_info.value.timeout == 0.3
        assert len(spawned) == 1
        assert not spawned[0].is_alive

    @pytest.mark.asyncio
    async def test_timeout_leaves_process_when_kill_disabled(self):
        supervisor = ProcessSupervisor(kill_on_timeout=False, stop_grace=0.5)
        spawned = []

        with pytest.raises(StartupTimeoutError):
            await supervisor.start_and_await_ready(
                "display",
                ["sh", "-c", "exec sleep 30"],
                OutputMarkerDetector("xpra is ready"),
                timeout=0.2,
                on_spawn=spawned.append,
            )

        try:
            assert spawned[0].is_alive
        finally:
            await spawned[0].kill()

    @pytest.mark.asyncio
    async def test_missing_binary_is_startup_crash(self, supervisor):
        with pytest.raises(StartupCrashError):
            await supervisor.start_and_await_ready(
                "display",
                ["/nonexistent/display-server"],
                OutputMarkerDetector("xpra is ready"),
                timeout=1,
            )


class TestSupervisedProcess:
    """Test lifecycle helpers of a spawned process."""

    @pytest.mark.asyncio
    async def test_exit_callback_runs_once(self, supervisor):
        calls = []
        process = await supervisor.spawn("runtime", ["sh", "-c", "exit 0"])
        process.add_exit_callback(lambda p: calls.append(p.returncode))

        assert await process.wait(timeout=5) == 0
        await asyncio.sleep(0.05)
        assert calls == [0]

    @pytest.mark.asyncio
    async def test_callback_added_after_exit_still_runs(self, supervisor):
        calls = []
        process = await supervisor.spawn("runtime", ["sh", "-c", "exit 2"])
        await process.wait(timeout=5)

        process.add_exit_callback(lambda p: calls.append(p.returncode))
        await asyncio.sleep(0.05)
        assert calls == [2]

    @pytest.mark.asyncio
    async def test_kill_reaches_process_group(self, supervisor):
        # The child sleep is in the same group as the shell
        process = await supervisor.spawn("runtime", ["sh", "-c", "sleep 30 & wait"])
        assert process.is_alive

        code = await process.kill()
        assert code is not None
        assert not process.is_alive

    @pytest.mark.asyncio
    async def test_terminate_already_exited(self, supervisor):
        process = await supervisor.spawn("runtime", ["sh", "-c", "exit 0"])
        await process.wait(timeout=5)
        assert await process.terminate(0.1) == 0

    @pytest.mark.asyncio
    async def test_wait_ready_without_detector(self, supervisor):
        process = await supervisor.spawn("runtime", ["sh", "-c", "exit 0"])
        with pytest.raises(RuntimeError):
            await process.wait_ready(1)


class TestRun:
    """Test short-lived command execution."""

    @pytest.mark.asyncio
    async def test_run_captures_merged_output(self, supervisor):
        code, output = await supervisor.run(
            "helper", ["sh", "-c", "echo out; echo err >&2; exit 4"], timeout=5
        )
        assert code == 4
        assert b"out" in output
        assert b"err" in output

    @pytest.mark.asyncio
    async def test_run_timeout_returns_124(self, supervisor):
        code, output = await supervisor.run("helper", ["sh", "-c", "exec sleep 30"], timeout=0.2)
        assert code == 124
        assert b"timed out" in output

    @pytest.mark.asyncio
    async def test_run_missing_binary_returns_127(self, supervisor):
        code, _ = await supervisor.run("helper", ["/nonexistent/helper"], timeout=1)
        assert code == 127

    @pytest.mark.asyncio
    async def test_run_uses_cwd(self, supervisor, tmp_path):
        code, output = await supervisor.run("helper", ["pwd"], timeout=5, cwd=str(tmp_path))
        assert code == 0
        assert output.decode().strip() == str(tmp_path)
