"""Pytest configuration and shared fixtures."""

import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

# Set test environment before importing config.
# The external collaborators are replaced with small shell stand-ins:
# - the display prints the readiness marker and then sleeps
# - the compiler copies the source to the artifact unless it contains
#   COMPILE_ERROR
# - the runtime executes the "artifact" as a shell script
# Use setdefault to allow environment variables to override defaults
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="graphics-sandbox-tests-"))
_STATIC_DIR = _TEST_ROOT / "public"
_STATIC_DIR.mkdir(parents=True, exist_ok=True)
(_STATIC_DIR / "win-compiler.html").write_text("<html><body>compiler</body></html>")
(_TEST_ROOT / "x11").mkdir(parents=True, exist_ok=True)

os.environ.setdefault("WORKSPACE_BASE_DIR", str(_TEST_ROOT / "workspaces"))
os.environ.setdefault("X11_LOCK_DIR", str(_TEST_ROOT / "x11"))
os.environ.setdefault("STATIC_DIR", str(_STATIC_DIR))
os.environ.setdefault("STREAM_CLIENT_DIR", "")
os.environ.setdefault(
    "DISPLAY_COMMAND",
    "sh -c 'echo \"display :{display} on {port}\"; echo \"xpra is ready\"; exec sleep 300'",
)
os.environ.setdefault("DISPLAY_STOP_COMMAND", "true")
os.environ.setdefault(
    "COMPILE_COMMAND",
    "sh -c 'if grep -q COMPILE_ERROR \"$1\"; then "
    "echo \"source.cpp:1: error: COMPILE_ERROR found\" >&2; exit 1; fi; "
    "cp \"$1\" \"$2\"' compile {source} {artifact}",
)
os.environ.setdefault("RUNTIME_COMMAND", "sh {artifact}")
os.environ.setdefault("RUNTIME_HELPER_KILL_COMMAND", "true")
os.environ.setdefault("RUNTIME_TEMPLATE_DIR", "")
os.environ.setdefault("DISPLAY_STARTUP_TIMEOUT_SECONDS", "10")
os.environ.setdefault("DISPLAY_STOP_GRACE_SECONDS", "1")
os.environ.setdefault("HELPER_COMMAND_TIMEOUT_SECONDS", "5")
os.environ.setdefault("WORKSPACE_CLEANUP_DELAY_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from graphics_sandbox.services.orchestrator import SessionOrchestrator
from graphics_sandbox.services.sandbox.manager import WorkspaceManager
from graphics_sandbox.services.sandbox.pool import ResourcePool
from graphics_sandbox.services.sandbox.supervisor import ProcessSupervisor


@pytest.fixture
def workspace_dir(tmp_path):
    """Isolated workspace root for a single test."""
    return tmp_path / "workspaces"


@pytest.fixture
def supervisor():
    """Supervisor with short grace periods."""
    return ProcessSupervisor(kill_on_timeout=True, stop_grace=0.5)


@pytest_asyncio.fixture
async def orchestrator(workspace_dir):
    """Orchestrator with a three-slot pool, torn down after the test."""
    orch = SessionOrchestrator(
        pool=ResourcePool(size=3),
        workspace_manager=WorkspaceManager(workspace_dir),
    )
    yield orch
    await orch.stop()


@pytest.fixture
def client():
    """TestClient running the full application lifespan."""
    from fastapi.testclient import TestClient

    from graphics_sandbox.main import app

    with TestClient(app) as test_client:
        yield test_client
