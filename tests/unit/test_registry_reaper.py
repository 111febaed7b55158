"""Unit tests for the session registry and the idle reaper."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from graphics_sandbox.models.errors import SessionNotFoundError, SessionStateError
from graphics_sandbox.models.session import SessionState
from graphics_sandbox.services.reaper import SessionReaper
from graphics_sandbox.services.registry import SessionRegistry
from graphics_sandbox.services.session import Session


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_session(session_id: str, registry: SessionRegistry = None, clock=None) -> Session:
    return Session(
        session_id,
        "TestNick1",
        workspace_manager=MagicMock(),
        display_launcher=MagicMock(stop=AsyncMock()),
        executor=MagicMock(kill_helpers=AsyncMock()),
        on_destroy=registry.remove if registry is not None else None,
        clock=clock or FakeClock(),
    )


class TestSessionRegistry:
    """Test registry bookkeeping."""

    def test_add_and_get(self):
        registry = SessionRegistry()
        session = make_session("abc")
        registry.add(session)

        assert registry.get("abc") is session
        assert "abc" in registry
        assert len(registry) == 1

    def test_duplicate_id_rejected(self):
        registry = SessionRegistry()
        registry.add(make_session("abc"))
        with pytest.raises(SessionStateError):
            registry.add(make_session("abc"))

    def test_require_unknown_raises(self):
        with pytest.raises(SessionNotFoundError):
            SessionRegistry().require("missing")

    @pytest.mark.asyncio
    async def test_require_terminating_raises(self):
        registry = SessionRegistry()
        session = make_session("abc")
        registry.add(session)

        waiter = session.teardown("test")
        with pytest.raises(SessionNotFoundError):
            registry.require("abc")
        await waiter

    def test_remove_checks_identity(self):
        registry = SessionRegistry()
        current = make_session("abc")
        registry.add(current)

        assert registry.remove(make_session("abc")) is False
        assert registry.get("abc") is current
        assert registry.remove(current) is True
        assert registry.remove(current) is False

    def test_count_by_state(self):
        registry = SessionRegistry()
        a, b = make_session("a"), make_session("b")
        b.state = SessionState.READY
        registry.add(a)
        registry.add(b)

        assert registry.count_by_state() == {"created": 1, "ready": 1}

    def test_snapshot_is_a_copy(self):
        registry = SessionRegistry()
        session = make_session("abc")
        registry.add(session)

        snapshot = registry.snapshot()
        registry.remove(session)
        assert snapshot == [session]


class TestSessionReaper:
    """Test idle session reaping."""

    @pytest.mark.asyncio
    async def test_reaps_only_strictly_past_timeout(self):
        clock = FakeClock(0.0)
        registry = SessionRegistry()
        session = make_session("idle", registry, clock)
        registry.add(session)
        reaper = SessionReaper(registry, interval=60, timeout=600, clock=clock)

        assert await reaper.sweep(now=600.0) == 0
        assert "idle" in registry

        assert await reaper.sweep(now=600.5) == 1
        assert "idle" not in registry
        assert session.teardown_reason == "idle_timeout"
        assert reaper.total_reaped == 1

    @pytest.mark.asyncio
    async def test_heartbeat_resets_idle_clock(self):
        clock = FakeClock(0.0)
        registry = SessionRegistry()
        session = make_session("busy", registry, clock)
        registry.add(session)
        reaper = SessionReaper(registry, timeout=600, clock=clock)

        clock.now = 500.0
        session.touch()

        assert await reaper.sweep(now=1000.0) == 0
        assert await reaper.sweep(now=1100.5) == 1

    @pytest.mark.asyncio
    async def test_one_failed_teardown_does_not_stop_others(self):
        registry = SessionRegistry()
        broken = MagicMock(id="broken", is_terminating=False)
        broken.idle_seconds.return_value = 1000
        broken.teardown = AsyncMock(side_effect=RuntimeError("stuck"))
        registry._sessions["broken"] = broken

        clock = FakeClock(0.0)
        healthy = make_session("healthy", registry, clock)
        registry.add(healthy)

        reaper = SessionReaper(registry, timeout=600, clock=clock)
        reaped = await reaper.sweep(now=1000.0)

        assert reaped == 1
        assert "healthy" not in registry
        broken.teardown.assert_awaited_once_with("idle_timeout")

    @pytest.mark.asyncio
    async def test_terminating_sessions_are_skipped(self):
        clock = FakeClock(0.0)
        registry = SessionRegistry()
        session = make_session("leaving", registry, clock)
        registry.add(session)
        waiter = session.teardown("client_request")

        reaper = SessionReaper(registry, timeout=600, clock=clock)
        assert await reaper.sweep(now=10_000.0) == 0
        await waiter
        assert session.teardown_reason == "client_request"

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        reaper = SessionReaper(SessionRegistry(), interval=3600, timeout=600)
        await reaper.start()
        assert reaper.is_running
        await reaper.stop()
        assert not reaper.is_running
