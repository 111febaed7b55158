"""Unit tests for settings validation and small utilities."""

import random
import re

import pytest
from pydantic import ValidationError

from graphics_sandbox.config import Settings, settings
from graphics_sandbox.utils.commands import command_binary, is_command_available, render_command
from graphics_sandbox.utils.id_generator import generate_session_id
from graphics_sandbox.utils.nickname import generate_nickname


class TestSettings:
    """Test settings defaults and validators."""

    def test_defaults(self):
        assert settings.base_display == 100
        assert settings.base_stream_port == 10000
        assert settings.max_sessions == 5
        assert settings.session_timeout_minutes == 10
        assert settings.display_ready_marker == "xpra is ready"

    def test_session_timeout_seconds(self):
        assert Settings(session_timeout_minutes=3).get_session_timeout_seconds() == 180

    def test_port_range_validated(self):
        with pytest.raises(ValidationError):
            Settings(base_stream_port=65534, max_sessions=5)

    def test_unparseable_command_rejected(self):
        with pytest.raises(ValidationError):
            Settings(display_command="xpra start 'unterminated")

    def test_empty_command_rejected(self):
        with pytest.raises(ValidationError):
            Settings(compile_command="   ")

    def test_log_format_validated(self):
        with pytest.raises(ValidationError):
            Settings(log_format="xml")
        assert Settings(log_format="JSON").log_format == "json"

    def test_log_level_normalized(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_grouped_views(self):
        assert settings.resources.max_sessions == settings.max_sessions
        assert settings.sandbox.display_ready_marker == settings.display_ready_marker
        assert settings.api.api_port == settings.api_port
        assert settings.logging.log_format == settings.log_format


class TestCommands:
    """Test command template rendering."""

    def test_render_display_command(self):
        argv = render_command(
            "xpra start :{display} --bind-tcp=127.0.0.1:{port} --daemon=no",
            display=101,
            port=10001,
        )
        assert argv == ["xpra", "start", ":101", "--bind-tcp=127.0.0.1:10001", "--daemon=no"]

    def test_substituted_paths_stay_single_arguments(self):
        argv = render_command("compiler {source} {artifact}", source="/tmp/a b/src.cpp", artifact="/tmp/a b/out")
        assert argv == ["compiler", "/tmp/a b/src.cpp", "/tmp/a b/out"]

    def test_command_binary(self):
        assert command_binary("wine {artifact}") == "wine"
        assert command_binary("") is None

    def test_is_command_available(self):
        assert is_command_available("sh -c true") is True
        assert is_command_available("definitely-not-a-real-binary-xyz") is False


class TestIdentifiers:
    """Test session ids and nicknames."""

    def test_session_ids_are_unique_uuids(self):
        ids = {generate_session_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(re.fullmatch(r"[0-9a-f-]{36}", i) for i in ids)

    def test_nickname_shape(self):
        nickname = generate_nickname(random.Random(7))
        assert re.fullmatch(r"[A-Z][a-z]+[A-Z][a-z]+\d{1,2}", nickname)

    def test_nickname_is_deterministic_with_seed(self):
        assert generate_nickname(random.Random(3)) == generate_nickname(random.Random(3))
