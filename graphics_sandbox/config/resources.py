"""Capacity and timing configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class ResourcesConfig(BaseSettings):
    """Slot capacity, timeouts and size limits."""

    # Slots
    base_display: int = Field(default=100, ge=1)
    base_stream_port: int = Field(default=10000, ge=1024, le=65535)
    max_sessions: int = Field(default=5, ge=1, le=256)

    # Session Lifecycle
    session_timeout_minutes: int = Field(default=10, ge=1, le=1440)
    reaper_interval_seconds: int = Field(default=60, ge=1, le=3600)

    # Process timeouts
    display_startup_timeout_seconds: float = Field(default=15.0, gt=0, le=300)
    display_stop_grace_seconds: float = Field(default=2.0, ge=0, le=60)
    display_kill_on_timeout: bool = Field(default=True)
    compile_timeout_seconds: float = Field(default=60.0, gt=0, le=600)
    helper_command_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    workspace_cleanup_delay_seconds: float = Field(default=1.0, ge=0, le=60)

    # Limits
    max_diagnostic_chars: int = Field(default=4000, ge=100, le=1_000_000)
    max_code_size_kb: int = Field(default=512, ge=1, le=10240)

    def get_session_timeout_seconds(self) -> float:
        """Get the idle session timeout in seconds."""
        return float(self.session_timeout_minutes * 60)

    class Config:
        env_prefix = ""
        extra = "ignore"
