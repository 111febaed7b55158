"""Configuration management for the Graphics Sandbox API.

This module provides a unified Settings class with flat environment-backed
fields, plus grouped read-only views over them.

Usage:
    from graphics_sandbox.config import settings

    # Access grouped settings
    settings.api.api_port
    settings.sandbox.display_command
    settings.resources.get_session_timeout_seconds()

    # Or use flat access
    settings.api_port
    settings.display_command
    settings.get_session_timeout_seconds()
"""

import shlex
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Import grouped configurations
from .api import APIConfig
from .resources import ResourcesConfig
from .logging import LoggingConfig
from .sandbox import SandboxConfig


class Settings(BaseSettings):
    """Application settings with environment variable support.

    This class provides both:
    1. Grouped access via nested configs (settings.sandbox.display_command)
    2. Flat access (settings.display_command)
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000, ge=1, le=65535)
    api_debug: bool = Field(default=False)
    api_reload: bool = Field(default=False)

    # Slot Configuration
    base_display: int = Field(default=100, ge=1)
    base_stream_port: int = Field(default=10000, ge=1024, le=65535)
    max_sessions: int = Field(
        default=5,
        ge=1,
        le=256,
        description="Maximum concurrent sessions (one display + port slot each)",
    )

    # Session Configuration
    session_timeout_minutes: int = Field(
        default=10,
        ge=1,
        le=1440,
        description="Idle time after which a session is reaped",
    )
    reaper_interval_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Interval between idle session sweeps",
    )

    # Display Server Configuration
    display_command: str = Field(
        default=(
            "xpra start :{display} --bind-tcp=127.0.0.1:{port} --daemon=no "
            "--dpi=96 --sharing=yes --html=on --headerbar=no --notifications=no "
            "--pulseaudio=no --webcam=no"
        ),
        description="Display server command template ({display}, {port})",
    )
    display_ready_marker: str = Field(
        default="xpra is ready",
        min_length=1,
        description="Substring in display server output that signals readiness",
    )
    display_stop_command: str = Field(
        default="xpra stop :{display}",
        description="Command that stops a display session by name ({display})",
    )
    display_startup_timeout_seconds: float = Field(default=15.0, gt=0, le=300)
    display_stop_grace_seconds: float = Field(default=2.0, ge=0, le=60)
    display_kill_on_timeout: bool = Field(
        default=True,
        description="Terminate a display process that missed its startup timeout",
    )
    x11_lock_dir: str = Field(default="/tmp")

    # Compiler Configuration
    compile_command: str = Field(
        default="graphics.h {source} {artifact_stem}",
        description="Compiler command template ({source}, {artifact}, {artifact_stem}, {workspace})",
    )
    compile_timeout_seconds: float = Field(default=60.0, gt=0, le=600)
    max_diagnostic_chars: int = Field(default=4000, ge=100, le=1_000_000)
    max_code_size_kb: int = Field(default=512, ge=1, le=10240)

    # Runtime Configuration
    runtime_command: str = Field(
        default="wine {artifact}",
        description="Runtime command template ({artifact}, {workspace}, {display})",
    )
    runtime_helper_kill_command: str = Field(
        default="wineserver -k",
        description="Command that stops runtime helper processes bound to a display",
    )
    helper_command_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    runtime_prefix_env: str = Field(default="WINEPREFIX")
    runtime_prefix_dirname: str = Field(default="wineprefix")
    runtime_template_dir: Optional[str] = Field(
        default="/opt/wine-template",
        description="Pre-baked runtime prefix copied into new workspaces",
    )
    runtime_extra_env: Dict[str, str] = Field(
        default_factory=lambda: {"WINEDEBUG": "-all"}
    )

    # Workspace Configuration
    workspace_base_dir: str = Field(
        default="temp",
        description="Root directory for per-session workspaces",
    )
    workspace_cleanup_delay_seconds: float = Field(default=1.0, ge=0, le=60)
    source_filename: str = Field(default="source.cpp")
    artifact_filename: str = Field(default="program.exe")

    # Stream Proxy Configuration
    stream_upstream_host: str = Field(default="127.0.0.1")
    proxy_timeout_seconds: float = Field(default=30.0, gt=0, le=600)

    # Static Assets
    static_dir: Optional[str] = Field(default="public")
    index_file: str = Field(default="win-compiler.html")
    stream_client_dir: Optional[str] = Field(default="/usr/share/xpra/www")

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")
    enable_access_logs: bool = Field(default=True)

    # Development Configuration
    enable_cors: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=list)
    enable_docs: bool = Field(default=True)

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @validator("max_sessions")
    def validate_port_range(cls, v, values):
        """Ensure every slot maps to a valid TCP port."""
        base_port = values.get("base_stream_port", 10000)
        if base_port + v - 1 > 65535:
            raise ValueError(
                f"base_stream_port {base_port} + max_sessions {v} exceeds port range"
            )
        return v

    @validator(
        "display_command",
        "display_stop_command",
        "compile_command",
        "runtime_command",
        "runtime_helper_kill_command",
    )
    def validate_command_template(cls, v):
        """Ensure command templates tokenize into at least one argument."""
        try:
            tokens = shlex.split(v)
        except ValueError as e:
            raise ValueError(f"Invalid command template: {e}")
        if not tokens:
            raise ValueError("Command template must not be empty")
        return v

    @validator("log_format")
    def validate_log_format(cls, v):
        """Restrict log format to the supported renderers."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @validator("log_level")
    def validate_log_level(cls, v):
        return v.upper()

    # ========================================================================
    # GROUPED CONFIG ACCESS
    # ========================================================================

    @property
    def api(self) -> APIConfig:
        """Access API configuration group."""
        return APIConfig(
            api_host=self.api_host,
            api_port=self.api_port,
            api_debug=self.api_debug,
            api_reload=self.api_reload,
            enable_cors=self.enable_cors,
            cors_origins=self.cors_origins,
            enable_docs=self.enable_docs,
            static_dir=self.static_dir,
            index_file=self.index_file,
            stream_client_dir=self.stream_client_dir,
            stream_upstream_host=self.stream_upstream_host,
            proxy_timeout_seconds=self.proxy_timeout_seconds,
        )

    @property
    def resources(self) -> ResourcesConfig:
        """Access capacity and timing configuration group."""
        return ResourcesConfig(
            base_display=self.base_display,
            base_stream_port=self.base_stream_port,
            max_sessions=self.max_sessions,
            session_timeout_minutes=self.session_timeout_minutes,
            reaper_interval_seconds=self.reaper_interval_seconds,
            display_startup_timeout_seconds=self.display_startup_timeout_seconds,
            display_stop_grace_seconds=self.display_stop_grace_seconds,
            display_kill_on_timeout=self.display_kill_on_timeout,
            compile_timeout_seconds=self.compile_timeout_seconds,
            helper_command_timeout_seconds=self.helper_command_timeout_seconds,
            workspace_cleanup_delay_seconds=self.workspace_cleanup_delay_seconds,
            max_diagnostic_chars=self.max_diagnostic_chars,
            max_code_size_kb=self.max_code_size_kb,
        )

    @property
    def sandbox(self) -> SandboxConfig:
        """Access external collaborator configuration group."""
        return SandboxConfig(
            display_command=self.display_command,
            display_ready_marker=self.display_ready_marker,
            display_stop_command=self.display_stop_command,
            x11_lock_dir=self.x11_lock_dir,
            compile_command=self.compile_command,
            runtime_command=self.runtime_command,
            runtime_helper_kill_command=self.runtime_helper_kill_command,
            runtime_prefix_env=self.runtime_prefix_env,
            runtime_prefix_dirname=self.runtime_prefix_dirname,
            runtime_template_dir=self.runtime_template_dir,
            runtime_extra_env=self.runtime_extra_env,
            workspace_base_dir=self.workspace_base_dir,
            source_filename=self.source_filename,
            artifact_filename=self.artifact_filename,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
            enable_access_logs=self.enable_access_logs,
        )

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    def get_session_timeout_seconds(self) -> float:
        """Get the idle session timeout in seconds."""
        return self.resources.get_session_timeout_seconds()

    def get_workspace_base_dir(self) -> Path:
        """Get the absolute workspace root."""
        return Path(self.workspace_base_dir).resolve()

    def get_static_dir(self) -> Optional[Path]:
        """Get the static UI directory if it exists on disk."""
        if self.static_dir and Path(self.static_dir).is_dir():
            return Path(self.static_dir)
        return None

    def get_stream_client_dir(self) -> Optional[Path]:
        """Get the stream client asset directory if it exists on disk."""
        if self.stream_client_dir and Path(self.stream_client_dir).is_dir():
            return Path(self.stream_client_dir)
        return None


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    # Grouped configs
    "APIConfig",
    "ResourcesConfig",
    "LoggingConfig",
    "SandboxConfig",
]
