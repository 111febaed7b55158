"""Sandbox collaborator configuration (display engine, compiler, runtime)."""

from typing import Dict, Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class SandboxConfig(BaseSettings):
    """External command templates and workspace layout."""

    display_command: str = Field(
        default=(
            "xpra start :{display} --bind-tcp=127.0.0.1:{port} --daemon=no "
            "--dpi=96 --sharing=yes --html=on --headerbar=no --notifications=no "
            "--pulseaudio=no --webcam=no"
        )
    )
    display_ready_marker: str = Field(default="xpra is ready")
    display_stop_command: str = Field(default="xpra stop :{display}")
    x11_lock_dir: str = Field(default="/tmp")

    compile_command: str = Field(default="graphics.h {source} {artifact_stem}")
    runtime_command: str = Field(default="wine {artifact}")
    runtime_helper_kill_command: str = Field(default="wineserver -k")
    runtime_prefix_env: str = Field(default="WINEPREFIX")
    runtime_prefix_dirname: str = Field(default="wineprefix")
    runtime_template_dir: Optional[str] = Field(default="/opt/wine-template")
    runtime_extra_env: Dict[str, str] = Field(
        default_factory=lambda: {"WINEDEBUG": "-all"}
    )

    workspace_base_dir: str = Field(default="temp")
    source_filename: str = Field(default="source.cpp")
    artifact_filename: str = Field(default="program.exe")

    class Config:
        env_prefix = ""
        extra = "ignore"
