"""Sandbox process and resource management.

This package provides the building blocks a session is assembled from:
- pool.py: Fixed pool of display/port slots
- supervisor.py: Process supervision and readiness detection
- display.py: Display server start/stop
- executor.py: Compilation and runtime launch
- manager.py: Per-session workspace lifecycle
"""

from .pool import ResourcePool
from .supervisor import (
    OutputMarkerDetector,
    ProcessSupervisor,
    ReadinessDetector,
    SupervisedProcess,
)
from .display import DisplayLauncher
from .executor import SandboxExecutor
from .manager import WorkspaceInfo, WorkspaceManager

__all__ = [
    "ResourcePool",
    "OutputMarkerDetector",
    "ProcessSupervisor",
    "ReadinessDetector",
    "SupervisedProcess",
    "DisplayLauncher",
    "SandboxExecutor",
    "WorkspaceInfo",
    "WorkspaceManager",
]
